# =============================================================================
# RAG Package — Orchestration
# =============================================================================
#   - indexer.py: chunk, persist, embed in the background
#   - retriever.py: scoped vector search with lexical fallbacks
#   - generator.py: prompt assembly and answer generation
#   - analyst.py: whole-document analysis with retry and local heuristics
#   - system.py: RAGSystem context object and build_rag_system() factory
# =============================================================================
