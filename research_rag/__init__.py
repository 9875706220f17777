# =============================================================================
# Research Document RAG
# =============================================================================
# Retrieval-augmented question answering over a workspace of research
# documents. Text is chunked, persisted immediately for keyword search, and
# embedded in the background through a three-tier provider chain (primary
# API, secondary API, local feature hashing). Answers and whole-document
# analyses degrade to local templates when no model is reachable.
#
# Package structure:
#   research_rag/
#   ├── config.py     → Settings (pydantic-settings)
#   ├── db/           → Async engine, sessions and ORM models (pgvector)
#   ├── models/       → Pydantic V2 schemas for structured model output
#   ├── services/     → Building blocks (chunker, embedders, datastore,
#   │                    chat providers, retry, parser, cache)
#   ├── rag/          → Indexer, retriever, generator, analyst, RAGSystem
#   └── workers/      → Celery document-processing tasks
# =============================================================================
