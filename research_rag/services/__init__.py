# =============================================================================
# Services Package — Building Blocks
# =============================================================================
# Stateless or self-contained pieces the rag/ layer composes:
#   - hashing.py: 32-bit rolling hash (embedding features, cache keys)
#   - chunker.py: Character windows with sentence-boundary snapping
#   - local_embedder.py: Deterministic feature-hash embedding (last tier)
#   - embedder.py: OpenAI-compatible remote embedders + fallback chain
#   - llm.py: Chat providers (OpenAI-compatible, Anthropic) + retry policy
#   - response_parser.py: JSON extraction from free-form model output
#   - cache.py: Bounded TTL response cache
#   - datastore.py: Datastore protocol + PostgreSQL/pgvector implementation
# =============================================================================
