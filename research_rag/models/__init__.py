# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Schemas for structured language-model output (document analysis, key
# insights, project tags, research summaries).
# These are SEPARATE from the database models (research_rag/db/models.py).
# =============================================================================
