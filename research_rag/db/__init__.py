# =============================================================================
# Database Package
# =============================================================================
# Provides async SQLAlchemy engine, session management, and ORM models.
#
# Key exports:
#   - async_session_factory: pooled sessions for long-lived processes
#   - create_worker_session_factory: NullPool sessions for Celery tasks
#   - Base: SQLAlchemy declarative base for ORM models
#   - Document, DocumentChunk, ProjectDocument, Tag, DocumentTag
# =============================================================================
