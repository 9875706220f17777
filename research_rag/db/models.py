# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# The slice of the research workspace schema that the RAG core reads and
# writes. Users, teams and projects themselves are owned by the surrounding
# application; only their foreign keys appear here.
#
# SCHEMA OVERVIEW:
#
# ┌────────────────────┐       ┌──────────────────────────────────────┐
# │ research_documents │       │ document_chunks                      │
# ├────────────────────┤       ├──────────────────────────────────────┤
# │ id (PK, uuid)      │──1:N─▶│ id (PK, uuid)                        │
# │ title              │       │ document_id (FK → research_documents)│
# │ content_type       │       │ chunk_index (int)                    │
# │ category           │       │ content (text)                       │
# │ status             │       │ title (denormalised)                 │
# │ ai_summary         │       │ embedding (vector(768), nullable)    │
# │ extracted_text     │       │ created_at                           │
# └────────────────────┘       └──────────────────────────────────────┘
#          │
#          ├──N:M── project_documents (project_id, document_id)
#          └──N:M── document_tags ──▶ tags (name, color)
#
# DESIGN DECISIONS:
#
# 1. `embedding` is nullable. Chunks are inserted without vectors so that
#    lexical search works immediately; the background embedder fills them
#    in one by one.
#
# 2. (document_id, chunk_index) is UNIQUE. The indexer's "already indexed?"
#    check is best-effort; the constraint is what actually stops a
#    concurrent second indexing run from writing duplicate rows.
#
# 3. String UUID primary keys, matching the ids handed out by the
#    surrounding application.
# =============================================================================

import enum
import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from research_rag.config import settings


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class for all RAG tables."""

    pass


class DocumentStatus(str, enum.Enum):
    """
    Processing state of a research document.

    State machine:
        PROCESSING → COMPLETED
                   → ERROR
    """

    PROCESSING = "processing"    # Uploaded; analysis / indexing under way
    COMPLETED = "completed"      # Analysis stored (embeddings may still be landing)
    ERROR = "error"              # Pipeline-fatal failure


class Document(Base):
    """An uploaded research document and its AI-generated metadata."""

    __tablename__ = "research_documents"

    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), primary_key=True, default=_new_id,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # MIME type reported at upload, e.g. "application/pdf"
    content_type: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # One of the analyst's categories (Research Paper, Financial Report, ...)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DocumentStatus.PROCESSING.value,
    )

    ai_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Output of the (external) text-extraction step; input to indexing
    extracted_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # cascade="all, delete-orphan": deleting a document removes its chunks
    chunks: Mapped[list["DocumentChunk"]] = relationship(
        "DocumentChunk",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="noload",
    )

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, title='{self.title}', status={self.status})>"


class DocumentChunk(Base):
    """
    One retrievable slice of a document's text.

    Rows are created in bulk right after chunking with `embedding=None`,
    then patched once each when their embedding is computed. Reprocessing a
    document deletes and replaces every row; chunk_index is gap-free from 0.
    """

    __tablename__ = "document_chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_document_chunk_index"),
    )

    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), primary_key=True, default=_new_id,
    )
    document_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("research_documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    # Denormalised document title, for display without a join
    title: Mapped[str] = mapped_column(Text, nullable=False)

    # Null until the background embedder reaches this chunk
    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    document: Mapped["Document"] = relationship("Document", back_populates="chunks")

    def __repr__(self) -> str:
        return (
            f"<DocumentChunk(doc_id={self.document_id}, index={self.chunk_index}, "
            f"embedded={self.embedding is not None})>"
        )


class ProjectDocument(Base):
    """Association between a research project and a document."""

    __tablename__ = "project_documents"
    __table_args__ = (
        UniqueConstraint("project_id", "document_id", name="uq_project_document"),
    )

    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), primary_key=True, default=_new_id,
    )
    project_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False)
    document_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("research_documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class Tag(Base):
    """A free-form label, shared across documents."""

    __tablename__ = "tags"

    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), primary_key=True, default=_new_id,
    )
    name: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    color: Mapped[str] = mapped_column(String(20), nullable=False, default="#3B82F6")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class DocumentTag(Base):
    """Many-to-many link between documents and tags."""

    __tablename__ = "document_tags"

    document_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("research_documents.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tag_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("tags.id", ondelete="CASCADE"),
        primary_key=True,
    )


# =============================================================================
# Database Indexes
# =============================================================================
#
# HNSW index on chunk embeddings with `vector_cosine_ops`, matching the
# cosine-distance operator used by PgDatastore.match_chunks(). Rows with a
# NULL embedding are simply absent from the index.
# =============================================================================

chunk_embedding_idx = Index(
    "idx_document_chunks_embedding_hnsw",
    DocumentChunk.embedding,
    postgresql_using="hnsw",
    postgresql_with={"m": 16, "ef_construction": 64},
    postgresql_ops={"embedding": "vector_cosine_ops"},
)

chunk_document_idx = Index(
    "idx_document_chunks_document_id",
    DocumentChunk.document_id,
)

project_document_project_idx = Index(
    "idx_project_documents_project_id",
    ProjectDocument.project_id,
)
