# =============================================================================
# Datastore Abstraction — Chunk Persistence + Vector Similarity RPC
# =============================================================================
#
# Everything the RAG core needs from the relational store, behind one
# Protocol: chunk CRUD addressed by (document_id, chunk_index), the
# `match_document_chunks` similarity query, and the handful of document /
# project / tag reads and writes the processing pipeline performs.
#
# DESIGN DECISION: Protocol (structural typing) over ABC (nominal typing).
# The indexer, retriever and tasks only depend on the method shapes below,
# so tests substitute an in-memory double without inheriting anything.
#
# DESIGN DECISION: Plain dataclasses cross the boundary, not ORM rows.
# Callers never hold a live session; each PgDatastore method opens and
# closes its own short transaction.
#
# ARCHITECTURE:
#   Datastore (Protocol)
#   └── PgDatastore — PostgreSQL + pgvector via SQLAlchemy async sessions
# =============================================================================

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import delete, exists, func, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from research_rag.db.models import (
    Document,
    DocumentChunk,
    DocumentTag,
    ProjectDocument,
    Tag,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class NewChunk:
    """A chunk about to be persisted (embedding normally still absent)."""

    document_id: str
    chunk_index: int
    title: str
    content: str
    embedding: list[float] | None = None


@dataclass
class StoredChunk:
    """A persisted chunk, as read back for lexical scoring."""

    id: str
    document_id: str
    chunk_index: int
    title: str
    content: str
    has_embedding: bool = False


@dataclass
class MatchedChunk:
    """A row returned by the vector-similarity query."""

    id: str
    document_id: str
    chunk_index: int
    title: str
    content: str
    similarity: float  # 1 - cosine distance


@dataclass
class DocumentRecord:
    """The document fields the pipeline reads."""

    id: str
    title: str
    text: str | None
    content_type: str | None = None
    status: str | None = None
    category: str | None = None


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class Datastore(Protocol):
    """
    Protocol for the external relational datastore.

    Every method may raise on storage failure; callers decide whether that
    is fatal (it almost never is).
    """

    async def has_chunks(self, document_id: str) -> bool:
        """Whether any chunk row exists for the document."""
        ...

    async def delete_chunks(self, document_id: str) -> int:
        """Delete all chunks of a document; return the number removed."""
        ...

    async def insert_chunks(self, chunks: Sequence[NewChunk]) -> None:
        """Insert one batch of chunks in a single transaction."""
        ...

    async def update_chunk_embedding(
        self, document_id: str, chunk_index: int, embedding: list[float],
    ) -> None:
        """Attach an embedding to the chunk at (document_id, chunk_index)."""
        ...

    async def list_chunks(
        self,
        document_ids: Sequence[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[StoredChunk]:
        """
        Chunks in storage order (document, then chunk_index).

        Args:
            document_ids: Restrict to these documents; None means all.
            limit: Optional cap on rows returned.
            offset: Rows to skip first, for paging.
        """
        ...

    async def has_embedded_chunks(
        self, document_ids: Sequence[str] | None = None,
    ) -> bool:
        """Whether any chunk in scope already has an embedding."""
        ...

    async def match_chunks(
        self,
        query_embedding: list[float],
        match_threshold: float,
        match_count: int,
        document_ids: Sequence[str] | None = None,
    ) -> list[MatchedChunk]:
        """
        Nearest chunks by cosine similarity (the match_document_chunks RPC).

        Only rows with similarity strictly above `match_threshold` are
        returned, most similar first, at most `match_count` of them.
        """
        ...

    async def get_document(self, document_id: str) -> DocumentRecord | None:
        ...

    async def get_project_document_ids(self, project_id: str) -> list[str]:
        ...

    async def count_chunks(self) -> int:
        ...

    async def update_document(self, document_id: str, **fields: Any) -> None:
        """Patch columns of a document (status, ai_summary, category, ...)."""
        ...

    async def attach_tags(self, document_id: str, tag_names: Sequence[str]) -> None:
        """Create missing tags by name and link them to the document."""
        ...

    async def check_connection(self) -> None:
        """Round-trip to the store; raise if it is unreachable."""
        ...


# ---------------------------------------------------------------------------
# Implementation: PostgreSQL + pgvector
# ---------------------------------------------------------------------------


class PgDatastore:
    """
    pgvector-backed datastore.

    Uses SQLAlchemy Core/ORM statements for writes and pgvector's
    cosine_distance operator for similarity reads.

    Args:
        session_factory: async_sessionmaker to open sessions from. Defaults
            to the pooled application factory; Celery tasks pass a
            NullPool factory (see db/engine.py).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        if session_factory is None:
            from research_rag.db.engine import async_session_factory

            session_factory = async_session_factory
        self._session_factory = session_factory

    # --- Chunks ---------------------------------------------------------------

    async def has_chunks(self, document_id: str) -> bool:
        async with self._session_factory() as session:
            stmt = select(
                exists().where(DocumentChunk.document_id == document_id)
            )
            return bool(await session.scalar(stmt))

    async def delete_chunks(self, document_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
            )
            await session.commit()
        removed = result.rowcount or 0
        logger.debug("Deleted %d chunks for document %s", removed, document_id)
        return removed

    async def insert_chunks(self, chunks: Sequence[NewChunk]) -> None:
        if not chunks:
            return
        async with self._session_factory() as session:
            session.add_all([
                DocumentChunk(
                    document_id=chunk.document_id,
                    chunk_index=chunk.chunk_index,
                    title=chunk.title,
                    content=chunk.content,
                    embedding=chunk.embedding,
                )
                for chunk in chunks
            ])
            await session.commit()

    async def update_chunk_embedding(
        self, document_id: str, chunk_index: int, embedding: list[float],
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(DocumentChunk)
                .where(DocumentChunk.document_id == document_id)
                .where(DocumentChunk.chunk_index == chunk_index)
                .values(embedding=embedding)
            )
            await session.commit()

    async def list_chunks(
        self,
        document_ids: Sequence[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[StoredChunk]:
        stmt = select(
            DocumentChunk.id,
            DocumentChunk.document_id,
            DocumentChunk.chunk_index,
            DocumentChunk.title,
            DocumentChunk.content,
            DocumentChunk.embedding.is_not(None).label("has_embedding"),
        ).order_by(DocumentChunk.document_id, DocumentChunk.chunk_index)

        if document_ids is not None:
            stmt = stmt.where(DocumentChunk.document_id.in_(list(document_ids)))
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        return [
            StoredChunk(
                id=str(row.id),
                document_id=str(row.document_id),
                chunk_index=row.chunk_index,
                title=row.title,
                content=row.content,
                has_embedding=bool(row.has_embedding),
            )
            for row in rows
        ]

    async def has_embedded_chunks(
        self, document_ids: Sequence[str] | None = None,
    ) -> bool:
        condition = DocumentChunk.embedding.is_not(None)
        if document_ids is not None:
            condition = condition & DocumentChunk.document_id.in_(list(document_ids))
        async with self._session_factory() as session:
            return bool(await session.scalar(select(exists().where(condition))))

    async def match_chunks(
        self,
        query_embedding: list[float],
        match_threshold: float,
        match_count: int,
        document_ids: Sequence[str] | None = None,
    ) -> list[MatchedChunk]:
        """
        Cosine similarity search using pgvector.

        pgvector's cosine_distance() lies in [0, 2]; similarity is
        1 - distance, so "similarity > threshold" is "distance < 1 - threshold".
        """
        distance = DocumentChunk.embedding.cosine_distance(query_embedding)
        stmt = (
            select(DocumentChunk, distance.label("distance"))
            .where(DocumentChunk.embedding.is_not(None))
            .where(distance < 1 - match_threshold)
            .order_by(distance)
            .limit(match_count)
        )
        if document_ids is not None:
            stmt = stmt.where(DocumentChunk.document_id.in_(list(document_ids)))

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        logger.debug(
            "Vector match returned %d rows (threshold=%.2f, count=%d)",
            len(rows), match_threshold, match_count,
        )

        return [
            MatchedChunk(
                id=str(chunk.id),
                document_id=str(chunk.document_id),
                chunk_index=chunk.chunk_index,
                title=chunk.title,
                content=chunk.content,
                similarity=1.0 - float(dist),
            )
            for chunk, dist in rows
        ]

    async def count_chunks(self) -> int:
        async with self._session_factory() as session:
            return int(
                await session.scalar(select(func.count()).select_from(DocumentChunk))
                or 0
            )

    # --- Documents, projects, tags ---------------------------------------------

    async def get_document(self, document_id: str) -> DocumentRecord | None:
        async with self._session_factory() as session:
            doc = await session.get(Document, document_id)
        if doc is None:
            return None
        return DocumentRecord(
            id=str(doc.id),
            title=doc.title,
            text=doc.extracted_text,
            content_type=doc.content_type,
            status=doc.status,
            category=doc.category,
        )

    async def get_project_document_ids(self, project_id: str) -> list[str]:
        async with self._session_factory() as session:
            result = await session.scalars(
                select(ProjectDocument.document_id)
                .where(ProjectDocument.project_id == project_id)
                .order_by(ProjectDocument.added_at)
            )
            return [str(document_id) for document_id in result]

    async def update_document(self, document_id: str, **fields: Any) -> None:
        if not fields:
            return
        async with self._session_factory() as session:
            await session.execute(
                update(Document).where(Document.id == document_id).values(**fields)
            )
            await session.commit()

    async def attach_tags(self, document_id: str, tag_names: Sequence[str]) -> None:
        names = list(dict.fromkeys(name for name in tag_names if name))
        if not names:
            return

        async with self._session_factory() as session:
            # Tag names are unique; existing tags are reused
            await session.execute(
                pg_insert(Tag)
                .values([{"id": str(uuid.uuid4()), "name": name} for name in names])
                .on_conflict_do_nothing(index_elements=["name"])
            )
            tag_ids = (
                await session.scalars(select(Tag.id).where(Tag.name.in_(names)))
            ).all()
            if tag_ids:
                await session.execute(
                    pg_insert(DocumentTag)
                    .values([
                        {"document_id": document_id, "tag_id": tag_id}
                        for tag_id in tag_ids
                    ])
                    .on_conflict_do_nothing()
                )
            await session.commit()

        logger.debug("Attached %d tags to document %s", len(names), document_id)

    async def check_connection(self) -> None:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
