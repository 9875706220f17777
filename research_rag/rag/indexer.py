# =============================================================================
# Document Indexer — chunk, persist, then embed in the background
# =============================================================================
#
# index(document_id, text, title) never raises. The sequence:
#
#   1. Chunks already exist for the document?  → return (idempotency guard)
#   2. Delete stale chunks (left behind by a partial earlier failure)
#   3. Short text (< 500 chars)?  → store ONE chunk, embed it in the
#      background, return
#   4. Chunk the text (capped at 20 chunks). Zero chunks → synthesise one
#   5. Persist every chunk WITHOUT an embedding, in batches of 5, so that
#      lexical search works immediately
#   6. Start the background embedding task: chunks in ascending index order,
#      groups of 3, a fixed 0.5s pause between calls to respect provider
#      rate limits. Each embedding patches its row by (document_id,
#      chunk_index)
#
# FAILURE SEMANTICS:
# - A failing storage batch is logged; later batches still run
# - A failing chunk embedding is logged and skipped
# - Anything else that escapes → one fallback chunk is written, so the
#   document is never left with zero searchable content
#
# DESIGN DECISION: Background embedding is an asyncio.Task, not awaited.
# The caller gets control back as soon as the rows exist. Tasks are kept
# in a set (a bare create_task() result can be garbage-collected mid-run)
# and wait_for_background() lets a worker drain them before its event loop
# closes. Nothing is cancellable once started.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, Protocol

from research_rag.services.chunker import (
    DEFAULT_CHUNK_OVERLAP,
    DEFAULT_CHUNK_SIZE,
    MIN_CHUNK_LENGTH,
    chunk_text,
)
from research_rag.services.datastore import Datastore, NewChunk

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Document"

# Fallback chunk sizing when chunking produced nothing / the pipeline failed
_WHOLE_TEXT_LIMIT = 10_000
_TRUNCATED_LENGTH = 5_000


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]:
        ...


def _truncated(text: str) -> str:
    if len(text) > _TRUNCATED_LENGTH:
        return text[:_TRUNCATED_LENGTH] + "..."
    return text


class Indexer:
    """Turns document text into persisted, eventually-embedded chunks."""

    def __init__(
        self,
        datastore: Datastore,
        embedder: Embedder,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        min_chunk_length: int = MIN_CHUNK_LENGTH,
        max_chunks: int = 20,
        short_document_threshold: int = 500,
        store_batch_size: int = 5,
        embedding_batch_size: int = 3,
        embedding_delay: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if store_batch_size <= 0 or embedding_batch_size <= 0:
            raise ValueError("batch sizes must be positive")
        self._datastore = datastore
        self._embedder = embedder
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap
        self._min_chunk_length = min_chunk_length
        self._max_chunks = max_chunks
        self._short_threshold = short_document_threshold
        self._store_batch_size = store_batch_size
        self._embedding_batch_size = embedding_batch_size
        self._embedding_delay = embedding_delay
        self._sleep = sleep
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def index(self, document_id: str, text: str, title: str | None) -> None:
        """
        Chunk and persist `text` for `document_id`; embed in the background.

        Never raises. Returns once the chunk rows are written (or writing
        them has failed and been logged); embeddings land later.
        """
        if not text:
            logger.warning("Empty text for document %s, skipping indexing", document_id)
            return

        title = title or DEFAULT_TITLE
        logger.info(
            "Indexing document %s (%d characters)", document_id, len(text),
        )

        try:
            if await self._already_indexed(document_id):
                logger.info("Document %s already has chunks, skipping", document_id)
                return

            try:
                await self._datastore.delete_chunks(document_id)
            except Exception:
                logger.exception("Failed to delete stale chunks for document %s", document_id)

            if len(text) < self._short_threshold:
                await self._store_short_document(document_id, text, title)
                return

            chunks = chunk_text(
                text,
                chunk_size=self._chunk_size,
                overlap=self._chunk_overlap,
                min_length=self._min_chunk_length,
                max_chunks=self._max_chunks,
            )
            if not chunks:
                logger.warning(
                    "No chunks produced for document %s, storing fallback chunk",
                    document_id,
                )
                chunks = [
                    text if len(text) <= _WHOLE_TEXT_LIMIT
                    else text[:_TRUNCATED_LENGTH] + "..."
                ]

            await self._store_in_batches(document_id, chunks, title)
            self._spawn(self._embed_chunks(document_id, chunks))
            logger.info(
                "Stored %d chunks for document %s; embedding in background",
                len(chunks), document_id,
            )

        except Exception:
            logger.exception(
                "Indexing failed for document %s, writing fallback chunk", document_id,
            )
            try:
                await self._datastore.insert_chunks([
                    NewChunk(
                        document_id=document_id,
                        chunk_index=0,
                        title=title,
                        content=_truncated(text),
                    )
                ])
            except Exception:
                logger.exception("Fallback chunk for document %s also failed", document_id)

    async def wait_for_background(self) -> None:
        """Wait until every background embedding task has finished."""
        if self._background:
            logger.info("Waiting for %d background embedding tasks", self.pending_background)
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    @property
    def pending_background(self) -> int:
        return len(self._background)

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    async def _already_indexed(self, document_id: str) -> bool:
        try:
            return await self._datastore.has_chunks(document_id)
        except Exception:
            # Unknown state: proceed as if unindexed; delete-then-insert follows
            logger.exception("Chunk existence check failed for document %s", document_id)
            return False

    async def _store_short_document(self, document_id: str, text: str, title: str) -> None:
        logger.info("Document %s is short, storing a single chunk", document_id)
        try:
            await self._datastore.insert_chunks([
                NewChunk(document_id=document_id, chunk_index=0, title=title, content=text)
            ])
        except Exception:
            logger.exception("Failed to store single chunk for document %s", document_id)
        self._spawn(self._embed_chunks(document_id, [text]))

    async def _store_in_batches(
        self, document_id: str, chunks: list[str], title: str,
    ) -> None:
        rows = [
            NewChunk(document_id=document_id, chunk_index=index, title=title, content=content)
            for index, content in enumerate(chunks)
        ]
        total_batches = -(-len(rows) // self._store_batch_size)

        for batch_number, start in enumerate(
            range(0, len(rows), self._store_batch_size), start=1,
        ):
            batch = rows[start : start + self._store_batch_size]
            try:
                await self._datastore.insert_chunks(batch)
                logger.debug(
                    "Stored batch %d/%d for document %s",
                    batch_number, total_batches, document_id,
                )
            except Exception:
                logger.exception(
                    "Failed to store batch %d/%d for document %s",
                    batch_number, total_batches, document_id,
                )

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _embed_chunks(self, document_id: str, chunks: list[str]) -> None:
        """Embed chunks in index order, pausing between provider calls."""
        total = len(chunks)
        total_batches = -(-total // self._embedding_batch_size)

        for start in range(0, total, self._embedding_batch_size):
            logger.debug(
                "Embedding batch %d/%d for document %s",
                start // self._embedding_batch_size + 1, total_batches, document_id,
            )
            for chunk_index in range(start, min(start + self._embedding_batch_size, total)):
                try:
                    embedding = await self._embedder.embed(chunks[chunk_index])
                    await self._datastore.update_chunk_embedding(
                        document_id, chunk_index, embedding,
                    )
                except Exception:
                    logger.exception(
                        "Embedding chunk %d of document %s failed, skipping",
                        chunk_index, document_id,
                    )

                if chunk_index < total - 1:
                    await self._sleep(self._embedding_delay)

        logger.info("Background embedding finished for document %s (%d chunks)", document_id, total)
