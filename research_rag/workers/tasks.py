# =============================================================================
# Celery Task Definitions — Document Processing Pipeline
# =============================================================================
#
# process_document(document_id): the full pipeline for an uploaded document
# whose text has already been extracted and stored.
#
# PROCESSING PIPELINE:
#   1. Load the document, mark status → processing
#   2. Analyst: analysis, summary, category, tags (each degrades to a local
#      heuristic when the model is unavailable)
#   3. Store summary + category, mark status → completed
#   4. Attach tags
#   5. Datastore connection check; if it passes, index the text for
#      retrieval and wait for the background embedding backfill
#
# reindex_document(document_id): explicit delete-then-index, for documents
# whose chunks need rebuilding after an edit.
#
# ASYNC INSIDE A SYNC WORKER:
# Celery tasks are synchronous functions. Each task drives the async
# pipeline with asyncio.run(), which owns a fresh event loop for the
# duration of the task. Background embedding tasks are drained with
# rag.wait_for_background() before asyncio.run() returns, otherwise the
# loop would close under them. Database access uses a NullPool engine
# created per task (see db/engine.py) and disposed at the end.
#
# RETRY STRATEGY:
# max_retries=3, default_retry_delay=60. Model failures never reach this
# level (the analyst and indexer absorb them); what does reach it is a
# datastore failure, which is usually transient.
# =============================================================================

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from research_rag.db.engine import create_worker_engine, create_worker_session_factory
from research_rag.db.models import DocumentStatus
from research_rag.rag.system import RAGSystem, build_rag_system
from research_rag.services.datastore import PgDatastore
from research_rag.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Pipelines (async, usable without Celery)
# ---------------------------------------------------------------------------


async def run_document_pipeline(rag: RAGSystem, document_id: str, task_id: str = "-") -> dict:
    """
    Analyze, store and index one document.

    Raises only for datastore failures; the caller marks the document
    as errored.
    """
    datastore = rag.datastore

    document = await datastore.get_document(document_id)
    if document is None:
        logger.warning("[%s] Document %s not found, nothing to process", task_id, document_id)
        return {"document_id": document_id, "status": "missing"}

    text = document.text or ""
    await datastore.update_document(document_id, status=DocumentStatus.PROCESSING.value)

    # --- Step 1: Analysis ---
    logger.info("[%s] Step 1/4: Analyzing document %s (%d characters)", task_id, document_id, len(text))
    analysis = await rag.analyst.analyze_document(text)
    summary = await rag.analyst.generate_summary(text)
    category = await rag.analyst.categorize_document(text)
    tags = await rag.analyst.extract_tags(text)
    logger.info(
        "[%s] Analysis done: category=%s, %d tags, %d insights",
        task_id, category, len(tags), len(analysis.key_insights),
    )

    # --- Step 2: Store results ---
    logger.info("[%s] Step 2/4: Storing analysis results", task_id)
    await datastore.update_document(
        document_id,
        status=DocumentStatus.COMPLETED.value,
        ai_summary=summary,
        category=category,
    )

    # --- Step 3: Tags ---
    logger.info("[%s] Step 3/4: Attaching %d tags", task_id, len(tags))
    await datastore.attach_tags(document_id, tags)

    # --- Step 4: Retrieval index ---
    logger.info("[%s] Step 4/4: Indexing for retrieval", task_id)
    check = await rag.check_datastore()
    indexed = False
    if not check["success"]:
        logger.error("[%s] Skipping indexing: %s", task_id, check["message"])
    elif text:
        await rag.index_document(document_id, text, document.title)
        await rag.wait_for_background()
        indexed = True

    result = {
        "document_id": document_id,
        "status": DocumentStatus.COMPLETED.value,
        "category": category,
        "tags": tags,
        "indexed": indexed,
    }
    logger.info("[%s] Processing complete: %s", task_id, result)
    return result


async def run_reindex_pipeline(rag: RAGSystem, document_id: str, task_id: str = "-") -> dict:
    document = await rag.datastore.get_document(document_id)
    if document is None or not document.text:
        logger.warning("[%s] Document %s has no text to reindex", task_id, document_id)
        return {"document_id": document_id, "reindexed": False}

    await rag.reindex_document(document_id, document.text, document.title)
    await rag.wait_for_background()
    chunks = await rag.datastore.list_chunks([document_id])
    logger.info("[%s] Reindexed document %s into %d chunks", task_id, document_id, len(chunks))
    return {"document_id": document_id, "reindexed": True, "chunk_count": len(chunks)}


async def mark_document_error(rag: RAGSystem, document_id: str, task_id: str = "-") -> None:
    try:
        await rag.datastore.update_document(document_id, status=DocumentStatus.ERROR.value)
    except Exception:
        logger.exception("[%s] Could not mark document %s as errored", task_id, document_id)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _run_with_system(work: Callable[[RAGSystem], Awaitable[T]]) -> T:
    """Build a RAGSystem on a per-task NullPool engine and run `work` with it."""

    async def runner() -> T:
        engine = create_worker_engine()
        try:
            datastore = PgDatastore(create_worker_session_factory(engine))
            rag = build_rag_system(datastore=datastore)
            return await work(rag)
        finally:
            await engine.dispose()

    return asyncio.run(runner())


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------


@celery_app.task(
    bind=True,
    name="process_document",
    max_retries=3,
    default_retry_delay=60,
)
def process_document(self, document_id: str) -> dict:
    """
    Analyze and index an uploaded document in the background.

    Args:
        self: Celery task instance (bound task, provides self.request.id).
        document_id: Id of the research document whose extracted text
            should be analyzed and indexed.
    """
    task_id = self.request.id
    logger.info("Starting processing: document_id=%s, task_id=%s", document_id, task_id)

    async def work(rag: RAGSystem) -> dict:
        try:
            return await run_document_pipeline(rag, document_id, task_id)
        except Exception:
            await mark_document_error(rag, document_id, task_id)
            raise

    try:
        return _run_with_system(work)
    except Exception as exc:
        logger.exception(
            "[%s] Processing failed for document_id=%s: %s", task_id, document_id, exc,
        )
        raise self.retry(exc=exc)


@celery_app.task(
    bind=True,
    name="reindex_document",
    max_retries=3,
    default_retry_delay=60,
)
def reindex_document(self, document_id: str) -> dict:
    """Delete a document's chunks and index its text again."""
    task_id = self.request.id
    logger.info("Starting reindex: document_id=%s, task_id=%s", document_id, task_id)

    try:
        return _run_with_system(
            lambda rag: run_reindex_pipeline(rag, document_id, task_id)
        )
    except Exception as exc:
        logger.exception(
            "[%s] Reindex failed for document_id=%s: %s", task_id, document_id, exc,
        )
        raise self.retry(exc=exc)
