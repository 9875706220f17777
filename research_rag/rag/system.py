# =============================================================================
# RAG System — the explicit context object for the whole pipeline
# =============================================================================
#
# Bundles indexer, retriever, generator and analyst around one datastore,
# one embedding chain and one response cache.
#
# DESIGN DECISION: Constructed, not global.
# build_rag_system(settings) is called once at application (or Celery task)
# start-up and the instance is passed to callers. Tests build isolated
# instances around in-memory doubles with distinct fake credentials; there
# is no hidden process-wide singleton keyed by whichever API key arrived
# first.
#
# FLOW:
#   index_document()   → Indexer (chunks now, embeddings in background)
#   search()           → Retriever
#   answer()           → Retriever → ResponseGenerator
#   research_summary() → Retriever (corpus, 10 chunks) → DocumentAnalyst
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from research_rag.config import Settings, get_settings
from research_rag.models.analysis import ResearchSummary, SourceReference
from research_rag.rag.analyst import DocumentAnalyst
from research_rag.rag.generator import ResponseGenerator
from research_rag.rag.indexer import Embedder, Indexer
from research_rag.rag.retriever import (
    RAGContext,
    Retriever,
    SearchResult,
    SearchScope,
)
from research_rag.services.cache import ResponseCache
from research_rag.services.datastore import Datastore
from research_rag.services.embedder import build_embedding_chain
from research_rag.services.llm import ChatProvider, RetryPolicy, build_chat_provider
from research_rag.services.response_parser import ParsedJSON, parse_json_response

logger = logging.getLogger(__name__)

RESEARCH_SUMMARY_LIMIT = 10


@dataclass
class RAGAnswer:
    """A generated answer together with the context it was grounded on."""

    answer: str
    context: RAGContext


def _source(result: SearchResult) -> SourceReference:
    return SourceReference(
        document_id=result.document_id,
        title=result.title,
        chunk_index=result.chunk_index,
        similarity=result.similarity,
        match_type=result.match_type,
    )


class RAGSystem:
    """Entry point for indexing, retrieval and generation."""

    def __init__(
        self,
        datastore: Datastore,
        embedder: Embedder,
        indexer: Indexer,
        retriever: Retriever,
        generator: ResponseGenerator,
        analyst: DocumentAnalyst,
        cache: ResponseCache,
    ) -> None:
        self.datastore = datastore
        self.embedder = embedder
        self.indexer = indexer
        self.retriever = retriever
        self.generator = generator
        self.analyst = analyst
        self.cache = cache

    # --- Indexing --------------------------------------------------------------

    async def index_document(self, document_id: str, text: str, title: str | None) -> None:
        await self.indexer.index(document_id, text, title)

    async def reindex_document(self, document_id: str, text: str, title: str | None) -> None:
        """Explicit delete-then-index; the only way to rebuild a document's chunks."""
        try:
            removed = await self.datastore.delete_chunks(document_id)
            logger.info("Removed %d chunks before reindexing document %s", removed, document_id)
        except Exception:
            logger.exception("Could not delete chunks of document %s", document_id)
            return
        await self.indexer.index(document_id, text, title)

    async def wait_for_background(self) -> None:
        """Drain background embedding tasks (call before the event loop closes)."""
        await self.indexer.wait_for_background()

    # --- Retrieval and generation ------------------------------------------------

    async def search(
        self, query: str, scope: SearchScope, limit: int | None = None,
    ) -> RAGContext:
        return await self.retriever.search(query, scope, limit)

    async def generate(self, query: str, context: RAGContext) -> str:
        return await self.generator.generate(query, context)

    async def answer(
        self, query: str, scope: SearchScope, limit: int | None = None,
    ) -> RAGAnswer:
        context = await self.retriever.search(query, scope, limit)
        text = await self.generator.generate(query, context)
        return RAGAnswer(answer=text, context=context)

    async def research_summary(self, topic: str) -> ResearchSummary:
        """Corpus-wide summary of what the indexed documents say about `topic`."""
        context = await self.retriever.search(
            topic, SearchScope.corpus(), RESEARCH_SUMMARY_LIMIT,
        )
        results = context.relevant_documents
        if not results:
            return ResearchSummary(summary="No research documents found for this topic.")

        # Corpus context uses the undecorated "title: content" layout
        corpus_text = "\n\n".join(f"{doc.title}: {doc.content}" for doc in results)
        prompt = f"""Based on the following research documents, provide a comprehensive summary of "{topic}":

{corpus_text}

Please provide:
1. A concise summary of the main findings
2. 3-5 key insights
3. Related topics for further research

Format your response as JSON with keys: summary, keyInsights (array), relatedTopics (array)"""

        answer = await self.analyst.complete(prompt)
        if answer is None:
            return ResearchSummary(summary="Unable to generate summary at this time.")

        sources = [_source(result) for result in results]
        parsed = parse_json_response(answer, expect="object")
        if isinstance(parsed, ParsedJSON):
            value = parsed.value
            return ResearchSummary(
                summary=str(value.get("summary") or answer),
                key_insights=value.get("keyInsights") or [],
                related_topics=value.get("relatedTopics") or [],
                sources=sources,
            )
        return ResearchSummary(summary=answer, sources=sources)

    # --- Diagnostics -------------------------------------------------------------

    async def check_datastore(self) -> dict:
        """Connectivity probe: {success, message, chunks_count}."""
        try:
            await self.datastore.check_connection()
            count = await self.datastore.count_chunks()
        except Exception as e:
            logger.error("Datastore connection check failed: %s", e)
            return {
                "success": False,
                "message": f"Database error: {e}",
                "chunks_count": None,
            }
        return {
            "success": True,
            "message": "Database connection successful",
            "chunks_count": count,
        }


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def build_rag_system(
    settings: Settings | None = None,
    datastore: Datastore | None = None,
    chat_provider: ChatProvider | None = None,
    embedder: Embedder | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.time,
) -> RAGSystem:
    """
    Wire a RAGSystem from settings.

    Args:
        settings: Defaults to the cached process settings.
        datastore: Defaults to PgDatastore on the pooled engine.
        chat_provider: Override the provider built from settings (None =
            build from settings; a missing API key yields local answers).
        embedder: Override the embedding chain built from settings.
        sleep: Injected into the throttle and retry paths.
        clock: Injected into the response cache.
    """
    settings = settings or get_settings()

    if datastore is None:
        from research_rag.services.datastore import PgDatastore

        datastore = PgDatastore()

    if embedder is None:
        embedder = build_embedding_chain(
            dimensions=settings.embedding_dimensions,
            primary_api_key=settings.embedding_primary_api_key,
            primary_base_url=settings.embedding_primary_base_url,
            primary_model=settings.embedding_primary_model,
            secondary_api_key=settings.embedding_secondary_api_key,
            secondary_base_url=settings.embedding_secondary_base_url,
            secondary_model=settings.embedding_secondary_model,
            referer=settings.app_referer,
            title=settings.app_title,
        )

    if chat_provider is None:
        chat_provider = build_chat_provider(
            provider_type=settings.llm_provider,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            referer=settings.app_referer,
            title=settings.app_title,
        )

    cache = ResponseCache(
        max_size=settings.cache_max_size,
        ttl_seconds=settings.cache_ttl_seconds,
        clock=clock,
    )

    indexer = Indexer(
        datastore=datastore,
        embedder=embedder,
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
        min_chunk_length=settings.min_chunk_length,
        max_chunks=settings.max_chunks_per_document,
        short_document_threshold=settings.short_document_threshold,
        store_batch_size=settings.store_batch_size,
        embedding_batch_size=settings.embedding_batch_size,
        embedding_delay=settings.embedding_delay_seconds,
        sleep=sleep,
    )

    retriever = Retriever(
        datastore=datastore,
        embedder=embedder,
        indexer=indexer,
        document_threshold=settings.document_match_threshold,
        project_threshold=settings.project_match_threshold,
        corpus_threshold=settings.corpus_match_threshold,
        lexical_page_size=settings.lexical_page_size,
        default_limit=settings.retrieval_top_k,
    )

    generator = ResponseGenerator(
        provider=chat_provider,
        cache=cache,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
    )

    analyst = DocumentAnalyst(
        provider=chat_provider,
        policy=RetryPolicy(
            max_retries=settings.llm_max_retries,
            base_delay=settings.llm_retry_base_delay,
        ),
        model=settings.analysis_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.analysis_max_tokens,
        cache=cache,
        sleep=sleep,
    )

    logger.info(
        "RAG system ready (embedding tiers=%s, chat=%s)",
        getattr(embedder, "provider_names", ["custom"]),
        type(chat_provider).__name__ if chat_provider else "local",
    )

    return RAGSystem(
        datastore=datastore,
        embedder=embedder,
        indexer=indexer,
        retriever=retriever,
        generator=generator,
        analyst=analyst,
        cache=cache,
    )
