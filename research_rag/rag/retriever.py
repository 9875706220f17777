# =============================================================================
# Retrieval Engine — vector search with lexical and document-order fallbacks
# =============================================================================
#
# search(query, scope, limit) → RAGContext, never raises.
#
# For any scope (whole corpus, one document, one project):
#
#   1. If chunks in scope already carry embeddings: embed the query and ask
#      the datastore for nearest neighbours above the scope's threshold
#        document 0.5 (loose: sparse documents still return something)
#        project  0.6
#        corpus   0.7
#   2. If that errors or returns nothing: LEXICAL scoring. Count
#      occurrences of each query term (> 2 chars, case-insensitive) in
#      each chunk, rank by count (stable, so ties keep storage order)
#   3. If no chunk matches any term: the first `limit` chunks in storage
#      order, so any scope with chunks yields SOME context
#
# Single-document scope only: a document with no chunks at all is indexed
# on the spot from its stored text, and the search is retried ONCE.
#
# SIMILARITY SCALES (not comparable across paths):
#   vector          cosine similarity, 1 - distance
#   lexical         min(match_count / 10, 1.0)
#   document_order  fixed 0.6
# Every SearchResult carries `match_type` so consumers can tell them apart.
# =============================================================================

from __future__ import annotations

import enum
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from research_rag.rag.indexer import DEFAULT_TITLE, Embedder, Indexer
from research_rag.services.datastore import Datastore, StoredChunk

logger = logging.getLogger(__name__)

DOCUMENT_ORDER_SIMILARITY = 0.6

SEARCH_ERROR_CONTEXT = (
    "I apologize, but I encountered an error while searching your documents. "
    "The documents might still be processing or there might be a technical issue."
)
EMPTY_PROJECT_CONTEXT = "No documents found in this project."
EMPTY_CORPUS_CONTEXT = "No research documents have been indexed yet."


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


class ScopeKind(str, enum.Enum):
    CORPUS = "corpus"
    DOCUMENT = "document"
    PROJECT = "project"


@dataclass(frozen=True)
class SearchScope:
    """What to search: everything, one document, or one project."""

    kind: ScopeKind
    target_id: str | None = None

    def __post_init__(self) -> None:
        if self.kind is ScopeKind.CORPUS:
            if self.target_id is not None:
                raise ValueError("corpus scope takes no target id")
        elif not self.target_id:
            raise ValueError(f"{self.kind.value} scope requires a target id")

    @classmethod
    def corpus(cls) -> SearchScope:
        return cls(ScopeKind.CORPUS)

    @classmethod
    def document(cls, document_id: str) -> SearchScope:
        return cls(ScopeKind.DOCUMENT, document_id)

    @classmethod
    def project(cls, project_id: str) -> SearchScope:
        return cls(ScopeKind.PROJECT, project_id)


@dataclass
class SearchResult:
    """A ranked chunk. See the module header for `similarity` semantics."""

    id: str
    title: str
    content: str
    document_id: str
    chunk_index: int
    similarity: float
    match_type: str  # "vector" | "lexical" | "document_order"


@dataclass
class RAGContext:
    """Retrieved chunks for a query, most relevant first."""

    query: str
    relevant_documents: list[SearchResult] = field(default_factory=list)
    context: str = ""


def format_context(results: Sequence[SearchResult]) -> str:
    return "\n\n".join(f"[{result.title}]: {result.content}" for result in results)


def query_terms(query: str) -> list[str]:
    """Lower-cased whitespace-separated terms longer than two characters."""
    return [term for term in query.lower().split() if len(term) > 2]


def term_patterns(query: str) -> list[re.Pattern[str]]:
    return [re.compile(re.escape(term)) for term in query_terms(query)]


def term_score(content: str, patterns: Sequence[re.Pattern[str]]) -> int:
    content = content.lower()
    return sum(len(pattern.findall(content)) for pattern in patterns)


def lexical_rank(
    query: str, chunks: Sequence[StoredChunk], limit: int,
) -> list[SearchResult]:
    """
    Rank chunks by query-term occurrence counts.

    Terms are matched literally (regex metacharacters escaped) and counted
    without overlap. Chunks matching nothing are dropped unless NO chunk
    matches, in which case the first `limit` chunks are returned in storage
    order with the fixed document-order similarity.
    """
    patterns = term_patterns(query)
    scored = [(term_score(chunk.content, patterns), chunk) for chunk in chunks]

    # sorted() is stable: equal scores keep storage order
    ranked = [
        (score, chunk)
        for score, chunk in sorted(scored, key=lambda item: -item[0])
        if score > 0
    ][:limit]

    if not ranked:
        return [
            _to_result(chunk, DOCUMENT_ORDER_SIMILARITY, "document_order")
            for chunk in chunks[:limit]
        ]

    return [
        _to_result(chunk, min(score / 10, 1.0), "lexical")
        for score, chunk in ranked
    ]


def _to_result(chunk: StoredChunk, similarity: float, match_type: str) -> SearchResult:
    return SearchResult(
        id=chunk.id,
        title=chunk.title or DEFAULT_TITLE,
        content=chunk.content,
        document_id=chunk.document_id,
        chunk_index=chunk.chunk_index,
        similarity=similarity,
        match_type=match_type,
    )


# ---------------------------------------------------------------------------
# Retriever
# ---------------------------------------------------------------------------


class Retriever:
    """Scoped similarity search over persisted chunks."""

    def __init__(
        self,
        datastore: Datastore,
        embedder: Embedder,
        indexer: Indexer,
        document_threshold: float = 0.5,
        project_threshold: float = 0.6,
        corpus_threshold: float = 0.7,
        lexical_page_size: int = 500,
        default_limit: int = 5,
    ) -> None:
        self._datastore = datastore
        self._embedder = embedder
        self._indexer = indexer
        self._thresholds = {
            ScopeKind.DOCUMENT: document_threshold,
            ScopeKind.PROJECT: project_threshold,
            ScopeKind.CORPUS: corpus_threshold,
        }
        self._lexical_page_size = lexical_page_size
        self._default_limit = default_limit

    def threshold_for(self, kind: ScopeKind) -> float:
        return self._thresholds[kind]

    async def search(
        self, query: str, scope: SearchScope, limit: int | None = None,
    ) -> RAGContext:
        """
        Find the chunks most relevant to `query` within `scope`.

        Failures produce an empty RAGContext whose `context` explains the
        situation in plain prose. Only a non-positive `limit` raises
        ValueError.
        """
        if limit is None:
            limit = self._default_limit
        elif limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        logger.info(
            "Searching %s scope (target=%s, limit=%d)",
            scope.kind.value, scope.target_id, limit,
        )

        try:
            if scope.kind is ScopeKind.DOCUMENT:
                return await self._search_document(
                    query, scope.target_id, limit, allow_on_demand=True,
                )

            if scope.kind is ScopeKind.PROJECT:
                document_ids = await self._datastore.get_project_document_ids(
                    scope.target_id,
                )
                if not document_ids:
                    return RAGContext(query=query, context=EMPTY_PROJECT_CONTEXT)
                context = await self._rank(query, document_ids, limit, scope.kind)
                if not context.relevant_documents:
                    context.context = (
                        "The documents in this project are still being processed. "
                        "Please try again shortly."
                    )
                return context

            context = await self._rank(query, None, limit, scope.kind)
            if not context.relevant_documents:
                context.context = EMPTY_CORPUS_CONTEXT
            return context

        except Exception:
            logger.exception("Search failed for %s scope %s", scope.kind.value, scope.target_id)
            return RAGContext(query=query, context=SEARCH_ERROR_CONTEXT)

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    async def _search_document(
        self, query: str, document_id: str, limit: int, allow_on_demand: bool,
    ) -> RAGContext:
        if await self._has_chunks(document_id):
            return await self._rank(query, [document_id], limit, ScopeKind.DOCUMENT)

        document = await self._datastore.get_document(document_id)
        title = document.title if document and document.title else DEFAULT_TITLE

        if allow_on_demand and document is not None and document.text:
            logger.info("Document %s has no chunks, indexing on demand", document_id)
            await self._indexer.index(document_id, document.text, document.title)
            if await self._has_chunks(document_id):
                return await self._search_document(
                    query, document_id, limit, allow_on_demand=False,
                )

        return RAGContext(
            query=query,
            context=(
                f"This document ({title}) appears to be still processing or has "
                "not been fully analyzed yet. You can still ask general "
                "questions about the document."
            ),
        )

    async def _has_chunks(self, document_id: str) -> bool:
        try:
            return await self._datastore.has_chunks(document_id)
        except Exception:
            logger.exception("Chunk existence check failed for document %s", document_id)
            return False

    async def _rank(
        self,
        query: str,
        document_ids: Sequence[str] | None,
        limit: int,
        kind: ScopeKind,
    ) -> RAGContext:
        results = await self._vector_search(query, document_ids, limit, kind)

        if not results:
            chunks = await self._lexical_candidates(query, document_ids, limit)
            results = lexical_rank(query, chunks, limit)
            if results:
                logger.info(
                    "Lexical fallback returned %d chunks (%s)",
                    len(results), results[0].match_type,
                )

        return RAGContext(
            query=query,
            relevant_documents=results,
            context=format_context(results),
        )

    async def _lexical_candidates(
        self,
        query: str,
        document_ids: Sequence[str] | None,
        limit: int,
    ) -> list[StoredChunk]:
        """
        Page through every chunk in scope, keeping the ones that mention a
        query term plus the first `limit` chunks for the document-order
        fallback. Storage order is preserved.
        """
        patterns = term_patterns(query)
        candidates: list[StoredChunk] = []
        seen = 0

        while True:
            page = await self._datastore.list_chunks(
                document_ids, limit=self._lexical_page_size, offset=seen,
            )
            for chunk in page:
                if seen < limit or term_score(chunk.content, patterns) > 0:
                    candidates.append(chunk)
                seen += 1
            if len(page) < self._lexical_page_size:
                break

        logger.debug("Lexical fallback scanned %d chunks", seen)
        return candidates

    async def _vector_search(
        self,
        query: str,
        document_ids: Sequence[str] | None,
        limit: int,
        kind: ScopeKind,
    ) -> list[SearchResult]:
        try:
            if not await self._datastore.has_embedded_chunks(document_ids):
                logger.debug("No embedded chunks in scope, skipping vector search")
                return []

            query_embedding = await self._embedder.embed(query)
            matches = await self._datastore.match_chunks(
                query_embedding=query_embedding,
                match_threshold=self.threshold_for(kind),
                match_count=limit,
                document_ids=document_ids,
            )
        except Exception as e:
            logger.warning("Vector search failed, using lexical fallback: %s", e)
            return []

        if not matches:
            logger.info("Vector search found nothing above threshold, using lexical fallback")
            return []

        results = [
            SearchResult(
                id=match.id,
                title=match.title or DEFAULT_TITLE,
                content=match.content,
                document_id=match.document_id,
                chunk_index=match.chunk_index,
                similarity=match.similarity,
                match_type="vector",
            )
            for match in matches
        ]
        # Ties broken by storage order
        results.sort(key=lambda r: (-r.similarity, r.document_id, r.chunk_index))
        return results[:limit]
