# =============================================================================
# Shared Test Doubles
# =============================================================================
#
# In-memory stand-ins for the datastore, the embedding chain, the chat
# provider and asyncio.sleep. No test touches the network or a database.
# =============================================================================

from __future__ import annotations

import asyncio
import math
import uuid
from collections.abc import Sequence
from typing import Any

import pytest

from research_rag.services.datastore import (
    DocumentRecord,
    MatchedChunk,
    NewChunk,
    StoredChunk,
)
from research_rag.services.llm import LLMResponse


def run(coro):
    """Drive a coroutine from a synchronous test."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Datastore
# ---------------------------------------------------------------------------


class InMemoryDatastore:
    """Datastore double keeping chunk rows in a dict keyed by (doc, index)."""

    def __init__(self) -> None:
        self.rows: dict[tuple[str, int], dict[str, Any]] = {}
        self.documents: dict[str, DocumentRecord] = {}
        self.projects: dict[str, list[str]] = {}
        self.document_updates: list[tuple[str, dict]] = []
        self.tags: dict[str, list[str]] = {}
        self.insert_calls: list[list[NewChunk]] = []
        self.list_calls = 0

        # Failure switches
        self.fail_match = False
        self.fail_has_chunks = False
        self.fail_connection = False
        self.fail_insert_batches: set[int] = set()  # 1-based insert call numbers
        self.fail_update_document = False

    # --- helpers for tests ---

    def add_document(self, document_id: str, text: str | None, title: str = "Doc") -> None:
        self.documents[document_id] = DocumentRecord(
            id=document_id, title=title, text=text, status="processing",
        )

    def chunks_for(self, document_id: str) -> list[dict[str, Any]]:
        return [
            row for (doc_id, _), row in sorted(self.rows.items())
            if doc_id == document_id
        ]

    def seed_chunks(
        self,
        document_id: str,
        contents: Sequence[str],
        title: str = "Doc",
        embeddings: Sequence[list[float] | None] | None = None,
    ) -> None:
        for index, content in enumerate(contents):
            self.rows[(document_id, index)] = {
                "id": str(uuid.uuid4()),
                "title": title,
                "content": content,
                "embedding": embeddings[index] if embeddings else None,
            }

    # --- Datastore protocol ---

    async def has_chunks(self, document_id: str) -> bool:
        if self.fail_has_chunks:
            raise RuntimeError("has_chunks unavailable")
        return any(doc_id == document_id for doc_id, _ in self.rows)

    async def delete_chunks(self, document_id: str) -> int:
        keys = [key for key in self.rows if key[0] == document_id]
        for key in keys:
            del self.rows[key]
        return len(keys)

    async def insert_chunks(self, chunks: Sequence[NewChunk]) -> None:
        self.insert_calls.append(list(chunks))
        if len(self.insert_calls) in self.fail_insert_batches:
            raise RuntimeError("insert failed")
        for chunk in chunks:
            key = (chunk.document_id, chunk.chunk_index)
            if key in self.rows:
                raise RuntimeError(f"duplicate chunk {key}")
            self.rows[key] = {
                "id": str(uuid.uuid4()),
                "title": chunk.title,
                "content": chunk.content,
                "embedding": chunk.embedding,
            }

    async def update_chunk_embedding(
        self, document_id: str, chunk_index: int, embedding: list[float],
    ) -> None:
        row = self.rows.get((document_id, chunk_index))
        if row is not None:
            row["embedding"] = embedding

    async def list_chunks(
        self,
        document_ids: Sequence[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[StoredChunk]:
        chunks = [
            StoredChunk(
                id=row["id"],
                document_id=doc_id,
                chunk_index=index,
                title=row["title"],
                content=row["content"],
                has_embedding=row["embedding"] is not None,
            )
            for (doc_id, index), row in sorted(self.rows.items())
            if document_ids is None or doc_id in document_ids
        ]
        chunks = chunks[offset:]
        self.list_calls += 1
        return chunks[:limit] if limit is not None else chunks

    async def has_embedded_chunks(self, document_ids: Sequence[str] | None = None) -> bool:
        return any(
            row["embedding"] is not None
            for (doc_id, _), row in self.rows.items()
            if document_ids is None or doc_id in document_ids
        )

    async def match_chunks(
        self,
        query_embedding: list[float],
        match_threshold: float,
        match_count: int,
        document_ids: Sequence[str] | None = None,
    ) -> list[MatchedChunk]:
        if self.fail_match:
            raise RuntimeError("match_document_chunks RPC failed")
        matches = []
        for (doc_id, index), row in sorted(self.rows.items()):
            if row["embedding"] is None:
                continue
            if document_ids is not None and doc_id not in document_ids:
                continue
            similarity = _cosine(query_embedding, row["embedding"])
            if similarity > match_threshold:
                matches.append(MatchedChunk(
                    id=row["id"], document_id=doc_id, chunk_index=index,
                    title=row["title"], content=row["content"], similarity=similarity,
                ))
        matches.sort(key=lambda m: -m.similarity)
        return matches[:match_count]

    async def get_document(self, document_id: str) -> DocumentRecord | None:
        return self.documents.get(document_id)

    async def get_project_document_ids(self, project_id: str) -> list[str]:
        return list(self.projects.get(project_id, []))

    async def count_chunks(self) -> int:
        return len(self.rows)

    async def update_document(self, document_id: str, **fields: Any) -> None:
        if self.fail_update_document:
            raise RuntimeError("update failed")
        self.document_updates.append((document_id, fields))
        record = self.documents.get(document_id)
        if record is not None:
            for name in ("status", "category"):
                if name in fields:
                    setattr(record, name, fields[name])

    async def attach_tags(self, document_id: str, tag_names: Sequence[str]) -> None:
        existing = self.tags.setdefault(document_id, [])
        for name in tag_names:
            if name and name not in existing:
                existing.append(name)

    async def check_connection(self) -> None:
        if self.fail_connection:
            raise ConnectionError("database unreachable")


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


# ---------------------------------------------------------------------------
# Embedder
# ---------------------------------------------------------------------------


class KeywordEmbedder:
    """
    Maps text onto one axis per keyword, plus a small constant axis.

    Texts sharing a keyword are close in cosine space; unrelated texts are
    nearly orthogonal.
    """

    KEYWORDS = ("revenue", "climate", "protein", "battery")

    def __init__(self, failing_texts: set[str] | None = None) -> None:
        self.calls: list[str] = []
        self.failing_texts = failing_texts or set()

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.failing_texts:
            raise RuntimeError("embedding failed")
        lowered = text.lower()
        return [1.0 if keyword in lowered else 0.0 for keyword in self.KEYWORDS] + [0.05]


# ---------------------------------------------------------------------------
# Chat provider
# ---------------------------------------------------------------------------


class ScriptedProvider:
    """Chat provider returning (or raising) scripted outcomes in order."""

    def __init__(self, *outcomes: str | Exception) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        self.calls.append({
            "messages": messages,
            "system": system,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "model": model,
        })
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return LLMResponse(
            content=outcome, model=model or "scripted", input_tokens=0, output_tokens=0,
        )


class RecordingSleep:
    """asyncio.sleep replacement that records delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def datastore() -> InMemoryDatastore:
    return InMemoryDatastore()


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()
