# =============================================================================
# Embedding Service — Three-Tier Provider Chain
# =============================================================================
#
# Produces a fixed-length vector for arbitrary text and NEVER fails:
#
#   1. Primary remote API   (Gemini gemini-embedding-001, 768 dims requested)
#   2. Secondary remote API (OpenRouter, 768 dims requested)
#   3. Local feature-hash embedding (offline, deterministic)
#
# A remote tier falls through on any non-success HTTP status, transport
# error, or malformed body (missing data, wrong length, non-numeric values).
# Tiers without credentials are simply left out of the chain.
#
# Both remote tiers speak the OpenAI embeddings protocol, so one class with
# a configurable base_url covers them. The SDK's own retries are disabled:
# a failing tier should hand over to the next one promptly, not stall
# ingestion.
#
# ARCHITECTURE:
#   EmbeddingProvider (Protocol)
#   ├── OpenAICompatibleEmbedder — Gemini / OpenRouter / OpenAI
#   └── LocalEmbedder            — services/local_embedder.py
#   EmbeddingChain               — tries providers in order, local last
# =============================================================================

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from typing import Any, Protocol

from openai import AsyncOpenAI, OpenAIError

from research_rag.services.local_embedder import LocalEmbedder

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """A single remote embedding tier failed or returned unusable data."""


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class EmbeddingProvider(Protocol):
    """Anything that can turn text into a vector asynchronously."""

    name: str

    async def embed(self, text: str) -> list[float]:
        """
        Embed one text.

        Raises:
            EmbeddingError: For remote tiers, on any failure.
        """
        ...


# ---------------------------------------------------------------------------
# Remote Tier: OpenAI-compatible embeddings endpoint
# ---------------------------------------------------------------------------


class OpenAICompatibleEmbedder:
    """
    Remote embedding tier for any OpenAI-compatible embeddings endpoint.

    Gemini (via its /v1beta/openai/ surface) and OpenRouter both accept the
    `dimensions` parameter, which pins the output to the chunk column width.
    """

    def __init__(
        self,
        name: str,
        api_key: str,
        model: str,
        dimensions: int,
        base_url: str | None = None,
        default_headers: dict[str, str] | None = None,
        client: Any = None,
    ) -> None:
        if client is None:
            client_kwargs: dict = {"api_key": api_key, "max_retries": 0}
            if base_url:
                client_kwargs["base_url"] = base_url
            if default_headers:
                client_kwargs["default_headers"] = default_headers
            client = AsyncOpenAI(**client_kwargs)

        self.name = name
        self._client = client
        self._model = model
        self._dimensions = dimensions

        logger.info(
            "Initialized %s embedding tier (model=%s, base_url=%s)",
            name, model, base_url or "https://api.openai.com/v1",
        )

    async def embed(self, text: str) -> list[float]:
        """Request one embedding; raise EmbeddingError on any failure."""
        try:
            response = await self._client.embeddings.create(
                model=self._model,
                input=text,
                dimensions=self._dimensions,
            )
        except OpenAIError as e:
            status = getattr(e, "status_code", None)
            raise EmbeddingError(
                f"{self.name} embedding request failed"
                + (f" (HTTP {status})" if status else "")
                + f": {e}"
            ) from e

        data = getattr(response, "data", None)
        if not data:
            raise EmbeddingError(f"{self.name} returned no embedding data")

        return _validate_vector(
            getattr(data[0], "embedding", None),
            self._dimensions,
            self.name,
        )


def _validate_vector(values: Any, dimensions: int, source: str) -> list[float]:
    """Check that `values` is a finite numeric vector of the right length."""
    if not isinstance(values, Sequence) or isinstance(values, (str, bytes)):
        raise EmbeddingError(f"{source} returned a non-list embedding")
    if len(values) != dimensions:
        raise EmbeddingError(
            f"{source} returned {len(values)} dimensions, expected {dimensions}"
        )
    vector: list[float] = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise EmbeddingError(f"{source} returned a non-numeric component")
        if not math.isfinite(value):
            raise EmbeddingError(f"{source} returned a non-finite component")
        vector.append(float(value))
    return vector


# ---------------------------------------------------------------------------
# The Chain
# ---------------------------------------------------------------------------


class EmbeddingChain:
    """
    Tries each remote provider in order, then the local embedder.

    `embed()` always returns a list of `dimensions` floats. Remote failures
    are logged and absorbed; the local tier cannot fail.
    """

    def __init__(
        self,
        providers: Sequence[EmbeddingProvider],
        dimensions: int = 768,
        local: LocalEmbedder | None = None,
    ) -> None:
        self._providers = list(providers)
        self.dimensions = dimensions
        self._local = local or LocalEmbedder(dimensions)

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self._providers] + [self._local.name]

    async def embed(self, text: str) -> list[float]:
        for provider in self._providers:
            try:
                vector = await provider.embed(text)
                vector = _validate_vector(vector, self.dimensions, provider.name)
            except Exception as e:
                logger.warning(
                    "Embedding tier '%s' failed, falling through: %s",
                    provider.name, e,
                )
                continue
            logger.debug("Embedded %d chars via '%s'", len(text), provider.name)
            return vector

        logger.info("Using local embedding for %d chars", len(text))
        return await self._local.embed(text)


def build_embedding_chain(
    dimensions: int,
    primary_api_key: str = "",
    primary_base_url: str | None = None,
    primary_model: str = "gemini-embedding-001",
    secondary_api_key: str = "",
    secondary_base_url: str | None = None,
    secondary_model: str = "openai/text-embedding-3-small",
    referer: str | None = None,
    title: str | None = None,
) -> EmbeddingChain:
    """Assemble the chain from whichever credentials are present."""
    providers: list[EmbeddingProvider] = []

    if primary_api_key:
        providers.append(OpenAICompatibleEmbedder(
            name="primary",
            api_key=primary_api_key,
            model=primary_model,
            dimensions=dimensions,
            base_url=primary_base_url,
        ))

    if secondary_api_key:
        headers = {}
        if referer:
            headers["HTTP-Referer"] = referer
        if title:
            headers["X-Title"] = title
        providers.append(OpenAICompatibleEmbedder(
            name="secondary",
            api_key=secondary_api_key,
            model=secondary_model,
            dimensions=dimensions,
            base_url=secondary_base_url,
            default_headers=headers or None,
        ))

    if not providers:
        logger.info("No embedding API keys configured; using local embeddings only")

    return EmbeddingChain(providers, dimensions=dimensions)
