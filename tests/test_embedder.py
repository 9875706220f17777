# =============================================================================
# Unit Tests — Embedding Provider Chain
# =============================================================================
#
# Remote tiers are exercised with mocked AsyncOpenAI clients; openai's own
# exception classes are built around httpx request/response objects.
# =============================================================================

import math
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from research_rag.services.embedder import (
    EmbeddingChain,
    EmbeddingError,
    OpenAICompatibleEmbedder,
    _validate_vector,
    build_embedding_chain,
)
from research_rag.services.local_embedder import local_embedding

from conftest import run

_REQUEST = httpx.Request("POST", "https://embeddings.example/v1/embeddings")


def _mock_client(result=None, error=None) -> MagicMock:
    client = MagicMock()
    if error is not None:
        client.embeddings.create = AsyncMock(side_effect=error)
    else:
        client.embeddings.create = AsyncMock(return_value=result)
    return client


def _response(vector) -> SimpleNamespace:
    return SimpleNamespace(data=[SimpleNamespace(embedding=vector)])


def _tier(name="primary", **client_kwargs) -> OpenAICompatibleEmbedder:
    return OpenAICompatibleEmbedder(
        name=name, api_key="test-key", model="test-model", dimensions=4,
        client=_mock_client(**client_kwargs),
    )


class TestOpenAICompatibleEmbedder:

    def test_returns_vector_and_requests_dimensions(self):
        tier = _tier(result=_response([0.1, 0.2, 0.3, 0.4]))
        assert run(tier.embed("hello")) == [0.1, 0.2, 0.3, 0.4]
        kwargs = tier._client.embeddings.create.call_args.kwargs
        assert kwargs["dimensions"] == 4
        assert kwargs["model"] == "test-model"

    def test_http_error_becomes_embedding_error(self):
        error = openai.RateLimitError(
            "rate limited",
            response=httpx.Response(429, request=_REQUEST),
            body=None,
        )
        tier = _tier(error=error)
        with pytest.raises(EmbeddingError, match="HTTP 429"):
            run(tier.embed("hello"))

    def test_network_error_becomes_embedding_error(self):
        tier = _tier(error=openai.APIConnectionError(request=_REQUEST))
        with pytest.raises(EmbeddingError):
            run(tier.embed("hello"))

    def test_missing_data_rejected(self):
        tier = _tier(result=SimpleNamespace(data=[]))
        with pytest.raises(EmbeddingError, match="no embedding data"):
            run(tier.embed("hello"))

    def test_wrong_dimensions_rejected(self):
        tier = _tier(result=_response([0.1, 0.2]))
        with pytest.raises(EmbeddingError, match="expected 4"):
            run(tier.embed("hello"))


class TestValidateVector:

    def test_accepts_ints_and_floats(self):
        assert _validate_vector([1, 0.5], 2, "x") == [1.0, 0.5]

    @pytest.mark.parametrize("values", [
        None,
        "ab",
        [0.1, "0.2"],
        [0.1, True],
        [0.1, math.nan],
        [0.1, math.inf],
    ])
    def test_rejects_malformed(self, values):
        with pytest.raises(EmbeddingError):
            _validate_vector(values, 2, "x")


class TestEmbeddingChain:

    def test_first_healthy_tier_wins(self):
        primary = _tier("primary", result=_response([1.0, 0.0, 0.0, 0.0]))
        secondary = _tier("secondary", result=_response([0.0, 1.0, 0.0, 0.0]))
        chain = EmbeddingChain([primary, secondary], dimensions=4)
        assert run(chain.embed("text")) == [1.0, 0.0, 0.0, 0.0]
        secondary._client.embeddings.create.assert_not_called()

    def test_falls_through_to_secondary(self):
        primary = _tier("primary", error=openai.APIConnectionError(request=_REQUEST))
        secondary = _tier("secondary", result=_response([0.0, 1.0, 0.0, 0.0]))
        chain = EmbeddingChain([primary, secondary], dimensions=4)
        assert run(chain.embed("text")) == [0.0, 1.0, 0.0, 0.0]

    def test_both_remote_tiers_failing_uses_local(self):
        primary = _tier("primary", error=openai.APIConnectionError(request=_REQUEST))
        secondary = _tier("secondary", result=_response([0.1]))  # wrong size
        chain = EmbeddingChain([primary, secondary], dimensions=4)
        assert run(chain.embed("text")) == local_embedding("text", 4)

    def test_unexpected_exception_is_absorbed(self):
        broken = _tier("primary", error=KeyError("boom"))
        chain = EmbeddingChain([broken], dimensions=768)
        vector = run(chain.embed("anything"))
        assert len(vector) == 768

    def test_no_providers_is_local_only(self):
        chain = EmbeddingChain([], dimensions=768)
        assert chain.provider_names == ["local"]
        assert run(chain.embed("abc")) == local_embedding("abc")


class TestBuildEmbeddingChain:

    def test_no_keys_means_local_only(self):
        chain = build_embedding_chain(dimensions=768)
        assert chain.provider_names == ["local"]

    def test_keys_add_tiers_in_order(self):
        chain = build_embedding_chain(
            dimensions=768,
            primary_api_key="p-key",
            primary_base_url="https://primary.example/v1",
            secondary_api_key="s-key",
            secondary_base_url="https://secondary.example/v1",
            referer="https://app.example",
            title="App",
        )
        assert chain.provider_names == ["primary", "secondary", "local"]

    def test_secondary_only(self):
        chain = build_embedding_chain(dimensions=768, secondary_api_key="s-key")
        assert chain.provider_names == ["secondary", "local"]
