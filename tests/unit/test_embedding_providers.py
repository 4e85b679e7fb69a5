"""Unit tests for embedding provider adapters - OpenAI, Nomic."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from avatar_knowledge.config.settings import Settings
from avatar_knowledge.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from avatar_knowledge.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from avatar_knowledge.utils.errors import EmbeddingFailedError


def _settings(**overrides) -> Settings:
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_embedding_model": "",
        "ollama_base_url": "http://localhost:11434",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _response(vectors: list[list[float]], order: list[int] | None = None) -> SimpleNamespace:
    indices = order if order is not None else list(range(len(vectors)))
    return SimpleNamespace(
        data=[SimpleNamespace(index=i, embedding=vectors[i]) for i in indices],
        usage=SimpleNamespace(total_tokens=10 * len(vectors)),
    )


def _client(*responses) -> MagicMock:
    client = MagicMock()
    client.embeddings.create = AsyncMock(side_effect=list(responses))
    return client


def _api_error() -> openai.APIError:
    return openai.APIConnectionError(
        request=httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    )


# ======================================================================
# OpenAI Embedding Provider
# ======================================================================


class TestOpenAIEmbeddingProvider:
    @pytest.fixture()
    def settings(self) -> Settings:
        return _settings()

    def test_provider_name(self, settings: Settings) -> None:
        provider = OpenAIEmbeddingProvider(settings, client=_client())
        assert provider.get_provider_name() == "openai_embedding"

    def test_compatible_endpoint_name(self) -> None:
        provider = OpenAIEmbeddingProvider(
            _settings(openai_base_url="https://api.together.xyz/v1"), client=_client()
        )
        assert provider.get_provider_name() == "openai-compatible_embedding"

    def test_is_available_with_key(self, settings: Settings) -> None:
        assert OpenAIEmbeddingProvider(settings, client=_client()).is_available() is True

    def test_is_available_without_key(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings(openai_api_key=""), client=_client())
        assert provider.is_available() is False

    def test_known_model_dimension(self, settings: Settings) -> None:
        assert OpenAIEmbeddingProvider(settings, client=_client()).get_dimension() == 1536

    @pytest.mark.asyncio
    async def test_embed_success(self, settings: Settings) -> None:
        dim = 1536
        client = _client(_response([[0.1] * dim, [0.2] * dim]))
        provider = OpenAIEmbeddingProvider(settings, client=client)

        result = await provider.embed(["hello", "world"])

        assert len(result) == 2
        assert result[0] == [0.1] * dim
        client.embeddings.create.assert_awaited_once_with(
            input=["hello", "world"], model="text-embedding-3-small"
        )

    @pytest.mark.asyncio
    async def test_embed_empty_list(self, settings: Settings) -> None:
        client = _client()
        provider = OpenAIEmbeddingProvider(settings, client=client)
        assert await provider.embed([]) == []
        client.embeddings.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_results_follow_input_order(self) -> None:
        provider = OpenAIEmbeddingProvider(
            _settings(openai_embedding_model="custom-model"),
            client=_client(_response([[1.0, 0.0], [0.0, 1.0], [0.5, 0.5]], order=[2, 0, 1])),
        )
        result = await provider.embed(["a", "b", "c"])
        assert result == [[1.0, 0.0], [0.0, 1.0], [0.5, 0.5]]

    @pytest.mark.asyncio
    async def test_unknown_model_learns_dimension(self) -> None:
        provider = OpenAIEmbeddingProvider(
            _settings(openai_embedding_model="custom-model"),
            client=_client(_response([[0.1, 0.2, 0.3]])),
        )
        assert provider.get_dimension() == 0
        await provider.embed(["x"])
        assert provider.get_dimension() == 3

    @pytest.mark.asyncio
    async def test_batches_large_requests(self) -> None:
        vectors = [[float(i), 1.0] for i in range(250)]
        client = _client(
            _response(vectors[:100]), _response(vectors[100:200]), _response(vectors[200:])
        )
        provider = OpenAIEmbeddingProvider(
            _settings(openai_embedding_model="custom-model"), client=client
        )

        result = await provider.embed([f"text {i}" for i in range(250)])

        assert client.embeddings.create.await_count == 3
        assert result == vectors

    @pytest.mark.asyncio
    async def test_batch_size_from_settings(self) -> None:
        client = _client(_response([[1.0]] * 2), _response([[1.0]] * 2), _response([[1.0]]))
        provider = OpenAIEmbeddingProvider(
            _settings(openai_embedding_model="custom-model", embedding_batch_size=2),
            client=client,
        )
        await provider.embed(["a", "b", "c", "d", "e"])
        assert client.embeddings.create.await_count == 3

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self, settings: Settings) -> None:
        provider = OpenAIEmbeddingProvider(settings, client=_client(_api_error()))
        with pytest.raises(EmbeddingFailedError) as exc_info:
            await provider.embed(["hello"])
        assert exc_info.value.provider_name == "openai_embedding"

    @pytest.mark.asyncio
    async def test_failure_in_later_batch_fails_whole_call(self) -> None:
        client = _client(_response([[1.0, 0.0]] * 100), _api_error())
        provider = OpenAIEmbeddingProvider(
            _settings(openai_embedding_model="custom-model"), client=client
        )
        with pytest.raises(EmbeddingFailedError):
            await provider.embed([f"t{i}" for i in range(150)])
        assert client.embeddings.create.await_count == 2

    @pytest.mark.asyncio
    async def test_empty_text_rejected(self, settings: Settings) -> None:
        client = _client()
        provider = OpenAIEmbeddingProvider(settings, client=client)
        with pytest.raises(EmbeddingFailedError):
            await provider.embed(["fine", "   "])
        client.embeddings.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_count_mismatch_raises(self, settings: Settings) -> None:
        provider = OpenAIEmbeddingProvider(settings, client=_client(_response([[0.1] * 1536])))
        with pytest.raises(EmbeddingFailedError):
            await provider.embed(["one", "two"])

    @pytest.mark.asyncio
    async def test_wrong_dimension_raises(self, settings: Settings) -> None:
        provider = OpenAIEmbeddingProvider(settings, client=_client(_response([[0.1] * 8])))
        with pytest.raises(EmbeddingFailedError):
            await provider.embed(["one"])

    @pytest.mark.asyncio
    async def test_embed_single(self, settings: Settings) -> None:
        provider = OpenAIEmbeddingProvider(settings, client=_client(_response([[0.3] * 1536])))
        assert await provider.embed_single("hello") == [0.3] * 1536


# ======================================================================
# Nomic Embedding Provider
# ======================================================================


class TestNomicEmbeddingProvider:
    def test_name_and_dimension(self) -> None:
        provider = NomicEmbeddingProvider(_settings(), client=_client())
        assert provider.get_provider_name() == "nomic_embedding"
        assert provider.get_dimension() == 768

    @pytest.mark.asyncio
    async def test_uses_nomic_model(self) -> None:
        client = _client(_response([[0.5] * 768]))
        provider = NomicEmbeddingProvider(_settings(), client=client)

        await provider.embed(["hello"])

        client.embeddings.create.assert_awaited_once_with(
            input=["hello"], model="nomic-embed-text"
        )

    def test_is_available_when_ollama_responds(self) -> None:
        provider = NomicEmbeddingProvider(_settings(), client=_client())
        with patch(
            "avatar_knowledge.providers.embedding.nomic_embedding_provider.httpx.get",
            return_value=MagicMock(status_code=200),
        ) as mock_get:
            assert provider.is_available() is True
        mock_get.assert_called_once_with("http://localhost:11434/api/tags", timeout=3.0)

    def test_is_unavailable_when_unreachable(self) -> None:
        provider = NomicEmbeddingProvider(_settings(), client=_client())
        with patch(
            "avatar_knowledge.providers.embedding.nomic_embedding_provider.httpx.get",
            side_effect=httpx.ConnectError("refused"),
        ):
            assert provider.is_available() is False

    def test_is_unavailable_without_base_url(self) -> None:
        provider = NomicEmbeddingProvider(_settings(ollama_base_url=""), client=_client())
        assert provider.is_available() is False
