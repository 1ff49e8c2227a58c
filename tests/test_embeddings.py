import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
import pytest
import requests

from tutor_match.models.settings import AIBackend, EmbeddingSettings
from tutor_match.services.embeddings import (
    EmbeddingProvider,
    GeminiEmbeddingProvider,
    OllamaEmbeddingProvider,
    build_embedding_provider,
)
from tutor_match.utils.exceptions import (
    EmbeddingUnavailableError,
    ExternalServiceError,
    RateLimitError,
    ValidationError,
)


def _response(status_code=200, payload=None, headers=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload or {}
    resp.headers = headers or {}
    resp.text = ""
    return resp


def _gemini(**overrides):
    params = dict(api_key="secret", max_retries=1, batch_delay=0)
    params.update(overrides)
    return GeminiEmbeddingProvider(EmbeddingSettings(**params))


class TestGeminiEmbeddingProvider:
    """Test cases for the Gemini embedding backend"""

    def test_unavailable_without_key(self):
        provider = GeminiEmbeddingProvider(EmbeddingSettings(api_key=None))
        assert provider.is_available() is False
        with pytest.raises(EmbeddingUnavailableError):
            provider.embed_sync("math tutor")
        with pytest.raises(EmbeddingUnavailableError):
            asyncio.run(provider.embed_batch(["math tutor"]))

    @patch('tutor_match.services.embeddings.requests.post')
    def test_embed_success(self, mock_post):
        mock_post.return_value = _response(payload={"embedding": {"values": [0.1, 0.2, 0.3]}})

        vector = asyncio.run(_gemini().embed("math tutor"))

        assert isinstance(vector, np.ndarray)
        assert vector.shape == (3,)
        url = mock_post.call_args.args[0]
        assert url.endswith("models/text-embedding-004:embedContent")
        assert mock_post.call_args.kwargs["params"] == {"key": "secret"}
        assert mock_post.call_args.kwargs["json"]["content"]["parts"][0]["text"] == "math tutor"

    @patch('tutor_match.services.embeddings.requests.post')
    def test_text_is_clamped(self, mock_post):
        mock_post.return_value = _response(payload={"embedding": {"values": [1.0]}})
        _gemini(max_text_chars=100).embed_sync("x" * 500)
        sent = mock_post.call_args.kwargs["json"]["content"]["parts"][0]["text"]
        assert len(sent) == 100

    @patch('tutor_match.services.embeddings.requests.post')
    def test_rate_limit_is_distinguishable(self, mock_post):
        mock_post.return_value = _response(status_code=429, headers={"Retry-After": "7"})
        with pytest.raises(RateLimitError) as exc_info:
            _gemini().embed_sync("math tutor")
        assert exc_info.value.details["retry_after"] == 7.0

    @patch('tutor_match.utils.exceptions.time.sleep')
    @patch('tutor_match.services.embeddings.requests.post')
    def test_rate_limit_is_retried(self, mock_post, mock_sleep):
        mock_post.side_effect = [
            _response(status_code=429),
            _response(payload={"embedding": {"values": [1.0, 0.0]}}),
        ]
        vector = _gemini(max_retries=3).embed_sync("math tutor")
        assert vector.tolist() == [1.0, 0.0]
        assert mock_post.call_count == 2
        mock_sleep.assert_called_once()

    @patch('tutor_match.services.embeddings.requests.post')
    def test_server_error(self, mock_post):
        mock_post.return_value = _response(status_code=500)
        with pytest.raises(ExternalServiceError) as exc_info:
            _gemini().embed_sync("math tutor")
        assert not isinstance(exc_info.value, RateLimitError)

    @patch('tutor_match.services.embeddings.requests.post')
    def test_network_error(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("boom")
        with pytest.raises(ExternalServiceError):
            _gemini().embed_sync("math tutor")

    @patch('tutor_match.services.embeddings.requests.post')
    def test_empty_embedding_is_an_error(self, mock_post):
        mock_post.return_value = _response(payload={"embedding": {}})
        with pytest.raises(ExternalServiceError):
            _gemini().embed_sync("math tutor")

    def test_empty_text_is_rejected(self):
        with pytest.raises(ValidationError):
            _gemini().embed_sync("   ")


class _CountingProvider(EmbeddingProvider):
    def __init__(self, settings, fail_on=()):
        super().__init__(settings)
        self.fail_on = set(fail_on)

    def _request_embedding(self, text):
        if text in self.fail_on:
            raise ExternalServiceError("boom", service_name="test")
        return [float(len(text)), 1.0]


class TestEmbedBatch:
    """Test cases for sub-batched embedding"""

    @patch('tutor_match.services.embeddings.asyncio.sleep', new_callable=AsyncMock)
    def test_sub_batches_are_delayed(self, mock_sleep):
        provider = _CountingProvider(EmbeddingSettings(batch_size=5, batch_delay=1.5))
        texts = [f"text {i}" for i in range(12)]

        vectors = asyncio.run(provider.embed_batch(texts))

        assert len(vectors) == 12
        assert all(v is not None for v in vectors)
        # three sub-batches, two pauses between them
        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(1.5)

    def test_order_is_preserved_and_failures_are_none(self):
        provider = _CountingProvider(EmbeddingSettings(batch_size=2, batch_delay=0), fail_on={"bb"})
        vectors = asyncio.run(provider.embed_batch(["a", "bb", "ccc"]))

        assert vectors[0].tolist() == [1.0, 1.0]
        assert vectors[1] is None
        assert vectors[2].tolist() == [3.0, 1.0]

    def test_empty_batch(self):
        provider = _CountingProvider(EmbeddingSettings())
        assert asyncio.run(provider.embed_batch([])) == []


class TestOllamaEmbeddingProvider:

    @patch('tutor_match.services.embeddings.requests.post')
    def test_embed(self, mock_post):
        mock_post.return_value = _response(payload={"embeddings": [[0.5, 0.5]]})
        provider = OllamaEmbeddingProvider(EmbeddingSettings(
            backend=AIBackend.OLLAMA, base_url="http://localhost:11434", embed_model="nomic-embed-text"
        ))

        vector = provider.embed_sync("physics")

        assert vector.tolist() == [0.5, 0.5]
        assert mock_post.call_args.args[0] == "http://localhost:11434/api/embed"
        assert mock_post.call_args.kwargs["json"] == {"model": "nomic-embed-text", "input": "physics"}

    def test_factory(self):
        assert isinstance(build_embedding_provider(EmbeddingSettings(backend=AIBackend.OLLAMA)),
                          OllamaEmbeddingProvider)
        assert isinstance(build_embedding_provider(EmbeddingSettings()), GeminiEmbeddingProvider)
