"""
Embedding providers: text -> fixed-length vector.

Two HTTP backends (Gemini, Ollama) share one interface. Calls are plain
blocking `requests` calls pushed onto a worker thread so the event loop
stays free.
"""
import asyncio
from typing import List, Optional, Sequence

import numpy as np
import requests

from tutor_match.models.settings import AIBackend, EmbeddingSettings
from tutor_match.utils.exceptions import (
    EmbeddingUnavailableError,
    ExternalServiceError,
    RateLimitError,
    ValidationError,
    retry_with_logging,
)
from tutor_match.utils.logging_config import get_logger
from tutor_match.utils.utils import clamp_text

logger = get_logger(__name__)


def to_vector(values) -> np.ndarray:
    return np.asarray(values, dtype=np.float32)


def _raise_for_response(resp: requests.Response, service_name: str) -> None:
    if resp.status_code == 429:
        retry_after = resp.headers.get("Retry-After")
        raise RateLimitError(
            f"{service_name} rate limit exceeded",
            service_name=service_name,
            retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    if resp.status_code >= 400:
        raise ExternalServiceError(
            f"{service_name} returned HTTP {resp.status_code}: {resp.text[:200]}",
            service_name=service_name,
            status_code=resp.status_code,
        )


class EmbeddingProvider:
    """Base embedding provider. Subclasses implement `_request_embedding`."""

    service_name = "embedding"

    def __init__(self, settings: EmbeddingSettings):
        self.settings = settings

    @property
    def model_name(self) -> str:
        return self.settings.embed_model

    def is_available(self) -> bool:
        return True

    def _request_embedding(self, text: str) -> List[float]:
        raise NotImplementedError

    def embed_sync(self, text: str) -> np.ndarray:
        if not self.is_available():
            raise EmbeddingUnavailableError(service_name=self.service_name)
        if not text or not text.strip():
            raise ValidationError("Cannot embed empty text", field="text")

        text = clamp_text(text, self.settings.max_text_chars)
        call = retry_with_logging(
            max_attempts=self.settings.max_retries,
            backoff_factor=self.settings.retry_backoff,
            exceptions=(RateLimitError,),
            logger=logger,
        )(self._request_embedding)
        try:
            values = call(text)
        except requests.RequestException as e:
            raise ExternalServiceError(
                f"{self.service_name} request failed: {e}", service_name=self.service_name, cause=e
            ) from e

        if not values:
            raise ExternalServiceError(f"{self.service_name} returned an empty embedding", service_name=self.service_name)
        return to_vector(values)

    async def embed(self, text: str) -> np.ndarray:
        return await asyncio.to_thread(self.embed_sync, text)

    async def embed_batch(self, texts: Sequence[str]) -> List[Optional[np.ndarray]]:
        """
        Embed many texts in sub-batches of `batch_size`, pausing `batch_delay`
        seconds between sub-batches. A failed item yields None in its slot.

        Raises:
            EmbeddingUnavailableError: no credential configured
        """
        if not self.is_available():
            raise EmbeddingUnavailableError(service_name=self.service_name)

        size = self.settings.batch_size
        results: List[Optional[np.ndarray]] = []
        for start in range(0, len(texts), size):
            if start > 0 and self.settings.batch_delay > 0:
                await asyncio.sleep(self.settings.batch_delay)

            chunk = texts[start:start + size]
            outcomes = await asyncio.gather(*(self.embed(t) for t in chunk), return_exceptions=True)
            for offset, outcome in enumerate(outcomes):
                if isinstance(outcome, BaseException):
                    logger.warning(f"Embedding failed for batch item {start + offset}: {outcome}")
                    results.append(None)
                else:
                    results.append(outcome)

        logger.info(f"Embedded {sum(r is not None for r in results)}/{len(texts)} texts")
        return results


class GeminiEmbeddingProvider(EmbeddingProvider):
    service_name = "gemini"

    def is_available(self) -> bool:
        return bool(self.settings.api_key)

    def _request_embedding(self, text: str) -> List[float]:
        url = f"{self.settings.base_url}/models/{self.settings.embed_model}:embedContent"
        resp = requests.post(
            url,
            params={"key": self.settings.api_key},
            json={
                "model": f"models/{self.settings.embed_model}",
                "content": {"parts": [{"text": text}]},
            },
            timeout=self.settings.timeout,
        )
        _raise_for_response(resp, self.service_name)
        return (resp.json().get("embedding") or {}).get("values") or []


class OllamaEmbeddingProvider(EmbeddingProvider):
    service_name = "ollama"

    def is_available(self) -> bool:
        return bool(self.settings.base_url)

    def _request_embedding(self, text: str) -> List[float]:
        url = f"{self.settings.base_url}/api/embed"
        resp = requests.post(
            url,
            json={"model": self.settings.embed_model, "input": text},
            timeout=self.settings.timeout,
        )
        _raise_for_response(resp, self.service_name)
        data = resp.json()
        embeddings = data.get("embeddings") or []
        return embeddings[0] if embeddings else data.get("embedding") or []


def build_embedding_provider(settings: EmbeddingSettings) -> EmbeddingProvider:
    if settings.backend == AIBackend.OLLAMA:
        return OllamaEmbeddingProvider(settings)
    return GeminiEmbeddingProvider(settings)
