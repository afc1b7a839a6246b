"""Embedding Provider Abstraction for multiple backends (OpenAI, Ollama)."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaError

from linkvault.core.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0  # seconds


@dataclass(frozen=True)
class ModelInfo:
    """Information about an embedding model."""

    model_id: str
    dimensions: int
    cost_per_1m_tokens: float  # USD, 0 for local models
    max_tokens: int  # Max input tokens


OPENAI_MODELS: dict[str, ModelInfo] = {
    "text-embedding-3-small": ModelInfo("text-embedding-3-small", 1536, 0.02, 8191),
    "text-embedding-3-large": ModelInfo("text-embedding-3-large", 3072, 0.13, 8191),
}

OLLAMA_MODELS: dict[str, ModelInfo] = {
    "nomic-embed-text": ModelInfo("nomic-embed-text", 768, 0.0, 8192),
    "mxbai-embed-large": ModelInfo("mxbai-embed-large", 1024, 0.0, 512),
}


@dataclass(frozen=True)
class EmbeddingResult:
    """A validated embedding and the model that produced it."""

    vector: list[float]
    model: str


@dataclass
class HealthCheckResult:
    """Result of a provider health check."""

    healthy: bool
    provider: str
    model: str
    message: str
    latency_ms: int | None = None
    details: dict[str, Any] | None = None


class _OpenAIEmbeddingItem(BaseModel):
    embedding: list[float] = Field(min_length=1)


class _OpenAIEmbeddingsResponse(BaseModel):
    data: list[_OpenAIEmbeddingItem] = Field(min_length=1)


class _OllamaEmbeddingResponse(BaseModel):
    embedding: list[float] = Field(min_length=1)


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers.

    Providers are stateless request/response wrappers. Any failure
    (unreachable service, non-2xx status, malformed or empty response,
    timeout) is raised as ``ProviderError``.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self._timeout = timeout

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable provider name (e.g., 'OpenAI', 'Ollama')."""
        ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        """The model identifier being used."""
        ...

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Embedding vector dimensions."""
        ...

    @abstractmethod
    async def _request(self, text: str) -> EmbeddingResult:
        ...

    async def embed(self, text: str) -> EmbeddingResult:
        """Generate the embedding for a single text.

        Raises:
            ProviderError: If embedding generation fails or times out.
        """
        try:
            return await asyncio.wait_for(self._request(text), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"{self.name} request timed out after {self._timeout:.0f}s",
                provider=self.name,
                retriable=True,
            ) from e

    async def health_check(self) -> HealthCheckResult:
        """Check if the provider is available and configured correctly."""
        start = time.monotonic()
        try:
            result = await self.embed("test")
        except ProviderError as e:
            return HealthCheckResult(
                healthy=False,
                provider=self.name,
                model=self.model_id,
                message=str(e),
                details={"retriable": e.retriable},
            )
        latency_ms = int((time.monotonic() - start) * 1000)
        return HealthCheckResult(
            healthy=True,
            provider=self.name,
            model=self.model_id,
            message="Connected",
            latency_ms=latency_ms,
            details={"dimensions": len(result.vector)},
        )

    def _http_error(self, e: httpx.HTTPStatusError) -> ProviderError:
        status = e.response.status_code
        return ProviderError(
            f"{self.name} embeddings failed: {status} {e.response.text}",
            provider=self.name,
            retriable=status == 429 or status >= 500,
        )


class OpenAIProvider(EmbeddingProvider):
    """OpenAI embedding provider using the API."""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize OpenAI provider.

        Args:
            model: Model ID (text-embedding-3-small or text-embedding-3-large).
            api_key: Optional API key. Falls back to OPENAI_API_KEY env var.
            base_url: Optional API root. Falls back to OPENAI_BASE_URL env var.
            timeout: Request bound in seconds.
        """
        if model not in OPENAI_MODELS:
            raise ValueError(f"Unknown OpenAI model: {model}. Available: {list(OPENAI_MODELS.keys())}")

        super().__init__(timeout=timeout)
        self._model = model
        self._model_info = OPENAI_MODELS[model]
        self._api_key = api_key or os.getenv("OPENAI_API_KEY", "").strip()
        self._base_url = (base_url or os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")).rstrip("/")

    @property
    def name(self) -> str:
        return "OpenAI"

    @property
    def model_id(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int:
        return self._model_info.dimensions

    async def _request(self, text: str) -> EmbeddingResult:
        if not self._api_key:
            raise ProviderError("Missing OPENAI_API_KEY", provider=self.name, retriable=False)

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}/embeddings",
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                    json={"model": self._model, "input": text},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise self._http_error(e) from e
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"OpenAI request timed out: {e}", provider=self.name, retriable=True
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(
                f"OpenAI unreachable: {e}", provider=self.name, retriable=True
            ) from e
        except ValueError as e:
            raise ProviderError(
                "OpenAI returned a non-JSON response", provider=self.name
            ) from e

        try:
            parsed = _OpenAIEmbeddingsResponse.model_validate(data)
        except SchemaError as e:
            raise ProviderError(
                "OpenAI embeddings response shape changed", provider=self.name
            ) from e

        return EmbeddingResult(vector=parsed.data[0].embedding, model=self._model)


class OllamaProvider(EmbeddingProvider):
    """Ollama embedding provider for local models."""

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """Initialize Ollama provider.

        Args:
            model: Model ID (nomic-embed-text or mxbai-embed-large).
            base_url: Ollama server URL. Falls back to OLLAMA_BASE_URL env var or localhost.
            timeout: Request bound in seconds.
        """
        if model not in OLLAMA_MODELS:
            raise ValueError(f"Unknown Ollama model: {model}. Available: {list(OLLAMA_MODELS.keys())}")

        super().__init__(timeout=timeout)
        self._model = model
        self._model_info = OLLAMA_MODELS[model]
        self._base_url = (base_url or os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")).rstrip("/")

    @property
    def name(self) -> str:
        return "Ollama"

    @property
    def model_id(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int:
        return self._model_info.dimensions

    async def _request(self, text: str) -> EmbeddingResult:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}/api/embeddings",
                    json={"model": self._model, "prompt": text},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.ConnectError as e:
            raise ProviderError(
                f"Ollama not reachable at {self._base_url}",
                provider=self.name,
                retriable=True,
            ) from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise ProviderError(
                    f"Model '{self._model}' not found. Run 'ollama pull {self._model}'.",
                    provider=self.name,
                ) from e
            raise self._http_error(e) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Ollama request failed: {e}", provider=self.name, retriable=True) from e
        except ValueError as e:
            raise ProviderError("Ollama returned a non-JSON response", provider=self.name) from e

        try:
            parsed = _OllamaEmbeddingResponse.model_validate(data)
        except SchemaError as e:
            raise ProviderError("Invalid Ollama embeddings response", provider=self.name) from e

        return EmbeddingResult(vector=parsed.embedding, model=self._model)


def get_provider(
    provider_name: str = "openai",
    model: str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> EmbeddingProvider:
    """Factory function to get an embedding provider.

    Args:
        provider_name: 'openai' or 'ollama'
        model: Optional model ID. Uses default if not specified.
        timeout: Request bound in seconds.

    Raises:
        ValueError: If provider or model is unknown.
    """
    provider_name = provider_name.lower()

    if provider_name == "openai":
        return OpenAIProvider(model=model or "text-embedding-3-small", timeout=timeout)

    elif provider_name == "ollama":
        return OllamaProvider(model=model or "nomic-embed-text", timeout=timeout)

    else:
        raise ValueError(f"Unsupported EMBEDDINGS_PROVIDER: {provider_name}. Available: openai, ollama")
