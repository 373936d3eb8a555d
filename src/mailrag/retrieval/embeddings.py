"""
Embedding generation via hosted embedding APIs.

Each call embeds exactly one text and either returns a vector of the
configured dimension or raises. Retries are left to the caller.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Protocol

import httpx
import numpy as np
from numpy.typing import NDArray

from mailrag.config import Settings, settings
from mailrag.errors import EmptyInputError, ProviderError

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything that turns one text into one fixed-dimension vector."""

    dimension: int

    def embed(self, text: str) -> NDArray[np.float32]: ...


class _HTTPEmbedder(ABC):
    """Shared request/response handling for the HTTP providers."""

    provider = "embedding"

    def __init__(
        self,
        model: str,
        api_key: Optional[str],
        dimension: int,
        timeout: float,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.dimension = dimension
        self.timeout = timeout

    def embed(self, text: str) -> NDArray[np.float32]:
        """
        Generate the embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Array of shape (dimension,)

        Raises:
            EmptyInputError: If text is empty or whitespace
            ProviderError: If the API call fails or returns a malformed vector
        """
        if not text or not text.strip():
            raise EmptyInputError("Cannot embed empty text")

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self._url(), json=self._payload(text), headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning(f"{self.provider} embedding request failed with HTTP {status}")
            raise ProviderError(
                f"{self.provider} API returned HTTP {status}", status_code=status
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"{self.provider} embedding request failed: {e}")
            raise ProviderError(f"{self.provider} API request failed: {e}") from e
        except ValueError as e:
            raise ProviderError(f"{self.provider} API returned invalid JSON") from e

        return self._check_vector(self._extract(data))

    def _check_vector(self, raw: Any) -> NDArray[np.float32]:
        try:
            vector = np.asarray(raw, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise ProviderError(f"{self.provider} API returned a non-numeric embedding") from e

        if vector.shape != (self.dimension,):
            raise ProviderError(
                f"Expected embedding of dimension {self.dimension}, got shape {vector.shape}"
            )
        if not np.all(np.isfinite(vector)):
            raise ProviderError(f"{self.provider} API returned non-finite values")
        return vector

    @abstractmethod
    def _url(self) -> str:
        """Endpoint the embedding request is posted to."""

    @abstractmethod
    def _payload(self, text: str) -> dict[str, Any]:
        """Request body for one text."""

    @abstractmethod
    def _extract(self, data: Any) -> Any:
        """Pull the raw vector out of the decoded response."""


class OpenAIEmbedder(_HTTPEmbedder):
    """
    Generate embeddings using the OpenAI embeddings endpoint.

    Example:
        >>> embedder = OpenAIEmbedder(api_key="sk-...")
        >>> embedder.embed("Quarterly numbers attached").shape
        (1536,)
    """

    provider = "OpenAI"

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        dimension: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        super().__init__(
            model=model or settings.embedding_model,
            api_key=api_key or settings.openai_api_key_value,
            dimension=dimension or settings.embedding_dimension,
            timeout=timeout or settings.embedding_timeout,
        )
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")

    def _url(self) -> str:
        return f"{self.base_url}/embeddings"

    def _payload(self, text: str) -> dict[str, Any]:
        return {"model": self.model, "input": text}

    def _extract(self, data: Any) -> Any:
        try:
            return data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError("OpenAI API response has no embedding") from e


class HuggingFaceEmbedder(_HTTPEmbedder):
    """
    Generate embeddings using the HuggingFace Inference API.

    Example:
        >>> embedder = HuggingFaceEmbedder(
        ...     model="sentence-transformers/all-MiniLM-L6-v2", dimension=384
        ... )
        >>> embedder.embed("Quarterly numbers attached").shape
        (384,)
    """

    provider = "HuggingFace"

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        dimension: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        super().__init__(
            model=model or settings.embedding_model,
            api_key=api_key or settings.hf_api_key_value,
            dimension=dimension or settings.embedding_dimension,
            timeout=timeout or settings.embedding_timeout,
        )
        self.base_url = "https://api-inference.huggingface.co/pipeline/feature-extraction"

    def _url(self) -> str:
        return f"{self.base_url}/{self.model}"

    def _payload(self, text: str) -> dict[str, Any]:
        return {"inputs": [text]}

    def _extract(self, data: Any) -> Any:
        if not isinstance(data, list) or not data:
            raise ProviderError("HuggingFace API response has no embedding")
        return data[0]


def create_embedder(config: Optional[Settings] = None) -> Embedder:
    """
    Build the embedder selected by ``embedding_provider``.

    Args:
        config: Settings to read from (default: process settings)

    Returns:
        A ready-to-use embedder
    """
    config = config or settings

    if config.embedding_provider == "huggingface":
        return HuggingFaceEmbedder(
            model=config.embedding_model,
            api_key=config.hf_api_key_value,
            dimension=config.embedding_dimension,
            timeout=config.embedding_timeout,
        )

    return OpenAIEmbedder(
        model=config.embedding_model,
        api_key=config.openai_api_key_value,
        base_url=config.openai_base_url,
        dimension=config.embedding_dimension,
        timeout=config.embedding_timeout,
    )
