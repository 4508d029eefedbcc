"""Text embedders mapping product and query text to fixed-length vectors."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence

import aiohttp
import numpy as np
from sklearn.feature_extraction.text import HashingVectorizer

from .core import Product
from ..config.settings import get_embedding_config
from ..utils.error_handling import (
    CircuitBreakerConfig, CircuitBreakerError, EmbeddingFailure, get_error_handler
)


logger = logging.getLogger(__name__)


def normalize_text(text: Optional[str]) -> str:
    """Case-fold and collapse whitespace."""
    if not text:
        return ""
    return " ".join(text.casefold().split())


def build_embedding_text(product: Product) -> str:
    """Assemble the text embedded for a product.

    Title, description, category, subcategory, brand and then each feature,
    skipping empty fields, joined by single spaces.
    """
    parts = [
        product.title,
        product.description,
        product.category,
        product.subcategory,
        product.brand,
        *product.features,
    ]
    return " ".join(part.strip() for part in parts if part and part.strip())


class Embedder(ABC):
    """Abstract text embedder producing vectors of a fixed dimension.

    Implementations receive text that has already been normalized and is
    non-empty; empty input short-circuits to the documented zero vector so a
    product with no usable text scores zero semantic similarity instead of
    failing its batch.
    """

    def __init__(self, model_name: str, dimension: int):
        if dimension <= 0:
            raise ValueError(f"Embedding dimension must be positive, got {dimension}")
        self.model_name = model_name
        self.dimension = dimension

    def zero_vector(self) -> np.ndarray:
        """Default vector returned for empty text."""
        return np.zeros(self.dimension, dtype=np.float64)

    async def embed(self, text: Optional[str]) -> np.ndarray:
        """Embed text into a vector of length ``dimension``.

        Raises:
            EmbeddingFailure: If the underlying model fails or returns a vector
                of the wrong length
        """
        normalized = normalize_text(text)
        if not normalized:
            return self.zero_vector()

        vector = np.asarray(await self._embed_normalized(normalized), dtype=np.float64)
        if vector.shape != (self.dimension,):
            raise EmbeddingFailure(
                f"{self.model_name} returned shape {vector.shape}, expected ({self.dimension},)"
            )
        return vector

    @abstractmethod
    async def _embed_normalized(self, text: str) -> np.ndarray:
        """Embed normalized, non-empty text."""
        pass

    def get_configuration(self) -> Dict[str, Any]:
        return {"model_name": self.model_name, "dimension": self.dimension}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model_name='{self.model_name}', dimension={self.dimension})"


class HashingEmbedder(Embedder):
    """Deterministic bag-of-words embedder based on signed feature hashing.

    Word unigrams and bigrams are hashed into ``dimension`` buckets with
    MurmurHash3 and the vector is L2-normalised, so identical text always
    yields an identical vector and shared words drive cosine similarity.
    """

    def __init__(self, dimension: int = 384, model_name: str = "hashing-bow-v1",
                 ngram_range: Sequence[int] = (1, 2)):
        super().__init__(model_name, dimension)
        self._vectorizer = HashingVectorizer(
            n_features=dimension,
            ngram_range=tuple(ngram_range),
            token_pattern=r"(?u)\b\w+\b",
            lowercase=False,
            alternate_sign=True,
            norm="l2",
        )

    async def _embed_normalized(self, text: str) -> np.ndarray:
        return self.embed_sync(text)

    def embed_sync(self, text: str) -> np.ndarray:
        """Synchronous variant used where no event loop is running."""
        normalized = normalize_text(text)
        if not normalized:
            return self.zero_vector()
        matrix = self._vectorizer.transform([normalized])
        return np.asarray(matrix.toarray()[0], dtype=np.float64)

    def get_configuration(self) -> Dict[str, Any]:
        config = super().get_configuration()
        config["ngram_range"] = list(self._vectorizer.ngram_range)
        return config


class HttpEmbedder(Embedder):
    """Model-backed embedder calling an OpenAI-compatible embeddings endpoint."""

    def __init__(self, endpoint: str, model_name: str, dimension: int,
                 api_key: Optional[str] = None, timeout: float = 30.0,
                 failure_threshold: int = 5, recovery_timeout: int = 60):
        """Initialize the HTTP embedder.

        Args:
            endpoint: Full URL of the embeddings endpoint
            model_name: Model identifier sent upstream and recorded with vectors
            dimension: Expected vector length
            api_key: Optional bearer token
            timeout: Request timeout in seconds
            failure_threshold: Consecutive failures before the circuit opens
            recovery_timeout: Seconds before a half-open retry
        """
        super().__init__(model_name, dimension)
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self.circuit_breaker = get_error_handler().create_circuit_breaker(
            f"embedder_{model_name}",
            CircuitBreakerConfig(
                failure_threshold=failure_threshold,
                recovery_timeout=recovery_timeout,
                expected_exception=EmbeddingFailure,
            ),
        )

    async def _embed_normalized(self, text: str) -> np.ndarray:
        try:
            return await self.circuit_breaker.call(self._request_embedding, text)
        except CircuitBreakerError as e:
            raise EmbeddingFailure(str(e)) from e

    async def _request_embedding(self, text: str) -> np.ndarray:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"model": self.model_name, "input": text}

        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.post(self.endpoint, json=payload, headers=headers) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise EmbeddingFailure(
                            f"Embedding request failed with status {response.status}: {error_text[:200]}"
                        )
                    data = await response.json()
        except aiohttp.ClientError as e:
            raise EmbeddingFailure(f"Failed to reach embedding service: {e}") from e
        except asyncio.TimeoutError as e:
            raise EmbeddingFailure(f"Embedding request timed out after {self.timeout} seconds") from e

        return self._parse_response(data)

    def _parse_response(self, data: Any) -> np.ndarray:
        try:
            vector = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingFailure(f"Malformed embedding response: {e}") from e
        return np.asarray(vector, dtype=np.float64)

    def get_configuration(self) -> Dict[str, Any]:
        config = super().get_configuration()
        config.update({"endpoint": self.endpoint, "timeout": self.timeout})
        return config


def create_embedder(config: Optional[Dict[str, Any]] = None) -> Embedder:
    """Build the embedder selected by configuration."""
    config = config if config is not None else get_embedding_config()
    provider = config.get("provider", "hashing")
    dimension = int(config.get("dimension", 384))

    if provider == "hashing":
        return HashingEmbedder(
            dimension=dimension,
            model_name=config.get("model_name", "hashing-bow-v1"),
            ngram_range=config.get("ngram_range", (1, 2)),
        )
    if provider == "http":
        http_config = config.get("http", {})
        return HttpEmbedder(
            endpoint=http_config["endpoint"],
            model_name=http_config.get("model", config.get("model_name")),
            dimension=dimension,
            api_key=http_config.get("api_key"),
            timeout=float(http_config.get("timeout", 30.0)),
            failure_threshold=int(http_config.get("failure_threshold", 5)),
            recovery_timeout=int(http_config.get("recovery_timeout", 60)),
        )
    raise ValueError(f"Unknown embedding provider: {provider}")
