"""
Embedding Client - Text to Fixed-Dimension Vectors.

Wraps a LlamaIndex embedding model. Every returned vector is validated:
a failed request, a wrong dimension, or a degenerate vector raises
EmbeddingError instead of being replaced by a placeholder, since a
placeholder would silently corrupt ranking and contradiction detection.
"""

import asyncio
import math

from llama_index.core.embeddings import BaseEmbedding

from src.utils.logger import get_logger

logger = get_logger(__name__)


class EmbeddingError(Exception):
    """Raised when text cannot be embedded."""

    pass


class EmbeddingClient:
    """
    Batch embedding client with timeout and vector validation.

    Usage:
        client = EmbeddingClient(dimensions=1536, timeout=30.0)
        vectors = await client.embed(["Fernando works at Doxa Code"])
    """

    def __init__(
        self,
        model: BaseEmbedding | None = None,
        dimensions: int = 1536,
        timeout: float | None = 30.0,
    ) -> None:
        """
        Initialize the embedding client.

        Args:
            model: Embedding model (if None, will use default from llm_factory)
            dimensions: Expected vector dimension
            timeout: Seconds allowed for one batch; None disables the bound
        """
        self._model = model
        self.dimensions = dimensions
        self.timeout = timeout

    @property
    def model(self) -> BaseEmbedding:
        """Get the embedding model instance."""
        if self._model is None:
            from src.utils.llm_factory import get_embedding_model

            self._model = get_embedding_model()
        return self._model

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Embed texts as one batch of concurrent requests.

        Args:
            texts: Ordered strings to embed

        Returns:
            Vectors in the same order as texts

        Raises:
            EmbeddingError: On timeout, transport failure or invalid vectors
        """
        if not texts:
            return []

        try:
            requests = [self.model.aget_text_embedding(text) for text in texts]
            vectors = await asyncio.wait_for(asyncio.gather(*requests), timeout=self.timeout)
        except TimeoutError as e:
            raise EmbeddingError(
                f"Embedding {len(texts)} texts timed out after {self.timeout}s"
            ) from e
        except Exception as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} embeddings, received {len(vectors)}"
            )

        for text, vector in zip(texts, vectors):
            self._validate(text, vector)

        logger.debug(f"Embedded {len(texts)} texts")
        return [list(map(float, vector)) for vector in vectors]

    async def embed_one(self, text: str) -> list[float]:
        """Embed a single string."""
        return (await self.embed([text]))[0]

    def _validate(self, text: str, vector: list[float]) -> None:
        if len(vector) != self.dimensions:
            raise EmbeddingError(
                f"Embedding for '{text[:40]}' has dimension {len(vector)}, "
                f"expected {self.dimensions}"
            )

        if not all(math.isfinite(value) for value in vector):
            raise EmbeddingError(f"Embedding for '{text[:40]}' contains non-finite values")

        if not any(vector):
            raise EmbeddingError(f"Embedding for '{text[:40]}' is a zero vector")
