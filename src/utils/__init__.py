"""
Utility modules for the memory engine.

Provides the LLM/embedding factory, the embedding client, similarity helpers
and logging utilities.
"""

from src.utils.embeddings import EmbeddingClient, EmbeddingError
from src.utils.llm_factory import (
    LLMFactoryError,
    get_embedding_model,
    get_llm,
)
from src.utils.logger import (
    LogContext,
    get_logger,
    setup_logging,
)
from src.utils.similarity import cosine_scores, cosine_similarity, normalize_l2

__all__ = [
    # LLM Factory
    "get_llm",
    "get_embedding_model",
    "LLMFactoryError",
    # Embeddings
    "EmbeddingClient",
    "EmbeddingError",
    # Similarity
    "cosine_similarity",
    "cosine_scores",
    "normalize_l2",
    # Logging
    "get_logger",
    "setup_logging",
    "LogContext",
]
