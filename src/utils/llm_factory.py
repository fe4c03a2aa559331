"""
LLM Factory - Oracle and Embedding Backend Abstraction.

Provides a unified interface for LLM backends (OpenAI, Azure OpenAI, Ollama)
and embedding backends (OpenAI, Azure OpenAI, HuggingFace).
"""

from functools import lru_cache
from typing import TYPE_CHECKING

from llama_index.core.embeddings import BaseEmbedding
from llama_index.core.llms import LLM

from app.config import EmbeddingBackend, LLMBackend, get_settings
from src.utils.logger import get_logger

if TYPE_CHECKING:
    from app.config import Settings

logger = get_logger(__name__)


class LLMFactoryError(Exception):
    """Raised when LLM factory encounters an error."""

    pass


def _create_openai_llm(settings: "Settings") -> LLM:
    """Create OpenAI LLM instance."""
    try:
        from llama_index.llms.openai import OpenAI
    except ImportError as e:
        raise LLMFactoryError(
            "OpenAI LLM not installed. Run: pip install llama-index-llms-openai"
        ) from e

    if not settings.openai_api_key:
        raise LLMFactoryError(
            "OPENAI_API_KEY not set. Required when llm_backend='openai'"
        )

    logger.info(f"Initializing OpenAI LLM with model: {settings.openai_model}")
    return OpenAI(
        model=settings.openai_model,
        api_key=settings.openai_api_key,
        temperature=0.0,
        timeout=settings.oracle_timeout_seconds,
    )


def _create_azure_llm(settings: "Settings") -> LLM:
    """Create Azure OpenAI LLM instance."""
    try:
        from llama_index.llms.azure_openai import AzureOpenAI
    except ImportError as e:
        raise LLMFactoryError(
            "Azure OpenAI LLM not installed. Run: pip install llama-index-llms-azure-openai"
        ) from e

    if not settings.azure_api_key or not settings.azure_endpoint:
        raise LLMFactoryError(
            "AZURE_API_KEY and AZURE_ENDPOINT must be set when llm_backend='azure'"
        )

    logger.info(f"Initializing Azure OpenAI LLM with deployment: {settings.azure_llm_deployment}")
    return AzureOpenAI(
        engine=settings.azure_llm_deployment,
        model=settings.openai_model,
        api_key=settings.azure_api_key,
        azure_endpoint=settings.azure_endpoint,
        api_version=settings.azure_api_version,
        temperature=0.0,
        timeout=settings.oracle_timeout_seconds,
    )


def _create_ollama_llm(settings: "Settings") -> LLM:
    """Create Ollama LLM instance for local inference."""
    try:
        from llama_index.llms.ollama import Ollama
    except ImportError as e:
        raise LLMFactoryError(
            "Ollama LLM not installed. Run: pip install llama-index-llms-ollama"
        ) from e

    logger.info(
        f"Initializing Ollama LLM with model: {settings.ollama_model} "
        f"at {settings.ollama_base_url}"
    )
    return Ollama(
        model=settings.ollama_model,
        base_url=settings.ollama_base_url,
        request_timeout=settings.oracle_timeout_seconds,
        json_mode=True,
    )


def _create_openai_embedding(settings: "Settings") -> BaseEmbedding:
    """Create OpenAI embedding model."""
    try:
        from llama_index.embeddings.openai import OpenAIEmbedding
    except ImportError as e:
        raise LLMFactoryError(
            "OpenAI embeddings not installed. "
            "Run: pip install llama-index-embeddings-openai"
        ) from e

    if not settings.openai_api_key:
        raise LLMFactoryError(
            "OPENAI_API_KEY not set. Required when embedding_backend='openai'"
        )

    logger.info(f"Initializing OpenAI embeddings with model: {settings.embedding_model}")
    return OpenAIEmbedding(
        model=settings.embedding_model,
        dimensions=settings.embedding_dimensions,
        api_key=settings.openai_api_key,
    )


def _create_azure_embedding(settings: "Settings") -> BaseEmbedding:
    """Create Azure OpenAI embedding model."""
    try:
        from llama_index.embeddings.azure_openai import AzureOpenAIEmbedding
    except ImportError as e:
        raise LLMFactoryError(
            "Azure OpenAI embeddings not installed. "
            "Run: pip install llama-index-embeddings-azure-openai"
        ) from e

    if not settings.azure_api_key or not settings.azure_endpoint:
        raise LLMFactoryError(
            "AZURE_API_KEY and AZURE_ENDPOINT must be set when embedding_backend='azure'"
        )

    logger.info(
        f"Initializing Azure OpenAI embeddings with deployment: "
        f"{settings.azure_embedding_deployment}"
    )
    return AzureOpenAIEmbedding(
        model=settings.embedding_model,
        deployment_name=settings.azure_embedding_deployment,
        dimensions=settings.embedding_dimensions,
        api_key=settings.azure_api_key,
        azure_endpoint=settings.azure_endpoint,
        api_version=settings.azure_api_version,
    )


def _create_huggingface_embedding(settings: "Settings") -> BaseEmbedding:
    """Create HuggingFace embedding model for local embeddings."""
    try:
        from llama_index.embeddings.huggingface import HuggingFaceEmbedding
    except ImportError as e:
        raise LLMFactoryError(
            "HuggingFace embeddings not installed. "
            "Run: pip install llama-index-embeddings-huggingface"
        ) from e

    logger.info(f"Initializing HuggingFace embeddings with model: {settings.embedding_model}")
    return HuggingFaceEmbedding(model_name=settings.embedding_model)


@lru_cache
def get_llm(backend: LLMBackend | None = None) -> LLM:
    """
    Get the oracle LLM instance based on settings.

    Args:
        backend: Override the configured backend

    Returns:
        LLM instance (OpenAI, Azure OpenAI or Ollama)

    Raises:
        LLMFactoryError: If configuration is invalid or dependencies missing
    """
    settings = get_settings()

    match backend or settings.llm_backend:
        case LLMBackend.OPENAI:
            return _create_openai_llm(settings)
        case LLMBackend.AZURE:
            return _create_azure_llm(settings)
        case LLMBackend.OLLAMA:
            return _create_ollama_llm(settings)
        case other:
            raise LLMFactoryError(f"Unsupported LLM backend: {other}")


@lru_cache
def get_embedding_model(backend: EmbeddingBackend | None = None) -> BaseEmbedding:
    """
    Get the embedding model instance based on settings.

    Args:
        backend: Override the configured backend

    Returns:
        Embedding model instance (OpenAI, Azure OpenAI or HuggingFace)

    Raises:
        LLMFactoryError: If configuration is invalid or dependencies missing
    """
    settings = get_settings()

    match backend or settings.embedding_backend:
        case EmbeddingBackend.OPENAI:
            return _create_openai_embedding(settings)
        case EmbeddingBackend.AZURE:
            return _create_azure_embedding(settings)
        case EmbeddingBackend.HUGGINGFACE:
            return _create_huggingface_embedding(settings)
        case other:
            raise LLMFactoryError(f"Unsupported embedding backend: {other}")
