"""
Application Configuration.

Pydantic settings for type-safe environment configuration.
Supports swappable LLM and embedding backends (OpenAI, Azure OpenAI, Ollama, HuggingFace).
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMBackend(str, Enum):
    """Supported LLM backends."""

    OPENAI = "openai"
    AZURE = "azure"
    OLLAMA = "ollama"


class EmbeddingBackend(str, Enum):
    """Supported embedding backends."""

    OPENAI = "openai"
    AZURE = "azure"
    HUGGINGFACE = "huggingface"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === LLM Backend Selection ===
    llm_backend: LLMBackend = Field(
        default=LLMBackend.OPENAI,
        description="LLM backend to use: 'openai', 'azure' or 'ollama'",
    )

    # === OpenAI Configuration ===
    openai_api_key: str = Field(
        default="",
        description="OpenAI API key (required for the openai backends)",
    )
    openai_model: str = Field(
        default="gpt-4.1",
        description="OpenAI chat model used for extraction",
    )

    # === Azure OpenAI Configuration ===
    azure_api_key: str = Field(default="", description="Azure OpenAI API key")
    azure_endpoint: str = Field(default="", description="Azure OpenAI endpoint URL")
    azure_api_version: str = Field(
        default="2024-10-21",
        description="Azure OpenAI API version",
    )
    azure_llm_deployment: str = Field(
        default="gpt-4.1",
        description="Azure deployment name of the chat model",
    )
    azure_embedding_deployment: str = Field(
        default="text-embedding-3-small",
        description="Azure deployment name of the embedding model",
    )

    # === Ollama Configuration ===
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama API base URL",
    )
    ollama_model: str = Field(
        default="llama3.1",
        description="Ollama model to use",
    )

    # === Embedding Configuration ===
    embedding_backend: EmbeddingBackend = Field(
        default=EmbeddingBackend.OPENAI,
        description="Embedding backend: 'openai', 'azure' or 'huggingface'",
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model to use",
    )
    embedding_dimensions: int = Field(
        default=1536,
        gt=0,
        description="Dimension every stored embedding must have",
    )

    # === Oracle / Embedding Call Bounds ===
    oracle_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for a single extraction/summary request",
    )
    embedding_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for one batch of embedding requests",
    )

    # === Memory Engine ===
    database_path: Path = Field(
        default=Path("./data/memory.db"),
        description="SQLite database holding episodes, nodes and edges",
    )
    history_window: int = Field(
        default=10,
        ge=0,
        description="Prior episodes given to the oracle as context",
    )
    reflection_max_iterations: int = Field(
        default=3,
        ge=1,
        description="Maximum extraction passes of the reflection loop",
    )
    contradiction_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Cosine similarity above which an older fact is invalidated",
    )
    search_top_k: int = Field(
        default=10,
        ge=1,
        description="Default number of facts returned by search",
    )
    search_history_window: int = Field(
        default=3,
        ge=0,
        description="Recent episodes appended to search results",
    )
    task_retention: int = Field(
        default=1000,
        ge=1,
        description="Finished ingestion tasks kept for status lookups",
    )

    # === Data Directories ===
    data_graphs_dir: Path = Field(
        default=Path("./data/graphs"),
        description="Directory for rendered graph views",
    )

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # === API Configuration ===
    api_host: str = Field(
        default="0.0.0.0",
        description="API host to bind to",
    )
    api_port: int = Field(
        default=5000,
        description="API port to bind to",
    )

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [
            self.database_path.parent,
            self.data_graphs_dir,
        ]:
            dir_path.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    settings.ensure_directories()
    return settings
