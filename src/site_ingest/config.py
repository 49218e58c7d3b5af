"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Embedding
    openai_api_key: str = Field(default="", description="OpenAI API key (or dummy value for a local server)")
    embedding_base_url: str = Field(
        default="",
        description=(
            "Base URL for the embeddings API. Leave empty to use OpenAI cloud. "
            "Set to any OpenAI-compatible '/v1' endpoint for self-hosted serving."
        ),
    )
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_batch_size: int = Field(default=100, ge=1, le=2048)
    embedding_max_retries: int = Field(default=3, ge=0)
    embedding_batch_delay_seconds: float = 0.1
    embedding_max_chars: int = 8000

    # Fetching
    user_agent: str = "site-ingest/1.0 (+retrieval ingestion)"
    fetch_timeout_seconds: float = 30.0
    fetch_max_retries: int = Field(default=3, ge=0)
    fetch_max_redirects: int = Field(default=5, ge=0)
    fetch_backoff_seconds: float = 0.5

    # Discovery
    discovery_timeout_seconds: float = 10.0

    # Chunking
    chunk_min_tokens: int = 300
    chunk_max_tokens: int = 400

    # Orchestration
    max_concurrency: int = Field(default=4, ge=1, le=32)
    progress_buffer_size: int = Field(default=256, ge=1)

    # Storage
    storage_backend: str = Field(default="memory", description="'memory' or 'chroma'")
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "site_ingest_chunks"

    # Logging
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Default instance for entry points; library code receives settings explicitly.
settings = Settings()
