"""
Configuration for news-rag.

All settings are read from environment variables (case-insensitive) and an
optional ``.env`` file in the working directory. Credentials are ``SecretStr``
so they never show up in reprs or logs.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Redis (sessions, chat history, query cache)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[SecretStr] = None
    redis_db: int = 0
    redis_use_tls: bool = False
    redis_connect_timeout: float = 5.0

    # Qdrant (vector index)
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: Optional[SecretStr] = None
    collection_name: str = "news_articles"
    vector_init_timeout: float = 20.0
    hnsw_m: int = 16
    hnsw_ef_construct: int = 100
    hnsw_full_scan_threshold: int = 10000

    # Embeddings (OpenAI-compatible endpoint, Jina by default)
    embedding_api_key: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("embedding_api_key", "jina_api_key")
    )
    embedding_base_url: str = "https://api.jina.ai/v1"
    embedding_model: str = "jina-embeddings-v2-base-en"
    vector_dimension: int = Field(default=768, gt=0)
    embedding_batch_size: int = Field(default=10, gt=0)
    embedding_max_chars: int = 8192
    embedding_timeout: float = 10.0
    embedding_self_test_timeout: float = 5.0
    embedding_batch_delay: float = 1.0

    # Generation (casual-llm provider)
    llm_provider: Literal["openai", "ollama"] = "openai"
    llm_model: str = "gemini-1.5-flash"
    llm_api_key: Optional[SecretStr] = Field(
        default=None, validation_alias=AliasChoices("llm_api_key", "gemini_api_key")
    )
    llm_base_url: Optional[str] = "https://generativelanguage.googleapis.com/v1beta/openai/"
    llm_temperature: float = 0.3
    llm_max_attempts: int = Field(default=3, ge=1)
    llm_retry_backoff: float = 5.0
    llm_timeout: float = 30.0
    llm_init_timeout: float = 10.0

    # Sessions and caching
    session_ttl: int = 60 * 60 * 24 * 7
    history_ttl: int = 60 * 60 * 24 * 30
    history_limit: int = Field(default=50, gt=0)
    cache_ttl: int = 60 * 30

    # Retrieval
    top_k_results: int = Field(default=5, gt=0)
    min_similarity: float = 0.3
    recent_window_days: int = 3
    conversation_history_turns: int = 10

    # Chunking
    chunk_size: int = Field(default=500, gt=0)
    chunk_overlap: int = Field(default=100, ge=0)

    # Ingestion throttling
    ingest_chunk_embed_timeout: float = 60.0
    ingest_upsert_timeout: float = 30.0
    ingest_item_delay: float = 0.5
    ingest_batch_size: int = Field(default=2, gt=0)
    ingest_batch_delay: float = 3.0

    enforce_query_safety: bool = False
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_chunking(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self

    @property
    def redis_password_value(self) -> Optional[str]:
        return self.redis_password.get_secret_value() if self.redis_password else None

    @property
    def qdrant_api_key_value(self) -> Optional[str]:
        return self.qdrant_api_key.get_secret_value() if self.qdrant_api_key else None

    @property
    def embedding_api_key_value(self) -> Optional[str]:
        return self.embedding_api_key.get_secret_value() if self.embedding_api_key else None

    @property
    def llm_api_key_value(self) -> Optional[str]:
        return self.llm_api_key.get_secret_value() if self.llm_api_key else None


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings()
