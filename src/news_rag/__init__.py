"""
news-rag: Retrieval-augmented news chat with cached sessions and graceful degradation.

Core components:
- chunking: Sentence-aware sliding-window article chunker
- embeddings: Remote embeddings with a deterministic local fallback
- storage: Qdrant vector index and Redis key-value store, each with an in-memory fallback
- generation: Cited answers from a language model with an extractive fallback
- orchestrator: The query pipeline, sessions and ingestion entry points
- models: Core data models (Article, QueryResponse, SessionRecord, etc.)
"""

__version__ = "0.1.0"

from news_rag.config import Settings, get_settings
from news_rag.errors import (
    AuthError,
    DegradedModeNotice,
    DimensionMismatchError,
    NewsRagError,
    ProviderError,
    TransientProviderError,
    ValidationError,
)
from news_rag.models import (
    Article,
    ChatMessage,
    QueryOptions,
    QueryResponse,
    SessionRecord,
    Source,
)
from news_rag.orchestrator import RAGOrchestrator

__all__ = [
    "__version__",
    # Models
    "Article",
    "ChatMessage",
    "QueryOptions",
    "QueryResponse",
    "SessionRecord",
    "Source",
    # Errors
    "NewsRagError",
    "ProviderError",
    "TransientProviderError",
    "AuthError",
    "ValidationError",
    "DimensionMismatchError",
    "DegradedModeNotice",
    # Service
    "RAGOrchestrator",
    "Settings",
    "get_settings",
]
