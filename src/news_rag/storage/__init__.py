"""
Storage for news-rag.

- vector: Qdrant vector index with an in-memory fallback
- kv: Redis sessions, chat history and query cache with an in-memory fallback
"""

from news_rag.storage.kv import KeyValueStore
from news_rag.storage.protocols import KeyValueBackend, VectorBackend
from news_rag.storage.vector import VectorIndex

__all__ = [
    "KeyValueStore",
    "VectorIndex",
    "KeyValueBackend",
    "VectorBackend",
]
