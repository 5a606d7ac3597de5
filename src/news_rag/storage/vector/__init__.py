from news_rag.storage.vector.index import VectorIndex
from news_rag.storage.vector.memory import InMemoryVectorIndex, matches_filter
from news_rag.storage.vector.qdrant import QdrantVectorIndex, build_qdrant_filter

__all__ = [
    "VectorIndex",
    "InMemoryVectorIndex",
    "QdrantVectorIndex",
    "matches_filter",
    "build_qdrant_filter",
]
