"""Article chunking for ingestion."""

from news_rag.chunking.chunker import (
    ChunkSequence,
    chunk_article,
    compose_article_text,
    iter_chunks,
)

__all__ = [
    "ChunkSequence",
    "chunk_article",
    "compose_article_text",
    "iter_chunks",
]
