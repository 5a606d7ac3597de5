"""Utility functions for dates, hashing and vector math."""

from news_rag.utils.dates import normalize_publish_date, parse_datetime, recent_cutoff
from news_rag.utils.hashing import content_id, normalize_text, query_cache_key
from news_rag.utils.vectors import cosine_similarity

__all__ = [
    "normalize_publish_date",
    "parse_datetime",
    "recent_cutoff",
    "content_id",
    "normalize_text",
    "query_cache_key",
    "cosine_similarity",
]
