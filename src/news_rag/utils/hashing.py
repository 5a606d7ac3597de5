"""Stable identifiers for chunks, vectors and cached queries."""

import hashlib
import re
import uuid

_WHITESPACE = re.compile(r"\s+")

# Fixed namespace so ids are identical across processes and machines
CHUNK_NAMESPACE = uuid.UUID("6f1c2e0a-8d4b-5b7e-9a55-3c1d2f8e7a10")


def normalize_text(text: str) -> str:
    """Collapse whitespace, trim and lower-case text for hashing."""
    return _WHITESPACE.sub(" ", text).strip().lower()


def content_id(text: str) -> str:
    """
    Deterministic vector id for a piece of text.

    Two chunks whose normalized text is identical get the same id, so
    re-ingesting an article overwrites its vectors instead of duplicating them.
    A UUID string is a valid Qdrant point id.
    """
    return str(uuid.uuid5(CHUNK_NAMESPACE, normalize_text(text)))


def query_cache_key(query: str) -> str:
    """Cache key for a query: SHA-256 over the normalized query text."""
    digest = hashlib.sha256(normalize_text(query).encode("utf-8")).hexdigest()
    return f"query:{digest}"
