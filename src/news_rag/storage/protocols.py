"""
Storage protocol definitions for vectors, sessions, chat history and caching.

These protocols define the interface that storage backends must provide.
Each has a networked implementation (Qdrant, Redis) and an in-process one
that the facades switch to when the network is unavailable.
"""

from typing import List, Optional, Protocol

from typing_extensions import runtime_checkable

from news_rag.models import SearchFilter, VectorRecord, VectorSearchResult


class VectorBackend(Protocol):
    """
    Protocol for vector storage backends.

    Implementations store (id, vector, payload) records and answer
    nearest-neighbour queries by cosine similarity.
    """

    name: str

    async def initialize(self) -> None:
        """
        Prepare the backend (connect, create the collection if missing).

        Raises:
            Exception: If the backend cannot be reached
        """
        ...

    async def upsert(self, records: List[VectorRecord]) -> None:
        """
        Insert or overwrite records by id.

        Args:
            records: Records whose vectors already match the configured dimension
        """
        ...

    async def search(
        self,
        query_vector: List[float],
        top_k: int,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[VectorSearchResult]:
        """
        Find the records most similar to ``query_vector``.

        Args:
            query_vector: Query embedding
            top_k: Maximum number of results
            search_filter: Optional metadata predicate

        Returns:
            Results ordered by descending score
        """
        ...

    async def count(self) -> int:
        """Number of stored records."""
        ...

    async def info(self) -> dict:
        """Backend status: at least ``{"status": ..., "count": ...}``."""
        ...

    async def delete_all(self) -> None:
        """Remove every record, leaving the backend ready for new upserts."""
        ...


@runtime_checkable
class KeyValueBackend(Protocol):
    """
    Protocol for the session/history/cache store.

    Values are JSON strings or flat string hashes; the backend is responsible
    for expiry. Both the Redis and the in-process backends must behave
    identically for every operation below.
    """

    name: str

    async def set_hash(self, key: str, mapping: dict, ttl: int) -> None:
        """Replace the hash at ``key`` and (re)set its TTL."""
        ...

    async def get_hash(self, key: str) -> Optional[dict]:
        """
        Read a hash, migrating a legacy JSON string found under the same key.

        Returns:
            The hash fields, or None if the key is missing or expired
        """
        ...

    async def delete(self, key: str) -> int:
        """Delete a key. Returns the number of keys removed."""
        ...

    async def push_bounded(self, key: str, value: str, max_length: int, ttl: int) -> int:
        """
        Append to the list at ``key``, trim it to the newest ``max_length``
        items and reset its TTL.

        Returns:
            Length of the list after trimming
        """
        ...

    async def list_tail(self, key: str, limit: int) -> List[str]:
        """The newest ``limit`` items of a list, oldest first."""
        ...

    async def list_length(self, key: str) -> int:
        ...

    async def set_value(self, key: str, value: str, ttl: int) -> None:
        """Store a string with a fixed TTL."""
        ...

    async def get_value(self, key: str) -> Optional[str]:
        """Read a string, or None if missing or expired."""
        ...

    async def ping(self) -> bool:
        ...
