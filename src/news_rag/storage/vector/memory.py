"""
In-memory vector storage implementation.

Brute-force exact cosine similarity over every stored vector. Used when the
Qdrant service cannot be reached at startup, and in tests. Data is lost on
restart.
"""

import logging
from typing import Dict, List, Optional

from news_rag.errors import ValidationError
from news_rag.models import SearchFilter, VectorPayload, VectorRecord, VectorSearchResult
from news_rag.utils.dates import parse_datetime, to_utc
from news_rag.utils.vectors import cosine_similarity

logger = logging.getLogger(__name__)


def matches_filter(payload: VectorPayload, search_filter: Optional[SearchFilter]) -> bool:
    """Check if a payload satisfies the given filter."""
    if search_filter is None:
        return True

    if search_filter.publish_date_gte is not None:
        published = parse_datetime(payload.publish_date)
        if published is None or published < to_utc(search_filter.publish_date_gte):
            return False

    if search_filter.source is not None and payload.source != search_filter.source:
        return False

    if search_filter.category is not None and payload.category != search_filter.category:
        return False

    return True


class InMemoryVectorIndex:
    """
    In-memory implementation of the VectorBackend protocol.

    Stores ``{id -> {vector, payload}}``.
    """

    name = "in-memory"

    def __init__(self):
        self._vectors: Dict[str, Dict] = {}  # id -> {vector, payload}

        logger.info("InMemoryVectorIndex initialized")

    async def initialize(self) -> None:
        return None

    async def upsert(self, records: List[VectorRecord]) -> None:
        for record in records:
            self._vectors[record.id] = {"vector": record.vector, "payload": record.payload}
            logger.debug(f"Upserted vector {record.id}: '{record.payload.text[:50]}...'")

    async def search(
        self,
        query_vector: List[float],
        top_k: int,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[VectorSearchResult]:
        results = []

        for vector_id, data in self._vectors.items():
            payload = data["payload"]

            if not matches_filter(payload, search_filter):
                continue

            try:
                score = cosine_similarity(query_vector, data["vector"])
            except ValidationError:
                # Zero vectors have no direction to compare
                continue

            results.append(VectorSearchResult(id=vector_id, score=score, payload=payload))

        # Sort by score (highest first) and limit to top_k
        results.sort(key=lambda result: result.score, reverse=True)
        results = results[:top_k]

        logger.debug(f"{len(results)} results found (top_k={top_k}, filtered={search_filter is not None})")

        return results

    async def count(self) -> int:
        return len(self._vectors)

    async def info(self) -> dict:
        return {
            "status": "green",
            "count": len(self._vectors),
            "optimizer_status": "ok",
        }

    async def delete_all(self) -> None:
        count = len(self._vectors)
        self._vectors.clear()
        logger.info(f"Cleared all in-memory vectors ({count} total)")
