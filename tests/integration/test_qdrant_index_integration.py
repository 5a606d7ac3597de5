"""Integration tests for the Qdrant vector backend."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from news_rag.models import SearchFilter, VectorPayload, VectorRecord
from news_rag.utils.hashing import content_id


def make_index():
    from news_rag.storage.vector import QdrantVectorIndex

    return QdrantVectorIndex(
        url="http://localhost:6333",
        collection_name=f"test_collection_{uuid4().hex[:8]}",
        dimension=4,
    )


def record(text: str, vector, publish_date: str) -> VectorRecord:
    return VectorRecord(
        id=content_id(text),
        vector=vector,
        payload=VectorPayload(text=text, article_id=text, publish_date=publish_date),
    )


@pytest.mark.integration
@pytest.mark.asyncio
async def test_qdrant_upsert_search_and_date_filter(skip_if_no_qdrant):
    """Test upserting points and searching with and without the recency filter."""
    pytest.importorskip("qdrant_client")

    index = make_index()
    await index.initialize()

    try:
        now = datetime.now(timezone.utc)
        await index.upsert(
            [
                record("recent rates story", [1.0, 0.0, 0.0, 0.0], now.isoformat()),
                record("old rates story", [0.9, 0.1, 0.0, 0.0], (now - timedelta(days=30)).isoformat()),
            ]
        )

        results = await index.search([1.0, 0.0, 0.0, 0.0], top_k=5)
        assert [r.payload.text for r in results] == ["recent rates story", "old rates story"]

        recent = await index.search(
            [1.0, 0.0, 0.0, 0.0],
            top_k=5,
            search_filter=SearchFilter(publish_date_gte=now - timedelta(days=3)),
        )
        assert [r.payload.text for r in recent] == ["recent rates story"]

        # Same text -> same id -> overwrite
        await index.upsert([record("recent rates story", [1.0, 0.0, 0.0, 0.0], now.isoformat())])
        assert await index.count() == 2

    finally:
        # Cleanup: delete collection
        await index.client.delete_collection(index.collection_name)
