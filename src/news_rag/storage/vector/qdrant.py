import logging
from typing import List, Optional

from pydantic import ValidationError as PayloadValidationError
from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    DatetimeRange,
    Distance,
    FieldCondition,
    Filter,
    HnswConfigDiff,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from news_rag.models import SearchFilter, VectorPayload, VectorRecord, VectorSearchResult

logger = logging.getLogger(__name__)


def build_qdrant_filter(search_filter: Optional[SearchFilter]) -> Optional[Filter]:
    """Translate a SearchFilter into Qdrant conditions (all must match)."""
    if search_filter is None:
        return None

    conditions = []

    if search_filter.publish_date_gte is not None:
        conditions.append(
            FieldCondition(
                key="publish_date", range=DatetimeRange(gte=search_filter.publish_date_gte)
            )
        )

    if search_filter.source is not None:
        conditions.append(FieldCondition(key="source", match=MatchValue(value=search_filter.source)))

    if search_filter.category is not None:
        conditions.append(
            FieldCondition(key="category", match=MatchValue(value=search_filter.category))
        )

    return Filter(must=conditions) if conditions else None


class QdrantVectorIndex:
    name = "qdrant"

    def __init__(
        self,
        url: str = "http://localhost:6333",
        api_key: Optional[str] = None,
        collection_name: str = "news_articles",
        dimension: int = 768,
        hnsw_m: int = 16,
        hnsw_ef_construct: int = 100,
        hnsw_full_scan_threshold: int = 10000,
        timeout: int = 30,
        client: Optional[AsyncQdrantClient] = None,
    ):
        """
        Initialize the Qdrant vector index.

        Args:
            url: Qdrant URL (default: http://localhost:6333)
            api_key: Qdrant Cloud API key, if any
            collection_name: Collection name (default: news_articles)
            dimension: Vector size of the collection
            hnsw_m: HNSW graph degree
            hnsw_ef_construct: HNSW build-time candidate list size
            hnsw_full_scan_threshold: Below this many points Qdrant scans exactly
            timeout: Request timeout in seconds
            client: Pre-built client (tests)
        """
        self.client = client or AsyncQdrantClient(url=url, api_key=api_key, timeout=timeout)
        self.url = url
        self.collection_name = collection_name
        self.dimension = dimension
        self.hnsw_config = HnswConfigDiff(
            m=hnsw_m,
            ef_construct=hnsw_ef_construct,
            full_scan_threshold=hnsw_full_scan_threshold,
        )

    async def initialize(self) -> None:
        if await self.client.collection_exists(self.collection_name):
            logger.info(f"Using existing Qdrant collection '{self.collection_name}'")
            return
        await self._create_collection()

    async def _create_collection(self) -> None:
        await self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=self.dimension, distance=Distance.COSINE),
            hnsw_config=self.hnsw_config,
        )
        # Range filters on publish_date need a datetime index
        await self.client.create_payload_index(
            collection_name=self.collection_name,
            field_name="publish_date",
            field_schema=PayloadSchemaType.DATETIME,
        )
        logger.info(
            f"Created Qdrant collection '{self.collection_name}' (size={self.dimension}, cosine)"
        )

    async def upsert(self, records: List[VectorRecord]) -> None:
        points = [
            PointStruct(id=record.id, vector=record.vector, payload=record.payload.model_dump())
            for record in records
        ]
        await self.client.upsert(collection_name=self.collection_name, points=points, wait=True)
        logger.debug(f"Upserted {len(points)} points into '{self.collection_name}'")

    async def search(
        self,
        query_vector: List[float],
        top_k: int,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[VectorSearchResult]:
        response = await self.client.query_points(
            collection_name=self.collection_name,
            query=query_vector,
            limit=top_k,
            query_filter=build_qdrant_filter(search_filter),
            with_payload=True,
            with_vectors=False,
        )

        results = []
        logger.debug(f"{len(response.points)} hits found")
        for hit in response.points:
            try:
                results.append(
                    VectorSearchResult(
                        id=hit.id, score=hit.score, payload=VectorPayload(**(hit.payload or {}))
                    )
                )
            except PayloadValidationError as e:
                logger.warning(f"Skipping malformed search hit {hit.id}: {e}")

        return results

    async def count(self) -> int:
        result = await self.client.count(collection_name=self.collection_name, exact=True)
        return result.count

    async def info(self) -> dict:
        collection = await self.client.get_collection(self.collection_name)
        return {
            "status": getattr(collection.status, "value", str(collection.status)),
            "count": collection.points_count or 0,
            "optimizer_status": str(collection.optimizer_status),
        }

    async def delete_all(self) -> None:
        """Drop and recreate the collection (dangerous!)"""
        await self.client.delete_collection(self.collection_name)
        await self._create_collection()
        logger.info(f"Recreated Qdrant collection '{self.collection_name}'")
