"""
Vector index facade.

Validates dimensions, owns the choice between the Qdrant backend and the
in-memory fallback, and converts backend failures into provider errors.
The backend is chosen once in ``initialize()``: if Qdrant cannot be reached
within the init timeout, the in-memory index serves for the rest of the
process.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from news_rag.config import Settings
from news_rag.errors import (
    DegradedModeNotice,
    DimensionMismatchError,
    ValidationError,
    classify_provider_error,
)
from news_rag.models import SearchFilter, VectorPayload, VectorRecord, VectorSearchResult
from news_rag.storage.protocols import VectorBackend
from news_rag.storage.vector.memory import InMemoryVectorIndex

logger = logging.getLogger(__name__)


class VectorIndex:
    def __init__(
        self,
        dimension: int = 768,
        backend_factory: Optional[Callable[[], VectorBackend]] = None,
        init_timeout: float = 20.0,
    ):
        """
        Args:
            dimension: Required length of every stored and queried vector
            backend_factory: Builds the remote backend; None means in-memory only
            init_timeout: Seconds allowed for the remote backend to initialize
        """
        self.dimension = dimension
        self.backend_factory = backend_factory
        self.init_timeout = init_timeout
        self._backend: Optional[VectorBackend] = None
        self.notice: Optional[DegradedModeNotice] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "VectorIndex":
        def build_qdrant() -> VectorBackend:
            from news_rag.storage.vector.qdrant import QdrantVectorIndex

            return QdrantVectorIndex(
                url=settings.qdrant_url,
                api_key=settings.qdrant_api_key_value,
                collection_name=settings.collection_name,
                dimension=settings.vector_dimension,
                hnsw_m=settings.hnsw_m,
                hnsw_ef_construct=settings.hnsw_ef_construct,
                hnsw_full_scan_threshold=settings.hnsw_full_scan_threshold,
            )

        return cls(
            dimension=settings.vector_dimension,
            backend_factory=build_qdrant,
            init_timeout=settings.vector_init_timeout,
        )

    @property
    def initialized(self) -> bool:
        return self._backend is not None

    @property
    def backend(self) -> str:
        """Name of the active backend ("qdrant" or "in-memory")."""
        return self._backend.name if self._backend is not None else "uninitialized"

    async def initialize(self) -> bool:
        """
        Choose the backend.

        Returns:
            True if the remote backend is active, False if running in-memory
        """
        if self._backend is not None:
            return self.notice is None

        if self.backend_factory is None:
            self._use_memory("no remote vector store configured")
            return False

        try:
            remote = self.backend_factory()
            await asyncio.wait_for(remote.initialize(), timeout=self.init_timeout)
        except Exception as e:
            error = classify_provider_error(e, provider="vector_store")
            self._use_memory(f"remote vector store unavailable: {error}")
            return False

        self._backend = remote
        logger.info(f"Vector index initialized with {remote.name} backend")
        return True

    def _use_memory(self, reason: str) -> None:
        self.notice = DegradedModeNotice("vector_store", reason).log()
        self._backend = InMemoryVectorIndex()

    async def _require_backend(self) -> VectorBackend:
        if self._backend is None:
            await self.initialize()
        return self._backend

    def _check_dimension(self, vector: List[float]) -> None:
        if len(vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(vector))

    async def upsert(self, id: str, vector: List[float], payload: VectorPayload) -> None:
        await self.upsert_batch([VectorRecord(id=id, vector=vector, payload=payload)])

    async def upsert_batch(self, records: List[VectorRecord]) -> int:
        """
        Insert or overwrite records by id.

        Returns:
            Number of records written

        Raises:
            DimensionMismatchError: If any vector has the wrong length (nothing is written)
            TransientProviderError: If the backend rejects the write
        """
        if not records:
            return 0

        for record in records:
            self._check_dimension(record.vector)

        backend = await self._require_backend()
        try:
            await backend.upsert(records)
        except ValidationError:
            raise
        except Exception as e:
            raise classify_provider_error(e, provider="vector_store") from e

        logger.debug(f"Upserted {len(records)} vectors ({backend.name})")
        return len(records)

    async def search(
        self,
        query_vector: List[float],
        top_k: int = 5,
        search_filter: Optional[SearchFilter] = None,
    ) -> List[VectorSearchResult]:
        """
        Find the ``top_k`` most similar stored vectors, highest score first.

        Raises:
            DimensionMismatchError: If the query vector has the wrong length
            TransientProviderError: If the backend query fails
        """
        self._check_dimension(query_vector)
        if search_filter is not None and search_filter.is_empty():
            search_filter = None

        backend = await self._require_backend()
        try:
            results = await backend.search(query_vector, top_k, search_filter)
        except ValidationError:
            raise
        except Exception as e:
            raise classify_provider_error(e, provider="vector_store") from e

        logger.debug(
            f"Vector search returned {len(results)} results "
            f"(top_k={top_k}, filter={search_filter is not None})"
        )
        return results

    async def count(self) -> int:
        backend = await self._require_backend()
        try:
            return await backend.count()
        except Exception as e:
            logger.error(f"Failed to count vectors: {e}")
            return 0

    async def get_info(self) -> dict:
        backend = await self._require_backend()
        try:
            info = await backend.info()
        except Exception as e:
            logger.error(f"Failed to get vector store info: {e}")
            return {"status": "error", "count": 0, "backend": backend.name, "error": str(e)}
        return {**info, "backend": backend.name}

    async def delete_all(self) -> None:
        backend = await self._require_backend()
        await backend.delete_all()
        logger.info(f"Deleted all vectors ({backend.name})")

    async def health_check(self) -> dict:
        if self._backend is None:
            return {"status": "uninitialized", "backend": self.backend, "count": 0}

        info = await self.get_info()
        if info.get("status") == "error":
            status = "error"
        elif self.notice is not None:
            status = "fallback"
        else:
            status = "healthy"
        return {"status": status, "backend": self.backend, "count": info.get("count", 0)}
