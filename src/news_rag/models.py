from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from news_rag.utils.dates import normalize_publish_date


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


class Article(BaseModel):
    """A news article handed to the ingestion entry points."""

    id: str
    title: str
    content: str
    url: str = ""
    source: str = "Unknown Source"
    publish_date: str = Field(default_factory=utc_now_iso)
    category: str = "General"

    @field_validator("publish_date", mode="before")
    @classmethod
    def _normalize_publish_date(cls, value: Any) -> str:
        return normalize_publish_date(value)


class Chunk(BaseModel):
    """A contiguous window of an article's text."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    sequence_index: int
    start: int
    end: int


class VectorPayload(BaseModel):
    """Metadata stored next to every vector."""

    text: str
    article_id: str
    article_title: str = "Untitled Article"
    article_url: str = ""
    source: str = "Unknown Source"
    publish_date: Optional[str] = None
    chunk_index: int = 0
    total_chunks: int = 1
    category: str = "General"


class VectorRecord(BaseModel):
    id: str
    vector: List[float]
    payload: VectorPayload


class VectorSearchResult(BaseModel):
    id: str
    score: float
    payload: VectorPayload

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)


class SearchFilter(BaseModel):
    """Metadata predicate applied to vector search candidates."""

    publish_date_gte: Optional[datetime] = None
    source: Optional[str] = None
    category: Optional[str] = None

    def is_empty(self) -> bool:
        return self.publish_date_gte is None and self.source is None and self.category is None


class Source(BaseModel):
    title: str
    url: str
    source: str
    publish_date: Optional[str] = None
    relevance_score: float


class ChatMessage(BaseModel):
    """One turn of a session's chat log."""

    role: Literal["user", "assistant"]
    content: str
    timestamp: str = Field(default_factory=utc_now_iso)
    sources: Optional[List[Source]] = None
    context_used: Optional[int] = None
    model: Optional[str] = None
    error: Optional[bool] = None


class SessionRecord(BaseModel):
    id: str
    created_at: datetime = Field(default_factory=utc_now)
    last_activity: datetime = Field(default_factory=utc_now)
    message_count: int = Field(default=0, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CachedQueryResult(BaseModel):
    query: str
    result: Dict[str, Any]
    timestamp: str = Field(default_factory=utc_now_iso)
    sources: List[Source] = Field(default_factory=list)


class QueryOptions(BaseModel):
    use_cache: bool = True
    include_history: bool = True
    max_results: int = Field(default=5, gt=0)
    min_similarity: float = 0.3
    history_limit: int = Field(default=10, ge=0)


class QueryResponse(BaseModel):
    query: str
    response: str
    model: str
    sources: List[Source] = Field(default_factory=list)
    context_used: int = 0
    session_id: str
    timestamp: str = Field(default_factory=utc_now_iso)
    cached: bool = False
    tokens_used: int = 0
    fallback: bool = False
    error: Optional[str] = None


class GenerationResult(BaseModel):
    text: str
    model: str
    token_estimate: int = 0
    fallback: bool = False


class IngestionReport(BaseModel):
    article_id: str
    chunks_created: int = 0
    chunks_upserted: int = 0
    chunks_failed: int = 0


class BatchIngestionReport(BaseModel):
    articles_processed: int = 0
    articles_failed: int = 0
    chunks_upserted: int = 0
    chunks_failed: int = 0
    vector_count: int = 0
    elapsed_seconds: float = 0.0
    reports: List[IngestionReport] = Field(default_factory=list)


class HealthReport(BaseModel):
    status: Literal["healthy", "degraded", "error"]
    timestamp: str = Field(default_factory=utc_now_iso)
    components: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
