"""
RAG orchestrator.

Composes the embedding gateway, vector index, key-value store and generation
gateway into the query pipeline:

    START -> CACHE_CHECK -> (hit) RETURN
                         -> (miss) EMBED -> RETRIEVE -> FILTER -> HISTORY_FETCH
                                   -> GENERATE -> PERSIST -> RETURN

A failure at any stage produces an apologetic answer that is still recorded
in the session's history, so ``process_query`` never raises. The orchestrator
also owns session lifecycle and the ingestion entry points.
"""

import asyncio
import logging
import re
import secrets
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError as ModelValidationError

from news_rag.chunking import chunk_article
from news_rag.config import Settings
from news_rag.embeddings import EmbeddingGateway
from news_rag.errors import ProviderError, ValidationError
from news_rag.generation import GenerationGateway, is_safe_query, sanitize_response
from news_rag.generation.safety import REFUSAL_MESSAGE
from news_rag.models import (
    Article,
    BatchIngestionReport,
    CachedQueryResult,
    ChatMessage,
    HealthReport,
    IngestionReport,
    QueryOptions,
    QueryResponse,
    SearchFilter,
    SessionRecord,
    Source,
    VectorPayload,
    VectorSearchResult,
    utc_now,
    utc_now_iso,
)
from news_rag.results import Fallback, Ok, capture
from news_rag.storage.kv import KeyValueStore
from news_rag.storage.vector import VectorIndex
from news_rag.utils.dates import recent_cutoff
from news_rag.utils.hashing import content_id, query_cache_key

logger = logging.getLogger(__name__)

MAX_SOURCES = 5

RECENT_NEWS_PATTERN = re.compile(r"\b(today|recent|latest|current)", re.IGNORECASE)

_BASE36 = string.digits + string.ascii_lowercase


class PipelineStage(str, Enum):
    START = "start"
    CACHE_CHECK = "cache_check"
    EMBED = "embed"
    RETRIEVE = "retrieve"
    FILTER = "filter"
    HISTORY_FETCH = "history_fetch"
    GENERATE = "generate"
    PERSIST = "persist"
    RETURN = "return"
    FALLBACK_RESPONSE = "fallback_response"
    PERSIST_ERROR_TURN = "persist_error_turn"


@dataclass
class StreamingAnswer:
    """
    A streamed answer.

    ``fragments`` yields the answer text; once it is exhausted the complete
    answer is appended to the session's history.
    """

    fragments: AsyncIterator[str]
    sources: List[Source] = field(default_factory=list)
    context_used: int = 0
    session_id: str = ""


def to_base36(number: int) -> str:
    digits = []
    while True:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
        if number == 0:
            return "".join(reversed(digits))


def generate_session_id() -> str:
    """``session_<base36 milliseconds>_<9 random base36 characters>``"""
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"session_{to_base36(millis)}_{suffix}"


class RAGOrchestrator:
    def __init__(
        self,
        embedding: EmbeddingGateway,
        vector_index: VectorIndex,
        kv_store: KeyValueStore,
        generation: GenerationGateway,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            embedding: Embedding gateway
            vector_index: Vector index facade
            kv_store: Sessions, chat history and query cache
            generation: Generation gateway
            settings: Retrieval, chunking and ingestion settings
            sleep: Used for ingestion throttling (tests pass a no-op)
        """
        self.embedding = embedding
        self.vector_index = vector_index
        self.kv_store = kv_store
        self.generation = generation
        self.settings = settings or Settings()
        self._sleep = sleep

        self.is_initialized = False
        self.init_results: Dict[str, bool] = {}
        self._started_at = time.monotonic()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RAGOrchestrator":
        """Build every component from settings (default: environment)."""
        if settings is None:
            from news_rag.config import get_settings

            settings = get_settings()

        return cls(
            embedding=EmbeddingGateway.from_settings(settings),
            vector_index=VectorIndex.from_settings(settings),
            kv_store=KeyValueStore.from_settings(settings),
            generation=GenerationGateway.from_settings(settings),
            settings=settings,
        )

    async def initialize(self) -> Dict[str, bool]:
        """
        Initialize every dependency independently.

        Each component applies its own time budget (KV connect, generation
        probe, vector store, embedding self-test). A failure leaves that
        component in fallback mode; the orchestrator is always servable
        afterwards.

        Returns:
            Component name -> True if it runs on its primary backend
        """
        logger.info("Initializing RAG orchestrator...")

        steps = [
            ("kv", self._connect_kv()),
            ("generation", self.generation.initialize()),
            ("vector_store", self.vector_index.initialize()),
            (
                "embedding",
                self.embedding.self_test(timeout=self.settings.embedding_self_test_timeout),
            ),
        ]
        for name, step in steps:
            result = await capture(step, provider=name)
            healthy = isinstance(result, Ok) and bool(result.value)
            self.init_results[name] = healthy
            if healthy:
                logger.info(f"{name} ready")
            else:
                reason = result.reason if isinstance(result, Fallback) else "fallback mode"
                logger.warning(f"{name} running in degraded mode: {reason}")

        self.is_initialized = True
        degraded = [name for name, healthy in self.init_results.items() if not healthy]
        if degraded:
            logger.warning(f"RAG orchestrator initialized with degraded components: {degraded}")
        else:
            logger.info("RAG orchestrator initialized")
        return dict(self.init_results)

    async def _connect_kv(self) -> bool:
        await self.kv_store.connect()
        return self.kv_store.mode == "connected"

    def default_options(self) -> QueryOptions:
        return QueryOptions(
            max_results=self.settings.top_k_results,
            min_similarity=self.settings.min_similarity,
            history_limit=self.settings.conversation_history_turns,
        )

    # Query pipeline

    @staticmethod
    def is_recent_news_query(query: str) -> bool:
        """True when the query asks for today's, recent, latest or current news."""
        return RECENT_NEWS_PATTERN.search(query) is not None

    @staticmethod
    def extract_sources(results: Sequence[VectorSearchResult]) -> List[Source]:
        """Distinct article URLs in descending relevance, at most five."""
        sources = []
        seen_urls = set()

        for result in sorted(results, key=lambda item: item.score, reverse=True):
            payload = result.payload
            if not payload.article_url or payload.article_url in seen_urls:
                continue
            sources.append(
                Source(
                    title=payload.article_title or "Untitled Article",
                    url=payload.article_url,
                    source=payload.source or "Unknown Source",
                    publish_date=payload.publish_date,
                    relevance_score=result.score,
                )
            )
            seen_urls.add(payload.article_url)
            if len(sources) == MAX_SOURCES:
                break

        return sources

    async def _retrieve(
        self, query: str, query_vector: List[float], limit: int
    ) -> List[VectorSearchResult]:
        if self.is_recent_news_query(query):
            search_filter = SearchFilter(
                publish_date_gte=recent_cutoff(self.settings.recent_window_days)
            )
            try:
                results = await self.vector_index.search(query_vector, limit, search_filter)
                logger.info(f"Found {len(results)} recent articles")
                return results
            except ProviderError as e:
                logger.warning(f"Date-filtered search failed, using general search: {e}")

        try:
            return await self.vector_index.search(query_vector, limit)
        except ProviderError as e:
            logger.error(f"Vector search failed, answering without context: {e}")
            return []

    def _cached_response(self, cached: CachedQueryResult, session_id: str) -> QueryResponse:
        data = {
            **cached.result,
            "session_id": session_id,
            "cached": True,
            "timestamp": utc_now_iso(),
        }
        return QueryResponse.model_validate(data)

    async def process_query(
        self,
        query: str,
        session_id: str,
        options: Optional[QueryOptions] = None,
    ) -> QueryResponse:
        """
        Answer a question. Never raises.

        Args:
            query: The user's question
            session_id: Session whose history is used and extended
            options: Cache, history and retrieval options

        Returns:
            QueryResponse; ``fallback`` is set when the extractive answer was
            used and ``error`` when the pipeline failed
        """
        options = options or self.default_options()
        stage = PipelineStage.START
        logger.info(f"Processing query for session {session_id}: '{query[:80]}'")

        try:
            if self.settings.enforce_query_safety and not is_safe_query(query):
                return await self._refuse(query, session_id)

            cache_key = query_cache_key(query)

            stage = PipelineStage.CACHE_CHECK
            if options.use_cache:
                cached = await self.kv_store.get_cached_result(cache_key)
                if cached is not None:
                    logger.info("Returning cached result")
                    return self._cached_response(cached, session_id)

            stage = PipelineStage.EMBED
            query_vector = await self.embedding.embed(query)

            stage = PipelineStage.RETRIEVE
            candidates = await self._retrieve(query, query_vector, options.max_results * 2)

            stage = PipelineStage.FILTER
            context = [
                result for result in candidates if result.score >= options.min_similarity
            ][: options.max_results]
            logger.info(f"Found {len(context)} relevant documents")

            stage = PipelineStage.HISTORY_FETCH
            history: List[ChatMessage] = []
            if options.include_history:
                history = await self.kv_store.get_messages(session_id, options.history_limit)

            stage = PipelineStage.GENERATE
            if context:
                generation = await self.generation.generate(query, context, history)
            else:
                generation = self.generation.fallback(query, context)

            text = generation.text
            if self.settings.enforce_query_safety:
                text = sanitize_response(text)

            response = QueryResponse(
                query=query,
                response=text,
                model=generation.model,
                sources=self.extract_sources(context),
                context_used=len(context),
                session_id=session_id,
                tokens_used=generation.token_estimate,
                fallback=generation.fallback,
            )

            stage = PipelineStage.PERSIST
            if options.use_cache:
                await self.kv_store.cache_result(
                    cache_key,
                    CachedQueryResult(
                        query=query,
                        result=response.model_dump(
                            mode="json", exclude={"session_id", "timestamp", "cached"}
                        ),
                        sources=response.sources,
                    ),
                )
            await self._record_exchange(session_id, query, response)

            stage = PipelineStage.RETURN
            logger.info(f"Query processed (model={response.model}, context={response.context_used})")
            return response

        except Exception as e:
            logger.error(f"Query failed at stage {stage.value}: {e}")
            return await self._error_response(query, session_id, e)

    async def _record_exchange(self, session_id: str, query: str, response: QueryResponse) -> None:
        await self.kv_store.append_message(session_id, ChatMessage(role="user", content=query))
        await self.kv_store.append_message(
            session_id,
            ChatMessage(
                role="assistant",
                content=response.response,
                sources=response.sources,
                context_used=response.context_used,
                model=response.model,
                error=True if response.error else None,
            ),
        )
        await self._touch_session(session_id, added_messages=2)

    async def _refuse(self, query: str, session_id: str) -> QueryResponse:
        response = QueryResponse(
            query=query,
            response=REFUSAL_MESSAGE,
            model="safety-filter",
            session_id=session_id,
            fallback=True,
        )
        await self._record_exchange(session_id, query, response)
        return response

    async def _error_response(self, query: str, session_id: str, error: Exception) -> QueryResponse:
        stage = PipelineStage.FALLBACK_RESPONSE
        response = QueryResponse(
            query=query,
            response=(
                f'I apologize, but I encountered an error while processing your question: "{query}". '
                "Please try again or rephrase your question."
            ),
            model="fallback",
            session_id=session_id,
            fallback=True,
            error=str(error) or type(error).__name__,
        )

        stage = PipelineStage.PERSIST_ERROR_TURN
        try:
            await self._record_exchange(session_id, query, response)
        except Exception as history_error:
            logger.error(f"Failed at stage {stage.value} for session {session_id}: {history_error}")

        return response

    async def generate_streaming_response(
        self,
        query: str,
        session_id: str,
        options: Optional[QueryOptions] = None,
    ) -> StreamingAnswer:
        """
        Retrieve context and start a streamed answer.

        The user's turn is recorded immediately; the assistant's turn is
        recorded when the returned fragments have been fully consumed.
        """
        options = options or self.default_options()

        query_vector = await self.embedding.embed(query)
        candidates = await self._retrieve(query, query_vector, options.max_results)
        context = [result for result in candidates if result.score >= options.min_similarity]

        history: List[ChatMessage] = []
        if options.include_history:
            history = await self.kv_store.get_messages(session_id, options.history_limit)

        await self.kv_store.append_message(session_id, ChatMessage(role="user", content=query))
        await self._touch_session(session_id, added_messages=1)

        sources = self.extract_sources(context)

        async def fragments() -> AsyncIterator[str]:
            parts = []
            async for fragment in self.generation.generate_streaming(query, context, history):
                parts.append(fragment)
                yield fragment
            await self.add_message_to_history(
                session_id,
                ChatMessage(
                    role="assistant",
                    content="".join(parts),
                    sources=sources,
                    context_used=len(context),
                    model=self.generation.model_name
                    if self.generation.mode == "model"
                    else "fallback",
                ),
            )

        return StreamingAnswer(
            fragments=fragments(),
            sources=sources,
            context_used=len(context),
            session_id=session_id,
        )

    # Sessions

    async def create_session(self, metadata: Optional[Dict[str, Any]] = None) -> SessionRecord:
        session = SessionRecord(id=generate_session_id(), metadata=metadata or {})
        await self.kv_store.set_session(session)
        logger.info(f"Created new session: {session.id}")
        return session

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return await self.kv_store.get_session(session_id)

    async def _touch_session(self, session_id: str, added_messages: int = 0) -> SessionRecord:
        session = await self.kv_store.get_session(session_id) or SessionRecord(id=session_id)
        session = session.model_copy(
            update={
                "last_activity": utc_now(),
                "message_count": session.message_count + added_messages,
            }
        )
        await self.kv_store.set_session(session, ttl=self.settings.session_ttl)
        return session

    async def update_session_activity(self, session_id: str) -> Optional[SessionRecord]:
        """
        Mark the session active now, creating it if it does not exist.

        Resets the session's sliding TTL.
        """
        if not session_id:
            return None
        return await self._touch_session(session_id)

    async def add_message_to_history(self, session_id: str, message: ChatMessage) -> int:
        """
        Append a message to a session's chat log and refresh the session.

        Returns:
            Length of the chat log after the append

        Raises:
            ValidationError: If the session id or message is missing
        """
        if not session_id or message is None:
            raise ValidationError("Session ID and message are required")

        await self._touch_session(session_id, added_messages=1)
        return await self.kv_store.append_message(session_id, message)

    async def get_chat_history(self, session_id: str, limit: int = 50) -> List[ChatMessage]:
        """The newest ``limit`` messages of a session, oldest first."""
        if not session_id:
            logger.warning("Chat history requested without a session ID")
            return []
        return await self.kv_store.get_messages(session_id, limit)

    async def clear_chat_history(self, session_id: str) -> bool:
        """Delete a session's chat log; the session itself stays alive."""
        if not session_id:
            raise ValidationError("Session ID is required")

        await self.kv_store.clear_messages(session_id)
        session = await self.kv_store.get_session(session_id) or SessionRecord(id=session_id)
        session = session.model_copy(update={"message_count": 0, "last_activity": utc_now()})
        await self.kv_store.set_session(session, ttl=self.settings.session_ttl)

        logger.info(f"Cleared chat history for session: {session_id}")
        return True

    # Health and stats

    def degraded_components(self) -> List[dict]:
        notices = [
            self.embedding.notice,
            self.vector_index.notice,
            self.kv_store.notice,
            self.generation.notice,
        ]
        return [notice.to_dict() for notice in notices if notice is not None]

    async def health_check(self) -> HealthReport:
        names = ["embedding", "vector_store", "generation", "kv"]
        try:
            results = await asyncio.gather(
                self.embedding.health_check(),
                self.vector_index.health_check(),
                self.generation.health_check(),
                self.kv_store.health_check(),
                return_exceptions=True,
            )
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return HealthReport(status="error", error=str(e))

        components = {}
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                components[name] = {"status": "error", "error": str(result)}
            else:
                components[name] = result

        all_ok = all(component.get("status") != "error" for component in components.values())
        return HealthReport(status="healthy" if all_ok else "degraded", components=components)

    async def get_stats(self) -> dict:
        try:
            vector_count = await self.vector_index.count()
            info = await self.vector_index.get_info()
        except Exception as e:
            logger.error(f"Error getting stats: {e}")
            return {"error": str(e), "timestamp": utc_now_iso()}

        return {
            "vector_count": vector_count,
            "collection_status": info.get("status"),
            "vector_backend": self.vector_index.backend,
            "kv_mode": self.kv_store.mode,
            "embedding_mode": self.embedding.mode,
            "generation_mode": self.generation.mode,
            "is_initialized": self.is_initialized,
            "uptime": round(time.monotonic() - self._started_at, 3),
            "degraded_components": self.degraded_components(),
            "metrics": {**self.embedding.get_metrics(), **self.generation.get_metrics()},
            "timestamp": utc_now_iso(),
        }

    # Ingestion

    async def ingest_article(self, article: Union[Article, dict]) -> IngestionReport:
        """
        Chunk, embed and store one article.

        Chunks whose embedding or upsert fails or times out are skipped and
        counted; re-ingesting identical text overwrites the same vectors.

        Raises:
            ValidationError: If the article is malformed or a vector has the
                wrong dimension
        """
        if not isinstance(article, Article):
            try:
                article = Article.model_validate(article)
            except ModelValidationError as e:
                raise ValidationError(f"Invalid article: {e}") from e

        chunks = list(chunk_article(article, self.settings.chunk_size, self.settings.chunk_overlap))
        report = IngestionReport(article_id=article.id, chunks_created=len(chunks))

        for chunk in chunks:
            payload = VectorPayload(
                text=chunk.text,
                article_id=article.id,
                article_title=article.title or "Untitled Article",
                article_url=article.url,
                source=article.source,
                publish_date=article.publish_date,
                chunk_index=chunk.sequence_index,
                total_chunks=len(chunks),
                category=article.category,
            )

            embedded = await capture(
                self.embedding.embed(chunk.text),
                provider="embedding",
                timeout=self.settings.ingest_chunk_embed_timeout,
            )
            if isinstance(embedded, Fallback):
                logger.warning(f"Skipping chunk {chunk.id}: embedding failed ({embedded.reason})")
                report.chunks_failed += 1
                continue

            stored = await capture(
                self.vector_index.upsert(content_id(chunk.text), embedded.value, payload),
                provider="vector_store",
                timeout=self.settings.ingest_upsert_timeout,
            )
            if isinstance(stored, Fallback):
                logger.warning(f"Skipping chunk {chunk.id}: upsert failed ({stored.reason})")
                report.chunks_failed += 1
                continue

            report.chunks_upserted += 1

        logger.info(
            f"Ingested article {article.id}: {report.chunks_upserted}/{report.chunks_created} chunks stored"
        )
        return report

    async def ingest_batch(self, articles: Sequence[Union[Article, dict]]) -> BatchIngestionReport:
        """
        Ingest articles in small batches with delays between articles and
        between batches, to stay under embedding rate limits.

        Raises:
            ValidationError: From the first malformed article
        """
        started = time.monotonic()
        batch_report = BatchIngestionReport()
        batch_size = self.settings.ingest_batch_size

        for batch_start in range(0, len(articles), batch_size):
            batch = articles[batch_start : batch_start + batch_size]
            logger.info(
                f"Processing batch {batch_start // batch_size + 1} "
                f"({batch_start + 1}-{batch_start + len(batch)} of {len(articles)})"
            )

            for i, article in enumerate(batch):
                report = await self.ingest_article(article)
                batch_report.reports.append(report)
                batch_report.chunks_upserted += report.chunks_upserted
                batch_report.chunks_failed += report.chunks_failed
                if report.chunks_created > 0 and report.chunks_upserted == 0:
                    batch_report.articles_failed += 1
                else:
                    batch_report.articles_processed += 1

                if i < len(batch) - 1 and self.settings.ingest_item_delay > 0:
                    await self._sleep(self.settings.ingest_item_delay)

            if batch_start + batch_size < len(articles) and self.settings.ingest_batch_delay > 0:
                await self._sleep(self.settings.ingest_batch_delay)

        batch_report.vector_count = await self.vector_index.count()
        batch_report.elapsed_seconds = round(time.monotonic() - started, 3)

        logger.info(
            f"Ingestion complete: {batch_report.articles_processed} articles, "
            f"{batch_report.chunks_upserted} chunks stored, {batch_report.chunks_failed} failed, "
            f"{batch_report.vector_count} vectors total"
        )
        return batch_report

    async def close(self) -> None:
        await self.kv_store.close()
