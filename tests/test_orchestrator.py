"""
Tests for RAGOrchestrator.

Runs the full query pipeline over real in-memory backends, a keyword-based
fake embedder and a mocked language model.
"""

import asyncio
import re
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from news_rag.config import Settings
from news_rag.embeddings import EmbeddingGateway
from news_rag.errors import TransientProviderError, ValidationError
from news_rag.generation import GenerationGateway
from news_rag.generation.safety import REFUSAL_MESSAGE
from news_rag.models import Article, ChatMessage, QueryOptions, VectorPayload, VectorSearchResult
from news_rag.orchestrator import RAGOrchestrator, generate_session_id, to_base36
from news_rag.storage.kv import KeyValueStore
from news_rag.storage.vector import VectorIndex

DIMENSION = 8
TOPICS = ["rates", "election", "football"]

MODEL_ANSWER = "According to Reuters, the central bank held interest rates steady."


def topic_vector(text: str):
    """One axis per topic keyword; text matching no topic points along the last axis."""
    lowered = text.lower()
    vector = [0.0] * DIMENSION
    for axis, topic in enumerate(TOPICS):
        if topic in lowered:
            vector[axis] = 1.0
    if not any(vector):
        vector[-1] = 1.0
    return vector


class MockLLMProvider:
    """Mock LLM provider for testing."""

    def __init__(self, response_content: str = MODEL_ANSWER):
        self.response_content = response_content
        self.chat = AsyncMock(return_value=Mock(content=response_content))


class APIStatusError(Exception):
    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


@pytest.fixture
def provider():
    return MockLLMProvider()


@pytest.fixture
def settings():
    return Settings(ingest_item_delay=0.5, ingest_batch_delay=3.0, ingest_batch_size=2)


@pytest.fixture
def sleep():
    return AsyncMock(return_value=None)


@pytest.fixture
def remote():
    """Remote embedding model that maps text to keyword axes."""
    remote = Mock()
    remote.dimension = DIMENSION
    remote.model_name = "keyword-test"
    remote.embed_documents = AsyncMock(
        side_effect=lambda texts, batch_size=10: [topic_vector(text) for text in texts]
    )
    return remote


def build_orchestrator(remote, generation, settings, sleep) -> RAGOrchestrator:
    return RAGOrchestrator(
        embedding=EmbeddingGateway(remote=remote, dimension=DIMENSION, batch_delay=0),
        vector_index=VectorIndex(dimension=DIMENSION),
        kv_store=KeyValueStore(),
        generation=generation,
        settings=settings,
        sleep=sleep,
    )


@pytest.fixture
def orchestrator(remote, provider, settings, sleep):
    """Orchestrator over in-memory storage with a keyword embedder."""
    return build_orchestrator(
        remote, GenerationGateway(provider=provider, model_name="test-model"), settings, sleep
    )


def rates_article(**overrides) -> Article:
    fields = {
        "id": "rates-1",
        "title": "Central bank holds rates",
        "content": "The central bank held interest rates at 5.25% on Thursday. Markets rose.",
        "url": "https://example.com/rates-1",
        "source": "Reuters",
        "category": "Business",
    }
    fields.update(overrides)
    return Article(**fields)


class TestQueryPipeline:
    """End-to-end query scenarios."""

    @pytest.mark.asyncio
    async def test_answer_with_context(self, orchestrator, provider):
        await orchestrator.ingest_article(rates_article())
        session = await orchestrator.create_session()

        response = await orchestrator.process_query("What happened to interest rates?", session.id)

        assert response.response == MODEL_ANSWER
        assert response.model == "test-model"
        assert response.fallback is False
        assert response.cached is False
        assert response.context_used == 1
        assert response.tokens_used > 0
        assert [s.url for s in response.sources] == ["https://example.com/rates-1"]
        provider.chat.assert_awaited_once()

        history = await orchestrator.get_chat_history(session.id)
        assert [m.role for m in history] == ["user", "assistant"]
        assert history[1].sources[0].source == "Reuters"
        assert (await orchestrator.get_session(session.id)).message_count == 2

    @pytest.mark.asyncio
    async def test_repeated_query_is_served_from_cache(self, orchestrator, provider, remote):
        await orchestrator.ingest_article(rates_article())

        first = await orchestrator.process_query("What happened to interest rates?", "s1")
        embed_calls = remote.embed_documents.await_count
        second = await orchestrator.process_query("  what happened to INTEREST rates? ", "s2")

        assert second.cached is True
        assert second.response == first.response
        assert second.session_id == "s2"
        assert second.sources == first.sources
        provider.chat.assert_awaited_once()
        assert remote.embed_documents.await_count == embed_calls
        # Cache hits are not recorded in history
        assert await orchestrator.get_chat_history("s2") == []

    @pytest.mark.asyncio
    async def test_cache_can_be_bypassed(self, orchestrator, provider):
        await orchestrator.ingest_article(rates_article())
        options = QueryOptions(use_cache=False)

        await orchestrator.process_query("interest rates?", "s1", options)
        response = await orchestrator.process_query("interest rates?", "s1", options)

        assert response.cached is False
        assert provider.chat.await_count == 2

    @pytest.mark.asyncio
    async def test_no_relevant_context_answers_not_found(self, orchestrator, provider):
        await orchestrator.ingest_article(rates_article())

        response = await orchestrator.process_query("Who won the election?", "s1")

        assert response.fallback is True
        assert response.model == "fallback"
        assert response.context_used == 0
        assert response.sources == []
        assert response.response.startswith(
            'I couldn\'t find any information about "Who won the election?"'
        )
        provider.chat.assert_not_awaited()
        assert len(await orchestrator.get_chat_history("s1")) == 2

        again = await orchestrator.process_query("Who won the election?", "s1")
        assert again.cached is True
        assert again.response == response.response
        assert len(await orchestrator.get_chat_history("s1")) == 2

    @pytest.mark.asyncio
    async def test_model_failure_uses_extractive_answer(self, orchestrator, provider):
        provider.chat.side_effect = APIStatusError("Internal Server Error", 500)
        await orchestrator.ingest_article(rates_article())

        response = await orchestrator.process_query("interest rates?", "s1")

        assert response.fallback is True
        assert response.model == "fallback"
        assert response.error is None
        assert response.response.startswith("News Summary: interest rates?")
        assert "REUTERS" in response.response
        assert response.context_used == 1

        again = await orchestrator.process_query("interest rates?", "s1")
        assert again.cached is True
        assert again.response == response.response
        assert provider.chat.await_count == 1

    @pytest.mark.asyncio
    async def test_cache_works_without_language_model(self, remote, settings, sleep):
        generation = GenerationGateway(provider=None)
        generation.generate = AsyncMock(wraps=generation.generate)
        orchestrator = build_orchestrator(remote, generation, settings, sleep)
        await orchestrator.ingest_article(rates_article())

        first = await orchestrator.process_query("What happened to interest rates?", "s1")
        embed_calls = remote.embed_documents.await_count
        second = await orchestrator.process_query("What happened to interest rates?", "s1")

        assert first.cached is False
        assert first.fallback is True
        assert first.context_used == 1
        assert second.cached is True
        assert second.response == first.response
        assert second.fallback is True
        assert remote.embed_documents.await_count == embed_calls
        generation.generate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unresponsive_model_falls_back(self, remote, settings, sleep):
        async def hang(*args, **kwargs):
            await asyncio.sleep(3600)

        provider = MockLLMProvider()
        provider.chat.side_effect = hang
        generation = GenerationGateway(provider=provider, model_name="test-model", timeout=0.05)
        orchestrator = build_orchestrator(remote, generation, settings, sleep)
        await orchestrator.ingest_article(rates_article())

        response = await asyncio.wait_for(orchestrator.process_query("interest rates?", "s1"), 5)

        assert response.fallback is True
        assert response.model == "fallback"
        assert response.error is None
        assert response.response.startswith("News Summary: interest rates?")
        assert generation.mode == "model"

    @pytest.mark.asyncio
    async def test_pipeline_error_returns_apology_and_records_turn(self, orchestrator):
        orchestrator.kv_store.get_messages = AsyncMock(side_effect=RuntimeError("history broke"))

        response = await orchestrator.process_query("interest rates?", "s1")

        assert response.fallback is True
        assert response.error == "history broke"
        assert response.response == (
            'I apologize, but I encountered an error while processing your question: '
            '"interest rates?". Please try again or rephrase your question.'
        )
        session = await orchestrator.get_session("s1")
        assert session.message_count == 2

    @pytest.mark.asyncio
    async def test_error_turn_failure_is_swallowed(self, orchestrator):
        orchestrator.embedding.embed = AsyncMock(side_effect=RuntimeError("embed broke"))
        orchestrator.kv_store.append_message = AsyncMock(side_effect=RuntimeError("kv broke"))

        response = await orchestrator.process_query("interest rates?", "s1")

        assert response.error == "embed broke"

    @pytest.mark.asyncio
    async def test_history_is_passed_to_generation(self, orchestrator, provider):
        await orchestrator.ingest_article(rates_article())
        await orchestrator.add_message_to_history(
            "s1", ChatMessage(role="user", content="Tell me about the economy")
        )

        await orchestrator.process_query("interest rates?", "s1")

        user_message = provider.chat.call_args.args[0][1]
        assert "HUMAN: Tell me about the economy" in user_message.content

    @pytest.mark.asyncio
    async def test_history_can_be_excluded(self, orchestrator, provider):
        await orchestrator.ingest_article(rates_article())
        await orchestrator.add_message_to_history(
            "s1", ChatMessage(role="user", content="Tell me about the economy")
        )

        await orchestrator.process_query(
            "interest rates?", "s1", QueryOptions(include_history=False)
        )

        user_message = provider.chat.call_args.args[0][1]
        assert "CONVERSATION HISTORY" not in user_message.content

    @pytest.mark.asyncio
    async def test_min_similarity_and_max_results(self, orchestrator):
        for i in range(4):
            await orchestrator.ingest_article(
                rates_article(
                    id=f"rates-{i}",
                    content=f"Report {i}: interest rates were unchanged.",
                    url=f"https://example.com/rates-{i}",
                )
            )

        response = await orchestrator.process_query(
            "interest rates?", "s1", QueryOptions(max_results=2, use_cache=False)
        )
        assert response.context_used == 2

        strict = await orchestrator.process_query(
            "interest rates and election", "s1", QueryOptions(min_similarity=0.9, use_cache=False)
        )
        assert strict.context_used == 0


class TestRecencyFiltering:
    """Queries mentioning today/recent/latest/current search recent articles only."""

    @pytest.mark.asyncio
    async def test_old_articles_are_excluded(self, orchestrator, provider):
        await orchestrator.ingest_article(rates_article(publish_date="2020-01-01T00:00:00Z"))

        response = await orchestrator.process_query("latest interest rates news", "s1")

        assert response.context_used == 0
        assert response.fallback is True
        provider.chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recent_articles_are_found(self, orchestrator):
        await orchestrator.ingest_article(rates_article(publish_date="2020-01-01T00:00:00Z"))
        await orchestrator.ingest_article(
            rates_article(
                id="rates-new",
                content="Today the central bank cut interest rates.",
                url="https://example.com/rates-new",
            )
        )

        response = await orchestrator.process_query("latest interest rates news", "s1")

        assert response.context_used == 1
        assert response.sources[0].url == "https://example.com/rates-new"

    @pytest.mark.asyncio
    async def test_filtered_search_failure_retries_unfiltered(self, orchestrator):
        await orchestrator.ingest_article(rates_article(publish_date="2020-01-01T00:00:00Z"))
        real_search = orchestrator.vector_index.search

        async def search(query_vector, top_k=5, search_filter=None):
            if search_filter is not None:
                raise TransientProviderError("filter timed out", provider="vector_store")
            return await real_search(query_vector, top_k, search_filter)

        orchestrator.vector_index.search = search

        response = await orchestrator.process_query("latest interest rates news", "s1")

        assert response.context_used == 1

    @pytest.mark.asyncio
    async def test_search_failure_answers_without_context(self, orchestrator):
        orchestrator.vector_index.search = AsyncMock(
            side_effect=TransientProviderError("down", provider="vector_store")
        )

        response = await orchestrator.process_query("interest rates?", "s1")

        assert response.context_used == 0
        assert response.error is None

    @pytest.mark.parametrize(
        "query, expected",
        [
            ("What happened today?", True),
            ("Recent storms", True),
            ("LATEST scores", True),
            ("current events", True),
            ("What is accurate?", False),
            ("interest rates", False),
        ],
    )
    def test_is_recent_news_query(self, query, expected):
        assert RAGOrchestrator.is_recent_news_query(query) is expected


class TestStreaming:
    """Tests for generate_streaming_response."""

    @pytest.mark.asyncio
    async def test_stream_records_both_turns(self, orchestrator):
        await orchestrator.ingest_article(rates_article())

        answer = await orchestrator.generate_streaming_response("interest rates?", "s1")

        # The user's turn is recorded before streaming starts
        assert len(await orchestrator.get_chat_history("s1")) == 1
        assert answer.context_used == 1
        assert answer.sources[0].url == "https://example.com/rates-1"

        fragments = [fragment async for fragment in answer.fragments]

        assert "".join(fragments) == MODEL_ANSWER
        history = await orchestrator.get_chat_history("s1")
        assert [m.role for m in history] == ["user", "assistant"]
        assert history[1].content == MODEL_ANSWER
        assert history[1].model == "test-model"
        assert (await orchestrator.get_session("s1")).message_count == 2


class TestSessions:
    """Session lifecycle."""

    def test_generate_session_id_format(self):
        session_id = generate_session_id()

        assert re.fullmatch(r"session_[0-9a-z]+_[0-9a-z]{9}", session_id)
        assert generate_session_id() != session_id

    def test_to_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"

    @pytest.mark.asyncio
    async def test_create_and_get_session(self, orchestrator):
        session = await orchestrator.create_session({"client": "cli"})

        loaded = await orchestrator.get_session(session.id)

        assert loaded.id == session.id
        assert loaded.metadata == {"client": "cli"}
        assert loaded.message_count == 0

    @pytest.mark.asyncio
    async def test_update_session_activity_creates_missing_session(self, orchestrator):
        session = await orchestrator.update_session_activity("new-session")

        assert session.id == "new-session"
        assert (await orchestrator.get_session("new-session")) is not None
        assert await orchestrator.update_session_activity("") is None

    @pytest.mark.asyncio
    async def test_update_session_activity_moves_last_activity(self, orchestrator):
        session = await orchestrator.create_session()
        old = session.last_activity.replace(year=2020)
        await orchestrator.kv_store.set_session(session.model_copy(update={"last_activity": old}))

        updated = await orchestrator.update_session_activity(session.id)

        assert updated.last_activity > old

    @pytest.mark.asyncio
    async def test_add_message_to_history(self, orchestrator):
        length = await orchestrator.add_message_to_history(
            "s1", ChatMessage(role="user", content="hello")
        )

        assert length == 1
        assert (await orchestrator.get_session("s1")).message_count == 1

    @pytest.mark.asyncio
    async def test_add_message_requires_session_and_message(self, orchestrator):
        with pytest.raises(ValidationError):
            await orchestrator.add_message_to_history("", ChatMessage(role="user", content="hi"))
        with pytest.raises(ValidationError):
            await orchestrator.add_message_to_history("s1", None)

    @pytest.mark.asyncio
    async def test_get_chat_history_limit(self, orchestrator):
        for i in range(5):
            await orchestrator.add_message_to_history(
                "s1", ChatMessage(role="user", content=f"message {i}")
            )

        history = await orchestrator.get_chat_history("s1", limit=2)

        assert [m.content for m in history] == ["message 3", "message 4"]
        assert await orchestrator.get_chat_history("") == []

    @pytest.mark.asyncio
    async def test_clear_chat_history_keeps_session(self, orchestrator):
        session = await orchestrator.create_session()
        await orchestrator.add_message_to_history(
            session.id, ChatMessage(role="user", content="hello")
        )

        assert await orchestrator.clear_chat_history(session.id) is True

        assert await orchestrator.get_chat_history(session.id) == []
        cleared = await orchestrator.get_session(session.id)
        assert cleared is not None
        assert cleared.message_count == 0

    @pytest.mark.asyncio
    async def test_clear_chat_history_requires_session(self, orchestrator):
        with pytest.raises(ValidationError):
            await orchestrator.clear_chat_history("")


class TestIngestion:
    """Tests for ingest_article and ingest_batch."""

    @pytest.mark.asyncio
    async def test_ingest_article_chunks_and_stores(self, orchestrator):
        article = rates_article(content="Interest rates. " * 100)

        report = await orchestrator.ingest_article(article)

        assert report.article_id == "rates-1"
        assert report.chunks_created > 1
        assert report.chunks_upserted == report.chunks_created
        assert report.chunks_failed == 0

    @pytest.mark.asyncio
    async def test_payload_metadata(self, orchestrator):
        await orchestrator.ingest_article(
            rates_article(publish_date=datetime(2024, 3, 14, 8, 30, tzinfo=timezone.utc))
        )

        [hit] = await orchestrator.vector_index.search(topic_vector("rates"), top_k=1)

        assert hit.payload.article_id == "rates-1"
        assert hit.payload.article_title == "Central bank holds rates"
        assert hit.payload.source == "Reuters"
        assert hit.payload.category == "Business"
        assert hit.payload.publish_date == "2024-03-14T08:30:00+00:00"
        assert hit.payload.chunk_index == 0
        assert hit.payload.total_chunks == 1

    @pytest.mark.asyncio
    async def test_reingesting_does_not_duplicate(self, orchestrator):
        await orchestrator.ingest_article(rates_article())
        await orchestrator.ingest_article(rates_article())

        assert await orchestrator.vector_index.count() == 1

    @pytest.mark.asyncio
    async def test_ingest_accepts_dict(self, orchestrator):
        report = await orchestrator.ingest_article(
            {"id": "d1", "title": "Election night", "content": "The election was close."}
        )

        assert report.chunks_upserted == 1

    @pytest.mark.asyncio
    async def test_malformed_article_raises(self, orchestrator):
        with pytest.raises(ValidationError):
            await orchestrator.ingest_article({"id": "bad", "content": "no title"})

    @pytest.mark.asyncio
    async def test_upsert_failures_are_counted(self, orchestrator):
        orchestrator.vector_index.upsert = AsyncMock(
            side_effect=TransientProviderError("write rejected", provider="vector_store")
        )

        report = await orchestrator.ingest_article(rates_article())

        assert report.chunks_upserted == 0
        assert report.chunks_failed == 1

    @pytest.mark.asyncio
    async def test_batch_throttles_and_reports(self, orchestrator, sleep):
        articles = [
            rates_article(),
            {"id": "e1", "title": "Election", "content": "The election was close."},
            {"id": "f1", "title": "Football", "content": "The football final ended 2-1."},
        ]

        report = await orchestrator.ingest_batch(articles)

        assert report.articles_processed == 3
        assert report.articles_failed == 0
        assert report.chunks_upserted == 3
        assert report.vector_count == 3
        assert len(report.reports) == 3
        # One item delay inside the first batch, one delay between the two batches
        assert [call.args[0] for call in sleep.await_args_list] == [0.5, 3.0]

    @pytest.mark.asyncio
    async def test_batch_counts_failed_articles(self, orchestrator):
        orchestrator.vector_index.upsert = AsyncMock(
            side_effect=TransientProviderError("write rejected", provider="vector_store")
        )

        report = await orchestrator.ingest_batch([rates_article()])

        assert report.articles_failed == 1
        assert report.articles_processed == 0


class TestSafety:
    """Optional query screening."""

    @pytest.mark.asyncio
    async def test_unsafe_query_is_refused_when_enforced(self, orchestrator, provider):
        orchestrator.settings = Settings(enforce_query_safety=True)

        response = await orchestrator.process_query("How do I hack my neighbour's wifi?", "s1")

        assert response.response == REFUSAL_MESSAGE
        assert response.model == "safety-filter"
        provider.chat.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_screening_is_off_by_default(self, orchestrator):
        response = await orchestrator.process_query("Latest malware news", "s1")

        assert response.model != "safety-filter"

    @pytest.mark.asyncio
    async def test_answers_are_redacted_when_enforced(self, orchestrator, provider):
        orchestrator.settings = Settings(enforce_query_safety=True)
        provider.chat.return_value = Mock(content="Leaked card 1234-5678-9012-3456 in rates story")
        await orchestrator.ingest_article(rates_article())

        response = await orchestrator.process_query("interest rates?", "s1")

        assert "1234-5678-9012-3456" not in response.response
        assert "[REDACTED]" in response.response


def test_extract_sources_dedupes_and_caps():
    results = [
        VectorSearchResult(
            id=str(i),
            score=score,
            payload=VectorPayload(
                text="t", article_id=str(i), article_title=f"Article {i}", article_url=url
            ),
        )
        for i, (score, url) in enumerate(
            [
                (0.5, "https://a"),
                (0.9, "https://a"),
                (0.8, ""),
                (0.7, "https://b"),
                (0.6, "https://c"),
                (0.4, "https://d"),
                (0.3, "https://e"),
                (0.2, "https://f"),
            ]
        )
    ]

    sources = RAGOrchestrator.extract_sources(results)

    assert [s.url for s in sources] == ["https://a", "https://b", "https://c", "https://d", "https://e"]
    assert sources[0].relevance_score == 0.9


class TestLifecycle:
    """Initialization, health and stats."""

    @pytest.mark.asyncio
    async def test_initialize_reports_each_component(self, orchestrator):
        results = await orchestrator.initialize()

        assert results == {
            "kv": False,
            "generation": True,
            "vector_store": False,
            "embedding": True,
        }
        assert orchestrator.is_initialized is True

    @pytest.mark.asyncio
    async def test_initialize_survives_failing_component(self, orchestrator, provider):
        provider.chat.side_effect = ConnectionError("model unreachable")

        results = await orchestrator.initialize()

        assert results["generation"] is False
        assert orchestrator.generation.mode == "fallback"
        response = await orchestrator.process_query("anything", "s1")
        assert response.fallback is True

    @pytest.mark.asyncio
    async def test_health_check(self, orchestrator):
        await orchestrator.initialize()

        report = await orchestrator.health_check()

        assert report.status == "healthy"
        assert set(report.components) == {"embedding", "vector_store", "generation", "kv"}
        assert report.components["vector_store"]["status"] == "fallback"
        assert report.components["kv"]["status"] == "fallback"

    @pytest.mark.asyncio
    async def test_health_check_with_erroring_component(self, orchestrator):
        orchestrator.generation.health_check = AsyncMock(side_effect=RuntimeError("boom"))

        report = await orchestrator.health_check()

        assert report.status == "degraded"
        assert report.components["generation"] == {"status": "error", "error": "boom"}

    @pytest.mark.asyncio
    async def test_get_stats(self, orchestrator):
        await orchestrator.initialize()
        await orchestrator.ingest_article(rates_article())

        stats = await orchestrator.get_stats()

        assert stats["vector_count"] == 1
        assert stats["vector_backend"] == "in-memory"
        assert stats["kv_mode"] == "degraded"
        assert stats["embedding_mode"] == "remote"
        assert stats["generation_mode"] == "model"
        assert stats["is_initialized"] is True
        assert {notice["component"] for notice in stats["degraded_components"]} == {
            "vector_store",
            "kv",
        }
        assert "embedding_remote_call_count" in stats["metrics"]
        assert "llm_call_count" in stats["metrics"]
