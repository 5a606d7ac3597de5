"""
Example: Asking questions over a few articles with news-rag

Demonstrates:
1. Building the orchestrator from components
2. Ingesting articles
3. Sessions, cached answers and chat history
4. Degraded mode: with no API keys and no Redis/Qdrant, every component
   falls back (local embeddings, in-memory storage, extractive answers)

Set JINA_API_KEY and GEMINI_API_KEY (and run Redis/Qdrant) to use the real
services instead:
    docker run -p 6379:6379 redis
    docker run -p 6333:6333 qdrant/qdrant
"""

import asyncio
import os

from news_rag import RAGOrchestrator, Settings
from news_rag.embeddings import EmbeddingGateway
from news_rag.generation import GenerationGateway
from news_rag.storage import KeyValueStore, VectorIndex

ARTICLES = [
    {
        "id": "rates-2024-03-14",
        "title": "Central bank holds interest rates at 5.25%",
        "content": (
            "The central bank held interest rates at 5.25% on Thursday, citing easing inflation. "
            "Markets rose after the announcement. Analysts expect a cut later in the year."
        ),
        "url": "https://example.com/rates",
        "source": "Reuters",
        "category": "Business",
    },
    {
        "id": "final-2024-03-13",
        "title": "City win the cup final",
        "content": "City won the cup final 2-1 after extra time. The winning goal came in the 112th minute.",
        "url": "https://example.com/final",
        "source": "BBC",
        "category": "Sports",
    },
]


def build_offline_orchestrator() -> RAGOrchestrator:
    """Every component in its fallback mode."""
    settings = Settings(ingest_item_delay=0, ingest_batch_delay=0, min_similarity=0.0)
    return RAGOrchestrator(
        embedding=EmbeddingGateway(remote=None, dimension=settings.vector_dimension),
        vector_index=VectorIndex(dimension=settings.vector_dimension),
        kv_store=KeyValueStore(),
        generation=GenerationGateway(provider=None),
        settings=settings,
    )


async def main():
    if os.getenv("JINA_API_KEY") and os.getenv("GEMINI_API_KEY"):
        orchestrator = RAGOrchestrator.from_settings()
    else:
        print("No API keys set, running fully offline\n")
        orchestrator = build_offline_orchestrator()

    init_results = await orchestrator.initialize()
    print(f"Components: {init_results}")

    report = await orchestrator.ingest_batch(ARTICLES)
    print(f"Ingested {report.chunks_upserted} chunks, {report.vector_count} vectors in index\n")

    session = await orchestrator.create_session({"client": "example"})

    response = await orchestrator.process_query("What did the central bank decide?", session.id)
    print(response.response)
    print(f"\nmodel={response.model} fallback={response.fallback} sources={len(response.sources)}")

    # Asking again hits the cache, offline answers included
    again = await orchestrator.process_query("what did the central bank decide?", session.id)
    print(f"Second answer cached: {again.cached}")

    history = await orchestrator.get_chat_history(session.id)
    print(f"History: {len(history)} messages")

    stats = await orchestrator.get_stats()
    print(f"Degraded: {[notice['component'] for notice in stats['degraded_components']]}")

    await orchestrator.close()


if __name__ == "__main__":
    asyncio.run(main())
