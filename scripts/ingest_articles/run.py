#!/usr/bin/env python3
"""
Article Ingestion Tool

Loads news articles from a JSON file and ingests them into the vector index
(chunk, embed, upsert), throttled to stay under embedding rate limits.

The input file holds a JSON list of articles, or an object with an
"articles" list. Each article needs "id", "title" and "content"; "url",
"source", "publish_date" and "category" are optional.

Configuration:
    Connection settings and credentials are read from the environment or a
    .env file (REDIS_HOST, QDRANT_URL, JINA_API_KEY, GEMINI_API_KEY, ...).

Usage:
    python run.py articles.json

    # Drop the collection first
    python run.py articles.json --reset
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, List

# Make sure the app directory is in the python path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../../src/")))

from news_rag import RAGOrchestrator, Settings, ValidationError

# Configure logging
logger = logging.getLogger("ingest-articles")
logging.basicConfig(level=logging.INFO)


def load_articles(path: str) -> List[Dict[str, Any]]:
    """Read the article list from ``path``."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get("articles", [])
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a list of articles")
    return data


async def run_ingestion(articles: List[Dict[str, Any]], settings: Settings, reset: bool) -> int:
    orchestrator = RAGOrchestrator.from_settings(settings)
    await orchestrator.initialize()

    try:
        if reset:
            logger.warning("Deleting all vectors before ingestion")
            await orchestrator.vector_index.delete_all()

        report = await orchestrator.ingest_batch(articles)
    finally:
        await orchestrator.close()

    print()
    print(f"Articles processed: {report.articles_processed}")
    print(f"Articles failed:    {report.articles_failed}")
    print(f"Chunks stored:      {report.chunks_upserted}")
    print(f"Chunks failed:      {report.chunks_failed}")
    print(f"Vectors in index:   {report.vector_count}")
    print(f"Elapsed:            {report.elapsed_seconds:.1f}s")

    return 0 if report.articles_failed == 0 else 2


def main():
    """Main entry point for the ingestion tool."""
    parser = argparse.ArgumentParser(
        description="Ingest news articles into the vector index.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("articles", type=str, help="Path to a JSON file of articles")

    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete every stored vector before ingesting",
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Articles per batch (default: INGEST_BATCH_SIZE or 2)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )

    args = parser.parse_args()
    settings = Settings()
    logging.getLogger().setLevel(args.log_level or settings.log_level)

    try:
        articles = load_articles(args.articles)
    except (OSError, ValueError) as e:
        logger.error(f"Could not load articles: {e}")
        return 1

    if args.batch_size:
        settings = settings.model_copy(update={"ingest_batch_size": args.batch_size})

    logger.info(f"Loaded {len(articles)} article(s) from {args.articles}")

    try:
        return asyncio.run(run_ingestion(articles, settings, args.reset))
    except ValidationError as e:
        logger.error(f"Malformed article: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
