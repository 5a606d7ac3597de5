#!/usr/bin/env python3
"""
News Chat Tool

Ask questions about the ingested news from the terminal. Runs a single
question, or an interactive session when no question is given.

Usage:
    python run.py "What did the central bank decide today?"

    # Interactive, continuing an existing session
    python run.py --session session_lx3k2a_q8w7e6r5t

    # Stream the answer as it is generated
    python run.py --stream "Latest election results"

Interactive commands:
    /history  show the session's chat history
    /clear    clear the session's chat history
    /health   show component health
    /quit     exit
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Optional

# Make sure the app directory is in the python path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../../src/")))

from news_rag import QueryOptions, RAGOrchestrator, get_settings

# Configure logging
logger = logging.getLogger("ask-news")
logging.basicConfig(level=logging.WARNING)


def print_sources(sources) -> None:
    if not sources:
        return
    print("\nSources:")
    for i, source in enumerate(sources, 1):
        print(f"  {i}. {source.title} ({source.source}) - {source.url}")


async def ask(
    orchestrator: RAGOrchestrator,
    question: str,
    session_id: str,
    options: QueryOptions,
    stream: bool,
) -> None:
    if stream:
        answer = await orchestrator.generate_streaming_response(question, session_id, options)
        async for fragment in answer.fragments:
            print(fragment, end="", flush=True)
        print()
        print_sources(answer.sources)
        return

    response = await orchestrator.process_query(question, session_id, options)
    print(response.response)
    print_sources(response.sources)

    flags = []
    if response.cached:
        flags.append("cached")
    if response.fallback:
        flags.append("fallback")
    print(f"\n[model={response.model} context={response.context_used} {' '.join(flags)}]")


async def run_chat(question: Optional[str], session_id: Optional[str], options: QueryOptions, stream: bool):
    orchestrator = RAGOrchestrator.from_settings()
    await orchestrator.initialize()

    try:
        if not session_id:
            session_id = (await orchestrator.create_session({"client": "cli"})).id
        print(f"Session: {session_id}\n")

        if question:
            await ask(orchestrator, question, session_id, options, stream)
            return

        while True:
            try:
                line = input("> ").strip()
            except EOFError:
                break

            if not line:
                continue
            if line == "/quit":
                break
            if line == "/history":
                for message in await orchestrator.get_chat_history(session_id):
                    print(f"[{message.role}] {message.content}\n")
                continue
            if line == "/clear":
                await orchestrator.clear_chat_history(session_id)
                print("History cleared.")
                continue
            if line == "/health":
                report = await orchestrator.health_check()
                print(json.dumps(report.model_dump(), indent=2))
                continue

            await ask(orchestrator, line, session_id, options, stream)
            print()
    finally:
        await orchestrator.close()


def main():
    """Main entry point for the chat tool."""
    parser = argparse.ArgumentParser(
        description="Ask questions about the ingested news.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("question", nargs="?", default=None, help="Question (omit for interactive mode)")

    parser.add_argument("--session", type=str, default=None, help="Existing session ID to continue")

    parser.add_argument("--stream", action="store_true", help="Stream the answer")

    parser.add_argument("--no-cache", action="store_true", help="Bypass the query cache")

    parser.add_argument(
        "--max-results",
        type=int,
        default=None,
        help="Maximum context chunks (default: TOP_K_RESULTS or 5)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: LOG_LEVEL)",
    )

    args = parser.parse_args()
    settings = get_settings()
    logging.getLogger().setLevel(args.log_level or settings.log_level)

    options = QueryOptions(
        use_cache=not args.no_cache,
        max_results=args.max_results or settings.top_k_results,
        min_similarity=settings.min_similarity,
        history_limit=settings.conversation_history_turns,
    )

    try:
        asyncio.run(run_chat(args.question, args.session, options, args.stream))
    except KeyboardInterrupt:
        print()


if __name__ == "__main__":
    main()
