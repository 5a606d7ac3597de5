"""
Extractive answers used when the language model is unavailable.

The fallback groups the retrieved chunks by source, quotes the first few
sentences of each, and labels itself as a fallback.
"""

import re
from collections import OrderedDict
from typing import List, Sequence

from news_rag.generation.prompts import format_publish_date
from news_rag.models import VectorSearchResult

FALLBACK_MODEL_NAME = "fallback"
SUMMARY_SENTENCES = 3

_SENTENCE_SPLIT = re.compile(r"[.!?]+")

FALLBACK_NOTE = (
    "Note: This is a fallback response. For more comprehensive analysis, "
    "please ensure the language model API is properly configured."
)


def summarize_text(text: str, sentences: int = SUMMARY_SENTENCES) -> str:
    """First ``sentences`` sentences of ``text``, with an ellipsis if there were more."""
    parts = [part.strip() for part in _SENTENCE_SPLIT.split(text) if part.strip()]
    summary = ". ".join(parts[:sentences])
    if len(parts) > sentences:
        return summary + "..."
    return summary + "." if summary else summary


def not_found_response(query: str) -> str:
    return (
        f'I couldn\'t find any information about "{query}" in the current news database.\n\n'
        "This could be because:\n"
        "- The topic is too recent and not yet in our database\n"
        "- The search terms were too specific\n"
        "- The news articles need to be re-ingested\n\n"
        "Please try rephrasing your question or checking back later for updates."
    )


def fallback_response(query: str, context: Sequence[VectorSearchResult]) -> str:
    """
    Extractive summary of ``context`` that restates the question.

    With no context, explains that nothing relevant was found.
    """
    if not context:
        return not_found_response(query)

    by_source: "OrderedDict[str, List[VectorSearchResult]]" = OrderedDict()
    for item in context:
        by_source.setdefault(item.payload.source or "Other Sources", []).append(item)

    lines = [
        f"News Summary: {query}",
        "",
        f"I found {len(context)} relevant articles. Here's a summary:",
        "",
    ]

    for source, items in by_source.items():
        lines.append(source.upper())
        lines.append("")
        for i, item in enumerate(items, 1):
            payload = item.payload
            lines.append(f"{i}. {payload.article_title}")
            lines.append(
                f"Date: {format_publish_date(payload.publish_date, 'Recent')} "
                f"| Relevance: {item.score:.3f}"
            )
            lines.append("")
            lines.append(summarize_text(payload.text))
            if payload.article_url:
                lines.append(f"Read more: {payload.article_url}")
            lines.append("")

    lines.append("---")
    lines.append(FALLBACK_NOTE)
    lines.append(f'Your question was: "{query}"')

    return "\n".join(lines)
