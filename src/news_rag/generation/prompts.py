"""
Prompts for answer generation.

SYSTEM_PROMPT holds the answering rules; ``build_user_prompt`` lays out the
recent conversation, the retrieved articles and the question.
"""

from typing import List, Optional, Sequence

from news_rag.models import ChatMessage, VectorSearchResult
from news_rag.utils.dates import parse_datetime

# Number of previous turns included in the prompt
PROMPT_HISTORY_TURNS = 6

SYSTEM_PROMPT = """You are a news analyst assistant. Provide clear, factual responses based on the news context provided. Follow these guidelines:

RESPONSE FORMAT:
- Write in plain text without markdown formatting
- Do not use ** or *** for bold/italic text
- Do not use # for headers
- Use simple paragraph breaks and bullet points with -
- Keep responses conversational and natural

CONTENT GUIDELINES:
- Use only information from the provided context
- If context is insufficient, clearly state what information is missing
- Always cite sources in the format: "According to [Source]..."
- Include relevant dates, locations, and key figures
- If asked about recent events, acknowledge the latest available information
- If multiple articles cover the same event, synthesize the information
- Highlight any conflicting reports or uncertainties

TONE AND STYLE:
- Professional but approachable
- Objective and neutral
- Clear and concise language"""

NO_CONTEXT_NOTE = "No relevant context found in the news database."

ANSWER_INSTRUCTION = (
    "Please provide a comprehensive response based on the above context. "
    "Include specific details and cite sources."
)


def format_publish_date(value: Optional[str], fallback: str = "Date not available") -> str:
    published = parse_datetime(value)
    if published is None:
        return fallback
    return published.strftime("%B %d, %Y %H:%M UTC")


def format_history(history: Sequence[ChatMessage], turns: int = PROMPT_HISTORY_TURNS) -> str:
    if not history or turns <= 0:
        return ""

    lines = [f"CONVERSATION HISTORY (last {turns} messages):"]
    for i, message in enumerate(list(history)[-turns:], 1):
        speaker = "HUMAN" if message.role == "user" else "ASSISTANT"
        lines.append(f"[{i}] {speaker}: {message.content}")
    return "\n".join(lines)


def format_context(context: Sequence[VectorSearchResult]) -> str:
    if not context:
        return NO_CONTEXT_NOTE

    sections = ["RELEVANT NEWS CONTEXT (sorted by relevance):"]
    for i, item in enumerate(context, 1):
        payload = item.payload
        lines = [
            f"--- ARTICLE {i} ---",
            f"TITLE: {payload.article_title}",
            f"SOURCE: {payload.source} ({payload.category})",
            f"PUBLISHED: {format_publish_date(payload.publish_date)}",
        ]
        if payload.article_url:
            lines.append(f"URL: {payload.article_url}")
        lines.append(f"RELEVANCE: {item.score:.3f}")
        lines.append("")
        lines.append("CONTENT:")
        lines.append(payload.text)
        sections.append("\n".join(lines))

    return "\n\n".join(sections)


def build_user_prompt(
    query: str,
    context: Sequence[VectorSearchResult],
    history: Optional[List[ChatMessage]] = None,
    history_turns: int = PROMPT_HISTORY_TURNS,
) -> str:
    """
    Build the user message: history, then context, then the question.

    Args:
        query: The user's question
        context: Retrieved chunks, most relevant first
        history: Previous turns, oldest first
        history_turns: How many of the newest turns to include
    """
    parts = []

    history_block = format_history(history or [], history_turns)
    if history_block:
        parts.append(history_block)

    parts.append(format_context(context))
    parts.append(f"---\nQUESTION: {query}\n\n{ANSWER_INSTRUCTION}")

    return "\n\n".join(parts)
