"""
Answer generation for news-rag.

- GenerationGateway: casual-llm provider with overload retry and fallback
- fallback_response: extractive answer used without a model
- is_safe_query / sanitize_response: optional query screening and redaction
"""

from news_rag.generation.fallback import fallback_response, not_found_response, summarize_text
from news_rag.generation.gateway import GenerationGateway, estimate_tokens
from news_rag.generation.prompts import SYSTEM_PROMPT, build_user_prompt
from news_rag.generation.safety import is_safe_query, sanitize_response

__all__ = [
    "GenerationGateway",
    "estimate_tokens",
    "fallback_response",
    "not_found_response",
    "summarize_text",
    "SYSTEM_PROMPT",
    "build_user_prompt",
    "is_safe_query",
    "sanitize_response",
]
