"""Query screening and response redaction."""

import logging
import re

logger = logging.getLogger(__name__)

UNSAFE_QUERY_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (r"hack", r"exploit", r"password", r"malware", r"virus")
]

REDACTIONS = [
    (re.compile(r"\b\d{4}-\d{4}-\d{4}-\d{4}\b"), "[REDACTED]"),  # card numbers
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[REDACTED]"),  # SSNs
    (re.compile(r"password:\s*\S+", re.IGNORECASE), "password: [REDACTED]"),
]

REFUSAL_MESSAGE = (
    "I can't help with that request. Please ask a question about the news instead."
)


def is_safe_query(query: str) -> bool:
    """False if the query matches any denylisted pattern."""
    for pattern in UNSAFE_QUERY_PATTERNS:
        if pattern.search(query):
            logger.info(f"Query rejected by safety filter (pattern: {pattern.pattern})")
            return False
    return True


def sanitize_response(text: str) -> str:
    """Redact card numbers, SSNs and inline passwords."""
    for pattern, replacement in REDACTIONS:
        text = pattern.sub(replacement, text)
    return text
