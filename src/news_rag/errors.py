"""
Error taxonomy for news-rag.

Provider failures are split into transient errors (retried or absorbed into a
fallback) and authentication errors (the provider is disabled for the rest of
the process). Validation errors describe malformed structural input and are
the only class that reaches callers of the ingestion entry points.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

AUTH_STATUS_CODES = {401, 403}
OVERLOAD_STATUS_CODES = {429, 503}


class NewsRagError(Exception):
    """Base class for all news-rag errors."""


class ProviderError(NewsRagError):
    """A remote provider (embedding, vector, generation, key-value) failed."""

    def __init__(self, message: str, provider: str = "unknown", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Network failure, timeout, rate limit or 5xx response."""


class AuthError(ProviderError):
    """Missing or rejected credential. Not retried."""


class ValidationError(NewsRagError, ValueError):
    """Malformed input that no fallback can repair."""


class DimensionMismatchError(ValidationError):
    """A vector does not have the configured dimension."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Vector size mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


@dataclass
class DegradedModeNotice:
    """
    Informational record of a component switching to its fallback.

    Not an exception: components create one when they flip modes, log it and
    keep it so the orchestrator can report degraded components.
    """

    component: str
    reason: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def log(self) -> "DegradedModeNotice":
        logger.warning(f"{self.component} switched to fallback mode: {self.reason}")
        return self

    def to_dict(self) -> dict:
        return {
            "component": self.component,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


def _status_code_of(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_provider_error(exc: BaseException, provider: str = "unknown") -> ProviderError:
    """
    Map a library exception onto the provider error taxonomy.

    Works on status codes and exception types rather than importing every
    provider library, so it accepts errors from openai, qdrant-client, redis,
    httpx and casual-llm alike.

    Args:
        exc: The raised exception
        provider: Name of the provider, used in messages and logs

    Returns:
        An AuthError or TransientProviderError wrapping the original error
    """
    if isinstance(exc, ProviderError):
        return exc

    status_code = _status_code_of(exc)
    message = f"{provider}: {type(exc).__name__}: {exc}"

    if status_code in AUTH_STATUS_CODES or type(exc).__name__ in (
        "AuthenticationError",
        "PermissionDeniedError",
        "AuthenticationWrongNumberOfArgsError",
    ):
        return AuthError(message, provider=provider, status_code=status_code)

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return TransientProviderError(
            f"{provider}: timed out", provider=provider, status_code=status_code
        )

    return TransientProviderError(message, provider=provider, status_code=status_code)


def is_overload_error(exc: BaseException) -> bool:
    """True when the error signals a temporarily overloaded model endpoint."""
    if _status_code_of(exc) in OVERLOAD_STATUS_CODES:
        return True
    text = str(exc).lower()
    return "503" in text or "overloaded" in text or "rate limit" in text
