"""
Result type for provider calls.

Every remote call made by the gateways, the vector index and the orchestrator
returns either ``Ok(value)`` or ``Fallback(reason, error)``. Callers branch on
the result instead of catching exceptions, which keeps the fallback path a
normal code path.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Generic, Optional, TypeVar, Union

from news_rag.errors import ProviderError, ValidationError, classify_provider_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Fallback:
    reason: str
    error: Optional[ProviderError] = None

    @property
    def ok(self) -> bool:
        return False


ProviderResult = Union[Ok[T], Fallback]


async def capture(
    awaitable: Awaitable[T],
    provider: str,
    timeout: Optional[float] = None,
) -> "ProviderResult[T]":
    """
    Await a provider call and fold any failure into a Fallback.

    ValidationError is structural and is re-raised rather than absorbed.

    Args:
        awaitable: The provider coroutine
        provider: Provider name for classification and logs
        timeout: Optional budget in seconds (asyncio.wait_for)

    Returns:
        Ok(value) on success, Fallback(reason, error) on failure
    """
    try:
        if timeout is not None:
            value = await asyncio.wait_for(awaitable, timeout=timeout)
        else:
            value = await awaitable
        return Ok(value)
    except ValidationError:
        raise
    except Exception as e:
        error = classify_provider_error(e, provider=provider)
        logger.debug(f"{provider} call failed: {error}")
        return Fallback(reason=str(error), error=error)
