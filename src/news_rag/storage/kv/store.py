"""
Key-value store with automatic fallback.

The store is in exactly one of two states:

- Connected: Redis answered the initial ping; operations go to Redis
- Degraded: Redis was never reachable, or an operation against it failed;
  operations go to the in-memory backend for the rest of the process

A connection is attempted once. There is no reconnection: once degraded the
store stays degraded, so callers never observe data hopping between backends
more than once.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, TypeVar, Union

from pydantic import ValidationError as ModelValidationError

from news_rag.config import Settings
from news_rag.errors import DegradedModeNotice, ValidationError, classify_provider_error
from news_rag.models import CachedQueryResult, ChatMessage, SessionRecord
from news_rag.storage.kv.memory import InMemoryKVBackend
from news_rag.storage.kv.migration import session_from_hash, session_to_hash
from news_rag.storage.kv.redis import RedisKVBackend
from news_rag.storage.protocols import KeyValueBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

SESSION_PREFIX = "session:"
CHAT_PREFIX = "chat:"


@dataclass
class Connected:
    backend: KeyValueBackend


@dataclass
class Degraded:
    backend: KeyValueBackend
    reason: str


KVState = Union[Connected, Degraded]


def session_key(session_id: str) -> str:
    return f"{SESSION_PREFIX}{session_id}"


def chat_key(session_id: str) -> str:
    return f"{CHAT_PREFIX}{session_id}"


class KeyValueStore:
    """
    Sessions, chat history and the query cache.

    Passive store: it enforces TTLs and list bounds but makes no lifecycle
    decisions of its own.
    """

    def __init__(
        self,
        client_factory: Optional[Callable[[], object]] = None,
        connect_timeout: float = 5.0,
        session_ttl: int = 60 * 60 * 24 * 7,
        history_ttl: int = 60 * 60 * 24 * 30,
        history_limit: int = 50,
        cache_ttl: int = 60 * 30,
        memory_backend: Optional[InMemoryKVBackend] = None,
    ):
        """
        Args:
            client_factory: Returns a ``redis.asyncio.Redis`` client; None means in-memory only
            connect_timeout: Seconds allowed for the initial ping
            session_ttl: Sliding session expiry in seconds
            history_ttl: Chat log expiry in seconds, reset on every append
            history_limit: Maximum messages kept per session
            cache_ttl: Default query cache expiry in seconds
            memory_backend: Fallback backend (inject one with a fake clock in tests)
        """
        self.client_factory = client_factory
        self.connect_timeout = connect_timeout
        self.session_ttl = session_ttl
        self.history_ttl = history_ttl
        self.history_limit = history_limit
        self.cache_ttl = cache_ttl
        self._memory = memory_backend or InMemoryKVBackend()

        self._state: Optional[KVState] = None
        self._lock = asyncio.Lock()
        self.notice: Optional[DegradedModeNotice] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyValueStore":
        def build_client():
            from redis.asyncio import Redis

            return Redis(
                host=settings.redis_host,
                port=settings.redis_port,
                db=settings.redis_db,
                password=settings.redis_password_value,
                ssl=settings.redis_use_tls,
                socket_connect_timeout=settings.redis_connect_timeout,
                decode_responses=True,
            )

        return cls(
            client_factory=build_client,
            connect_timeout=settings.redis_connect_timeout,
            session_ttl=settings.session_ttl,
            history_ttl=settings.history_ttl,
            history_limit=settings.history_limit,
            cache_ttl=settings.cache_ttl,
        )

    @property
    def state(self) -> Optional[KVState]:
        return self._state

    @property
    def mode(self) -> str:
        """Current state name; "disconnected" until ``connect()`` has run."""
        if isinstance(self._state, Connected):
            return "connected"
        if isinstance(self._state, Degraded):
            return "degraded"
        return "disconnected"

    async def connect(self) -> KVState:
        """
        Attempt the Redis connection once.

        Concurrent callers share the single attempt. Never raises: an
        unreachable Redis leaves the store Degraded.
        """
        async with self._lock:
            if self._state is not None:
                return self._state

            if self.client_factory is None:
                self._degrade("no Redis client configured")
                return self._state

            try:
                client = self.client_factory()
                await asyncio.wait_for(client.ping(), timeout=self.connect_timeout)
            except Exception as e:
                error = classify_provider_error(e, provider="redis")
                self._degrade(f"Redis connection failed: {error}")
                return self._state

            self._state = Connected(backend=RedisKVBackend(client))
            logger.info("Connected to Redis")
            return self._state

    def _degrade(self, reason: str) -> None:
        self._state = Degraded(backend=self._memory, reason=reason)
        self.notice = DegradedModeNotice("kv", reason).log()

    async def _dispatch(
        self, operation: str, call: Callable[[KeyValueBackend], Awaitable[T]]
    ) -> T:
        """Run ``call`` against the active backend, degrading once on a Redis error."""
        if self._state is None:
            await self.connect()

        state = self._state
        if isinstance(state, Connected):
            try:
                return await call(state.backend)
            except ValidationError:
                raise
            except Exception as e:
                error = classify_provider_error(e, provider="redis")
                logger.error(f"Redis {operation} failed: {error}")
                self._degrade(f"Redis {operation} failed: {error}")

        return await call(self._state.backend)

    # Sessions

    async def set_session(self, session: SessionRecord, ttl: Optional[int] = None) -> None:
        """Store a session, replacing any previous value and resetting its TTL."""
        mapping = session_to_hash(session)
        await self._dispatch(
            "set_session",
            lambda backend: backend.set_hash(
                session_key(session.id), mapping, ttl or self.session_ttl
            ),
        )
        logger.debug(f"Stored session {session.id}")

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        try:
            fields = await self._dispatch(
                "get_session", lambda backend: backend.get_hash(session_key(session_id))
            )
        except ValidationError as e:
            logger.warning(f"Unreadable session {session_id}: {e}")
            return None

        if not fields:
            return None

        try:
            return session_from_hash(fields, session_id=session_id)
        except ValidationError as e:
            logger.warning(f"Unreadable session {session_id}: {e}")
            return None

    async def delete_session(self, session_id: str) -> bool:
        removed = await self._dispatch(
            "delete_session", lambda backend: backend.delete(session_key(session_id))
        )
        logger.info(f"Deleted session {session_id}")
        return bool(removed)

    # Chat history

    async def append_message(self, session_id: str, message: ChatMessage) -> int:
        """
        Append a message to the session's chat log.

        The log is trimmed to the newest ``history_limit`` messages and its
        TTL is reset.

        Returns:
            Length of the log after the append
        """
        value = message.model_dump_json(exclude_none=True)
        length = await self._dispatch(
            "append_message",
            lambda backend: backend.push_bounded(
                chat_key(session_id), value, self.history_limit, self.history_ttl
            ),
        )
        logger.debug(f"Appended {message.role} message to session {session_id} (total: {length})")
        return length

    async def get_messages(self, session_id: str, limit: int = 20) -> List[ChatMessage]:
        """The newest ``limit`` messages, oldest first."""
        raw_messages = await self._dispatch(
            "get_messages", lambda backend: backend.list_tail(chat_key(session_id), limit)
        )

        messages = []
        for raw in raw_messages:
            try:
                messages.append(ChatMessage.model_validate_json(raw))
            except ModelValidationError as e:
                logger.warning(f"Failed to deserialize message: {e}")
                continue

        logger.debug(f"Retrieved {len(messages)} messages for session {session_id}")
        return messages

    async def clear_messages(self, session_id: str) -> int:
        """Delete the session's chat log. Returns the number of messages removed."""
        key = chat_key(session_id)

        async def clear(backend: KeyValueBackend) -> int:
            count = await backend.list_length(key)
            await backend.delete(key)
            return count

        count = await self._dispatch("clear_messages", clear)
        logger.info(f"Cleared {count} messages for session {session_id}")
        return count

    # Query cache

    async def cache_result(
        self, key: str, value: CachedQueryResult, ttl: Optional[int] = None
    ) -> None:
        """Cache a query result under ``key``. The TTL is fixed at write time."""
        payload = value.model_dump_json()
        await self._dispatch(
            "cache_result", lambda backend: backend.set_value(key, payload, ttl or self.cache_ttl)
        )
        logger.debug(f"Cached query result at {key}")

    async def get_cached_result(self, key: str) -> Optional[CachedQueryResult]:
        raw = await self._dispatch("get_cached_result", lambda backend: backend.get_value(key))
        if raw is None:
            return None

        try:
            return CachedQueryResult.model_validate_json(raw)
        except ModelValidationError as e:
            logger.warning(f"Ignoring malformed cache entry {key}: {e}")
            return None

    async def health_check(self) -> dict:
        if self._state is None:
            return {"status": "disconnected", "mode": self.mode, "backend": None}

        if isinstance(self._state, Connected):
            try:
                await asyncio.wait_for(self._state.backend.ping(), timeout=self.connect_timeout)
            except Exception as e:
                self._degrade(f"Redis ping failed: {classify_provider_error(e, provider='redis')}")

        report = {
            "status": "healthy" if isinstance(self._state, Connected) else "fallback",
            "mode": self.mode,
            "backend": self._state.backend.name,
        }
        if isinstance(self._state, Degraded):
            report["reason"] = self._state.reason
        return report

    async def close(self) -> None:
        if isinstance(self._state, Connected):
            await self._state.backend.close()
            logger.info("Closed Redis connection")
