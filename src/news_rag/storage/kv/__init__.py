from news_rag.storage.kv.memory import InMemoryKVBackend
from news_rag.storage.kv.migration import (
    migrate_legacy_format,
    session_from_hash,
    session_to_hash,
)
from news_rag.storage.kv.redis import RedisKVBackend
from news_rag.storage.kv.store import (
    Connected,
    Degraded,
    KeyValueStore,
    KVState,
    chat_key,
    session_key,
)

__all__ = [
    "KeyValueStore",
    "Connected",
    "Degraded",
    "KVState",
    "InMemoryKVBackend",
    "RedisKVBackend",
    "migrate_legacy_format",
    "session_from_hash",
    "session_to_hash",
    "session_key",
    "chat_key",
]
