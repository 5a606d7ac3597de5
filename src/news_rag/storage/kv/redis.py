"""
Redis key-value backend.

Sessions are hashes, chat logs are capped lists and cached answers are strings
with a fixed expiry. Suitable for production deployments with multiple
replicas.
"""

import logging
from typing import List, Optional

from redis.asyncio import Redis

from news_rag.storage.kv.migration import migrate_legacy_format

logger = logging.getLogger(__name__)


class RedisKVBackend:
    """
    Redis implementation of the KeyValueBackend protocol.

    The client must be created with ``decode_responses=True``.
    """

    name = "redis"

    def __init__(self, client: Redis):
        self.client = client

    async def set_hash(self, key: str, mapping: dict, ttl: int) -> None:
        async with self.client.pipeline(transaction=True) as pipeline:
            pipeline.delete(key)
            pipeline.hset(key, mapping={field: str(value) for field, value in mapping.items()})
            pipeline.expire(key, ttl)
            await pipeline.execute()

    async def get_hash(self, key: str) -> Optional[dict]:
        # Check key type first to avoid WRONGTYPE on legacy string sessions
        key_type = await self.client.type(key)

        if key_type == "hash":
            fields = await self.client.hgetall(key)
            return fields or None

        if key_type == "string":
            return await self._migrate_legacy_session(key)

        return None

    async def _migrate_legacy_session(self, key: str) -> Optional[dict]:
        raw = await self.client.get(key)
        if raw is None:
            return None

        mapping = migrate_legacy_format(raw, session_id=key.split(":", 1)[-1])
        remaining_ttl = await self.client.ttl(key)

        async with self.client.pipeline(transaction=True) as pipeline:
            pipeline.delete(key)
            pipeline.hset(key, mapping=mapping)
            if remaining_ttl and remaining_ttl > 0:
                pipeline.expire(key, remaining_ttl)
            await pipeline.execute()

        logger.info(f"Migrated legacy session string at {key} to hash")
        return mapping

    async def delete(self, key: str) -> int:
        return await self.client.delete(key)

    async def push_bounded(self, key: str, value: str, max_length: int, ttl: int) -> int:
        async with self.client.pipeline(transaction=True) as pipeline:
            pipeline.rpush(key, value)
            # Trim to the newest max_length items
            pipeline.ltrim(key, -max_length, -1)
            pipeline.expire(key, ttl)
            pipeline.llen(key)
            results = await pipeline.execute()
        return results[-1]

    async def list_tail(self, key: str, limit: int) -> List[str]:
        if limit <= 0:
            return []
        return await self.client.lrange(key, -limit, -1)

    async def list_length(self, key: str) -> int:
        return await self.client.llen(key)

    async def set_value(self, key: str, value: str, ttl: int) -> None:
        await self.client.setex(key, ttl, value)

    async def get_value(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await self.client.aclose()
