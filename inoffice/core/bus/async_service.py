# inoffice/core/bus/async_service.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from redis import asyncio as aioredis

from .codec import InOfficeCodec
from .bus_schemas import BaseEnvelope


class InOfficeBusAsync:
    """
    Async Redis pub/sub bus client.
    """

    def __init__(self, url: str, *, enabled: bool = True, codec: Optional[InOfficeCodec] = None):
        self.url = url
        self.enabled = enabled
        self.codec = codec or InOfficeCodec()
        self._redis: Optional[aioredis.Redis] = None

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def connect(self) -> None:
        if not self.enabled:
            return
        if self._redis is None:
            client = aioredis.from_url(self.url, decode_responses=False)
            await client.ping()
            self._redis = client

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    @property
    def redis(self) -> aioredis.Redis:
        if self._redis is None:
            raise RuntimeError("InOfficeBusAsync not connected. Call await connect().")
        return self._redis

    async def publish(self, channel: str, msg: BaseEnvelope | Dict[str, Any]) -> None:
        if not self.enabled:
            return
        await self.redis.publish(channel, self.codec.encode(msg))

    @asynccontextmanager
    async def subscribe(self, *channels: str, patterns: bool = False) -> AsyncIterator[aioredis.client.PubSub]:
        if not self.enabled:
            raise RuntimeError("Bus disabled")
        pubsub = self.redis.pubsub()
        if patterns:
            await pubsub.psubscribe(*channels)
        else:
            await pubsub.subscribe(*channels)
        try:
            yield pubsub
        finally:
            try:
                if patterns:
                    await pubsub.punsubscribe(*channels)
                else:
                    await pubsub.unsubscribe(*channels)
            finally:
                await pubsub.aclose()

    async def iter_messages(self, pubsub: aioredis.client.PubSub) -> AsyncIterator[dict]:
        """
        Yields only data messages ("message"/"pmessage"), skipping subscribe acks.
        """
        async for msg in pubsub.listen():
            if msg.get("type") not in ("message", "pmessage"):
                continue
            yield msg
