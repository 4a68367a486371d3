from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

import orjson
from loguru import logger

from inoffice.core.bus.bus_schemas import utcnow
from inoffice.schemas.presence import Presentation
from inoffice.schemas.transaction import Transaction

Derive = Callable[[Optional[Transaction]], Presentation]


class OfferResult(str, Enum):
    APPLIED = "applied"
    REJECTED = "rejected"


@dataclass(frozen=True)
class RenderChange:
    current: Presentation
    previous: Optional[Presentation]

    @property
    def changed(self) -> bool:
        return self.current != self.previous


@dataclass(frozen=True)
class MergeOutcome:
    result: OfferResult
    render: Optional[RenderChange] = None

    @property
    def applied(self) -> bool:
        return self.result is OfferResult.APPLIED


class PresenceStore:
    """
    Owns the last qualifying transaction and the last committed presentation.

    One asyncio.Lock covers the monotonic merge, derivation and the
    rendered-output comparison, so concurrent writers cannot commit a
    presentation derived from an older transaction over a newer one.
    merge() and rerender() never suspend after releasing the lock; callers
    run side effects first and call persist() afterwards. Redis persistence
    is best-effort.
    """

    def __init__(self, *, redis: Any = None, cache_key: str = "inoffice:presence:transaction"):
        self.redis = redis
        self.cache_key = cache_key

        self._lock = asyncio.Lock()
        self._persist_lock = asyncio.Lock()
        self._transaction: Optional[Transaction] = None
        self._rendered: Optional[Presentation] = None
        self._rendered_at: Optional[datetime] = None

    @staticmethod
    def _accepts(cached: Optional[Transaction], tx: Transaction) -> bool:
        # strictly newer only: ties keep the first writer
        return cached is None or tx.created_at > cached.created_at

    async def offer(self, tx: Transaction) -> OfferResult:
        async with self._lock:
            if not self._accepts(self._transaction, tx):
                return OfferResult.REJECTED
            self._transaction = tx
        await self.persist()
        return OfferResult.APPLIED

    async def merge(self, tx: Transaction, derive: Derive) -> MergeOutcome:
        async with self._lock:
            if not self._accepts(self._transaction, tx):
                return MergeOutcome(result=OfferResult.REJECTED)
            self._transaction = tx
            render = self._commit_locked(derive)
        return MergeOutcome(result=OfferResult.APPLIED, render=render)

    async def rerender(self, derive: Derive) -> RenderChange:
        async with self._lock:
            return self._commit_locked(derive)

    def _commit_locked(self, derive: Derive) -> RenderChange:
        current = derive(self._transaction)
        previous = self._rendered
        if current != previous:
            self._rendered = current
            self._rendered_at = utcnow()
        return RenderChange(current=current, previous=previous)

    async def snapshot(self) -> tuple[Optional[Transaction], Optional[Presentation], Optional[datetime]]:
        async with self._lock:
            return self._transaction, self._rendered, self._rendered_at

    async def latest_transaction(self) -> Optional[Transaction]:
        async with self._lock:
            return self._transaction

    async def persist(self) -> None:
        if self.redis is None:
            return
        # serialized; always writes the newest transaction
        async with self._persist_lock:
            async with self._lock:
                tx = self._transaction
            if tx is None:
                return
            payload = {"transaction": tx.model_dump(mode="json"), "stored_at": utcnow().isoformat()}
            try:
                await self.redis.set(self.cache_key, orjson.dumps(payload))
            except Exception as e:
                logger.warning(f"Persisting last transaction failed: {e}")

    async def load(self) -> bool:
        """Best-effort warm start from Redis; goes through the monotonic merge."""
        if self.redis is None:
            return False
        try:
            raw = await self.redis.get(self.cache_key)
            if not raw:
                return False
            obj = orjson.loads(raw)
            tx = Transaction.model_validate(obj.get("transaction") or {})
        except Exception as e:
            logger.warning(f"Loading last transaction from Redis failed: {e}")
            return False
        async with self._lock:
            if not self._accepts(self._transaction, tx):
                return False
            self._transaction = tx
        return True
