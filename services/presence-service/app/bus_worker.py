from __future__ import annotations

from typing import Any, Dict, Optional

from loguru import logger
from pydantic import ValidationError

from inoffice.core.bus.bus_schemas import BaseEnvelope
from inoffice.schemas.transaction import Transaction, TransactionEvent

from .reconciler import PresenceReconciler, ReconcileOutcome


def parse_transaction_event(payload: Any) -> Optional[Transaction]:
    """Webhook/bus body -> Transaction, or None when it isn't a transaction event."""
    if hasattr(payload, "model_dump"):
        payload = payload.model_dump(mode="json")
    if not isinstance(payload, dict):
        return None
    try:
        return TransactionEvent.model_validate(payload).transaction.to_transaction()
    except ValidationError as e:
        logger.error(f"Error decoding transaction event: {e.error_count()} validation error(s)")
        return None


class TransactionHandler:
    """Hunter handler: every decoded envelope on the transaction channel."""

    def __init__(self, reconciler: PresenceReconciler):
        self.reconciler = reconciler
        self.counts: Dict[str, int] = {}

    async def __call__(self, env: BaseEnvelope) -> None:
        tx = parse_transaction_event(env.payload)
        if tx is None:
            self._count("invalid")
            logger.warning(f"Dropped undecodable transaction message kind={env.kind} id={env.id}")
            return
        outcome = await self.reconciler.on_transaction(tx)
        self._count(outcome.value)
        if outcome is ReconcileOutcome.CHANGED:
            logger.info(f"Transaction {tx.id or '?'} from bus changed presence")

    def _count(self, key: str) -> None:
        self.counts[key] = self.counts.get(key, 0) + 1
