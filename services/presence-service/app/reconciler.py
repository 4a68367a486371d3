from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from loguru import logger

from inoffice.core.bus.bus_schemas import utcnow
from inoffice.schemas.office import OfficeState
from inoffice.schemas.presence import Presentation, PresenceSnapshot
from inoffice.schemas.transaction import Transaction

from .classifier import TransactionClassifier
from .freshness import FreshnessPolicy, is_fresh
from .mirror import OfficeStatusMirror
from .office_tracker import OfficeTrackerClient
from .render import PresenceSink, format_amount, transaction_display
from .store import Derive, PresenceStore, RenderChange

CONTRADICTION_NOTICE = "(but said they would be in)"


class ReconcileOutcome(str, Enum):
    REJECTED = "rejected"
    STALE = "stale"
    UNCHANGED = "unchanged"
    CHANGED = "changed"


class PresenceReconciler:
    """
    Turns transaction events and office-status refreshes into presentation
    transitions. The sink only hears about actual changes.
    """

    def __init__(
        self,
        *,
        classifier: TransactionClassifier,
        store: PresenceStore,
        mirror: OfficeStatusMirror,
        sink: PresenceSink,
        freshness: FreshnessPolicy,
        refresh_status_before_render: bool = False,
        office_tracker: Optional[OfficeTrackerClient] = None,
        assert_office: bool = False,
        now: Callable[[], datetime] = utcnow,
    ):
        self.classifier = classifier
        self.store = store
        self.mirror = mirror
        self.sink = sink
        self.freshness = freshness
        self.refresh_status_before_render = refresh_status_before_render
        self.office_tracker = office_tracker
        self.assert_office = assert_office and office_tracker is not None
        self._now = now
        self.tz = ZoneInfo(freshness.tz_name)

    # ── derivation ────────────────────────────────────────────────

    def derive(self, tx: Optional[Transaction], office_state: OfficeState, now: datetime) -> Presentation:
        present = is_fresh(tx, now, self.freshness)
        if present:
            reason = self.summarize(tx)
        elif office_state == OfficeState.WORK_FROM_OFFICE:
            reason = CONTRADICTION_NOTICE
        else:
            reason = ""
        return Presentation(
            presence="yes" if present else "no",
            reason=reason,
            transaction=transaction_display(tx, self.freshness.tz_name),
        )

    def summarize(self, tx: Transaction) -> str:
        local = tx.created_at.astimezone(self.tz)
        return f"Bought {tx.description} for {format_amount(tx.amount)} at {local:%H:%M}"

    def _deriver(self) -> Derive:
        # office status and clock are sampled once per derivation
        office_state = self.mirror.latest().state
        now = self._now()
        return lambda tx: self.derive(tx, office_state, now)

    # ── write paths ───────────────────────────────────────────────

    async def on_transaction(self, tx: Transaction) -> ReconcileOutcome:
        if not self.classifier(tx):
            logger.warning(f"Transaction {tx.id or '?'} does not meet criteria")
            return ReconcileOutcome.REJECTED

        if self.refresh_status_before_render:
            await self.mirror.poll()

        outcome = await self.store.merge(tx, self._deriver())
        if not outcome.applied:
            logger.debug(f"Transaction {tx.id or '?'} is not newer than the cached one; dropped")
            return ReconcileOutcome.STALE

        logger.info(f"Qualifying transaction {tx.id or '?'} at {tx.created_at.isoformat()} stored")
        changed = await self._dispatch(outcome.render)
        await self.store.persist()

        if self.assert_office and outcome.render is not None and outcome.render.current.present:
            await self.office_tracker.assert_work_from_office(self.mirror.today())

        return ReconcileOutcome.CHANGED if changed else ReconcileOutcome.UNCHANGED

    async def refresh(self) -> bool:
        """Re-derive without a new transaction (freshness expiry, office status change)."""
        change = await self.store.rerender(self._deriver())
        return await self._dispatch(change)

    async def prime(self) -> Presentation:
        await self.store.load()
        change = await self.store.rerender(self._deriver())
        await self._dispatch(change)
        return change.current

    async def _dispatch(self, change: Optional[RenderChange]) -> bool:
        if change is None or not change.changed:
            return False
        await self.sink.publish(change.current, change.previous)
        return True

    # ── read path ─────────────────────────────────────────────────

    async def current(self) -> PresenceSnapshot:
        tx, presentation, rendered_at = await self.store.snapshot()
        return PresenceSnapshot(
            transaction=tx,
            presentation=presentation,
            office_status=self.mirror.latest(),
            rendered_at=rendered_at,
        )
