from __future__ import annotations

import asyncio
import json
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple

import httpx

from app.classifier import ClassificationCriteria, TransactionClassifier
from app.freshness import FreshnessPolicy
from app.mirror import OfficeStatusMirror
from app.office_tracker import OfficeTrackerClient
from app.reconciler import CONTRADICTION_NOTICE, PresenceReconciler, ReconcileOutcome
from app.render import PresenceSink, StatusPage
from app.store import PresenceStore
from conftest import TUESDAY_0830
from inoffice.notify.client import NotifyClient
from inoffice.schemas.office import OfficeState
from inoffice.schemas.presence import Presentation

TZ = "Australia/Melbourne"


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingSink:
    def __init__(self):
        self.published: List[Tuple[Presentation, Optional[Presentation]]] = []

    async def publish(self, current: Presentation, previous: Optional[Presentation]) -> None:
        self.published.append((current, previous))


class FakeTracker:
    def __init__(self, state: OfficeState = OfficeState.UNTRACKED):
        self.state = state
        self.asserted: List[date] = []

    async def get_state(self, day: date) -> OfficeState:
        return self.state

    async def assert_work_from_office(self, day: date) -> bool:
        self.asserted.append(day)
        return True


def _reconciler(tracker=None, *, clock=None, **kwargs):
    clock = clock or Clock(datetime.fromisoformat("2024-05-14T09:00:00+10:00"))
    tracker = tracker or FakeTracker()
    sink = RecordingSink()
    reconciler = PresenceReconciler(
        classifier=TransactionClassifier(ClassificationCriteria()),
        store=PresenceStore(),
        mirror=OfficeStatusMirror(tracker, tz_name=TZ, now=clock),
        sink=sink,
        freshness=FreshnessPolicy(mode="day_boundary", tz_name=TZ),
        now=clock,
        **kwargs,
    )
    return reconciler, sink


def test_prime_renders_absent_state_once():
    reconciler, sink = _reconciler()

    async def main():
        first = await reconciler.prime()
        again = await reconciler.refresh()
        return first, again

    first, again = asyncio.run(main())
    assert first == Presentation(presence="no")
    assert again is False
    assert sink.published == [(Presentation(presence="no"), None)]


def test_qualifying_transaction_flips_presence(tx_factory):
    reconciler, sink = _reconciler()

    async def main():
        await reconciler.prime()
        outcome = await reconciler.on_transaction(tx_factory())
        return outcome, await reconciler.current()

    outcome, snap = asyncio.run(main())
    assert outcome is ReconcileOutcome.CHANGED
    assert snap.presentation.presence == "yes"
    assert snap.presentation.reason == "Bought Market Lane Coffee for $5.50 at 08:30"
    assert snap.transaction == tx_factory()

    current, previous = sink.published[-1]
    assert previous == Presentation(presence="no")
    assert current.present is True


def test_identical_output_notifies_once(tx_factory):
    reconciler, sink = _reconciler()
    # same minute, same second: derives the same presentation
    later = tx_factory(id="tx-2", created_at=TUESDAY_0830 + timedelta(milliseconds=500))

    async def main():
        await reconciler.prime()
        first = await reconciler.on_transaction(tx_factory())
        second = await reconciler.on_transaction(later)
        duplicate = await reconciler.on_transaction(later)
        return first, second, duplicate

    first, second, duplicate = asyncio.run(main())
    assert first is ReconcileOutcome.CHANGED
    assert second is ReconcileOutcome.UNCHANGED
    assert duplicate is ReconcileOutcome.STALE
    assert [p.presence for p, _ in sink.published] == ["no", "yes"]


def test_non_qualifying_amount_leaves_state_alone(tx_factory):
    reconciler, sink = _reconciler()

    async def main():
        await reconciler.prime()
        await reconciler.on_transaction(tx_factory())
        before = await reconciler.current()
        outcome = await reconciler.on_transaction(
            tx_factory(id="big", amount=-1000, created_at=TUESDAY_0830 + timedelta(minutes=5))
        )
        return before, outcome, await reconciler.current()

    before, outcome, after = asyncio.run(main())
    assert outcome is ReconcileOutcome.REJECTED
    assert after.transaction == before.transaction
    assert after.presentation == before.presentation
    assert len(sink.published) == 2


def test_saturday_transaction_is_rejected(tx_factory):
    saturday = Clock(datetime.fromisoformat("2024-05-18T09:00:00+10:00"))
    reconciler, sink = _reconciler(clock=saturday)

    async def main():
        await reconciler.prime()
        outcome = await reconciler.on_transaction(
            tx_factory(created_at=datetime.fromisoformat("2024-05-18T08:30:00+10:00"))
        )
        return outcome, await reconciler.current()

    outcome, snap = asyncio.run(main())
    assert outcome is ReconcileOutcome.REJECTED
    assert snap.presentation.presence == "no"
    assert snap.transaction is None


def test_status_timeout_still_serves_cached_presence(tx_factory):
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("office tracker timed out", request=request)

    tracker = OfficeTrackerClient("https://officetracker.test", transport=httpx.MockTransport(timeout))
    reconciler, _ = _reconciler(tracker, refresh_status_before_render=True)

    async def main():
        await reconciler.prime()
        await reconciler.mirror.poll()
        await reconciler.on_transaction(tx_factory())
        return await reconciler.current()

    snap = asyncio.run(main())
    assert snap.office_status.state is OfficeState.UNTRACKED
    assert snap.presentation.presence == "yes"
    assert CONTRADICTION_NOTICE not in snap.presentation.reason


def test_absent_but_said_they_would_be_in():
    tracker = FakeTracker(OfficeState.WORK_FROM_OFFICE)
    reconciler, sink = _reconciler(tracker)

    async def main():
        await reconciler.prime()
        await reconciler.mirror.poll()
        changed = await reconciler.refresh()
        return changed, await reconciler.current()

    changed, snap = asyncio.run(main())
    assert changed is True
    assert snap.presentation == Presentation(presence="no", reason=CONTRADICTION_NOTICE)
    assert sink.published[-1][0].reason == CONTRADICTION_NOTICE


def test_presence_wins_over_office_status(tx_factory):
    tracker = FakeTracker(OfficeState.WORK_FROM_HOME)
    reconciler, _ = _reconciler(tracker)

    async def main():
        await reconciler.mirror.poll()
        await reconciler.prime()
        await reconciler.on_transaction(tx_factory())
        return await reconciler.current()

    snap = asyncio.run(main())
    assert snap.presentation.presence == "yes"
    assert snap.presentation.reason.startswith("Bought ")


def test_midnight_refresh_expires_presence(tx_factory):
    clock = Clock(datetime.fromisoformat("2024-05-14T09:00:00+10:00"))
    reconciler, sink = _reconciler(clock=clock)

    async def main():
        await reconciler.prime()
        await reconciler.on_transaction(tx_factory())
        clock.now = datetime.fromisoformat("2024-05-15T00:00:05+10:00")
        changed = await reconciler.refresh()
        return changed, await reconciler.current()

    changed, snap = asyncio.run(main())
    assert changed is True
    assert snap.presentation.presence == "no"
    # the cached transaction survives; only the derived view expires
    assert snap.transaction == tx_factory()
    assert [p.presence for p, _ in sink.published] == ["no", "yes", "no"]


def test_prime_restores_cached_transaction(tx_factory, fake_redis):
    async def main():
        seeded = PresenceStore(redis=fake_redis, cache_key="k")
        await seeded.offer(tx_factory())

        reconciler, sink = _reconciler()
        reconciler.store = PresenceStore(redis=fake_redis, cache_key="k")
        presentation = await reconciler.prime()
        return presentation, sink

    presentation, sink = asyncio.run(main())
    assert presentation.presence == "yes"
    assert sink.published[0][1] is None


def test_assert_office_on_presence(tx_factory):
    tracker = FakeTracker()
    reconciler, _ = _reconciler(tracker, office_tracker=tracker, assert_office=True)

    async def main():
        await reconciler.prime()
        await reconciler.on_transaction(tx_factory())

    asyncio.run(main())
    assert tracker.asserted == [date(2024, 5, 14)]


def test_concurrent_transactions_render_newest(tx_factory):
    reconciler, sink = _reconciler()
    txs = [
        tx_factory(id=f"t{i}", created_at=TUESDAY_0830 + timedelta(minutes=i))
        for i in range(5)
    ]

    async def main():
        await reconciler.prime()
        await asyncio.gather(*(reconciler.on_transaction(tx) for tx in reversed(txs)))
        return await reconciler.current()

    snap = asyncio.run(main())
    assert snap.transaction.id == "t4"
    assert snap.presentation.reason.endswith("at 08:34")
    assert sink.published[-1][0] == snap.presentation


def test_summary_uses_reference_time(tx_factory):
    reconciler, _ = _reconciler()
    tx = tx_factory(created_at=datetime(2024, 5, 13, 22, 30, tzinfo=timezone.utc))
    assert reconciler.summarize(tx) == "Bought Market Lane Coffee for $5.50 at 08:30"


def test_late_stale_transactions_do_not_renotify(tx_factory):
    posts = []

    def hook(request: httpx.Request) -> httpx.Response:
        posts.append(json.loads(request.content))
        return httpx.Response(200)

    wednesday = Clock(datetime.fromisoformat("2024-05-15T09:00:00+10:00"))
    sink = PresenceSink(
        StatusPage(question="Is Bailey in the office?"),
        NotifyClient("https://chat.example/hook", transport=httpx.MockTransport(hook)),
        subject="Bailey",
    )
    reconciler, _ = _reconciler(clock=wednesday)
    reconciler.sink = sink

    async def main():
        await reconciler.prime()
        # yesterday's purchases delivered late: stored, shown, never fresh
        first = await reconciler.on_transaction(tx_factory(id="a"))
        second = await reconciler.on_transaction(
            tx_factory(id="b", created_at=TUESDAY_0830 + timedelta(minutes=30))
        )
        stale_outcomes = (first, second)
        fresh = await reconciler.on_transaction(
            tx_factory(id="c", created_at=datetime.fromisoformat("2024-05-15T08:45:00+10:00"))
        )
        return stale_outcomes, fresh, await reconciler.current()

    stale_outcomes, fresh, snap = asyncio.run(main())
    assert stale_outcomes == (ReconcileOutcome.CHANGED, ReconcileOutcome.CHANGED)
    assert fresh is ReconcileOutcome.CHANGED
    assert posts == [{"status": "yes", "description": "Bought Market Lane Coffee for $5.50 at 08:45"}]
    assert snap.presentation.presence == "yes"
    assert "Wed, 15 May 2024 08:45:00 AEST" in sink.page.html
