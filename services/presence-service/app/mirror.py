from __future__ import annotations

import itertools
from datetime import date, datetime
from typing import Callable
from zoneinfo import ZoneInfo

from loguru import logger

from inoffice.core.bus.bus_schemas import utcnow
from inoffice.schemas.office import OfficeState, OfficeStatusSnapshot

from .office_tracker import OfficeTrackerClient


class OfficeStatusMirror:
    """
    Read-only mirror of today's self-reported office status.

    Each poll is numbered when it starts; its result replaces the snapshot
    only if no later-started poll has already landed.
    """

    def __init__(
        self,
        client: OfficeTrackerClient,
        *,
        tz_name: str,
        now: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.tz = ZoneInfo(tz_name)
        self._now = now
        self._sequence = itertools.count(1)
        self._snapshot = OfficeStatusSnapshot()

    def today(self) -> date:
        return self._now().astimezone(self.tz).date()

    def latest(self) -> OfficeStatusSnapshot:
        return self._snapshot

    async def poll(self) -> OfficeState:
        seq = next(self._sequence)
        state = await self.client.get_state(self.today())
        self._store(OfficeStatusSnapshot(state=state, fetched_at=self._now(), sequence=seq))
        return state

    def _store(self, snap: OfficeStatusSnapshot) -> bool:
        if snap.sequence <= self._snapshot.sequence:
            logger.debug(f"Dropping out-of-order office status seq={snap.sequence} (have {self._snapshot.sequence})")
            return False
        if snap.state != self._snapshot.state:
            logger.info(f"Office status now {snap.state.name}")
        self._snapshot = snap
        return True
