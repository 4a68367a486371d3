from __future__ import annotations

from datetime import date
from typing import Optional

import httpx
from loguru import logger

from inoffice.schemas.office import DayState, GetDayResponse, OfficeState, PutDayRequest


class OfficeTrackerClient:
    """
    Client for the office tracker's day-state API:

      GET /api/v1/state/{year}/{month}/{day}  -> {"data": {"state": <int>}}
      PUT /api/v1/state/{year}/{month}/{day}  <- {"data": {"state": <int>}}

    Reads never raise: any failure maps to OfficeState.UNTRACKED.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _day_url(self, day: date) -> str:
        return f"{self.base_url}/api/v1/state/{day.year}/{day.month}/{day.day}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, headers=self._headers(), transport=self._transport)

    async def get_state(self, day: date) -> OfficeState:
        url = self._day_url(day)
        try:
            async with self._client() as client:
                r = await client.get(url)
            r.raise_for_status()
            return GetDayResponse.model_validate(r.json()).data.state
        except Exception as e:
            logger.warning(f"Error getting office status for {day.isoformat()}: {e}")
            return OfficeState.UNTRACKED

    async def assert_work_from_office(self, day: date) -> bool:
        """Record WorkFromOffice for `day` unless the person already set a state."""
        existing = await self.get_state(day)
        if existing != OfficeState.UNTRACKED:
            logger.info(f"Office status for {day.isoformat()} already {existing.name}; not asserting")
            return False

        body = PutDayRequest(data=DayState(state=OfficeState.WORK_FROM_OFFICE))
        try:
            async with self._client() as client:
                r = await client.put(self._day_url(day), json=body.model_dump(mode="json"))
            r.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Error asserting office status for {day.isoformat()}: {e}")
            return False
        logger.info(f"Asserted WorkFromOffice for {day.isoformat()}")
        return True
