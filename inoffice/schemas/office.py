from __future__ import annotations

from datetime import datetime
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OfficeState(IntEnum):
    """Self-reported attendance state, as stored by the office tracker."""

    UNTRACKED = 0
    WORK_FROM_HOME = 1
    WORK_FROM_OFFICE = 2
    OTHER = 3

    @classmethod
    def parse(cls, value: Any) -> "OfficeState":
        if isinstance(value, cls):
            return value
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return cls.OTHER


class DayState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    state: OfficeState = OfficeState.UNTRACKED

    @field_validator("state", mode="before")
    @classmethod
    def _coerce_state(cls, v: Any) -> OfficeState:
        return OfficeState.parse(v)


class GetDayResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: DayState


class PutDayRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    data: DayState


class OfficeStatusSnapshot(BaseModel):
    """Latest mirrored office-tracker value; replaced wholesale, never mutated."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    state: OfficeState = OfficeState.UNTRACKED
    fetched_at: datetime | None = None
    sequence: int = Field(0, ge=0)
