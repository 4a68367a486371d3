from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

from .office import OfficeStatusSnapshot
from .transaction import Transaction

PresenceString = Literal["yes", "no"]


class TransactionDisplay(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    description: str
    amount: str
    time: str


class Presentation(BaseModel):
    """Derived, user-facing verdict. Equality drives change detection."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    presence: PresenceString
    reason: str = ""
    transaction: Optional[TransactionDisplay] = None

    @property
    def present(self) -> bool:
        return self.presence == "yes"


class PresenceSnapshot(BaseModel):
    """Read-path view: everything a handler needs, no network required."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    transaction: Optional[Transaction] = None
    presentation: Optional[Presentation] = None
    office_status: OfficeStatusSnapshot = OfficeStatusSnapshot()
    rendered_at: Optional[datetime] = None
