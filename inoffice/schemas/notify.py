from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class NotificationRequest(BaseModel):
    """Outbound webhook body fired on a presence transition."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(..., description="'yes' or 'no'")
    description: str = ""


class NotificationAccepted(BaseModel):
    ok: bool
    status_code: Optional[int] = None
    detail: Optional[str] = None
