from __future__ import annotations

from typing import Optional

import httpx
from loguru import logger

from inoffice.schemas.notify import NotificationAccepted, NotificationRequest


class NotifyClient:
    """POSTs presence transitions to a chat/webhook channel."""

    def __init__(
        self,
        webhook_url: Optional[str],
        *,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.webhook_url = (webhook_url or "").strip() or None
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self.webhook_url is not None

    async def send(self, request: NotificationRequest) -> NotificationAccepted:
        if not self.enabled:
            return NotificationAccepted(ok=False, detail="webhook_not_configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.webhook_url,
                    json=request.model_dump(mode="json"),
                    headers={"Content-Type": "application/json"},
                )
            response.raise_for_status()
            return NotificationAccepted(ok=True, status_code=response.status_code)
        except httpx.HTTPStatusError as exc:
            logger.error(f"[NOTIFY] Webhook rejected notification: {exc.response.status_code}")
            return NotificationAccepted(ok=False, status_code=exc.response.status_code, detail=str(exc))
        except Exception as exc:
            logger.error(f"[NOTIFY] Failed to send notification: {exc}")
            return NotificationAccepted(ok=False, detail=str(exc))
