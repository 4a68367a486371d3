from __future__ import annotations

from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi.templating import Jinja2Templates
from loguru import logger

from inoffice.notify.client import NotifyClient
from inoffice.schemas.notify import NotificationRequest
from inoffice.schemas.presence import Presentation, TransactionDisplay
from inoffice.schemas.transaction import Transaction

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

RFC1123 = "%a, %d %b %Y %H:%M:%S %Z"


def format_amount(amount: int) -> str:
    """Spend in minor units -> '$5.50'."""
    return f"${-amount / 100:.2f}"


def format_time(tx: Transaction, tz_name: str) -> str:
    return tx.created_at.astimezone(ZoneInfo(tz_name)).strftime(RFC1123)


def transaction_display(tx: Optional[Transaction], tz_name: str) -> Optional[TransactionDisplay]:
    if tx is None:
        return None
    return TransactionDisplay(
        description=tx.description,
        amount=format_amount(tx.amount),
        time=format_time(tx, tz_name),
    )


class StatusPage:
    """Renders the public page once per presentation change and caches the HTML."""

    def __init__(
        self,
        *,
        question: str,
        templates: Optional[Jinja2Templates] = None,
        template_name: str = "index.html",
    ):
        self.question = question
        self.templates = templates or Jinja2Templates(directory=str(TEMPLATES_DIR))
        self.template_name = template_name
        self._html: Optional[str] = None

    @property
    def html(self) -> Optional[str]:
        return self._html

    def render(self, presentation: Presentation) -> str:
        template = self.templates.get_template(self.template_name)
        return template.render(
            question=self.question,
            presence=presentation.presence,
            reason=presentation.reason,
            transaction=presentation.transaction,
        )

    def update(self, presentation: Presentation) -> None:
        self._html = self.render(presentation)


class PresenceSink:
    """
    Side effects of a presentation transition: regenerate the page, then
    notify the webhook channel. The very first render only builds the page.
    """

    def __init__(self, page: StatusPage, notifier: NotifyClient, *, subject: str):
        self.page = page
        self.notifier = notifier
        self.subject = subject

    def describe(self, presentation: Presentation) -> str:
        if presentation.reason:
            return presentation.reason
        if presentation.present:
            return f"{self.subject} is in the office"
        return f"{self.subject} is not in the office"

    async def publish(self, current: Presentation, previous: Optional[Presentation]) -> None:
        self.page.update(current)
        if previous is None:
            return
        # the page tracks every change; the channel only hears (presence, reason) moves
        if (current.presence, current.reason) == (previous.presence, previous.reason):
            return
        logger.info(f"Presence changed {previous.presence} -> {current.presence}")
        if not self.notifier.enabled:
            return
        accepted = await self.notifier.send(
            NotificationRequest(status=current.presence, description=self.describe(current))
        )
        if not accepted.ok:
            logger.warning(f"Presence notification not delivered: {accepted.detail}")
