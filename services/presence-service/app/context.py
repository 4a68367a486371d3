from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable, List, Optional

import httpx
from loguru import logger
from redis.asyncio import Redis

from inoffice.core.bus.async_service import InOfficeBusAsync
from inoffice.core.bus.bus_schemas import utcnow
from inoffice.core.bus.bus_service_chassis import BaseChassis, ChassisConfig, Clock, DailyClock, Hunter
from inoffice.core.bus.codec import InOfficeCodec
from inoffice.notify.client import NotifyClient

from .bus_worker import TransactionHandler
from .classifier import ClassificationCriteria, TransactionClassifier
from .freshness import FreshnessPolicy
from .mirror import OfficeStatusMirror
from .office_tracker import OfficeTrackerClient
from .reconciler import PresenceReconciler
from .render import PresenceSink, StatusPage
from .settings import Settings
from .store import PresenceStore


class PresenceContext:
    """
    Owns every piece of shared state and the background loops.
    Built in the FastAPI lifespan and hung off app.state.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        redis: Any = None,
        bus: Optional[InOfficeBusAsync] = None,
        tracker_transport: Optional[httpx.AsyncBaseTransport] = None,
        notify_transport: Optional[httpx.AsyncBaseTransport] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self._now = now

        if redis is None and settings.state_cache_redis_url:
            redis = Redis.from_url(settings.state_cache_redis_url, decode_responses=False)
        self.redis = redis

        self.bus = bus or InOfficeBusAsync(
            settings.bus_url,
            enabled=settings.transaction_bus_enabled,
            codec=InOfficeCodec(),
        )

        self.criteria = ClassificationCriteria.from_settings(settings)
        self.freshness = FreshnessPolicy.from_settings(settings)

        self.store = PresenceStore(redis=self.redis, cache_key=settings.state_cache_key)
        self.office_tracker = OfficeTrackerClient(
            settings.officetracker_base_url,
            settings.officetracker_api_key,
            timeout=settings.officetracker_timeout_sec,
            transport=tracker_transport,
        )
        self.mirror = OfficeStatusMirror(self.office_tracker, tz_name=settings.presence_timezone, now=now)
        self.page = StatusPage(question=settings.presence_question)
        self.notifier = NotifyClient(
            settings.notify_webhook_url,
            timeout=settings.notify_timeout_sec,
            transport=notify_transport,
        )
        self.sink = PresenceSink(self.page, self.notifier, subject=settings.presence_subject)
        self.reconciler = PresenceReconciler(
            classifier=TransactionClassifier(self.criteria),
            store=self.store,
            mirror=self.mirror,
            sink=self.sink,
            freshness=self.freshness,
            refresh_status_before_render=settings.office_status_refresh_before_render,
            office_tracker=self.office_tracker,
            assert_office=settings.office_assert_on_presence,
            now=now,
        )
        self.transaction_handler = TransactionHandler(self.reconciler)

        self._chassis: List[BaseChassis] = []
        self._tasks: List[asyncio.Task] = []

    def _cfg(self) -> ChassisConfig:
        s = self.settings
        return ChassisConfig(
            service_name=s.service_name,
            service_version=s.service_version,
            node_name=s.node_name,
            bus_url=s.bus_url,
            bus_enabled=s.transaction_bus_enabled,
            heartbeat_interval_sec=s.heartbeat_interval_sec,
            connect_timeout_sec=s.bus_connect_timeout_sec,
            shutdown_timeout_sec=s.shutdown_grace_sec,
            health_channel=s.health_channel,
            error_channel=s.error_channel,
        )

    async def poll_office_status(self) -> None:
        await self.mirror.poll()
        await self.reconciler.refresh()

    async def start(self) -> None:
        """Connect the transaction feed (fatal on failure), prime state, start loops."""
        s = self.settings
        if self.bus.enabled:
            # no transaction feed, no purpose: let this raise and stop the process
            await asyncio.wait_for(self.bus.connect(), timeout=s.bus_connect_timeout_sec)
            logger.info(f"Transaction bus connected url={s.bus_url} channel={s.channel_transactions}")

        presentation = await self.reconciler.prime()
        logger.info(f"Primed presence={presentation.presence}")

        cfg = self._cfg()
        if self.bus.enabled:
            self._chassis.append(
                Hunter(cfg, pattern=s.channel_transactions, handler=self.transaction_handler, bus=self.bus)
            )
        self._chassis.append(Clock(cfg, interval_sec=s.office_status_poll_interval_sec, tick=self.poll_office_status))
        self._chassis.append(
            DailyClock(
                cfg,
                tz_name=s.presence_timezone,
                skew_sec=s.daily_refresh_skew_sec,
                tick=self.reconciler.refresh,
                now=self._now,
            )
        )

        for chassis in self._chassis:
            task = asyncio.create_task(chassis.start(), name=chassis.name)
            task.add_done_callback(_log_crash)
            self._tasks.append(task)

    async def stop(self) -> None:
        for chassis in self._chassis:
            await chassis.stop()
        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=self.settings.shutdown_grace_sec + 1.0)
            for t in pending:
                t.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        self._chassis.clear()
        self._tasks.clear()

        try:
            await self.bus.close()
        except Exception:
            logger.exception("Bus close failed")
        if self.redis is not None:
            try:
                await self.redis.aclose()
            except Exception:
                logger.exception("State cache close failed")


def _log_crash(t: asyncio.Task) -> None:
    if t.cancelled():
        return
    exc = t.exception()
    if exc is not None:
        logger.opt(exception=exc).error(f"Background task {t.get_name()} crashed")
