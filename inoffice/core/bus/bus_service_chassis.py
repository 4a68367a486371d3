# inoffice/core/bus/bus_service_chassis.py
from __future__ import annotations

import asyncio
import traceback
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from .async_service import InOfficeBusAsync
from .bus_schemas import BaseEnvelope, ErrorInfo, ServiceRef, utcnow


Handler = Callable[[BaseEnvelope], Awaitable[None]]
Tick = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class ChassisConfig:
    service_name: str
    service_version: str
    node_name: str
    bus_url: str = "redis://localhost:6379/0"
    bus_enabled: bool = True

    # system behaviors
    heartbeat_interval_sec: float = 30.0
    connect_timeout_sec: float = 10.0
    shutdown_timeout_sec: float = 10.0
    resubscribe_backoff_sec: float = 5.0

    # system channels (stable defaults)
    health_channel: str = "system.health"
    error_channel: str = "system.error"


class _SystemHealthPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)
    status: str = "ok"
    service: str
    node: str
    version: str
    details: dict[str, Any] = Field(default_factory=dict)


class BaseChassis:
    """
    Shared chassis behavior:

    - optional bus connect/disconnect
    - periodic heartbeat publishing (bus chassis only)
    - exception wrapping to system.error
    - stop event checked by every sleep, so stop() ends loops promptly
    """

    uses_bus: bool = False

    def __init__(self, cfg: ChassisConfig, *, bus: Optional[InOfficeBusAsync] = None):
        self.cfg = cfg
        self._owns_bus = bus is None
        self.bus = bus or InOfficeBusAsync(cfg.bus_url, enabled=cfg.bus_enabled)

        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._started = False

    def _source(self) -> ServiceRef:
        return ServiceRef(name=self.cfg.service_name, version=self.cfg.service_version, node=self.cfg.node_name)

    @property
    def name(self) -> str:
        return f"{self.cfg.service_name}-{type(self).__name__.lower()}"

    async def start(self) -> None:
        if self._started:
            return
        self._started = True

        if self.uses_bus and self.bus.enabled:
            if not self.bus.connected:
                # compute timeout before creating the coroutine so failures don't leak "never awaited"
                timeout = float(self.cfg.connect_timeout_sec or 10.0)
                logger.info(f"Connecting bus url={self.cfg.bus_url}")
                await asyncio.wait_for(self.bus.connect(), timeout=timeout)
            self._tasks.append(asyncio.create_task(self._heartbeat_loop(), name=f"{self.name}-heartbeat"))

        self._tasks.append(asyncio.create_task(self._run(), name=f"{self.name}-run"))

        await self._stop.wait()
        await self._shutdown()

    async def stop(self) -> None:
        self._stop.set()

    async def _sleep(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True when stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=max(0.0, float(seconds)))
            return True
        except asyncio.TimeoutError:
            return False

    async def _heartbeat_loop(self) -> None:
        while not self._stop.is_set():
            try:
                env = BaseEnvelope(
                    kind="system.health",
                    source=self._source(),
                    payload=_SystemHealthPayload(
                        service=self.cfg.service_name,
                        node=self.cfg.node_name or "unknown",
                        version=self.cfg.service_version,
                    ).model_dump(mode="json"),
                )
                await self.bus.publish(self.cfg.health_channel, env)
            except Exception as e:
                # bus is likely down; _publish_error would fail too
                logger.warning(f"Heartbeat publish failed: {e}")
            if await self._sleep(float(self.cfg.heartbeat_interval_sec or 30.0)):
                break

    async def _publish_error(self, err: BaseException, *, when: str, env: BaseEnvelope | None = None) -> None:
        if not (self.uses_bus and self.bus.enabled and self.bus.connected):
            logger.opt(exception=err).error(f"{self.name} failed during {when}: {err}")
            return
        try:
            info = ErrorInfo(
                type=type(err).__name__,
                message=str(err),
                stack="".join(traceback.format_exception(type(err), err, err.__traceback__)),
                details={"when": when},
            )
            out = BaseEnvelope(
                kind="system.error",
                source=self._source(),
                correlation_id=(env.correlation_id if env else uuid4()),
                payload=info.model_dump(mode="json"),
            )
            await self.bus.publish(self.cfg.error_channel, out)
        except Exception:
            logger.exception("Failed publishing system.error")

    async def _shutdown(self) -> None:
        for t in self._tasks:
            if not t.done():
                t.cancel()

        try:
            await asyncio.wait_for(
                asyncio.gather(*self._tasks, return_exceptions=True),
                timeout=float(self.cfg.shutdown_timeout_sec or 10.0),
            )
        except asyncio.TimeoutError:
            logger.warning(f"Shutdown timeout waiting for {self.name} tasks")

        if self._owns_bus:
            try:
                await self.bus.close()
            except Exception:
                logger.exception("Bus close failed")

    async def _run(self) -> None:
        raise NotImplementedError


class Hunter(BaseChassis):
    """
    Fire-and-forget consumer. Subscribes to a channel pattern and hands every
    decoded envelope to the handler. A dropped subscription is retried after
    `resubscribe_backoff_sec`.
    """

    uses_bus = True

    def __init__(
        self,
        cfg: ChassisConfig,
        *,
        pattern: str,
        handler: Handler,
        bus: Optional[InOfficeBusAsync] = None,
    ):
        super().__init__(cfg, bus=bus)
        self.pattern = pattern
        self.handler = handler

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await self._consume()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Hunter subscription on {self.pattern} dropped: {e}")
            if await self._sleep(self.cfg.resubscribe_backoff_sec):
                break

    async def _consume(self) -> None:
        logger.info(f"Hunter subscribing pattern={self.pattern} bus={self.cfg.bus_url}")

        async with self.bus.subscribe(self.pattern, patterns=True) as pubsub:
            async for msg in self.bus.iter_messages(pubsub):
                if self._stop.is_set():
                    break
                await self.dispatch(msg)

    async def dispatch(self, msg: dict) -> None:
        data = msg.get("data") if isinstance(msg, dict) else None
        if data is None:
            return

        decoded = self.bus.codec.decode(data)
        if not decoded.ok:
            await self._publish_error(
                RuntimeError(decoded.error or "decode_failed"),
                when="hunter.decode",
                env=None,
            )
            return

        env = decoded.envelope
        try:
            await self.handler(env)
        except Exception as e:
            await self._publish_error(e, when="hunter.handle", env=env)


class Clock(BaseChassis):
    """
    Periodic ticker. Ticks once immediately, then every `interval_sec`.
    """

    def __init__(self, cfg: ChassisConfig, *, interval_sec: float, tick: Tick):
        super().__init__(cfg)
        self.interval_sec = float(interval_sec)
        self.tick = tick

    async def _run(self) -> None:
        logger.info(f"Clock starting interval={self.interval_sec}s")
        while not self._stop.is_set():
            try:
                await self.tick()
            except Exception as e:
                await self._publish_error(e, when="clock.tick", env=None)
            if await self._sleep(self.interval_sec):
                break


def seconds_until_next_midnight(now: datetime, tz_name: str) -> float:
    """Seconds from `now` until the next local midnight in `tz_name` (DST aware)."""
    tz = ZoneInfo(tz_name)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(tz)
    next_midnight = datetime.combine(local.date() + timedelta(days=1), time.min, tzinfo=tz)
    # subtract in UTC: same-tzinfo subtraction ignores offset changes
    return (next_midnight.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()


class DailyClock(BaseChassis):
    """
    Wall-clock aligned ticker: fires shortly after every local midnight.

    `skew_sec` keeps the wake-up strictly past the boundary.
    """

    def __init__(
        self,
        cfg: ChassisConfig,
        *,
        tz_name: str,
        tick: Tick,
        skew_sec: float = 5.0,
        now: Callable[[], datetime] = utcnow,
    ):
        super().__init__(cfg)
        self.tz_name = tz_name
        self.tick = tick
        self.skew_sec = max(0.0, float(skew_sec))
        self._now = now

    def next_delay(self) -> float:
        return seconds_until_next_midnight(self._now(), self.tz_name) + self.skew_sec

    async def _run(self) -> None:
        while not self._stop.is_set():
            delay = self.next_delay()
            logger.info(f"DailyClock sleeping {delay:.0f}s until next {self.tz_name} midnight")
            if await self._sleep(delay):
                break
            try:
                await self.tick()
            except Exception as e:
                await self._publish_error(e, when="daily_clock.tick", env=None)
