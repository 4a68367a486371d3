from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, PlainTextResponse, Response
from loguru import logger
import orjson

from inoffice.core.bus.bus_schemas import utcnow

from .bus_worker import parse_transaction_event
from .context import PresenceContext
from .settings import Settings, get_settings

STATIC_DIR = Path(__file__).resolve().parent / "static"
FAVICON = STATIC_DIR / "favicon.png"


def configure_logging(settings: Settings) -> None:
    """Replace every loguru sink with one stdout sink; safe to call repeatedly."""
    logger.remove()
    logger.add(lambda m: print(m, end=""), level=settings.log_level.upper())


def build_context(settings: Settings) -> PresenceContext:
    return PresenceContext(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings)

    ctx = build_context(settings)
    app.state.ctx = ctx
    try:
        await ctx.start()
    except Exception:
        logger.exception("Startup failed")
        await ctx.stop()
        raise
    logger.info(
        f"{settings.service_name} started node={settings.node_name} "
        f"bus={'on' if settings.transaction_bus_enabled else 'off'} tz={settings.presence_timezone}"
    )

    try:
        yield
    finally:
        await ctx.stop()
        logger.info(f"{settings.service_name} stopped")


app = FastAPI(title="inoffice-presence-service", lifespan=lifespan)


def _ctx(request: Request) -> PresenceContext:
    return request.app.state.ctx


# ─────────────────────────────────────────────
# Inbound transactions
# ─────────────────────────────────────────────

@app.post("/webhook")
async def webhook(request: Request) -> Response:
    body = await request.body()
    try:
        payload = orjson.loads(body)
    except orjson.JSONDecodeError as e:
        logger.error(f"Error decoding webhook body: {e}")
        return PlainTextResponse("Bad request", status_code=400)

    tx = parse_transaction_event(payload)
    if tx is None:
        return PlainTextResponse("Bad request", status_code=400)

    try:
        outcome = await _ctx(request).reconciler.on_transaction(tx)
    except Exception:
        logger.exception(f"Error processing transaction {tx.id or '?'}")
        return PlainTextResponse("Internal server error", status_code=500)

    return JSONResponse({"ok": True, "outcome": outcome.value})


# ─────────────────────────────────────────────
# Read endpoints (snapshots only)
# ─────────────────────────────────────────────

@app.get("/", response_class=HTMLResponse)
async def index(request: Request) -> Response:
    html = _ctx(request).page.html
    if html is None:
        return PlainTextResponse("Service unavailable", status_code=503)
    return HTMLResponse(html)


@app.get("/raw", response_class=PlainTextResponse)
async def raw(request: Request) -> Response:
    snap = await _ctx(request).reconciler.current()
    if snap.presentation is None:
        return PlainTextResponse("Service unavailable", status_code=503)
    return PlainTextResponse(snap.presentation.presence)


@app.get("/favicon.ico", include_in_schema=False)
async def favicon() -> Response:
    if not FAVICON.is_file():
        return PlainTextResponse("Not found", status_code=404)
    return FileResponse(FAVICON, media_type="image/png", headers={"Cache-Control": "public, max-age=86400"})


@app.get("/health")
async def health(request: Request) -> Dict[str, Any]:
    ctx = _ctx(request)
    s = ctx.settings
    snap = await ctx.reconciler.current()
    office = snap.office_status
    age = (utcnow() - office.fetched_at).total_seconds() if office.fetched_at else None
    return {
        "ok": True,
        "service": s.service_name,
        "node": s.node_name,
        "version": s.service_version,
        "presence": snap.presentation.presence if snap.presentation else None,
        "office_status": office.state.name.lower(),
        "office_status_age_sec": age,
        "bus": ctx.bus.connected,
        "transactions": dict(ctx.transaction_handler.counts),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=get_settings().port)
