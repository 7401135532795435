from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import asyncio
import time
import uuid
from datetime import datetime, timezone
from .routers.relay import router as relay_router
from .routers.scanner import router as scanner_router
from .catalog import CatalogClient
from .config import settings
from .jsonlog import json_log
from .relay import RelayHub
from .terminal import PosTerminal

app = FastAPI(title="POS Scanner Bridge", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def build_terminal() -> PosTerminal:
    return PosTerminal(
        origin=settings.public_origin,
        catalog=CatalogClient(settings.api_base_url),
        timings=settings.timings,
        relay_override=settings.relay_url,
    )


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    content = {"detail": "internal error", "request_id": rid}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)

# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=dur_ms,
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if path != "/health":
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=dur_ms,
        )
    return response

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(scanner_router)
app.include_router(relay_router)

@app.on_event("startup")
async def _startup():
    hub = RelayHub()
    app.state.relay_hub = hub
    app.state.relay_heartbeat = asyncio.create_task(hub.run_heartbeat_forever(settings.relay_heartbeat_seconds))
    app.state.terminal = None
    if settings.scanner_autostart:
        terminal = build_terminal()
        await terminal.mount()
        app.state.terminal = terminal
    json_log(
        "info",
        "startup.ready",
        env=settings.env,
        version=settings.api_version,
        scanner_autostart=settings.scanner_autostart,
        public_origin=settings.public_origin,
    )

@app.on_event("shutdown")
async def _shutdown():
    terminal = getattr(app.state, "terminal", None)
    if terminal is not None:
        await terminal.unmount()
    task = getattr(app.state, "relay_heartbeat", None)
    if task is not None:
        task.cancel()
    hub = getattr(app.state, "relay_hub", None)
    if hub is not None:
        await hub.shutdown()


@app.get("/health")
def health(req: Request):
    terminal = getattr(app.state, "terminal", None)
    hub = getattr(app.state, "relay_hub", None)
    return {
        "status": "ok",
        "env": settings.env,
        "service": "scanner-bridge",
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": _current_request_id(req),
        "channel_state": terminal.channel.state.value if terminal else None,
        "relay": hub.counts() if hub else None,
    }
