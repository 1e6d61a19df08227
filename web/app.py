"""
FastAPI web application for the chess move gateway.

Exposes POST /get-best-move (aliased as POST /api/get-best-move), which takes
a FEN position and an optional depth, runs one external engine session, and
returns the engine's best move together with its raw analysis lines. Also
serves the browser client from static files.

Architecture notes:
- Async endpoint: the engine conversation is asyncio subprocess I/O, so the
  handler awaits it on the event loop instead of tying up a worker thread.
- One engine process per request: the EngineRunner never reuses a process;
  its semaphore only caps how many run at the same time.
- Errors are exceptions: the bridge raises InvalidInput / EngineError and
  the handlers registered in create_app() turn them into JSON responses.
  Exactly one response leaves the app per request.
- Request statistics live in a SessionTracker on app.state, flushed to a
  JSON file by a background task started in the lifespan.
- Static files mounted LAST: route registration is first-match, so API routes
  must be registered before the StaticFiles catch-all.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field, field_validator

from bridge.errors import EngineError, InvalidInput
from bridge.runner import EngineRunner
from web.config import Settings, load_settings
from web.stats import SessionTracker, StatsStore, summarize

_log = logging.getLogger(__name__)

# Absolute path resolved at import time, so the working directory does not matter.
_STATIC_DIR = Path(__file__).parent / "static"

MOVE_PATHS = ("/get-best-move", "/api/get-best-move")


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class MoveRequest(BaseModel):
    """
    Client request for a computer move.

    Fields:
        fen:   Position to search. Optional here; the runner rejects a
               missing or blank FEN with InvalidInput, which maps to the
               plain 400 the client expects.
        depth: Search depth. Missing or non-positive means "use the default";
               large values are clamped by the runner.
    """

    fen: str | None = None
    depth: int | None = None

    @field_validator("fen")
    @classmethod
    def strip_fen(cls, v: str | None) -> str | None:
        return v.strip() if v is not None else None


class MoveResponse(BaseModel):
    """
    Engine answer.

    Fields:
        best_move: Best move as reported by the engine (serialized as bestMove).
        analysis:  Non-blank engine output lines, in order.
    """

    best_move: str = Field(serialization_alias="bestMove")
    analysis: list[str]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def client_ip(request: Request) -> str:
    """Best-effort client address, honouring reverse-proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


async def _every(interval: float, action: Callable[[], object], name: str) -> None:
    """Run a synchronous housekeeping action every `interval` seconds."""
    while True:
        await asyncio.sleep(interval)
        try:
            action()
        except Exception:
            _log.exception("Periodic task %s failed", name)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    runner: EngineRunner | None = None,
    tracker: SessionTracker | None = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: Configuration; read from the environment when omitted.
        runner:   Engine runner; built from settings when omitted.
        tracker:  Request statistics collaborator; built from settings when
                  omitted.

    Returns:
        A FastAPI app with the move, self-check, and stats routes plus the
        static client.
    """
    settings = settings or load_settings()
    logging.basicConfig(level=settings.log_level)

    if runner is None:
        runner = EngineRunner(
            settings.engine_command,
            variant_path=settings.variant_path,
            variant_name=settings.variant_name,
            timeout=settings.engine_timeout,
            default_depth=settings.default_depth,
            max_depth=settings.max_depth,
            max_concurrent=settings.max_concurrent_engines,
        )
    if tracker is None:
        tracker = SessionTracker(
            StatsStore(settings.stats_file), idle_timeout=settings.session_idle_timeout
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _log.info("Engine: %s", " ".join(runner.command))
        _log.info("Stats file: %s", tracker.store.path.resolve())
        housekeeping = [
            asyncio.create_task(
                _every(settings.stats_flush_interval, tracker.flush, "stats flush")
            ),
            asyncio.create_task(
                _every(settings.session_cleanup_interval, tracker.evict_idle, "session cleanup")
            ),
        ]
        try:
            yield
        finally:
            for task in housekeeping:
                task.cancel()
            await asyncio.gather(*housekeeping, return_exceptions=True)
            tracker.flush()
            _log.info("Stats flushed on shutdown")

    app = FastAPI(title="Chess Move Gateway", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.runner = runner
    app.state.tracker = tracker

    # -----------------------------------------------------------------------
    # Error mapping
    # -----------------------------------------------------------------------

    @app.exception_handler(InvalidInput)
    async def invalid_input_handler(request: Request, exc: InvalidInput) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
        return JSONResponse(status_code=500, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())},
        )

    # -----------------------------------------------------------------------
    # Request tracking
    # -----------------------------------------------------------------------

    @app.middleware("http")
    async def track_requests(
        request: Request, call_next: Callable[[Request], Awaitable]
    ):
        request.state.stats_record = tracker.record(
            client_ip(request),
            request.headers.get("user-agent", "unknown"),
            request.method,
            request.url.path,
        )
        return await call_next(request)

    # -----------------------------------------------------------------------
    # Engine routes (registered BEFORE StaticFiles mount)
    # -----------------------------------------------------------------------

    async def get_best_move(
        request: Request, payload: MoveRequest | None = None
    ) -> MoveResponse:
        """
        Ask the engine for the best move in the given position.

        Raises:
            InvalidInput (→ 400): FEN missing or blank.
            EngineError  (→ 500): Engine failed to start, rejected the
                                  position, exited early, or timed out.
        """
        payload = payload or MoveRequest()
        _log.info("Received request with FEN: %s", payload.fen)
        if payload.fen:
            request.state.stats_record["fen"] = payload.fen

        result = await runner.best_move(payload.fen, payload.depth)
        return MoveResponse(best_move=result.best_move, analysis=result.analysis)

    for path in MOVE_PATHS:
        app.add_api_route(
            path, get_best_move, methods=["POST"], response_model=MoveResponse
        )

    @app.get("/test-variant")
    async def test_variant() -> JSONResponse:
        """Shallow search from the start position to prove the engine setup works."""
        try:
            result = await runner.self_check()
        except EngineError as exc:
            return JSONResponse(
                status_code=500, content={"error": exc.message, "output": exc.analysis}
            )
        return JSONResponse(
            content={
                "status": "Variant works correctly",
                "bestMove": result.best_move,
                "output": result.analysis,
            }
        )

    # -----------------------------------------------------------------------
    # Statistics routes
    # -----------------------------------------------------------------------

    @app.get("/api/stats/summary")
    def stats_summary() -> dict:
        days = summarize(tracker.flush())
        return {"success": True, "totalDays": len(days), "days": days}

    @app.get("/api/sessions/active")
    def active_sessions() -> dict:
        sessions = [session.to_dict() for session in tracker.active()]
        return {"success": True, "count": len(sessions), "sessions": sessions}

    @app.get("/api/stats/{date}")
    def stats_for_date(date: str):
        day = tracker.store.read()["daily"].get(date)
        if day is None:
            return JSONResponse(
                status_code=404, content={"success": False, "message": "No data for this date"}
            )
        return {"success": True, "date": date, "data": day}

    # -----------------------------------------------------------------------
    # Static client, MUST be last (catch-all for /static/* assets)
    # -----------------------------------------------------------------------

    @app.get("/", include_in_schema=False)
    def serve_root() -> FileResponse:
        """Serve the browser client."""
        return FileResponse(_STATIC_DIR / "index.html")

    app.mount("/static", StaticFiles(directory=_STATIC_DIR), name="static")

    return app


app = create_app()
