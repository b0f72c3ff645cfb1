import hmac
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware

from seawatch.api.routes import router
from seawatch.config import settings
from seawatch.database import init_db
from seawatch.modules.cross_source_dedup import DedupFetchError
from seawatch.modules.dedup_config import load_dedup_config
from seawatch.modules.downstream_trigger import DownstreamTriggerError

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"

# Reachable without X-API-Key
_PUBLIC_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/redoc"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create ledger tables and load dedup.yaml at startup."""
    init_db()
    config = load_dedup_config()
    logger.info(
        "Dedup config loaded: %d source priorities, %d incident type groups, chain depth %d",
        len(config.source_priorities), len(config.incident_type_groups), config.max_chain_depth,
    )
    if not settings.PUBLIC_URL:
        logger.warning("PUBLIC_URL not set: merges will run but the downstream job is never signalled")
    yield


app = FastAPI(
    title="SeaWatch",
    description=(
        "Cross-source deduplication of maritime security incident reports. "
        "Merges duplicate raw reports from different reporting centres into one authoritative record."
    ),
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


class APIKeyMiddleware(BaseHTTPMiddleware):
    """X-API-Key check, active only when SEAWATCH_API_KEY is set."""

    async def dispatch(self, request: Request, call_next):
        expected = settings.SEAWATCH_API_KEY
        if expected is None or request.url.path in _PUBLIC_PATHS:
            return await call_next(request)
        if not hmac.compare_digest(request.headers.get("X-API-Key") or "", expected):
            return JSONResponse(status_code=401, content={"detail": "Invalid or missing API key"})
        return await call_next(request)


app.add_middleware(APIKeyMiddleware)

# Each dedup run issues many Airtable calls; keep callers well under the base quota
limiter = Limiter(key_func=get_remote_address, default_limits=["60/minute"])
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(router, prefix="/api/v1")


# ── Error handlers ───────────────────────────────────────────────────────────

@app.exception_handler(DedupFetchError)
async def dedup_fetch_error_handler(request: Request, exc: DedupFetchError):
    return JSONResponse(
        status_code=502,
        content={"success": False, "error": "Record store unavailable", "detail": str(exc)},
    )


@app.exception_handler(DownstreamTriggerError)
async def downstream_trigger_error_handler(request: Request, exc: DownstreamTriggerError):
    # Merges were applied; report them alongside the failed signal
    return JSONResponse(
        status_code=502,
        content={
            "success": False,
            "error": "Downstream trigger failed",
            "detail": str(exc),
            "summary": exc.result.summary() if exc.result is not None else None,
        },
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    # Missing Airtable credentials land here too
    return JSONResponse(status_code=422, content={"success": False, "error": "Invalid request", "detail": str(exc)})


@app.exception_handler(SQLAlchemyError)
async def ledger_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Ledger query failed on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"error": "Run ledger unavailable"})


@app.exception_handler(Exception)
async def general_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s %s:\n%s", request.method, request.url.path, traceback.format_exc())
    return JSONResponse(status_code=500, content={"error": "Internal server error", "detail": "An unexpected error occurred."})


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "version": VERSION}
