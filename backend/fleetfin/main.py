"""FleetFin transaction rules API: main entry point."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from fleetfin.config import settings
from fleetfin.core.database import async_session_factory, engine
from fleetfin.core.exceptions import AppError
from fleetfin.core.middleware import REQUEST_ID_HEADER, RequestLoggingMiddleware, get_request_id
from fleetfin.schemas.error import ErrorResponse

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    # Startup
    logger.info("Starting FleetFin API", env=settings.app_env)
    yield
    # Shutdown
    logger.info("Shutting down FleetFin API")
    await engine.dispose()


app = FastAPI(
    title="FleetFin API",
    description="Transaction categorization rules: matching and AI generation",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    redirect_slashes=False,
)

# ── Middleware ─────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


# ── Error envelope ────────────────────────────────
def error_response(request: Request, status_code: int, message: str, error_code: str) -> JSONResponse:
    request_id = get_request_id(request)
    body = ErrorResponse(error=message, error_code=error_code, request_id=request_id)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(),
        headers={REQUEST_ID_HEADER: request_id},
    )


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    if first.get("type") == "json_invalid":
        return "Invalid JSON in request body"
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"Invalid request: {location}: {first.get('msg', 'invalid value')}"
    if len(errors) > 1:
        message += f" (and {len(errors) - 1} more)"
    return message


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "request_failed",
        error=exc.detail,
        error_code=exc.error_code,
        status=exc.status_code,
        path=request.url.path,
        request_id=get_request_id(request),
    )
    return error_response(request, exc.status_code, exc.detail, exc.error_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    error_code = "NOT_FOUND" if exc.status_code == 404 else f"HTTP_{exc.status_code}"
    logger.warning(
        "request_failed",
        error=exc.detail,
        error_code=error_code,
        status=exc.status_code,
        path=request.url.path,
        request_id=get_request_id(request),
    )
    return error_response(request, exc.status_code, str(exc.detail), error_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    message = _validation_message(exc)
    logger.warning(
        "request_invalid",
        error=message,
        path=request.url.path,
        request_id=get_request_id(request),
    )
    return error_response(request, 400, message, "INVALID_REQUEST")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(
        "unhandled_error",
        error=str(exc),
        path=request.url.path,
        request_id=get_request_id(request),
    )
    return error_response(request, 500, "Internal server error", "UNKNOWN_ERROR")


# ── Health Check ──────────────────────────────────
@app.get("/health", tags=["system"])
async def health_check():
    """Liveness probe: always returns healthy if the process is running."""
    return {"status": "healthy", "version": "0.1.0"}


@app.get("/ready", tags=["system"])
async def readiness_check():
    """Readiness probe: checks DB connectivity."""
    checks = {"database": "unknown", "api": "ok"}
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
    except (SQLAlchemyError, OSError) as e:
        checks["database"] = f"error: {e}"
        return {"status": "degraded", "checks": checks}

    return {"status": "ready", "checks": checks}


# ── API Routes ────────────────────────────────────
from fleetfin.api.v1 import transaction_rules  # noqa: E402

app.include_router(
    transaction_rules.router,
    prefix="/api/v1/transaction-rules",
    tags=["transaction-rules"],
)
