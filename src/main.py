"""FastAPI application initialization."""

from contextlib import asynccontextmanager
from uuid import uuid4

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.auth import router as auth_router
from src.api.dependencies import get_token_service
from src.api.middleware import CorrelationIdMiddleware
from src.api.users import router as users_router
from src.config import get_settings
from src.services.exceptions import AuthError
from src.services.logging_service import configure_logging, get_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup. Missing JWT_KEY / JWT_ISSUER raises here and aborts startup.
    settings = get_settings()
    configure_logging(settings.log_level, json_logs=settings.log_json)
    logger = get_logger("main")
    get_token_service()

    try:
        from src.database import init_database, run_migrations

        await init_database()
        await run_migrations()
        logger.info("database_initialized")
    except Exception as e:
        logger.warning(
            "database_initialization_failed",
            error=str(e),
            note="Continuing without database - account endpoints will return 500",
        )

    logger.info(
        "application_started",
        issuer=settings.jwt_issuer,
        log_level=settings.log_level,
    )

    yield

    # Shutdown
    from src.database import close_database

    await close_database()
    logger.info("application_shutdown")


app = FastAPI(
    title="Financial Manager API - Accounts",
    description="Registration, email confirmation, login and password reset",
    version="1.0.0",
    lifespan=lifespan,
)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or str(uuid4())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with user-friendly messages.

    Returns 400 Bad Request with the first failing field.
    """
    correlation_id = _correlation_id(request)
    logger = structlog.get_logger()

    errors = exc.errors()
    if errors:
        first_error = errors[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", ["unknown"]))
        message = first_error.get("msg", "Validation failed")
        detail = f"Field '{field}': {message}"
    else:
        detail = "Request validation failed"

    logger.warning(
        "validation_error",
        correlation_id=correlation_id,
        detail=detail,
    )

    return JSONResponse(
        status_code=400,
        content={
            "error": "Validation error",
            "detail": detail,
            "correlation_id": correlation_id,
        },
        headers={"X-Correlation-Id": correlation_id},
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render workflow errors with their status code and safe detail."""
    correlation_id = _correlation_id(request)
    headers = {"X-Correlation-Id": correlation_id}

    if exc.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"
    if exc.expired:
        headers["Token-Expired"] = "true"

    structlog.get_logger().info(
        "auth_error",
        correlation_id=correlation_id,
        status_code=exc.status_code,
        error=exc.error,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error,
            "detail": exc.detail,
            "correlation_id": correlation_id,
        },
        headers=headers,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected failures in full and return an opaque 500."""
    correlation_id = _correlation_id(request)
    structlog.get_logger().exception(
        "unhandled_exception",
        correlation_id=correlation_id,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": "Internal server error.",
            "correlation_id": correlation_id,
        },
        headers={"X-Correlation-Id": correlation_id},
    )


@app.get("/health", tags=["Health"])
async def health() -> dict:
    """Report service and database health."""
    from src.database import health_check

    database_ok = await health_check()
    return {"status": "ok" if database_ok else "degraded", "database": database_ok}


# CORS middleware for the frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Token-Expired", "X-Correlation-Id"],
)

# Correlation ID middleware for request tracking and observability
app.add_middleware(CorrelationIdMiddleware)

app.include_router(auth_router)
app.include_router(users_router)
