"""
Federation Hub API Server

FastAPI server exposing clubs, federations, seasons, championships and
event/tournament management under /api/v1.
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore
from sqlalchemy.exc import IntegrityError

from backend.api.routes import API_PREFIX, router, limiter as routes_limiter
from backend.database import db
from backend.database.init_defaults import init_defaults
from backend.services.errors import ServiceError
from backend.services.websocket_manager import sweep_stale_connections

# Set up logging
# Allow log level to be configured via environment variable (default: INFO)
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    logger.info("Starting up Federation Hub API...")

    # Tables come from ORM metadata; there are no migrations
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    try:
        await init_defaults()
        logger.info("Default values initialized")
    except Exception as e:
        logger.error(f"Failed to initialize defaults: {e}", exc_info=True)

    sweeper = asyncio.create_task(sweep_stale_connections())

    yield  # App is running

    logger.info("Shutting down Federation Hub API...")
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await db.engine.dispose()


app = FastAPI(
    title="Federation Hub API",
    description="API for sports federations: clubs, seasons, championships and events",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware; origins configured via ALLOWED_ORIGINS env var
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    content = {"detail": exc.message}
    if exc.details is not None:
        content["errors"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(
        status_code=409, content={"detail": "Conflict with existing data"}
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "Validation error", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Include API routes
app.include_router(router)


@app.get(f"{API_PREFIX}/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
