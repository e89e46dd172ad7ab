"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

# Logging constants defined here (not in constants/) because logging.basicConfig()
# must run before any module imports that might create loggers.
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(
    format=LOG_FORMAT,
    datefmt=DATE_FORMAT,
    level=logging.INFO,
)

# Unify uvicorn loggers with app format
for uvicorn_logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
    uvicorn_logger = logging.getLogger(uvicorn_logger_name)
    uvicorn_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    uvicorn_logger.addHandler(handler)

from chunkhub.api.deps import get_db, get_settings, shutdown_pool  # noqa: E402
from chunkhub.api.routers import chunks, datasets  # noqa: E402
from chunkhub.errors import ChunkHubError  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan handler for startup and shutdown events.

    On startup:
    - Ensures the data directory exists
    - Opens the database and applies migrations

    On shutdown:
    - Waits for in-flight store calls and stops the worker pool
    """
    settings = get_settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Data directory: {settings.data_dir}")

    get_db()
    logger.info("chunkhub started")

    yield

    shutdown_pool()


app = FastAPI(
    title="chunkhub",
    description="Chunk ingestion with semantic deduplication and hybrid search",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(ChunkHubError)
async def chunkhub_error_handler(request: Request, exc: ChunkHubError) -> JSONResponse:
    """Map a fault to its status code and a retry hint."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "retryable": exc.retryable},
    )


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(datasets.router)
app.include_router(chunks.router)
