"""cohortsync - time-boxed accountability groups with live chat and a shared checklist."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from src.core.change_feed import get_change_feed
from src.core.db_client import close_connection, init_db
from src.core.logging import configure_logfire, instrument_fastapi
from src.core.redis_client import redis_client


logger = logging.getLogger(__name__)


async def check_redis_connectivity() -> None:
    """Verify Redis connectivity (optional service).

    Only checks if Redis is configured. Logs a warning if unavailable; the
    change feed then delivers notifications in-process.
    """
    if not redis_client.is_available:
        logger.info("startup_validation", extra={"service": "redis", "status": "disabled"})
        return

    try:
        result = await redis_client.ping()
        if result:
            logger.info("startup_validation", extra={"service": "redis", "status": "ok"})
        else:
            logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable"})
    except RedisError as e:
        logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable", "error": str(e)})


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Startup
    # Configure logging first so startup logs are captured
    configure_logfire()

    await check_redis_connectivity()

    await init_db()
    logger.info("Database initialized")

    change_feed = get_change_feed()
    await change_feed.start()
    yield
    # Shutdown
    await change_feed.stop()
    await redis_client.close()
    await close_connection()


app = FastAPI(
    title="cohortsync",
    description="Time-boxed accountability groups with live chat and a shared checklist",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=200)


@app.get("/health/sync")
async def sync_health_check() -> JSONResponse:
    """Change feed health: Redis fan-out status and live listener count."""
    change_feed = get_change_feed()
    redis_status = redis_client.get_health_status()

    # Redis configured but not relaying means notifications stay in this process
    degraded = redis_status["enabled"] and not change_feed.is_relaying
    overall_status = "degraded" if degraded else "healthy"

    return JSONResponse(
        content={
            "status": overall_status,
            "relaying": change_feed.is_relaying,
            "listener_count": change_feed.listener_count,
            "redis": redis_status,
        },
        status_code=200,
    )
