"""
SocialBridge API - social platform integration engine
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from api.v1 import v1_router
from schemas.responses import HealthResponse
from utils.config import get_config, validate_config_on_startup
from utils.database import dispose_db, get_session, init_db
from utils.error_handler import GlobalExceptionHandler
from utils.http_client import close_shared_client
from utils.metrics_collector import metrics
from utils.middleware import LoggingMiddleware
from utils.monitoring import init_sentry
from utils.structured_logging import get_structured_logger, setup_structured_logging
from utils.task_queue import task_queue

logger = get_structured_logger(__name__)

API_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan with fail-fast validation and proper setup"""
    try:
        config = validate_config_on_startup()
    except SystemExit:
        logger.error("Configuration validation failed - aborting startup")
        raise

    setup_structured_logging(config.log_level)
    init_sentry()
    logger.info("Starting SocialBridge API", environment=config.environment)

    await init_db()
    logger.info("Database schema ready")

    yield

    logger.info("Application shutting down")
    await close_shared_client()
    await task_queue.close()
    await dispose_db()


app = FastAPI(
    title="SocialBridge API",
    description="Connects social accounts, publishes posts across platforms and syncs their analytics",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Platforms", "description": "Supported platforms and account connection"},
        {"name": "Accounts", "description": "Connected accounts and their health"},
        {"name": "Posts", "description": "Drafts, scheduling and multi-platform publishing"},
        {"name": "Analytics", "description": "Daily snapshots and optimal posting times"},
        {"name": "Cron", "description": "Externally triggered scheduler runs"},
        {"name": "Health", "description": "System health and monitoring"},
    ],
)

app.add_middleware(GlobalExceptionHandler)
app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_config().app_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router, prefix="/api")


@app.get("/metrics", include_in_schema=False)
async def get_metrics():
    """Prometheus metrics endpoint"""
    return Response(
        generate_latest(metrics.registry),
        media_type=CONTENT_TYPE_LATEST
    )


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Liveness plus database connectivity"""
    services = {}
    try:
        async with get_session() as db:
            await db.execute(text("SELECT 1"))
        services["database"] = "healthy"
    except Exception as e:
        services["database"] = "unhealthy"
        logger.error("Database health check failed", error=str(e))

    overall = "healthy" if all(value == "healthy" for value in services.values()) else "degraded"
    return HealthResponse(
        status=overall,
        timestamp=datetime.now(timezone.utc),
        services=services,
        version=API_VERSION,
    )


@app.get("/", tags=["Health"])
async def root():
    """API information and navigation links"""
    return {
        "message": "SocialBridge API",
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
        "api_base": "/api/v1",
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=get_config().port,
        reload=get_config().environment == "development",
    )
