"""Main FastAPI application module."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from . import __version__
from .api import router
from .audit import LoggingAuditSink
from .auth import get_auth_status
from .config import get_settings
from .logging_config import get_logger, setup_logging
from .ratelimit import limiter
from .scheduling import ScheduleManager
from .services import ExportGenerator, ExportRequestCoordinator
from .sources import HTTPAgentSource, HTTPSessionSource, UpstreamClient
from .storage import (
    ArtifactStore,
    EphemeralArtifactCache,
    MemoryExportStore,
    MemoryScheduleStore,
    ObjectStorageClient,
    RedisExportStore,
    RedisScheduleStore,
    connect_redis,
)

# Load settings and configure logging
settings = get_settings()
setup_logging(settings.logging)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events - initialize and cleanup resources."""
    # Call get_settings() again to pick up test environment reloads
    current_settings = get_settings()
    app.state.settings = current_settings

    logger.info(f"Starting {current_settings.app_name} v{__version__}")
    logger.info(f"Environment: {current_settings.environment}")
    for message in current_settings.validate_settings():
        if "WARNING" in message:
            logger.warning(message.replace("WARNING: ", ""))
        elif "ERROR" in message:
            logger.error(message.replace("ERROR: ", ""))
        else:
            logger.info(message.replace("INFO: ", ""))

    # Record stores: Redis when configured, process memory otherwise
    redis_client = None
    if current_settings.redis.redis_uri:
        redis_client = await connect_redis(
            current_settings.redis.redis_uri, current_settings.redis.max_connections
        )
        prefix = current_settings.redis.key_prefix
        export_store = RedisExportStore(redis_client, prefix)
        schedule_store = RedisScheduleStore(redis_client, prefix)
    else:
        logger.warning("Redis not configured, export and schedule records are kept in memory")
        export_store = MemoryExportStore()
        schedule_store = MemoryScheduleStore()
    app.state.redis_client = redis_client

    object_storage = None
    if current_settings.storage.url:
        object_storage = ObjectStorageClient(
            current_settings.storage.url,
            service_key=current_settings.storage.service_key,
            timeout=current_settings.storage.request_timeout,
        )
    app.state.artifact_store = ArtifactStore(
        object_storage,
        bucket=current_settings.storage.bucket,
        public_base_url=current_settings.export.public_base_url,
        url_ttl=current_settings.export.download_url_ttl,
        ephemeral=EphemeralArtifactCache(current_settings.storage.ephemeral_max_entries),
    )

    upstream = UpstreamClient(
        current_settings.sources.api_url,
        token=current_settings.sources.api_token,
        timeout=current_settings.sources.request_timeout,
    )
    generator = ExportGenerator(
        HTTPSessionSource(upstream),
        HTTPAgentSource(upstream),
        page_size=current_settings.sources.export_page_size,
    )

    audit = LoggingAuditSink()
    app.state.coordinator = ExportRequestCoordinator(
        export_store, generator, app.state.artifact_store, audit=audit
    )
    app.state.schedule_manager = ScheduleManager(schedule_store, audit=audit)
    logger.info("Export services initialized")

    yield

    logger.info("Shutting down services...")
    await upstream.close()
    if object_storage:
        await object_storage.close()
    if redis_client:
        await redis_client.aclose()
    logger.info("All services shut down successfully")


app = FastAPI(
    title="Export Service",
    description="Generates CSV/JSON exports of session and agent data and manages export schedules",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint reporting backing service availability."""
    app_settings = request.app.state.settings

    redis_client = getattr(request.app.state, "redis_client", None)
    records_status = {"backend": "redis" if redis_client else "memory"}
    if redis_client:
        try:
            await redis_client.ping()
            records_status["status"] = "connected"
        except Exception as e:
            records_status["status"] = "error"
            records_status["error"] = str(e)

    artifacts = request.app.state.artifact_store
    health_info = {
        "status": "healthy",
        "version": __version__,
        "environment": app_settings.environment,
        "services": {
            "records": records_status,
            "object_storage": {
                "available": artifacts.object_storage is not None,
                "bucket": artifacts.bucket,
            },
            "ephemeral_artifacts": len(artifacts.ephemeral),
        },
    }
    health_info.update(get_auth_status(app_settings))
    return health_info


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("src.exporter.main:app", host="0.0.0.0", port=8000, reload=True)
