import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sla_engine.core.config import settings
from sla_engine.core.exceptions import (
    ConcurrentTransitionConflict,
    ConfigurationError,
    NotFoundError,
)
from sla_engine.api.v1 import api_router
from sla_engine.middleware.monitoring import (
    MonitoringMiddleware,
    configure_structured_logging,
    setup_db_event_listeners,
)
from sla_engine.jobs.sla_batch import start_sla_scheduler, stop_sla_scheduler, get_sla_scheduler
from sla_engine.core.sse import connection_manager

# Configure structured logging
if settings.ENABLE_STRUCTURED_LOGGING:
    configure_structured_logging(
        log_level="DEBUG" if settings.DEBUG else "INFO",
        json_format=not settings.DEBUG  # Use JSON in production, plain text in debug
    )
else:
    logging.basicConfig(
        level=logging.INFO if not settings.DEBUG else logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events for the FastAPI application.
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    try:
        from sla_engine.core.database import engine
        setup_db_event_listeners(engine)
    except Exception as e:
        logger.warning(f"Failed to initialize database monitoring: {e}")

    if settings.SLA_SCHEDULER_ENABLED:
        try:
            await start_sla_scheduler()
            logger.info("SLA recomputation scheduler started successfully")
        except Exception as e:
            logger.error(f"Failed to start SLA scheduler: {e}")
    else:
        logger.info("SLA recomputation scheduler disabled")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}")

    try:
        await stop_sla_scheduler()
    except Exception as e:
        logger.error(f"Error stopping SLA scheduler: {e}")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="SLA tracking and escalation engine API",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Performance monitoring middleware (outermost - runs first)
if settings.ENABLE_PROMETHEUS_METRICS:
    app.add_middleware(MonitoringMiddleware)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.message, "errors": exc.details}
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": exc.message}
    )


@app.exception_handler(ConcurrentTransitionConflict)
async def conflict_handler(request: Request, exc: ConcurrentTransitionConflict):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": exc.message, "instance_id": exc.instance_id}
    )


# Include API router
app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns application health status including scheduler status and SSE connections.
    """
    sla_status = get_sla_scheduler().get_status()
    sse_stats = connection_manager.get_stats()

    return {
        "status": "healthy",
        "scheduler": {
            "running": sla_status["running"],
            "last_run": sla_status["last_run"],
            "run_count": sla_status["run_count"],
            "error_count": sla_status["error_count"]
        },
        "sse": {
            "total_connections": sse_stats["total_connections"],
            "workspaces": sse_stats["workspaces"]
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "sla_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
