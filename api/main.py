"""
FastAPI application initialization
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.middleware import RequestContextMiddleware
from api.routes import health, sync
from core.config import settings
from core.exceptions import ConfigurationError, SyncException
from core.logging import setup_logging
from pipeline.scheduler import SyncScheduler
from schemas.api import ErrorResponse

setup_logging(settings.LOG_LEVEL)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Member Contact Sync API",
    description="Syncs gym member and service records into CRM contacts",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Initialize Scheduler
scheduler = SyncScheduler(settings)


# Include routers
app.include_router(health.router)
app.include_router(sync.router)


def _error_response(status_code: int, exc: SyncException) -> JSONResponse:
    body = ErrorResponse(
        error=type(exc).__name__,
        detail=exc.message,
        context={k: v for k, v in exc.context.items() if k != "response_body"},
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error: {exc.message}", extra={"error_context": exc.to_dict()})
    return _error_response(500, exc)


@app.exception_handler(SyncException)
async def sync_error_handler(request: Request, exc: SyncException):
    """Remote system failures surfaced by the probe endpoints"""
    logger.error(f"Remote system error: {exc.reason}", extra={"error_context": exc.to_dict()})
    return _error_response(502, exc)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Member Contact Sync API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    if settings.SCHEDULE_ENABLED:
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Member Contact Sync API")
    scheduler.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Member Contact Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "sync": "POST /api/sync",
            "sync_date": "POST /api/sync-date",
            "test_source": "POST /api/test-source",
            "test_target": "POST /api/test-target"
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
