"""
FastAPI application factory for the adminer job admission service
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import PlainTextResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import config
from .db.engine import check_database, init_db
from .exceptions import (
    AdminerError,
    adminer_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from .logging_config import RequestIDMiddleware, setup_logging
from .services.metrics import get_metrics_collector
from .services.scheduled_jobs import start_scheduler, stop_scheduler
from .admin_routes import router as admin_router
from .billing_routes import router as billing_router
from .jobs_routes import router as jobs_router
from .webhook_routes import router as webhook_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: seed reference data and start the scheduler. Shutdown: stop it."""
    # ConfigurationError propagates and aborts startup
    init_db()

    if config.RECONCILER_ENABLED:
        start_scheduler()
    else:
        logger.info("Billing reconciler scheduling disabled (RECONCILER_ENABLED=false)")

    yield

    if config.RECONCILER_ENABLED:
        stop_scheduler()


def create_app() -> FastAPI:
    """
    Build the FastAPI application

    Returns:
        Configured FastAPI app
    """
    setup_logging(env=config.ENV, log_level=config.LOG_LEVEL)

    app = FastAPI(title="Adminer Job Admission API", lifespan=lifespan)

    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(AdminerError, adminer_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(jobs_router)
    app.include_router(billing_router)
    app.include_router(webhook_router)
    app.include_router(admin_router)

    @app.get("/health")
    def health():
        """Health check endpoint for load balancers and monitoring"""
        database_ok = check_database()
        body = {
            "status": "healthy" if database_ok else "unhealthy",
            "database": "ok" if database_ok else "unavailable",
        }
        return JSONResponse(status_code=200 if database_ok else 503, content=body)

    @app.get("/metrics", response_class=PlainTextResponse)
    def metrics():
        """Prometheus metrics"""
        return PlainTextResponse(
            get_metrics_collector().format_prometheus(),
            media_type="text/plain; version=0.0.4",
        )

    return app


app = create_app()
