# priority_service/main.py
"""
Clinical Task Prioritization Service - Main Application

Ranks an operator's open intake tasks (pending items, urgent care requests,
medication refills and unread patient messages) with a per-operator model learned
from their own task interactions.
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from priority_service.api.v1.router import api_router
from priority_service.core.config import Settings, get_settings
from priority_service.core.database import close_database, get_database_health, init_database
from priority_service.core.exceptions import PrioritizationException
from priority_service.core.logging import setup_logging
from priority_service.core.monitoring import RequestMonitor
from priority_service.core.security import TokenValidator
from priority_service.services.priority_engine import PriorityEngine, build_priority_engine

logger = structlog.get_logger(__name__)


def _error_content(request: Request, message, error_type: str, status_code: int) -> dict:
    return {
        "error": {
            "message": message,
            "type": error_type,
            "status_code": status_code,
            "request_id": getattr(request.state, "request_id", "unknown"),
            "timestamp": time.time(),
        }
    }


def create_app(settings: Settings = None, priority_engine: PriorityEngine = None) -> FastAPI:
    """
    Build the application.

    When ``priority_engine`` is given it is used as is and no database connection
    is opened; otherwise the SQL-backed engine is wired at startup.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan management"""
        setup_logging(settings)
        logger.info("Starting prioritization service...", environment=settings.environment)
        app.state.startup_time = time.time()

        if priority_engine is None:
            session_factory = await init_database(settings)
            app.state.priority_engine = build_priority_engine(settings, session_factory)
            app.state.owns_database = True
        else:
            app.state.priority_engine = priority_engine
            app.state.owns_database = False

        logger.info(
            "Prioritization service started",
            training_dispatch=app.state.priority_engine.dispatcher.mode,
        )

        try:
            yield
        finally:
            shutdown_start = time.time()
            logger.info("Shutting down prioritization service...")

            await app.state.priority_engine.shutdown()
            if app.state.owns_database:
                await close_database()

            logger.info(
                "Prioritization service shutdown complete",
                shutdown_duration_seconds=f"{time.time() - shutdown_start:.2f}",
            )

    app = FastAPI(
        title=settings.app_name,
        description="Learns each operator's task-handling habits and ranks their open intake tasks",
        version=settings.version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.token_validator = TokenValidator(settings)
    app.state.request_monitor = RequestMonitor()
    app.state.priority_engine = priority_engine

    # Middleware configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    @app.middleware("http")
    async def add_request_id_and_logging(request: Request, call_next):
        """Tag each request with an id and log it with timing"""
        request_id = str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        start_time = time.time()

        logger.debug(
            "Incoming request",
            request_id=request_id,
            method=request.method,
            url=str(request.url),
            client_ip=request.client.host if request.client else "unknown",
        )

        response = await call_next(request)
        response_time = time.time() - start_time

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{response_time:.3f}s"

        logger.info(
            "Request completed" if response.status_code < 400 else "Request failed",
            request_id=request_id,
            status_code=response.status_code,
            response_time_ms=round(response_time * 1000, 2),
            method=request.method,
            path=request.url.path,
        )
        app.state.request_monitor.record_request(response_time, response.status_code)
        return response

    # Exception handlers
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger.warning(
            "HTTP exception",
            request_id=getattr(request.state, "request_id", "unknown"),
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_content(request, exc.detail, "http_exception", exc.status_code),
            headers=exc.headers,
        )

    @app.exception_handler(PrioritizationException)
    async def prioritization_exception_handler(request: Request, exc: PrioritizationException):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "Prioritization error",
            request_id=getattr(request.state, "request_id", "unknown"),
            error=exc.message,
            error_type=type(exc).__name__,
            path=request.url.path,
            **exc.details,
        )

        content = _error_content(request, exc.message, type(exc).__name__, exc.status_code)
        if exc.details.get("needs_more_data"):
            content["needsMoreData"] = True
            content["interactionCount"] = exc.details.get("available")
            content["required"] = exc.details.get("required")
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception",
            request_id=getattr(request.state, "request_id", "unknown"),
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        message = str(exc) if settings.debug else "An unexpected error occurred"
        return JSONResponse(
            status_code=500,
            content=_error_content(request, message, "internal_server_error", 500),
        )

    app.include_router(api_router)

    @app.get("/", summary="Service Information")
    async def root():
        return {
            "service": settings.app_name,
            "version": settings.version,
            "environment": settings.environment,
            "status": app.state.request_monitor.get_health_status()["status"],
            "timestamp": time.time(),
            "endpoints": {
                "health": "/health",
                "metrics": "/metrics",
                "api_base": "/priority",
            },
        }

    @app.get("/health", summary="Health Check")
    async def health_check():
        """Health check with database and request statistics"""
        health_data = {
            "status": "healthy",
            "timestamp": time.time(),
            "version": settings.version,
            "environment": settings.environment,
            "components": {},
            "metrics": {},
            "uptime_seconds": None,
        }

        if hasattr(app.state, "startup_time"):
            health_data["uptime_seconds"] = time.time() - app.state.startup_time

        if app.state.priority_engine is None:
            health_data["components"]["priority_engine"] = "not_initialized"
        else:
            health_data["components"]["priority_engine"] = "healthy"
            health_data["metrics"]["training_dispatch"] = app.state.priority_engine.dispatcher.mode

        if getattr(app.state, "owns_database", False):
            db_health = await get_database_health()
            health_data["components"]["database"] = db_health.get("status", "unknown")
            health_data["metrics"]["database"] = db_health

        monitor_health = app.state.request_monitor.get_health_status()
        health_data["components"]["requests"] = monitor_health["status"]
        health_data["metrics"]["requests"] = monitor_health

        component_statuses = list(health_data["components"].values())
        if "unhealthy" in component_statuses:
            health_data["status"] = "unhealthy"
        elif "degraded" in component_statuses or "not_initialized" in component_statuses:
            health_data["status"] = "degraded"

        status_code = 200 if health_data["status"] == "healthy" else 503
        return JSONResponse(status_code=status_code, content=health_data)

    @app.get("/metrics", summary="Prometheus Metrics", response_class=PlainTextResponse)
    async def metrics():
        if not settings.enable_metrics:
            raise HTTPException(status_code=404, detail="Metrics are disabled")
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "priority_service.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.max_workers,
        log_level="debug" if settings.debug else "info",
        access_log=True,
        server_header=False,
    )
