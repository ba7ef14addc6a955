"""
FastAPI application main module.
Wires the orchestration layer (queues, reconciliation sweeps, concurrency
governor) into the HTTP service with request logging and error handling.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import uuid
import os
from contextlib import asynccontextmanager
from typing import Optional

from app.api.concurrency import ConcurrencyLimitMiddleware
from app.api.v1 import api_router
from app.bootstrap import Orchestration, build_orchestration
from app.config import CONCURRENCY_SETTINGS, QUEUE_SETTINGS
from app.database import Base, SessionLocal, engine
from app.jobs.job import QueueBackendError
from app.utils import setup_logging, get_logger
from app.utils.concurrency import ConcurrencyGovernor
from app.models import db as db_models  # noqa: F401  (registers tables on Base.metadata)

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/app.log"),
    enable_console=True
)

logger = get_logger(__name__)

SERVICE_NAME = "elearning-orchestration"
VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Builds the orchestration container (unless one was injected) and starts
    the enabled sweeps; stops them on shutdown.
    """
    logger.info("Application startup initiated")
    orchestration: Optional[Orchestration] = getattr(app.state, "orchestration", None)
    try:
        if orchestration is None:
            logger.info("Creating database tables")
            Base.metadata.create_all(bind=engine)
            orchestration = build_orchestration(SessionLocal, governor=app.state.governor)
            app.state.orchestration = orchestration
        orchestration.start()
        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if orchestration is not None:
            # In-flight sweeps are not awaited
            orchestration.stop()
        logger.info("Application shutdown completed")


def create_app(orchestration: Optional[Orchestration] = None) -> FastAPI:
    """Build the ASGI app. Pass ``orchestration`` to reuse pre-built components (tests)."""
    app = FastAPI(
        title="E-Learning Orchestration Service",
        description="""
        Asynchronous task orchestration for the e-learning platform.

        ## Features
        * **Deferred jobs** - priority queues with retry/backoff for embeddings, HLS transcoding and transcription
        * **Reconciliation sweeps** - pending payment expiration and study session reminders
        * **Concurrency governor** - per-user ceiling on in-flight AI requests

        ## Authentication
        Operator endpoints require the admin token when one is configured:
        ```
        Authorization: Bearer <ADMIN_API_TOKEN>
        ```
        """,
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/api/v1/openapi.json",
        lifespan=lifespan,
    )

    governor = orchestration.governor if orchestration is not None else ConcurrencyGovernor()
    app.state.governor = governor
    if orchestration is not None:
        app.state.orchestration = orchestration

    # CORS middleware - configure appropriately for production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Compression middleware for better performance
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Concurrency ceilings for AI routes
    app.add_middleware(
        ConcurrencyLimitMiddleware,
        governor=governor,
        routes=CONCURRENCY_SETTINGS["routes"],
    )

    register_request_logging(app)
    register_exception_handlers(app)
    register_health_routes(app)

    # Include API router with version prefix
    app.include_router(api_router, prefix="/api/v1")
    return app


def register_request_logging(app: FastAPI) -> None:
    @app.middleware("http")
    async def add_request_context_and_logging(request: Request, call_next):
        """
        Add request ID, timing, and request/response logging.
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.start_time = time.time()

        logger.info(
            "Request started",
            method=request.method,
            url=str(request.url),
            user_agent=request.headers.get("User-Agent"),
            remote_addr=request.client.host if request.client else "unknown",
            request_id=request_id
        )

        response = await call_next(request)

        process_time = time.time() - request.state.start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"

        logger.info(
            "Request completed",
            method=request.method,
            url=str(request.url),
            status_code=response.status_code,
            process_time_ms=round(process_time * 1000, 2),
            request_id=request_id
        )
        return response


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.warning(
            "Request validation failed",
            errors=exc.errors(),
            request_id=request_id,
            url=str(request.url),
            method=request.method
        )
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "message": "Request validation failed",
                "details": jsonable_errors(exc),
                "request_id": request_id
            }
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            request_id=request_id,
            url=str(request.url),
            method=request.method
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "message": exc.detail,
                "request_id": request_id
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(QueueBackendError)
    async def queue_backend_exception_handler(request: Request, exc: QueueBackendError):
        """Queue store unreachable outside an endpoint's own handling."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error("Queue backend error", error=str(exc), request_id=request_id, url=str(request.url))
        return JSONResponse(
            status_code=503,
            content={
                "success": False,
                "message": "Queue backend unavailable",
                "request_id": request_id
            }
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            request_id=request_id,
            url=str(request.url),
            method=request.method,
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "Internal server error",
                "request_id": request_id
            }
        )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may carry exception instances that JSONResponse cannot encode
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


def register_health_routes(app: FastAPI) -> None:
    @app.get("/health", tags=["health"], summary="Basic health check")
    async def health_check():
        """Basic health check endpoint for load balancers."""
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": VERSION,
            "timestamp": time.time(),
            "queue_backend": "redis" if bool(QUEUE_SETTINGS.get("use_redis", False)) else "memory",
        }

    @app.get("/health/detailed", tags=["health"], summary="Detailed health check")
    async def detailed_health_check():
        """Detailed health check with database, queue store and sweep status."""
        health_status = {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": VERSION,
            "timestamp": time.time(),
            "checks": {}
        }

        # Database check
        try:
            from sqlalchemy import text
            db = SessionLocal()
            try:
                db.execute(text("SELECT 1"))
            finally:
                db.close()
            health_status["checks"]["database"] = "healthy"
        except Exception as e:
            health_status["checks"]["database"] = f"unhealthy: {str(e)}"
            health_status["status"] = "degraded"

        orchestration: Optional[Orchestration] = getattr(app.state, "orchestration", None)
        if orchestration is None:
            health_status["checks"]["orchestration"] = "not initialized"
            health_status["status"] = "degraded"
            return health_status

        store = orchestration.queues.store
        healthy = store.health_check()
        health_status["checks"]["queue_store"] = {
            "backend": type(store).__name__,
            "status": "healthy" if healthy else "unavailable",
        }
        if not healthy:
            health_status["status"] = "degraded"
        health_status["checks"]["schedulers"] = {
            name: {"running": s.started, "busy": s.is_running}
            for name, s in orchestration.schedulers.items()
        }
        health_status["checks"]["concurrency"] = {"total_active": orchestration.governor.total_active()}
        return health_status

    @app.get("/", tags=["root"])
    async def root():
        """API root endpoint with basic information."""
        return {
            "message": "E-Learning Orchestration Service API",
            "version": VERSION,
            "documentation": "/docs",
            "health_check": "/health",
            "api_base": "/api/v1"
        }


app = create_app()

# Development server configuration
if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["app"],
        log_level="info",
        access_log=True
    )
