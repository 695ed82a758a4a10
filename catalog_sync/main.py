"""
FastAPI application main module.
Exposes queue inspection, manual enqueueing and sync status over HTTP, and can
run an embedded queue worker inside the API process.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
import time
import uuid
import os
from contextlib import asynccontextmanager
from typing import Any, Optional
from catalog_sync.api.v1 import api_router
from catalog_sync.config import MARKETPLACE_SETTINGS, WORKER_SETTINGS
from catalog_sync.runtime import Runtime, build_runtime
from catalog_sync.services.token_cache import check_redis_health
from catalog_sync.utils import setup_logging, get_logger

setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/catalog_sync.log"),
    enable_console=True
)

logger = get_logger(__name__)

SERVICE_NAME = "catalog-sync"
VERSION = "1.0.0"

# Probed by load balancers every few seconds; logged at debug only.
QUIET_PATHS = frozenset({"/health", "/health/detailed"})


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _error_response(request: Request, status_code: int, message: Any, **extra: Any) -> JSONResponse:
    """Error envelope shared by every exception handler."""
    content = {"success": False, "message": message, **extra, "request_id": _request_id(request)}
    return JSONResponse(status_code=status_code, content=content)


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold exception instances that JSONResponse cannot serialise
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = jsonable_errors(exc)
        logger.warning("Request validation failed", errors=details, request_id=_request_id(request),
                       method=request.method, path=request.url.path)
        return _error_response(request, 422, "Request validation failed", details=details)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.warning("HTTP exception", status_code=exc.status_code, detail=exc.detail,
                       request_id=_request_id(request), method=request.method, path=request.url.path)
        return _error_response(request, exc.status_code, exc.detail)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception", error=str(exc), error_type=type(exc).__name__,
                     request_id=_request_id(request), method=request.method, path=request.url.path, exc_info=True)
        return _error_response(request, 500, "Internal server error")


def create_app(runtime: Optional[Runtime] = None, *, embedded_worker: Optional[bool] = None) -> FastAPI:
    """Build the application. ``runtime`` is created from configuration at startup when not given."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application startup initiated")
        worker = None
        try:
            rt = runtime or build_runtime()
            app.state.runtime = rt
            app.state.session_factory = rt.session_factory
            app.state.task_queue = rt.queue
            app.state.task_router = rt.router

            run_worker = bool(WORKER_SETTINGS.get("embedded", False)) if embedded_worker is None else embedded_worker
            if run_worker:
                worker = rt.worker()
                worker.start()
                logger.info("Embedded queue worker started")
            logger.info("Application startup completed", queue=rt.queue.snapshot().get("backend"),
                        embedded_worker=run_worker)
            yield
        except Exception as e:  # pragma: no cover
            logger.error("Application startup failed", error=str(e), exc_info=True)
            raise
        finally:
            if worker is not None:
                worker.stop(timeout=float(WORKER_SETTINGS.get("idle_sleep", 5)) + 1)
                logger.info("Embedded queue worker stopped", processed=worker.processed, failed=worker.failed)
            logger.info("Application shutdown completed")

    app = FastAPI(
        title="Catalog Sync",
        description="""
    Durable task queue and marketplace offer reconciliation.

    ## Features
    * **Durable queue** - database or file backed, at-least-once delivery with backoff
    * **Offer reconciliation** - minimal create/update operations per EAN
    * **Process tracking** - ledger of asynchronous marketplace operations
    """,
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/api/v1/openapi.json",
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def add_request_context_and_logging(request: Request, call_next):
        """Attach a request id (honouring X-Request-ID), time the call and log it."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(elapsed_ms)
        log = logger.debug if request.url.path in QUIET_PATHS else logger.info
        log(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time_ms=elapsed_ms,
            remote_addr=request.client.host if request.client else None,
            request_id=request_id,
        )
        return response

    register_exception_handlers(app)

    @app.get("/health", tags=["health"], summary="Basic health check")
    async def health_check(request: Request):
        """Liveness probe: the process is up and the queue backend is wired."""
        queue = getattr(request.app.state, "task_queue", None)
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": VERSION,
            "timestamp": time.time(),
            "queue_backend": queue.snapshot().get("backend") if queue is not None else None,
        }

    @app.get("/health/detailed", tags=["health"], summary="Detailed health check")
    async def detailed_health_check(request: Request):
        """Database reachability, token cache (when redis backed) and queue counts."""
        checks: dict[str, Any] = {}
        status = "healthy"

        try:
            with request.app.state.session_factory() as db:
                db.execute(text("SELECT 1"))
            checks["database"] = "healthy"
        except Exception as e:
            checks["database"] = f"unhealthy: {e}"
            status = "degraded"

        if str(MARKETPLACE_SETTINGS.get("token_cache")) == "redis":
            healthy = check_redis_health(str(MARKETPLACE_SETTINGS.get("redis_url")))
            checks["redis"] = "healthy" if healthy else "unavailable"
            if not healthy:
                status = "degraded"

        try:
            snap = request.app.state.task_queue.snapshot()
            checks["queue"] = {k: snap[k] for k in ("backend", "depth", "counts") if k in snap}
        except Exception as e:
            checks["queue"] = f"unhealthy: {e}"
            status = "degraded"

        return {"status": status, "service": SERVICE_NAME, "version": VERSION, "timestamp": time.time(),
                "checks": checks}

    @app.get("/", tags=["root"])
    async def root():
        return {
            "message": "Catalog Sync API",
            "version": VERSION,
            "documentation": "/docs",
            "health_check": "/health",
            "api_base": "/api/v1"
        }

    app.include_router(api_router, prefix="/api/v1")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("catalog_sync.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
