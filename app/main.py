"""
SEO Hub API entry point.

Wires the SEOWorks, admin and status routers together with request logging,
Prometheus metrics and OpenTelemetry tracing.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from app.api.admin_routes import router as admin_router
from app.api.seoworks_routes import router as seoworks_router
from app.api.status_routes import router as status_router
from app.config import settings
from app.db.migration_runner import run_migrations
from app.db.session import close_engines
from app.observability import get_logger, log_context, metrics, setup_logging, setup_tracing
from app.observability.metrics import get_metrics_handler, track_http_request
from app.observability.tracing import instrument_fastapi
from app.services.property_mapping import get_property_mappings

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Migrate (optionally), load property mappings, then dispose pools on exit."""
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )

    if settings.run_migrations:
        await asyncio.to_thread(run_migrations)

    # A bad mapping file fails startup rather than the first dashboard load
    mappings = get_property_mappings()
    logger.info("property_mappings_ready", dealerships=len(mappings))

    yield

    logger.info("application_shutting_down")
    await close_engines()
    logger.info("database_engines_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


def _describe_validation_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Pydantic errors reduced to type, location and message; inputs may carry client data."""
    described = []
    for error in exc.errors():
        item: dict[str, Any] = {key: error.get(key) for key in ("type", "loc", "msg")}
        if "ctx" in error:
            item["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        described.append(item)
    return described


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """422 with the offending fields; SEOWorks payload mismatches show up here first."""
    errors = _describe_validation_errors(exc)
    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=errors,
    )
    return JSONResponse(status_code=422, content={"detail": errors})


setup_tracing()
instrument_fastapi(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Time each request and tag every log line it emits with the request id."""
    started = time.perf_counter()
    path = request.url.path
    method = request.method

    with log_context(request_id=request.headers.get("X-Request-ID", "unknown")):
        with track_http_request(path, method) as tracker:
            try:
                response = await call_next(request)
            except Exception as e:
                metrics.record_error(type(e).__name__, "http_request")
                logger.error(
                    "request_failed",
                    method=method,
                    path=path,
                    error=str(e),
                    duration_seconds=time.perf_counter() - started,
                    exc_info=True,
                )
                raise
            tracker.set_status_code(response.status_code)

        logger.info(
            "request_completed",
            method=method,
            path=path,
            status_code=response.status_code,
            duration_seconds=time.perf_counter() - started,
        )
    return response


app.include_router(seoworks_router)
app.include_router(admin_router)
app.include_router(status_router)


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


_metrics_handler = get_metrics_handler()


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus metrics in text exposition format."""
    return Response(content=_metrics_handler(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
