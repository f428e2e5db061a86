"""
Fleetline API — FastAPI Application Entry Point
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request

from core.config import get_settings

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Fleetline API starting up", version=settings.app_version, env=settings.app_env)
    yield
    logger.info("Fleetline API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Delivery tracking, escalation and operational KPI back office",
    lifespan=lifespan,
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """
    Bind a request id to every log line emitted while serving the request
    and echo it back as X-Request-ID.
    """
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path)

    started = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    logger.debug(
        "http.request",
        method=request.method,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    return response


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import delivery_changes, escalations, issues, metrics, routes, shipments
from events.websocket import router as ws_router

app.include_router(metrics.router)
app.include_router(routes.router)
app.include_router(shipments.router)
app.include_router(issues.router)
app.include_router(escalations.router)
app.include_router(delivery_changes.router)
app.include_router(ws_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
