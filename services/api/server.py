"""
Content Autopilot HTTP Server

FastAPI server that provides:
- /api/plans - Content plans, plan items and their pipeline actions
- /api/posts - Scheduled and published posts
- /api/social - Linked social accounts
- /api/preferences, /api/prompts - User workspace
- GET /health - Database and circuit breaker status

Usage:
    # Start server
    python -m uvicorn services.api.server:app --host 0.0.0.0 --port 8000

    # Or via main.py
    python main.py server
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import asyncpg
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.circuit_breaker import CircuitBreaker, CircuitBreakerOpen
from core.config import get_config
from core.database import check_database, close_pool, get_pool
from core.errors import DomainError, NotFoundError, ProviderError
from core.feature_flags import get_feature_status

from .routes import plans, posts, social, workspace

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting Content Autopilot API...")
    for issue in get_config().validate():
        logger.warning(f"Config: {issue}")

    yield

    logger.info("Shutting down Content Autopilot API...")
    await close_pool()


app = FastAPI(
    title="Content Autopilot API",
    description="Planned short-video generation and social distribution",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_config().cors_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(plans.router)
app.include_router(posts.router)
app.include_router(social.router)
app.include_router(workspace.router)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.error(f"[API] {exc.provider} error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=502,
        content={"detail": str(exc), "provider": exc.provider, "error_code": exc.error_code},
    )


@app.exception_handler(CircuitBreakerOpen)
async def circuit_open_handler(request: Request, exc: CircuitBreakerOpen):
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc), "service": exc.service_name},
        headers={"Retry-After": str(max(1, int(exc.retry_after)))},
    )


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Content Autopilot",
        "version": VERSION,
        "endpoints": {
            "/api/plans": "Content plans and plan items",
            "/api/posts": "Scheduled posts",
            "/api/social": "Social accounts",
            "/api/preferences": "User preferences",
            "/api/prompts": "Saved video prompts",
            "GET /health": "Health check",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    try:
        database_ok = await check_database(await get_pool())
    except (RuntimeError, OSError, asyncpg.PostgresError) as e:
        logger.warning(f"Database unavailable: {e}")
        database_ok = False

    return {
        "status": "healthy" if database_ok else "degraded",
        "database": database_ok,
        "circuit_breakers": CircuitBreaker.get_all_status(),
        "features": get_feature_status(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
