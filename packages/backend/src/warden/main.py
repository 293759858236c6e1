"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis, token pruner, DB).
Middleware, error mapping, and routers are all registered here.

Settings are resolved once (get_settings()) and stored on app.state so
everything downstream receives the same explicit configuration object.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from warden import __version__
from warden.api import api_router
from warden.config import Settings, get_settings
from warden.services.errors import AuthError

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` at shutdown.
    """
    settings: Settings = app.state.settings
    logger.info(
        "warden.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from warden.cache import close_redis, init_redis
    try:
        await init_redis(settings.redis_url)
        logger.info("warden.redis_connected", url=settings.redis_url)
    except Exception as e:
        # Redis only backs rate limiting; run without it
        logger.warning("warden.redis_unavailable", error=str(e))

    from warden.db.engine import async_session_factory, engine
    from warden.services.pruner import TokenPruner

    pruner: Optional[TokenPruner] = None
    prune_task: Optional[asyncio.Task] = None
    if settings.prune_interval_seconds > 0:
        pruner = TokenPruner(
            settings, async_session_factory, interval=settings.prune_interval_seconds
        )
        prune_task = asyncio.create_task(pruner.run_loop())

    yield

    logger.info("warden.shutdown")

    if pruner and prune_task:
        pruner.stop()
        prune_task.cancel()
        try:
            await prune_task
        except asyncio.CancelledError:
            pass

    await close_redis()
    await engine.dispose()


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any AuthError as {"detail", "error_code"} with its status."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_code": exc.error_code},
        headers=headers,
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or get_settings()
    app = FastAPI(
        title="Warden",
        description="Authentication core: tokens, two-factor login, password reset",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from warden.middleware.rate_limit import RateLimitMiddleware
    from warden.middleware.request_id import RequestIdMiddleware
    from warden.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AuthError, auth_error_handler)
    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: warden.main:app)
app = create_app()
