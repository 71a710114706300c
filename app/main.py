"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Shared components — token codec, blacklist, rate limiter, IP allocator,
     auth service and audit sink, built from Settings and stored on app.state
  2. Lifespan manager — creates tables, starts/stops the background sweeps
  3. Middleware — CORS and request logging
  4. Exception handlers — maps domain errors to HTTP responses
  5. Router registration — mounts all API endpoint groups

Running locally:
    uvicorn app.main:app --reload

The --reload flag watches for file changes and restarts automatically,
which is ideal for development but should not be used in production.

Tests call create_app(Settings(...)) to get an app with their own
configuration; the module-level `app` uses the environment.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.audit import LoggingAuditSink
from app.blacklist import TokenBlacklist
from app.config import Settings, settings as default_settings
from app.database import Base, engine, ensure_sqlite_directory
from app.dependencies import get_client_ip
from app.exceptions import register_exception_handlers
from app.logging_config import configure_logging
from app.rate_limiter import RateLimiter
from app.routers import auth, users, vpn, vpn_auth
from app.security import TokenCodec
from app.services.auth_service import AuthService, LockoutPolicy
from app.services.vpn_ip_service import VpnIpAllocator

logger = logging.getLogger("openvpn_mng")
access_logger = logging.getLogger("openvpn_mng.access")


def build_state(app: FastAPI, settings: Settings) -> None:
    """Construct the shared components and hang them on app.state."""
    codec = TokenCodec(settings.JWT_SECRET, settings.JWT_ALGORITHM)

    lockout = None
    if settings.LOCKOUT_MAX_ATTEMPTS > 0:
        lockout = LockoutPolicy(
            max_attempts=settings.LOCKOUT_MAX_ATTEMPTS,
            duration=timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES),
        )

    rate_limiter = None
    if settings.RATE_LIMIT_ENABLED:
        rate_limiter = RateLimiter(
            requests=settings.RATE_LIMIT_REQUESTS,
            window_seconds=settings.RATE_LIMIT_WINDOW,
            burst=settings.RATE_LIMIT_BURST,
        )

    app.state.settings = settings
    app.state.codec = codec
    app.state.blacklist = TokenBlacklist()
    app.state.rate_limiter = rate_limiter
    app.state.allocator = VpnIpAllocator(settings.VPN_NETWORK, settings.VPN_SERVER_IP)
    app.state.auth_service = AuthService(
        codec, timedelta(hours=settings.TOKEN_EXPIRE_HOURS), lockout,
    )
    app.state.audit = LoggingAuditSink()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager (replaces deprecated @app.on_event).

    Startup:
      Creates all database tables if they don't exist, then starts the
      blacklist purge and rate-limiter eviction threads.

    Shutdown:
      Signals both threads to stop, waits for them, and disposes of the
      database engine, closing all connections cleanly.
    """
    # --- Startup ---
    ensure_sqlite_directory(engine.url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.blacklist.start()
    if app.state.rate_limiter is not None:
        app.state.rate_limiter.start()
    logger.info("%s %s started", app.title, app.version)

    yield

    # --- Shutdown ---
    app.state.blacklist.stop()
    if app.state.rate_limiter is not None:
        app.state.rate_limiter.stop()
    await engine.dispose()
    logger.info("%s stopped", app.title)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Identity, access and VPN address management for OpenVPN",
        lifespan=lifespan,
    )
    build_state(app, settings)

    # -----------------------------------------------------------------------
    # Middleware
    # -----------------------------------------------------------------------

    # CORS: Allow specified frontend origins to make requests.
    # In production, lock this down to your actual frontend domain(s).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        access_logger.info(
            "%s %s %d %.1fms client=%s",
            request.method, request.url.path, response.status_code,
            elapsed_ms, get_client_ip(request),
        )
        return response

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------

    register_exception_handlers(app)

    # -----------------------------------------------------------------------
    # Routers
    # -----------------------------------------------------------------------

    app.include_router(auth.router, prefix="/auth", tags=["Auth"])
    app.include_router(users.router, prefix="/users", tags=["Users"])
    app.include_router(vpn.router, prefix="/vpn", tags=["VPN"])
    app.include_router(vpn_auth.router, prefix="/vpn-auth", tags=["VPN Auth"])

    # -----------------------------------------------------------------------
    # Health check
    # -----------------------------------------------------------------------

    @app.get("/health", tags=["Health"])
    async def health_check():
        """
        Health check endpoint for deployment probes (Kubernetes, Docker, etc.).

        Returns a simple JSON response indicating the service is running.
        """
        return {"status": "ok", "version": settings.APP_VERSION}

    return app


# Create the FastAPI application instance
app = create_app()
