"""
WireGuard Gateway - FastAPI Application
Builds the admin API around the port allocator and the session gate.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from itsdangerous import URLSafeTimedSerializer
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from . import __version__
from .audit import AuditLog
from .auth import router as session_router
from .config import ConfigResolver, GatewaySettings
from .errors import GatewayError
from .limiter import limiter
from .ports import PortLeaseAllocator
from .sessions import InMemorySessionStore, RedisSessionStore, SessionGate, SessionStore
from .tunnel import router as tunnel_router
from .wg import HttpWireGuardService, WireGuardService

logger = logging.getLogger(__name__)


def build_session_store(settings: GatewaySettings) -> SessionStore:
    if settings.session_backend == "redis":
        logger.info(f"Sessions stored in Redis at {settings.redis_url}")
        return RedisSessionStore.from_url(settings.redis_url, ttl=settings.session_max_age)
    if settings.session_backend != "memory":
        logger.warning(f"Unknown SESSION_BACKEND {settings.session_backend!r}, using memory")
    return InMemorySessionStore()


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


def create_app(
    settings: Optional[GatewaySettings] = None,
    wireguard: Optional[WireGuardService] = None,
    store: Optional[SessionStore] = None,
    resolver: Optional[ConfigResolver] = None,
) -> FastAPI:
    """
    Application factory. Every collaborator can be injected;
    anything omitted is built from the environment.
    """
    if settings is None:
        settings = GatewaySettings.from_env()
    if wireguard is None:
        wireguard = HttpWireGuardService(settings.wireguard_url, timeout=settings.wireguard_timeout)
    if store is None:
        store = build_session_store(settings)
    if resolver is None:
        resolver = ConfigResolver()
    audit = AuditLog(settings.audit_log_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler - runs on startup/shutdown."""
        snapshot = resolver.resolve()
        logger.info(
            f"Tunnel port {snapshot.wg_port}, range {snapshot.wg_ports}, "
            f"{'password required' if settings.requires_password else 'no password set'}"
        )
        yield
        await wireguard.aclose()
        await store.aclose()

    app = FastAPI(
        title="WireGuard Gateway",
        description="Port lease and session gate in front of the WireGuard management service",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.resolver = resolver
    app.state.wireguard = wireguard
    app.state.audit = audit
    app.state.gate = SessionGate(store, password=settings.password, password_hash=settings.password_hash)
    app.state.allocator = PortLeaseAllocator(resolver, wireguard, audit)
    app.state.serializer = URLSafeTimedSerializer(settings.session_secret, salt="wg-gateway-session")
    app.state.limiter = limiter

    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.get("/api/release")
    async def get_release():
        return settings.release

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring."""
        return {"status": "healthy", "service": "wg-gateway"}

    app.include_router(session_router)
    app.include_router(tunnel_router)

    return app
