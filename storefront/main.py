import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.api import admin, auth, uploads
from storefront.auth.credentials import CredentialService
from storefront.auth.mailer import LoggingMailer
from storefront.auth.sessions import SessionStore, SqlAlchemySessionRepository
from storefront.auth.tokens import TokenService
from storefront.auth.users import UserRepository
from storefront.core.config import Settings, get_settings
from storefront.core.errors import TrustLayerError
from storefront.core.limiter import RateLimiter, RedisRateLimitStore, create_rate_limit_store
from storefront.core.logging_config import CorrelationIdMiddleware, init_application_logging
from storefront.core.security import SecurityHeadersMiddleware
from storefront.db.init_db import check_database_health, init_database
from storefront.db.session import create_db_engine, create_session_factory
from storefront.uploads.categories import build_categories
from storefront.uploads.storage import ObjectStorageClient

logger = logging.getLogger("storefront.main")


def _ensure_sqlite_directory(database_url: str) -> None:
    prefix = "sqlite:///"
    if database_url.startswith(prefix) and ":memory:" not in database_url:
        Path(database_url[len(prefix):]).parent.mkdir(parents=True, exist_ok=True)


def create_app(settings: Optional[Settings] = None, configure_logging: bool = True) -> FastAPI:
    """
    Build the application and wire every service onto ``app.state``.

    Args:
        settings: Explicit configuration; defaults to the environment
        configure_logging: Install the structured logging handlers

    Returns:
        The configured FastAPI application
    """
    settings = settings or get_settings()

    if configure_logging:
        init_application_logging(settings)

    # Create database tables
    _ensure_sqlite_directory(settings.database_url)
    engine = create_db_engine(settings)
    init_database(engine)
    session_factory = create_session_factory(engine)

    app = FastAPI(
        title=settings.app_name,
        description="Session, authorization, rate limiting and media upload services",
        version=settings.version,
        debug=settings.debug,
    )

    token_service = TokenService(settings)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.token_service = token_service
    app.state.users = UserRepository(session_factory)
    app.state.session_store = SessionStore(
        SqlAlchemySessionRepository(session_factory), token_service, settings
    )
    app.state.mailer = LoggingMailer()
    app.state.credentials = CredentialService(
        session_factory, app.state.users, app.state.session_store, app.state.mailer, settings
    )
    app.state.rate_limiter = RateLimiter(create_rate_limit_store(settings), settings)
    app.state.storage = ObjectStorageClient(settings)
    app.state.upload_categories = build_categories(settings)

    logger.info(
        "Rate limiting initialized with configuration: gallery=%s, product=%s, review=%s, auth=%s",
        settings.rate_limit_gallery.model_dump(),
        settings.rate_limit_product.model_dump(),
        settings.rate_limit_review.model_dump(),
        settings.rate_limit_auth.model_dump(),
    )

    @app.exception_handler(TrustLayerError)
    async def trust_layer_error_handler(request: Request, exc: TrustLayerError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error_code, "detail": exc.message},
            headers=exc.headers(),
        )

    # Configure CORS (restrict origins; credentials require explicit origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware, hsts=settings.is_production)
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(auth.router)
    app.include_router(uploads.router)
    app.include_router(admin.router)

    def _check_rate_limit_store_health() -> dict:
        """Health of the rate limiting counter store."""
        store = app.state.rate_limiter.store
        store_type = "redis" if isinstance(store, RedisRateLimitStore) else "memory"
        healthy = store.healthy()
        return {
            "type": store_type,
            "healthy": healthy,
            "message": "Store reachable" if healthy else "Store unreachable",
        }

    # Health check endpoints
    @app.get("/health")
    def health_check():
        """Basic health check endpoint."""
        return {"status": "healthy"}

    @app.get("/api/health")
    def api_health_check(response: Response):
        """
        Detailed health: database connectivity, rate limiting store and
        object storage configuration.
        """
        health_status = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": settings.version,
            "environment": {
                "name": settings.environment,
                "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
            },
            "services": {},
        }

        db_health = check_database_health(app.state.engine)
        health_status["services"]["database"] = db_health
        if db_health["status"] != "healthy":
            health_status["status"] = "unhealthy"

        store_health = _check_rate_limit_store_health()
        health_status["services"]["rate_limiting"] = {
            "status": "enabled" if store_health["healthy"] else "degraded",
            "storage": store_health,
        }
        if not store_health["healthy"] and health_status["status"] == "healthy":
            health_status["status"] = "degraded"

        storage_configured = app.state.storage.configured
        health_status["services"]["object_storage"] = {
            "status": "configured" if storage_configured else "unconfigured",
            "endpoint_set": bool(settings.resolved_storage_endpoint),
        }
        if not storage_configured and settings.is_production and health_status["status"] == "healthy":
            health_status["status"] = "degraded"

        if health_status["status"] == "unhealthy":
            response.status_code = 503
        return health_status

    logger.info("Application initialized", extra={"environment": settings.environment})
    return app
