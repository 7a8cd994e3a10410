"""
WhatsApp Notification Gateway API

FastAPI application entry point that ties all components together.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gateway.api.middleware.rate_limit import RateLimitMiddleware
from gateway.api.routes import health, realtime, whatsapp
from gateway.config import Settings, get_settings
from gateway.core.errors import GatewayError
from gateway.core.messaging.media import MediaResolver
from gateway.core.messaging.orchestrator import SendOrchestrator
from gateway.core.messaging.templates import CaptionBuilder, SqlTemplateStore, TemplateStore
from gateway.core.session.broadcaster import StatusBroadcaster
from gateway.core.session.manager import SessionLifecycleManager
from gateway.core.session.qr import render_qr_data_url
from gateway.infra.credentials import CredentialStore
from gateway.infra.database import close_db, init_db
from gateway.infra.protocol import HandleFactory, load_handle_factory
from gateway.infra.redis import RedisClient


def setup_logging(settings: Settings) -> None:
    """Configure logging based on environment."""
    log_level = logging.DEBUG if settings.debug else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    handle_factory: Optional[HandleFactory] = None,
    template_store: Optional[TemplateStore] = None,
    media_resolver: Optional[MediaResolver] = None,
    qr_renderer: Callable[[str], str] = render_qr_data_url,
) -> FastAPI:
    """
    Build the application and its single session manager.

    Collaborators default to what the settings describe; tests pass fakes.
    """
    settings = settings or get_settings()

    if handle_factory is None:
        handle_factory = load_handle_factory(settings.session_handle_factory)
    uses_sql_templates = template_store is None
    if template_store is None:
        template_store = SqlTemplateStore()
    if media_resolver is None:
        media_resolver = MediaResolver(
            max_bytes=settings.max_image_bytes,
            timeout=settings.image_fetch_timeout_seconds,
        )

    broadcaster = StatusBroadcaster(max_subscribers=settings.max_realtime_connections)
    manager = SessionLifecycleManager(
        handle_factory,
        CredentialStore(settings.credentials_dir),
        broadcaster,
        qr_timeout=settings.qr_timeout_seconds,
        reconnect_delay=settings.reconnect_delay_seconds,
        settle_delay=settings.reset_settle_seconds,
        cleanup_retry_delay=settings.credential_retry_seconds,
        qr_renderer=qr_renderer,
    )
    captions = CaptionBuilder(
        template_store,
        default_template_name=settings.default_template_name,
        timezone_name=settings.template_timezone,
        business_name=settings.business_name,
        signature=settings.business_signature,
    )
    orchestrator = SendOrchestrator(manager, media_resolver, captions)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Application lifespan manager.

        Handles startup and shutdown events.
        """
        # === STARTUP ===
        setup_logging(settings)
        logger.info(f"Starting {settings.app_name} in {settings.app_env} mode")

        health.set_start_time()

        # Create template table in development (use migrations in production)
        if uses_sql_templates and settings.is_development:
            try:
                await init_db()
                logger.info("Database tables initialized")
            except Exception as e:
                logger.warning(f"Database init skipped: {e}")

        try:
            redis = await RedisClient.get_client()
            if redis:
                logger.info("Redis connection established")
            else:
                logger.warning("Redis unavailable - rate limiting disabled")
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}")

        await manager.start()

        # Resume the paired session (or start pairing) without blocking startup
        try:
            await manager.initialize()
        except Exception as e:
            logger.error(f"Initial session open failed: {e}")

        logger.info(f"Application ready at http://{settings.host}:{settings.port}")

        yield

        # === SHUTDOWN ===
        logger.info("Shutting down application...")

        await manager.stop()
        await media_resolver.close()

        await RedisClient.close()
        logger.info("Redis connection closed")

        await close_db()
        logger.info("Database connections closed")

        logger.info("Shutdown complete")

    app = FastAPI(
        title="WhatsApp Notification Gateway",
        description="""
    Sends product details with an image to customers over WhatsApp.

    ## Features
    - 📱 Single paired WhatsApp session with QR pairing
    - 🔄 Realtime status updates over websocket
    - 🖼️ Images by URL, data URL or base64
    - 📝 Captions from editable templates

    ## Authentication
    When API_KEY is configured, mutating endpoints require it in the `X-API-Key` header.

    ## Rate Limiting
    Requests are rate-limited per client address.
    """,
        version="1.0.0",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.broadcaster = broadcaster
    app.state.session_manager = manager
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RateLimitMiddleware)

    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(
        request: Request,
        exc: GatewayError,
    ) -> JSONResponse:
        """Map gateway errors to their status and generic message."""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            f"{type(exc).__name__} | Path: {request.url.path} | "
            f"Status: {exc.status_code} | Detail: {exc.detail}"
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        """Handle Pydantic validation errors."""
        logger.warning(f"Validation error: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "success": False,
                "error": "validation_error",
                "detail": jsonable_errors(exc),
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.exception(f"Unhandled exception: {exc}")

        # Don't expose internal errors in production
        detail = str(exc) if settings.is_development else "Internal server error"

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "internal_error",
                "message": detail,
            },
        )

    @app.middleware("http")
    async def request_timing_middleware(request: Request, call_next):
        """Log request duration in debug mode."""
        start_time = time.time()

        try:
            return await call_next(request)
        finally:
            if settings.debug:
                duration = time.time() - start_time
                logger.debug(
                    f"{request.method} {request.url.path} "
                    f"completed in {duration:.3f}s"
                )

    app.include_router(health.router)
    app.include_router(whatsapp.router)
    app.include_router(realtime.router)

    @app.get("/", tags=["Root"])
    async def root() -> dict:
        """
        Root endpoint.

        Returns basic API information.
        """
        return {
            "name": settings.app_name,
            "version": "1.0.0",
            "status": "running",
            "environment": settings.app_env,
            "connectionStatus": manager.status.value,
            "docs": "/docs" if settings.is_development else None,
        }

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors without the raw input or exception context."""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "gateway.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
