"""
QuoteFunnel - white-label quote funnels for home-energy partners.
Main FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from src.config import get_settings
from src.api.router import api_router
from src.services.dispatch import drain_durable_tasks
from src.services.errors import FunnelError
from src.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("quotefunnel")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("QuoteFunnel starting up (env=%s)", settings.app_env)

    # Security warnings
    if not settings.encryption_key:
        logger.warning(
            "ENCRYPTION_KEY not set - partner SMTP and CRM credentials are read unencrypted. "
            "Generate a Fernet key for production."
        )
    if not settings.twilio_verify_service_sid:
        logger.warning("TWILIO_VERIFY_SERVICE_SID not set - phone verification will fail")

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    yield

    # Lead emails must survive the request that queued them
    logger.info("QuoteFunnel shutting down - draining background work...")
    finished = await drain_durable_tasks(settings.background_drain_timeout_seconds)
    logger.info("QuoteFunnel shutdown complete - %d background tasks drained", finished)


async def funnel_error_handler(request: Request, exc: FunnelError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "errors": exc.errors},
        headers=exc.headers(),
    )


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="QuoteFunnel",
        description="White-label quote funnels for home-energy partners",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS - partner funnels are served from their own domains
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            settings.app_base_url,
            *[o.strip() for o in settings.allowed_origins.split(",") if o.strip()],
        ],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type", "X-Correlation-ID", "X-Session-ID",
            "Accept", "Origin", "X-Requested-With",
        ],
        expose_headers=["X-Correlation-ID", "Retry-After"],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.add_exception_handler(FunnelError, funnel_error_handler)

    # Include all routes
    application.include_router(api_router)

    return application


app = create_app()
