"""Review Poller - FastAPI Application."""

from contextlib import asynccontextmanager

import httpx
import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings, load_poller_config
from api.router import api_router
from core.exceptions import ConfigError
from core.logging_config import setup_logging
from core.middleware import RequestTrackingMiddleware, setup_exception_handlers
from ingestion.feed import FeedFetcher
from ingestion.poller import ReviewPoller
from ingestion.store import FileStore
from notifications.channels import WebhookAlertChannel

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    # Startup
    settings = get_settings()
    setup_logging()

    # Configuration and storage problems are fatal
    try:
        config = load_poller_config(settings.TARGETS_FILE)
    except ConfigError as e:
        logger.critical("Cannot load targets file", path=settings.TARGETS_FILE, error=e.message)
        raise

    store = FileStore(settings.DATA_DIR)

    # One HTTP client shared by every target and the alert channel
    client = httpx.AsyncClient(timeout=settings.FEED_TIMEOUT_SECONDS)

    alerts = WebhookAlertChannel(
        url=config.webhook_url,
        client=client,
        timeout=settings.ALERT_TIMEOUT_SECONDS,
    )
    if not alerts.enabled:
        logger.info("Webhook alerting disabled (no webhookUrl configured)")

    fetcher = FeedFetcher(client, alerts=alerts, request_timeout=settings.FEED_TIMEOUT_SECONDS)
    poller = ReviewPoller(config, store, fetcher, page_timeout=settings.PAGE_TIMEOUT_SECONDS)

    app.state.store = store
    app.state.poller = poller

    poller.start()
    logger.info(
        "Application started",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        targets=len(poller.targets),
    )
    try:
        yield
    finally:
        # Shutdown
        logger.info("Application shutting down...")
        await poller.stop(grace_period=settings.SHUTDOWN_GRACE_SECONDS)
        await client.aclose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Polls App Store customer-review feeds for configured "
                    "apps and countries and serves recent reviews.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Request tracking middleware
    app.add_middleware(RequestTrackingMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
    )

    # Global exception handlers
    setup_exception_handlers(app)

    app.include_router(api_router)

    return app


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,
    )


app = create_app()
