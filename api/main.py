"""Estimatrack API: FastAPI entry point.

Registers middleware, routers, and lifecycle hooks. Per-process services
(rate limiter, metrics, resolver, metafield sync) are built by create_app()
and live on ``app.state`` so separate apps never share counters.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import CORS_ALLOW_HEADERS, CORS_METHODS, ShopSessionMiddleware
from core.database import close_db, init_db
from core.logging import configure_logging
from core.observability.metrics import MetricsCollector
from core.observability.otel_setup import setup_otel
from core.ratelimit import SlidingWindowRateLimiter
from patterns.domain_config import DeliveryConfig
from verticals.delivery.config import config as default_config
from verticals.delivery.metafields import MetafieldSync
from verticals.delivery.resolver import EstimateResolver

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")
APP_VERSION = os.getenv("APP_VERSION", "0.1.0")
SHOPIFY_API_KEY = os.getenv("SHOPIFY_API_KEY")
SHOPIFY_API_SECRET = os.getenv("SHOPIFY_API_SECRET", "")
SHOPIFY_ADMIN_TOKEN = os.getenv("SHOPIFY_ADMIN_TOKEN")
SHOPIFY_API_VERSION = os.getenv("SHOPIFY_API_VERSION", "2024-10")
OTEL_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
CREATE_TABLES = os.getenv("DB_CREATE_TABLES", "false").lower() == "true"


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown hooks."""
    configure_logging()
    if CREATE_TABLES:
        await init_db()
    if OTEL_ENDPOINT:
        app.state.resolver.tracer = setup_otel(endpoint=OTEL_ENDPOINT)

    rate_limiter: SlidingWindowRateLimiter = app.state.rate_limiter
    rate_limiter.start_sweeper(app.state.config.rate_limit.sweep_interval_seconds)
    logger.info(
        "Estimatrack API started version=%s fallback_mode=%s",
        APP_VERSION, app.state.config.fallback.mode.value,
    )
    try:
        yield
    finally:
        await rate_limiter.stop_sweeper()
        app.state.metrics.log_summary()
        await close_db()
        logger.info("Estimatrack API shut down")


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    config: DeliveryConfig | None = None,
    *,
    api_secret: str | None = None,
    api_key: str | None = None,
    metafield_sync: MetafieldSync | None = None,
) -> FastAPI:
    """Build the API with its own rate limiter, metrics and resolver."""
    config = config or default_config

    app = FastAPI(
        title="Estimatrack",
        description="Delivery estimates for Shopify product pages",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    rate_limiter = SlidingWindowRateLimiter(
        max_requests=config.rate_limit.max_requests,
        window_seconds=config.rate_limit.window_seconds,
    )
    metrics = MetricsCollector.from_config(config.health)
    app.state.config = config
    app.state.rate_limiter = rate_limiter
    app.state.metrics = metrics
    app.state.resolver = EstimateResolver(config, rate_limiter, metrics)
    app.state.metafield_sync = metafield_sync or MetafieldSync(
        SHOPIFY_ADMIN_TOKEN, SHOPIFY_API_VERSION
    )

    # Shop session + request id
    app.add_middleware(
        ShopSessionMiddleware,
        api_secret=SHOPIFY_API_SECRET if api_secret is None else api_secret,
        api_key=SHOPIFY_API_KEY if api_key is None else api_key,
    )

    # CORS (outermost, so preflights never hit the signature check).
    # Storefront only; the embedded admin is same-origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=CORS_METHODS,
        allow_headers=CORS_ALLOW_HEADERS,
    )

    # -----------------------------------------------------------------------
    # Routers
    # -----------------------------------------------------------------------

    from verticals.delivery.router import proxy_router, router as delivery_router

    app.include_router(delivery_router, prefix="/api", tags=["Delivery"])
    app.include_router(proxy_router, prefix="/apps/estimatrack/api", tags=["App proxy"])

    @app.get("/")
    async def root():
        return {
            "name": "Estimatrack",
            "version": APP_VERSION,
            "docs": "/docs",
            "health": "/api/health",
        }

    return app


app = create_app()
