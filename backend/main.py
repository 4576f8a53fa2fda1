"""
Signal Terminal Backend - Main FastAPI Application

Run with:
    uvicorn main:app --reload --port 8000
"""

import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from adapter.base import DEFAULT_FETCH_TIMEOUT
from adapter.grok import GrokAdapter
from adapter.rate_limiter import create_default_limiter
from aggregator import ItemStore, VelocityAggregator, DEFAULT_HISTORY_CAPACITY
from alerts import AlertEngine, NotificationDispatcher, load_alerts, DEFAULT_CHECK_INTERVAL
from api import router, set_dependencies, set_rate_limiter
from core import (
    IngestionPoller,
    IngestionService,
    build_default_resolver,
    DEFAULT_MAX_ITEMS,
    DEFAULT_POLL_INTERVAL,
)
from monitoring import monitor
from services import NotificationChannel

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Global services (initialized on startup)
ingestion_poller: IngestionPoller = None
alert_engine: AlertEngine = None


class RequestMonitoringMiddleware(BaseHTTPMiddleware):
    """Middleware to monitor FastAPI requests."""

    async def dispatch(self, request: Request, call_next) -> Response:
        # Skip monitoring for docs
        if request.url.path in ["/", "/docs", "/redoc", "/openapi.json"]:
            return await call_next(request)

        start_time = time.time()
        # Normalize endpoint name (remove /api/v1 prefix)
        endpoint = request.url.path.replace("/api/v1", "") or "/"

        try:
            response = await call_next(request)
        except Exception:
            latency_ms = (time.time() - start_time) * 1000
            monitor.metrics.record_request(endpoint, latency_ms, error=True)
            raise

        latency_ms = (time.time() - start_time) * 1000
        monitor.metrics.record_request(endpoint, latency_ms, error=response.status_code >= 500)
        return response


def _csv_env(name: str):
    value = os.environ.get(name)
    if not value:
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - setup and teardown.
    """
    global ingestion_poller, alert_engine

    logger.info("Starting Signal Terminal backend...")

    fetch_timeout = float(os.environ.get("FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT))
    poll_interval = float(os.environ.get("POLL_INTERVAL", DEFAULT_POLL_INTERVAL))
    check_interval = float(os.environ.get("ALERT_CHECK_INTERVAL", DEFAULT_CHECK_INTERVAL))
    capacity = int(os.environ.get("VELOCITY_CAPACITY", DEFAULT_HISTORY_CAPACITY))
    max_items = int(os.environ.get("INGEST_MAX_ITEMS", DEFAULT_MAX_ITEMS))

    # Initialize adapters
    rate_limiter = create_default_limiter()
    resolver = build_default_resolver(
        rss_sources=_csv_env("RSS_SOURCES"),
        rate_limiter=rate_limiter,
        timeout=fetch_timeout,
    )
    grok_adapter = GrokAdapter(rate_limiter=rate_limiter)

    # Log adapter status
    for tier in resolver.tiers:
        configured = [a.name for a in tier.adapters if a.is_configured]
        if configured:
            logger.info(f"✓ Tier {tier.name}: {', '.join(configured)}")
        else:
            logger.warning(f"⚠ Tier {tier.name} has no configured sources - it will be skipped")

    if grok_adapter.is_live:
        logger.info("✓ Grok Adapter live")
    else:
        logger.warning("⚠ Grok Adapter not live - set XAI_API_KEY")

    # Initialize core services
    channel = NotificationChannel()
    aggregator = VelocityAggregator(capacity=capacity)
    item_store = ItemStore()
    alert_engine = AlertEngine(NotificationDispatcher(channel), check_interval=check_interval)

    alerts_file = os.environ.get("ALERTS_FILE")
    if alerts_file:
        alert_engine.set_alerts(load_alerts(alerts_file))
        logger.info(f"✓ Loaded {len(alert_engine.list_alerts())} alerts from {alerts_file}")

    ingestion_service = IngestionService(
        resolver=resolver,
        grok_adapter=grok_adapter,
        aggregator=aggregator,
        item_store=item_store,
        alert_engine=alert_engine,
        channel=channel,
        query=os.environ.get("DEFAULT_QUERY", "breaking OR market OR technology OR politics"),
        keywords=_csv_env("DEFAULT_KEYWORDS"),
        max_items=max_items,
    )
    ingestion_poller = IngestionPoller(ingestion_service, poll_interval=poll_interval)

    # Set dependencies for API routes
    set_dependencies(
        resolver=resolver,
        ingestion_service=ingestion_service,
        ingestion_poller=ingestion_poller,
        aggregator=aggregator,
        item_store=item_store,
        alert_engine=alert_engine,
        channel=channel,
    )
    set_rate_limiter(rate_limiter)

    # Configure monitoring
    monitor.set_component_status(
        "grok_adapter",
        "healthy" if grok_adapter.is_live else "warning",
        {"live": grok_adapter.is_live}
    )

    # Alert evaluation runs on its own timer regardless of polling
    await alert_engine.start_monitoring()
    monitor.set_component_status("alert_engine", "healthy", {"interval": check_interval})
    logger.info(f"✓ Alert engine started (interval: {check_interval}s)")

    auto_poll = os.environ.get("AUTO_POLL", "false").lower() == "true"
    if auto_poll:
        await ingestion_poller.start()
        monitor.set_component_status("poller", "healthy", {"interval": poll_interval})
        logger.info(f"✓ IngestionPoller started (interval: {poll_interval}s)")
    else:
        monitor.set_component_status("poller", "warning", {"enabled": False})
        logger.info("ℹ Background polling disabled (set AUTO_POLL=true, or POST /api/v1/ingest)")

    logger.info("📊 Monitoring available at /api/v1/monitor/*")
    logger.info("Signal Terminal backend ready!")

    yield  # Application runs here

    # Shutdown
    logger.info("Shutting down Signal Terminal backend...")
    if ingestion_poller:
        await ingestion_poller.stop()
    if alert_engine:
        await alert_engine.stop_monitoring()
    logger.info("Goodbye!")


# Create FastAPI app
app = FastAPI(
    title="Signal Terminal API",
    description="Signal ingestion, velocity tracking and alerting backend",
    version="1.0.0",
    lifespan=lifespan,
)

# Request monitoring middleware
app.add_middleware(RequestMonitoringMiddleware)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict this
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


# Root endpoint
@app.get("/")
async def root():
    return {"name": "Signal Terminal API", "version": "1.0.0", "docs": "/docs"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        reload=True,
    )
