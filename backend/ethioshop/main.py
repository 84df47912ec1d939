"""FastAPI application entry point"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ethioshop.api import orders, payments, products
from ethioshop.core.config import settings
from ethioshop.core.logging import setup_logging
from ethioshop.core.middleware import global_exception_handler, security_middleware, setup_cors_middleware
from ethioshop.core.otel import initialize_otel, instrument_app
from ethioshop.db.redis import get_redis_client
from ethioshop.db.session import engine, init_db
from ethioshop.services.payments import build_gateways, close_gateways
from ethioshop.tasks.order_expiry import order_expiry_task

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if initialize_otel():
        logger.info(f"OpenTelemetry initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    try:
        get_redis_client().ping()
        logger.info("Redis connection successful")
    except Exception as e:
        # Sessions fail closed and rate limiting fails open without Redis
        logger.error(f"Redis connection failed: {e}")

    # Tests install their own registry before startup
    if not getattr(app.state, "gateways", None):
        app.state.gateways = build_gateways(settings)
    logger.info(f"Payment gateways ready: {', '.join(sorted(app.state.gateways))}")

    expiry_task = None
    if settings.ORDER_EXPIRY_INTERVAL_SECONDS > 0:
        expiry_task = asyncio.create_task(order_expiry_task())
        logger.info("Order expiry task started")

    yield

    # Shutdown
    logger.info("Shutting down...")
    if expiry_task:
        expiry_task.cancel()
        try:
            await expiry_task
        except asyncio.CancelledError:
            pass
    close_gateways(app.state.gateways)


# Create FastAPI app
app = FastAPI(
    title="EthioShop Backend",
    description="Orders and payment reconciliation for the EthioShop storefront",
    version="1.0.0",
    lifespan=lifespan
)

if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
    instrument_app(app, engine)

setup_cors_middleware(app)
app.middleware("http")(security_middleware)
app.add_exception_handler(Exception, global_exception_handler)

# Include routers
app.include_router(products.router)
app.include_router(orders.router)
app.include_router(payments.router)


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
