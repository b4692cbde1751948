# backend/main.py
"""
B2B Trading Platform - Main API Entry Point
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException
import uvicorn

from .config.settings import get_settings
from .config.logging import setup_logging, get_logger
from .config.database import init_database, cleanup_database, check_database_health
from .core.middleware import register_middleware
from .core.exceptions import custom_exception_handler
from .api.v1.api import api_router
from .api import delivery_address, quote_approval
from .services.job_service import job_loop
from .services.order_feed import OrderFeedListener

settings = get_settings()
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info(f"Starting {settings.APP_NAME}...")

    init_database()

    feed_listener = None
    if settings.ORDER_FEED_ENABLED:
        feed_listener = OrderFeedListener()
        feed_listener.start()

    jobs_stop = asyncio.Event()
    jobs_task = None
    if settings.BACKGROUND_JOBS_ENABLED:
        jobs_task = asyncio.create_task(job_loop(settings.JOB_INTERVAL_SECONDS, jobs_stop))

    app.state.feed_listener = feed_listener

    yield

    logger.info(f"Shutting down {settings.APP_NAME}...")
    if feed_listener is not None:
        await feed_listener.stop()
    if jobs_task is not None:
        jobs_stop.set()
        await jobs_task
    cleanup_database()


# Create FastAPI application
app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Quotes, orders, credit terms, standing orders and payments for B2B trading",
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

register_middleware(app)

app.add_exception_handler(HTTPException, custom_exception_handler)

app.include_router(api_router, prefix="/api/v1")
app.include_router(quote_approval.router, tags=["Quote Approval"])
app.include_router(delivery_address.router, tags=["Delivery Address"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": f"{settings.APP_NAME} API",
        "version": settings.VERSION,
        "status": "operational"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    database_ok = check_database_health()
    feed_listener = getattr(app.state, "feed_listener", None)
    return {
        "status": "healthy" if database_ok else "degraded",
        "database": "ok" if database_ok else "unavailable",
        "order_feed": str(feed_listener.status) if feed_listener else "disabled",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "version": settings.VERSION
    }


if __name__ == "__main__":
    uvicorn.run(
        "backend.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else 4
    )
