"""
Salim API Gateway - Main FastAPI Application
OpenAI-compatible endpoints with per-key rate limits, usage accounting and a dashboard API
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from gateway.db.database import init_db, close_db, async_session_maker
from gateway.core.config import settings
from gateway.api.routes import auth, api_keys, dashboard
from gateway.api.routes.v1 import router as v1_router
from gateway.api.exception_handlers import setup_exception_handlers
from gateway.services.auth import seed_admin_user
from gateway.services.cache import cache
from gateway.services.fine_tuning import get_fine_tuning_service
from gateway.services.rate_limiter import rate_limiter
from gateway.services.usage import get_usage_recorder

# Configure logging - reduce noise, keep only important messages
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence noisy loggers
logging.getLogger("uvicorn").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("uvicorn.error").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("openai").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

# Request accounting and security events stay visible
logging.getLogger("gateway").setLevel(logging.INFO)
logging.getLogger("usage").setLevel(logging.INFO)
logging.getLogger("security").setLevel(logging.INFO)
logging.getLogger("gateway.services.fine_tuning").setLevel(logging.INFO)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)  # Keep main app logger at INFO for startup messages


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events"""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}...")
    settings.validate_secret_key()

    await init_db()
    logger.info("Database tables created")

    async with async_session_maker() as db:
        admin = await seed_admin_user(db)
        if admin:
            logger.info(f"Admin user ready: {admin.email}")

    rate_limiter.start_cleanup(settings.RATE_LIMIT_CLEANUP_INTERVAL)
    cache.start_cleanup(settings.CACHE_CLEANUP_INTERVAL)

    fine_tuning = get_fine_tuning_service()
    if settings.FINE_TUNE_WORKER_ENABLED:
        fine_tuning.start_worker()
        logger.info("Fine-tuning worker started")

    logger.info(f"{settings.APP_NAME} started successfully!")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")

    fine_tuning.stop_worker()
    await rate_limiter.stop_cleanup()
    await cache.stop_cleanup()
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[
        "x-ratelimit-limit-requests",
        "x-ratelimit-remaining-requests",
        "x-ratelimit-reset-requests",
        "Retry-After",
    ],
)

# Setup centralized exception handlers
setup_exception_handlers(app)

app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(api_keys.router, prefix="/api/dashboard/keys", tags=["API Keys"])
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["Dashboard"])
app.include_router(v1_router)


@app.get("/api/health")
async def health_check():
    """Health check endpoint"""
    recorder = get_usage_recorder()
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "usage_recorded": recorder.recorded,
        "usage_failed_records": recorder.failed_records,
        "rate_limiter_keys": len(rate_limiter),
        "fine_tuning_worker": get_fine_tuning_service().worker_running,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "gateway.main:app",
        host=settings.BACKEND_HOST,
        port=settings.BACKEND_PORT,
        reload=settings.DEBUG,
    )
