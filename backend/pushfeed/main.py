"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import init_db, close_db
from .dependencies import configure_services, reset_services
from .routers import devices_router, notifications_router, feed_router
from .services.feed_hub import feed_hub
from .services.push_gateway import build_gateway

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting PushFeed")

    # Missing gateway credentials abort startup (ConfigurationError)
    gateway = build_gateway(settings)

    await init_db()
    logger.info("Database initialized")

    configure_services(gateway)

    yield

    # Shutdown
    for user_id in list(feed_hub.channels):
        feed_hub.terminate(user_id, "server shutting down")
    reset_services()
    await gateway.close()
    await close_db()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="PushFeed",
        description="Push notification fan-out and live in-app notification feed",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict to your domain
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(devices_router)
    app.include_router(notifications_router)
    app.include_router(feed_router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "push_provider": settings.push_provider,
            "live_feeds": feed_hub.subscription_count,
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
