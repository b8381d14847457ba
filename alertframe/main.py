"""Main FastAPI application with server/worker mode switching."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import init_db, close_db
from .env_validation import check_environment
from .routers import alerts_router, cron_router
from .services.scheduler import scheduler_service
from .worker import SweepWorker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info(f"Starting AlertFrame in {settings.mode.upper()} mode")

    check_environment(settings)

    worker = None
    if settings.mode == "server":
        await init_db()
        logger.info("Database initialized")

        if settings.scheduler_enabled:
            scheduler_service.start()
        else:
            logger.info("In-process scheduler disabled, sweeps must be triggered externally")

    elif settings.mode == "worker":
        worker = SweepWorker(settings)
        worker.start()

    yield

    # Shutdown
    if settings.mode == "server":
        scheduler_service.stop()
        await close_db()
    elif worker:
        worker.stop()

    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="AlertFrame",
        description="Watch a part of any web page and get notified when it changes",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict to your domain
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.mode == "server":
        app.include_router(alerts_router)
        app.include_router(cron_router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "mode": settings.mode,
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
