"""Main FastAPI application - runs the monitoring scheduler in-process."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import init_db, close_db
from .routers import monitoring_router
from .services.dispatcher import NotificationDispatcher
from .services.maintenance import MaintenanceService
from .services.repository import MonitorRepository
from .services.scheduler import SchedulerService

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting PulseGuard")

    await init_db()
    logger.info("Database initialized")

    repository = MonitorRepository()
    dispatcher = NotificationDispatcher(repository)
    scheduler = SchedulerService(repository, dispatcher, MaintenanceService(repository))

    app.state.repository = repository
    app.state.dispatcher = dispatcher
    app.state.scheduler = scheduler

    scheduler.start()
    await scheduler.start_all_monitoring()

    yield

    # Shutdown
    scheduler.stop_all_monitoring()
    scheduler.stop()
    await close_db()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="PulseGuard",
        description="Uptime monitoring - HTTP, ping, DNS, TCP and SSL checks with notifications",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(monitoring_router)

    @app.get("/health")
    async def health_check():
        scheduler = getattr(app.state, "scheduler", None)
        return {
            "status": "healthy",
            "scheduler_running": bool(scheduler and scheduler.running),
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
