import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from trackit.core.config import get_settings
from trackit.core.runtime import Runtime
from trackit.api import auth, entries, sync
from trackit.services.scheduler import start_scheduler, stop_scheduler


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    settings = get_settings()
    configure_logging(settings.log_level)

    # Startup
    runtime = await Runtime.create(settings)
    app.state.runtime = runtime
    scheduler = start_scheduler(runtime, settings.connectivity_check_seconds)
    yield
    # Shutdown
    stop_scheduler(scheduler)
    await runtime.close()


# Create FastAPI application
app = FastAPI(
    title="TrackIt Sync",
    description="Synchronizes locally recorded body metrics and progress photos with the TrackIt server",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(auth.router)
app.include_router(entries.router)
app.include_router(sync.router)
