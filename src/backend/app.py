import asyncio
import logging

from contextlib import asynccontextmanager, suppress
from typing import Optional

# FastAPI imports
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Local imports
from src.backend.common.config.app_config import AppConfig
from src.backend.common.database.database import init_db
from src.backend.v4.api.router import app_v4
from src.backend.v4.config.settings import SyncRuntime, build_runtime


def configure_logging(config: AppConfig) -> None:
    """Configure logging levels from config."""

    logging.basicConfig(level=getattr(logging, config.BASIC_LOGGING_LEVEL.upper(), logging.INFO))

    package_level = getattr(logging, config.PACKAGE_LOGGING_LEVEL.upper(), logging.WARNING)
    for logger_name in config.logging_packages:
        logging.getLogger(logger_name).setLevel(package_level)


def create_app(
    config: Optional[AppConfig] = None,
    runtime: Optional[SyncRuntime] = None,
) -> FastAPI:
    """Build the FastAPI app.

    The config is read once here (or passed in), and the runtime is built in
    the lifespan unless a prebuilt one is supplied (tests do this).
    """

    config = config or (runtime.config if runtime is not None else AppConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage FastAPI application lifecycle - startup and shutdown."""
        logger = logging.getLogger(__name__)

        # Startup
        logger.info("🚀 Starting receipt ledger application...")
        sync_runtime = runtime or build_runtime(config)
        init_db(sync_runtime.engine)
        app.state.sync_runtime = sync_runtime

        stop_event = asyncio.Event()
        worker_task: Optional[asyncio.Task] = None
        if config.SYNC_WORKER_ENABLED:
            worker_task = asyncio.create_task(sync_runtime.worker.run_forever(stop_event))
        else:
            logger.info("Sync drain worker disabled (SYNC_WORKER_ENABLED=false)")

        yield

        # Shutdown
        logger.info("🛑 Shutting down receipt ledger application...")
        stop_event.set()
        if worker_task is not None:
            # Outbox state is durable; an interrupted pass is picked up again later.
            worker_task.cancel()
            with suppress(asyncio.CancelledError):
                await worker_task
        if runtime is None:
            sync_runtime.engine.dispose()
        logger.info("👋 Receipt ledger application shutdown complete")

    app = FastAPI(lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Allow all origins for development; restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # v4 endpoints
    app.include_router(app_v4)
    return app


if __name__ == "__main__":
    import uvicorn

    app_config = AppConfig.from_env()
    configure_logging(app_config)
    uvicorn.run(create_app(app_config), host="0.0.0.0", port=8000)
