# main.py
"""Main application with worker pool and background job cleanup"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from config import settings
from services.logger_config import setup_logging
from database.session import create_tables
from api.endpoints import router
from services.factory import get_engine_registry, get_job_runner, get_worker_pool
from utils.common import clean_directory

setup_logging()
logger = logging.getLogger(settings.LOGGER_NAME)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting application...")

    # Database initialization
    await create_tables()
    logger.info("Database initialized")

    # Leftover working directories from an interrupted run
    clean_directory(settings.TEMP_DIR)

    # Fails fast when a format category has no engine
    get_engine_registry()
    logger.info("Services initialized")
    yield

    # Cleanup background jobs and engine threads on shutdown
    logger.info("Shutting down background jobs...")
    await get_job_runner().shutdown()
    get_worker_pool().shutdown(wait=False)
    get_worker_pool.cache_clear()

    logger.info("Application shutdown complete")

app = FastAPI(
    title=settings.APP_TITLE,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

app.include_router(router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
