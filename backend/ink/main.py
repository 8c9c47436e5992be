"""FastAPI application entry point for the Ink status daemon."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from ink import __version__
from ink.api import router as api_router
from ink.config import settings
from ink.core.logging import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    setup_logging()
    logger.info("Starting Ink daemon...")
    logger.info(f"Plans: {settings.plans_path}  Staging: {settings.staging_path}")

    yield

    logger.info("Ink daemon stopped")


app = FastAPI(
    title="Ink API",
    description="Status of the optical disc backup pipeline",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
