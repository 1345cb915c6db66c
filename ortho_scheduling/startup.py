"""
Application startup and shutdown lifecycle management.

Handles:
- Configuration validation (fails fast)
- Logging setup
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import get_settings, validate_environment
from .utils.logging_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle manager."""
    # === STARTUP ===
    if not validate_environment():
        raise RuntimeError("Invalid scheduling configuration - check SCHEDULING_* variables")

    settings = get_settings()
    configure_logging(settings)
    logger.info(f"Starting scheduling service ({settings.environment}, {settings.clinic_timezone})...")

    yield

    # === SHUTDOWN ===
    logger.info("Scheduling service shutdown complete")
