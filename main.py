"""Main entry point for the scheduling server"""
import logging
import os
import sys

from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()

from ortho_scheduling.config import get_settings  # noqa: E402
from ortho_scheduling.utils.logging_config import configure_logging  # noqa: E402

# Configure logging before the app import
configure_logging(get_settings())
logger = logging.getLogger(__name__)

logger.info("Starting scheduling server...")
logger.info(f"Python version: {sys.version}")
logger.info(f"Working directory: {os.getcwd()}")

from ortho_scheduling.main import app  # noqa: E402

# Expose the app for uvicorn
__all__ = ['app']

if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8080))
    logger.info(f"Starting server on port {port}")
    uvicorn.run(app, host="0.0.0.0", port=port)
