"""
Scheduling service ASGI application.

Run with: uvicorn ortho_scheduling.main:app
"""
import logging

from dotenv import load_dotenv

from .app_factory import create_app

# Load environment variables before settings are read
load_dotenv()

logger = logging.getLogger(__name__)

app = create_app()
