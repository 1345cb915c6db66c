"""
Logging setup for the scheduling service.

Level and line layout come from SchedulingSettings (SCHEDULING_LOG_LEVEL,
SCHEDULING_LOG_FORMAT). Layouts:
- "local": timestamped lines for a developer terminal
- "container": no timestamp, the container runtime stamps each line
- "auto": "container" under Docker, Kubernetes or Fly.io, else "local"
"""
import logging
import os
import sys
from typing import Optional, Tuple

from ..config import SchedulingSettings, get_settings

# Layout name -> (format, date format)
LOG_FORMATS = {
    "container": ("[%(name)s] %(levelname)s: %(message)s", None),
    "local": ("[%(asctime)s] [%(name)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"),
}

# Chatty at INFO; only their warnings reach the scheduling log
QUIET_LOGGERS = ("uvicorn.access", "httpx")


def running_in_container() -> bool:
    return bool(
        os.environ.get("FLY_APP_NAME")
        or os.environ.get("KUBERNETES_SERVICE_HOST")
        or os.path.exists("/.dockerenv")
    )


def resolve_format(log_format: str) -> Tuple[str, Optional[str]]:
    """Format and date format for a layout name, resolving "auto"."""
    if log_format == "auto":
        log_format = "container" if running_in_container() else "local"
    return LOG_FORMATS[log_format]


def build_handler(settings: SchedulingSettings) -> logging.Handler:
    fmt, datefmt = resolve_format(settings.log_format)
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(settings.log_level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def configure_logging(settings: Optional[SchedulingSettings] = None, force: bool = False) -> None:
    """
    Install the scheduling log handler on the root logger.

    Args:
        settings: Settings to read level and layout from (defaults to the cached settings)
        force: Replace existing root handlers instead of leaving them alone
    """
    settings = settings or get_settings()
    root_logger = logging.getLogger()

    if root_logger.handlers and not force:
        return

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(settings.log_level)
    root_logger.addHandler(build_handler(settings))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
