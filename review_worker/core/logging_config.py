"""Logging setup for the worker process."""

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure root logging with a stream handler and an optional file handler."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def mask_secret(value: str) -> str:
    """Return a masked representation safe for logs, e.g. ``sk-proj-...wxyz``."""
    if len(value) <= 12:
        return "***"
    return f"{value[:8]}...{value[-4:]}"
