"""
RoofOps — Logging configuration.

Call ``configure_logging()`` once at process startup (API or worker) before
any handlers emit.  Request-level lines are written through
``log_request()`` as ``request_log {json}`` so they can be grepped and
parsed by the log drain.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, Dict, Optional


_CONFIGURED = False

_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "PIL",
    "sqlalchemy.engine",
    "uvicorn.access",
)

request_logger = logging.getLogger("roofops.requests")


def configure_logging(
    level: Optional[str] = None,
    fmt: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt: str = "%Y-%m-%d %H:%M:%S",
) -> None:
    """Configure the root logger exactly once.

    ``level`` falls back to the ``LOG_LEVEL`` environment variable, then
    ``INFO``.  Handlers installed by uvicorn are left alone.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    env_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    resolved = _LEVEL_MAP.get(level.upper() if level else env_level, logging.INFO)

    root = logging.getLogger()
    root.setLevel(resolved)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=fmt, datefmt=datefmt))
        root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _CONFIGURED = True


def log_request(payload: Dict[str, Any]) -> None:
    """Emit one structured request line."""
    request_logger.info("request_log %s", json.dumps(payload, default=str, sort_keys=True))
