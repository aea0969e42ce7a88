"""
Logging Setup.

Configures the root logger once at startup. Every module logs
through logging.getLogger(__name__).
"""

import json
import logging
import sys
from typing import Optional


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    host_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        host_id: Host identity added to every line

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "host": host_id or "",
            })
        )
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {host_id or ''} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # aiohttp access logs are noisy at INFO
    logging.getLogger("aiohttp.access").setLevel(max(log_level, logging.WARNING))

    return logging.getLogger("monitor")


__all__ = ["setup_logging"]
