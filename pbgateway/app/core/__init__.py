"""Core utilities for the gateway application."""

from pbgateway.app.core.config import settings
from pbgateway.app.core.http_client import get_http_client, init_http_client
from pbgateway.app.core.logging import get_log_context, get_logger, setup_logging

__all__ = [
    "settings",
    "get_http_client",
    "init_http_client",
    "get_logger",
    "get_log_context",
    "setup_logging",
]
