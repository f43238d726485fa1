"""Backend client adapters."""

from pbgateway.app.providers.base import BackendClient
from pbgateway.app.providers.pocketbase import PocketBaseBackend, PocketBaseClient

__all__ = [
    "BackendClient",
    "PocketBaseBackend",
    "PocketBaseClient",
]
