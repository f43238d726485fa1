"""API routers for the gateway."""

from pbgateway.app.api.mcp import router as mcp_router

__all__ = ["mcp_router"]
