"""MCP protocol handling: JSON-RPC envelopes, tools and dispatch."""

from pbgateway.app.mcp.dispatcher import SERVER_INFO, MCPDispatcher
from pbgateway.app.mcp.protocol import ErrorCode, JSONRPCRequest, error_response
from pbgateway.app.mcp.tools import RESOURCES, ToolRegistry, registry

__all__ = [
    "SERVER_INFO",
    "MCPDispatcher",
    "ErrorCode",
    "JSONRPCRequest",
    "error_response",
    "RESOURCES",
    "ToolRegistry",
    "registry",
]
