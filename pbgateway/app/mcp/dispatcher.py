"""Stateless MCP method dispatch.

Each admitted HTTP request carries one JSON-RPC message and is served by a
fresh backend handle; no session state survives between requests.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from pbgateway.app.core.logging import get_logger
from pbgateway.app.mcp.protocol import (
    ErrorCode,
    InvalidParamsError,
    JSONRPCRequest,
    error_response,
    result_response,
)
from pbgateway.app.mcp.tools import RESOURCES, ToolRegistry, read_resource, registry
from pbgateway.app.providers.pocketbase import PocketBaseClient

logger = get_logger(__name__)

SERVER_INFO = {"name": "pocketbase-mcp", "version": "1.0.0"}

LATEST_PROTOCOL_VERSION = "2025-03-26"
SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")

MethodHandler = Callable[[Dict[str, Any], PocketBaseClient], Awaitable[Any]]


class MCPDispatcher:
    """Routes JSON-RPC messages to MCP method handlers."""

    def __init__(self, tools: Optional[ToolRegistry] = None, resources: Optional[List[dict]] = None):
        self.tools = tools if tools is not None else registry
        self.resources = resources if resources is not None else RESOURCES
        self._methods: Dict[str, MethodHandler] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
            "resources/list": self._resources_list,
            "resources/read": self._resources_read,
        }

    async def handle(self, message: Any, pb: PocketBaseClient) -> Optional[dict]:
        """Handle one decoded JSON-RPC message.

        Returns:
            The JSON-RPC response, or None for notifications
        """
        if not isinstance(message, dict):
            return error_response(
                ErrorCode.INVALID_REQUEST,
                "Invalid Request: expected a single JSON-RPC object",
            )

        try:
            request = JSONRPCRequest.model_validate(message)
        except ValidationError:
            request_id = message.get("id")
            if not isinstance(request_id, (str, int)):
                request_id = None
            return error_response(ErrorCode.INVALID_REQUEST, "Invalid Request", request_id)

        if request.is_notification:
            # notifications/initialized and friends need no reply
            logger.debug(f"Received notification {request.method}")
            return None

        handler = self._methods.get(request.method)
        if handler is None:
            return error_response(
                ErrorCode.METHOD_NOT_FOUND, f"Method not found: {request.method}", request.id
            )

        try:
            result = await handler(request.params or {}, pb)
        except InvalidParamsError as e:
            return error_response(ErrorCode.INVALID_PARAMS, str(e), request.id)
        except Exception:
            logger.exception(f"MCP method {request.method} failed")
            return error_response(ErrorCode.INTERNAL_ERROR, "Internal error", request.id)

        return result_response(request.id, result)

    async def _initialize(self, params: Dict[str, Any], pb: PocketBaseClient) -> dict:
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        return {
            "protocolVersion": version,
            "capabilities": {
                "tools": {"listChanged": False},
                "resources": {"listChanged": False},
            },
            "serverInfo": dict(SERVER_INFO),
        }

    async def _ping(self, params: Dict[str, Any], pb: PocketBaseClient) -> dict:
        return {}

    async def _tools_list(self, params: Dict[str, Any], pb: PocketBaseClient) -> dict:
        return {"tools": [tool.to_dict() for tool in self.tools.definitions()]}

    async def _tools_call(self, params: Dict[str, Any], pb: PocketBaseClient) -> dict:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise InvalidParamsError("tools/call requires a tool name")
        arguments = params.get("arguments")
        if arguments is not None and not isinstance(arguments, dict):
            raise InvalidParamsError("tools/call arguments must be an object")
        return await self.tools.call(name, arguments, pb)

    async def _resources_list(self, params: Dict[str, Any], pb: PocketBaseClient) -> dict:
        return {"resources": [dict(resource) for resource in self.resources]}

    async def _resources_read(self, params: Dict[str, Any], pb: PocketBaseClient) -> dict:
        uri = params.get("uri")
        if not isinstance(uri, str) or not uri:
            raise InvalidParamsError("resources/read requires a uri")
        return await read_resource(uri, pb)
