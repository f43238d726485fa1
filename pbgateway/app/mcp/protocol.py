"""JSON-RPC 2.0 envelope models for the MCP endpoint."""

from enum import IntEnum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

RequestId = Union[str, int]


class ErrorCode(IntEnum):
    """JSON-RPC error codes used by the gateway."""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    # Implementation-defined server errors
    SERVER_ERROR = -32000
    UNAUTHORIZED = -32001


class JSONRPCRequest(BaseModel):
    """A single JSON-RPC request or notification."""
    jsonrpc: Literal["2.0"]
    method: str = Field(..., min_length=1)
    id: Optional[RequestId] = None
    params: Optional[Dict[str, Any]] = None

    @property
    def is_notification(self) -> bool:
        return "id" not in self.model_fields_set


class InvalidParamsError(Exception):
    """Raised by a method handler when params fail validation."""


def result_response(request_id: Optional[RequestId], result: Any) -> dict:
    return {"jsonrpc": "2.0", "result": result, "id": request_id}


def error_response(
    code: int,
    message: str,
    request_id: Optional[RequestId] = None,
    data: Any = None,
) -> dict:
    error: Dict[str, Any] = {"code": int(code), "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "error": error, "id": request_id}
