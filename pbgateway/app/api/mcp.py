"""MCP endpoint for the gateway.

Every verb on ``/mcp`` is routed here so the admission pipeline can
classify wrong methods itself, after the rate limit gate.
"""

import json
from typing import Dict, Optional

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from pbgateway.app.core.config import settings
from pbgateway.app.core.logging import get_logger
from pbgateway.app.mcp.dispatcher import MCPDispatcher
from pbgateway.app.mcp.protocol import ErrorCode, error_response
from pbgateway.app.middleware.request_id import get_request_id
from pbgateway.app.services.admission import (
    AdmissionOutcome,
    AdmissionPipeline,
    AdmissionRequest,
    AdmissionResult,
)

logger = get_logger(__name__)

router = APIRouter()

BACKEND_URL_HEADER = "X-PB-URL"
TOKEN_HEADER = "X-PB-Token"
EMAIL_HEADER = "X-PB-Email"
PASSWORD_HEADER = "X-PB-Password"

# JSON-RPC error code reported for each rejected admission outcome
OUTCOME_ERROR_CODES: Dict[AdmissionOutcome, ErrorCode] = {
    AdmissionOutcome.RATE_LIMITED: ErrorCode.SERVER_ERROR,
    AdmissionOutcome.METHOD_NOT_ALLOWED: ErrorCode.SERVER_ERROR,
    AdmissionOutcome.PAYLOAD_TOO_LARGE: ErrorCode.SERVER_ERROR,
    AdmissionOutcome.MISSING_CREDENTIALS: ErrorCode.UNAUTHORIZED,
    AdmissionOutcome.FORBIDDEN_TARGET: ErrorCode.SERVER_ERROR,
    AdmissionOutcome.AUTH_FAILED: ErrorCode.UNAUTHORIZED,
    AdmissionOutcome.INTERNAL_ERROR: ErrorCode.INTERNAL_ERROR,
}


def get_client_identity(request: Request) -> str:
    """Get the rate limit identity for the request.

    Uses the socket peer address, or the first X-Forwarded-For entry when
    the gateway runs behind a trusted proxy.
    """
    if settings.trust_proxy_headers:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
            if client_ip:
                return client_ip
    return request.client.host if request.client else "unknown"


def _declared_length(request: Request) -> Optional[int]:
    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        length = int(raw)
    except ValueError:
        return None
    return length if length >= 0 else None


def build_admission_request(request: Request) -> AdmissionRequest:
    headers = request.headers
    return AdmissionRequest(
        identity=get_client_identity(request),
        method=request.method,
        content_length=_declared_length(request),
        backend_url=headers.get(BACKEND_URL_HEADER),
        token=headers.get(TOKEN_HEADER),
        email=headers.get(EMAIL_HEADER),
        password=headers.get(PASSWORD_HEADER),
        request_id=get_request_id(request),
    )


def rejection_response(result: AdmissionResult) -> JSONResponse:
    """Map a rejected admission to its HTTP status and JSON-RPC error."""
    code = OUTCOME_ERROR_CODES.get(result.outcome, ErrorCode.INTERNAL_ERROR)
    data = {"outcome": result.outcome.value}
    if result.reason:
        data["reason"] = result.reason

    headers = {}
    if result.outcome is AdmissionOutcome.RATE_LIMITED:
        headers["Retry-After"] = str(result.retry_after or 1)
    elif result.outcome is AdmissionOutcome.METHOD_NOT_ALLOWED:
        headers["Allow"] = "POST"

    return JSONResponse(
        status_code=result.status_code,
        content=error_response(code, result.message, data=data),
        headers=headers,
    )


@router.api_route("/mcp", methods=["GET", "POST", "PUT", "PATCH", "DELETE"], response_model=None)
async def mcp_endpoint(request: Request) -> Response:
    """Admit the request, then dispatch its JSON-RPC message."""
    pipeline: AdmissionPipeline = request.app.state.pipeline
    dispatcher: MCPDispatcher = request.app.state.dispatcher

    admission = await pipeline.admit(build_admission_request(request))
    if not admission.admitted:
        return rejection_response(admission)

    body = await request.body()
    try:
        message = json.loads(body)
    except ValueError:
        return JSONResponse(
            status_code=400,
            content=error_response(ErrorCode.PARSE_ERROR, "Parse error: Invalid JSON"),
        )

    response = await dispatcher.handle(message, admission.handle)
    if response is None:
        return Response(status_code=202)
    return JSONResponse(content=response)
