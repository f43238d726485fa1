import traceback
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pbgateway.app.api.mcp import router as mcp_router
from pbgateway.app.core.config import settings
from pbgateway.app.core.http_client import init_http_client
from pbgateway.app.core.logging import get_logger, setup_logging
from pbgateway.app.exceptions import ForbiddenTargetError, GatewayException
from pbgateway.app.mcp.dispatcher import MCPDispatcher
from pbgateway.app.mcp.protocol import ErrorCode, error_response
from pbgateway.app.middleware.request_id import RequestIdMiddleware
from pbgateway.app.providers.base import BackendClient
from pbgateway.app.providers.pocketbase import PocketBaseBackend
from pbgateway.app.services.admission import AdmissionPipeline, AuthResolver
from pbgateway.app.services.rate_limiter import BucketReaper, RatePolicy, TokenBucketRateLimiter
from pbgateway.app.services.url_validator import Resolver, URLValidator, resolve_with_getaddrinfo


def build_pipeline(
    backend: Optional[BackendClient] = None,
    resolver: Resolver = resolve_with_getaddrinfo,
) -> AdmissionPipeline:
    """Assemble the admission pipeline from settings.

    Args:
        backend: Backend capability adapter (PocketBase over the shared
            HTTP client by default)
        resolver: DNS resolver used by the URL validator
    """
    rate_limiter = TokenBucketRateLimiter(
        policy=RatePolicy(
            requests_per_minute=settings.rate_limit_rpm,
            burst_capacity=settings.rate_limit_burst,
        ),
        idle_timeout=settings.rate_limit_idle_seconds,
    )
    url_validator = URLValidator(
        resolver=resolver,
        dns_timeout=settings.dns_timeout,
        fail_closed=settings.dns_fail_closed,
    )
    return AdmissionPipeline(
        rate_limiter=rate_limiter,
        url_validator=url_validator,
        auth_resolver=AuthResolver(backend or PocketBaseBackend()),
        max_body_size=settings.max_body_size,
    )


def create_app(pipeline: Optional[AdmissionPipeline] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        pipeline: Pre-built admission pipeline (built from settings if omitted)

    Returns:
        Configured FastAPI application instance
    """
    setup_logging()
    logger = get_logger(__name__)

    pipeline = pipeline or build_pipeline()
    reaper = BucketReaper(pipeline.rate_limiter, interval=settings.rate_limit_sweep_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[dict, None]:
        """Application lifespan context manager.

        Opens the shared HTTP connection pool and starts the rate limit
        bucket reaper; both are shut down on exit.
        """
        async with init_http_client() as http_client:
            await reaper.start()
            logger.info(
                "Application startup complete",
                extra={
                    "rate_limit_rpm": settings.rate_limit_rpm,
                    "rate_limit_burst": settings.rate_limit_burst,
                    "dns_fail_closed": settings.dns_fail_closed,
                },
            )
            try:
                yield {"http_client": http_client}
            finally:
                await reaper.stop()

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="PocketBase MCP Gateway",
        description="MCP gateway with rate limiting, SSRF protection and PocketBase auth",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline
    app.state.dispatcher = MCPDispatcher()

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
        max_age=600,
    )
    app.add_middleware(RequestIdMiddleware)

    app.include_router(mcp_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Liveness check; does not touch any backend."""
        return {"status": "ok"}

    @app.exception_handler(GatewayException)
    async def gateway_exception_handler(request: Request, exc: GatewayException) -> JSONResponse:
        """Map gateway exceptions raised outside the admission pipeline."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.warning(
            f"{type(exc).__name__}: {exc.message}",
            extra={"request_id": request_id, "status_code": exc.status_code},
        )

        code = ErrorCode.UNAUTHORIZED if exc.status_code == 401 else ErrorCode.SERVER_ERROR
        data = {"reason": exc.reason} if isinstance(exc, ForbiddenTargetError) else None
        content = error_response(code, exc.message, data=data)
        content["request_id"] = request_id
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        Never returns a traceback to the client; full details go to the
        server log. Debug mode adds the exception message.
        """
        request_id = getattr(request.state, "request_id", "unknown")

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
                "traceback": traceback.format_exc(),
            },
        )

        content = {
            "jsonrpc": "2.0",
            "error": {"code": -32603, "message": "Internal server error"},
            "id": None,
            "request_id": request_id,
        }
        if settings.debug:
            content["error"]["data"] = {
                "exception_type": type(exc).__name__,
                "message": str(exc),
            }
        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
