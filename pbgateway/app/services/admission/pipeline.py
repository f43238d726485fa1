"""Request admission pipeline.

Every request to the MCP endpoint passes these gates, in order, before it
may reach the backend:

1. per-client rate limit
2. HTTP method
3. declared body size
4. credential presence
5. backend URL validation (DNS, may suspend)
6. backend authentication (may call the backend)

Cheap in-memory checks run first, then the DNS-bound URL check, and only
then any authenticated network call. The first failing gate ends the
request with a classified ``AdmissionResult``; nothing is retried here.
"""

from typing import Optional

from pbgateway.app.core.logging import get_log_context, get_logger
from pbgateway.app.exceptions import BackendAuthError, ForbiddenTargetError
from pbgateway.app.services.admission.auth_resolver import AuthResolver
from pbgateway.app.services.admission.models import (
    AdmissionOutcome,
    AdmissionRequest,
    AdmissionResult,
    Credentials,
    PasswordCredentials,
    TokenCredentials,
)
from pbgateway.app.services.rate_limiter import TokenBucketRateLimiter
from pbgateway.app.services.url_validator import URLValidator

logger = get_logger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal error"


class AdmissionRejected(Exception):
    """Raised by a gate to end admission with a classified outcome."""

    def __init__(
        self,
        outcome: AdmissionOutcome,
        message: str,
        reason: Optional[str] = None,
        retry_after: Optional[int] = None,
    ):
        self.outcome = outcome
        self.message = message
        self.reason = reason
        self.retry_after = retry_after
        super().__init__(message)


def build_credentials(request: AdmissionRequest) -> Credentials:
    """Build the single credential form presented by ``request``.

    Raises:
        AdmissionRejected: missing-credentials when the backend URL is
            absent, or when identification is incomplete or ambiguous
    """
    token = (request.token or "").strip()
    email = (request.email or "").strip()
    password = request.password or ""

    if not (request.backend_url or "").strip():
        raise AdmissionRejected(
            AdmissionOutcome.MISSING_CREDENTIALS,
            "Missing X-PB-URL header. A backend URL is required.",
        )

    if token:
        if email or password:
            raise AdmissionRejected(
                AdmissionOutcome.MISSING_CREDENTIALS,
                "Ambiguous credentials. Send either X-PB-Token or X-PB-Email and X-PB-Password, not both.",
            )
        return TokenCredentials(token=token)

    if email and password:
        return PasswordCredentials(email=email, password=password)

    raise AdmissionRejected(
        AdmissionOutcome.MISSING_CREDENTIALS,
        "Missing credentials. Send X-PB-Token, or both X-PB-Email and X-PB-Password.",
    )


class AdmissionPipeline:
    """Runs the admission gates for one request at a time.

    Safe to share between concurrent requests: the only shared mutable state
    is the rate limiter's bucket table.
    """

    def __init__(
        self,
        rate_limiter: TokenBucketRateLimiter,
        url_validator: URLValidator,
        auth_resolver: AuthResolver,
        max_body_size: int = 10 * 1024 * 1024,
        allowed_method: str = "POST",
    ):
        self.rate_limiter = rate_limiter
        self.url_validator = url_validator
        self.auth_resolver = auth_resolver
        self.max_body_size = max_body_size
        self.allowed_method = allowed_method.upper()

    async def admit(self, request: AdmissionRequest) -> AdmissionResult:
        """Run every gate and classify the result.

        Never raises for gate failures or unexpected faults; cancellation
        still propagates.
        """
        try:
            handle = await self._run_gates(request)
        except AdmissionRejected as rejection:
            self._log_rejection(request, rejection)
            return AdmissionResult(
                outcome=rejection.outcome,
                message=rejection.message,
                reason=rejection.reason,
                retry_after=rejection.retry_after,
            )
        except Exception:
            logger.exception(
                "Unexpected error during request admission",
                extra=get_log_context(
                    request_id=request.request_id,
                    client=request.identity,
                    outcome=AdmissionOutcome.INTERNAL_ERROR.value,
                ),
            )
            return AdmissionResult(
                outcome=AdmissionOutcome.INTERNAL_ERROR,
                message=INTERNAL_ERROR_MESSAGE,
            )

        return AdmissionResult(outcome=AdmissionOutcome.ADMITTED, handle=handle)

    async def _run_gates(self, request: AdmissionRequest):
        if not await self.rate_limiter.admit(request.identity):
            raise AdmissionRejected(
                AdmissionOutcome.RATE_LIMITED,
                "Rate limit exceeded. Please try again later.",
                retry_after=self.rate_limiter.retry_after(request.identity),
            )

        if request.method.upper() != self.allowed_method:
            raise AdmissionRejected(
                AdmissionOutcome.METHOD_NOT_ALLOWED,
                f"Method not allowed. Use {self.allowed_method}.",
            )

        # Declared length only; the body itself is not counted here
        if request.content_length is not None and request.content_length > self.max_body_size:
            raise AdmissionRejected(
                AdmissionOutcome.PAYLOAD_TOO_LARGE,
                f"Request body too large. Maximum allowed: {self.max_body_size} bytes",
            )

        credentials = build_credentials(request)
        backend_url = request.backend_url.strip()

        try:
            url = await self.url_validator.validate(backend_url)
        except ForbiddenTargetError as e:
            raise AdmissionRejected(
                AdmissionOutcome.FORBIDDEN_TARGET, e.message, reason=e.reason
            ) from e

        try:
            return await self.auth_resolver.resolve(url, credentials)
        except BackendAuthError as e:
            raise AdmissionRejected(
                AdmissionOutcome.AUTH_FAILED, f"Authentication failed: {e.message}"
            ) from e

    def _log_rejection(self, request: AdmissionRequest, rejection: AdmissionRejected) -> None:
        logger.warning(
            f"Request rejected: {rejection.outcome.value}",
            extra=get_log_context(
                request_id=request.request_id,
                client=request.identity,
                outcome=rejection.outcome.value,
                reason=rejection.reason,
            ),
        )
