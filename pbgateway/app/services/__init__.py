"""Services package for the gateway.

This package provides:
- Per-client token bucket rate limiting
- Backend URL validation (SSRF guard)
- The request admission pipeline and auth resolver
"""

from pbgateway.app.services.rate_limiter import (
    BucketReaper,
    RatePolicy,
    TokenBucket,
    TokenBucketRateLimiter,
)
from pbgateway.app.services.url_validator import RejectionReason, URLValidator
from pbgateway.app.services.admission import (
    AdmissionOutcome,
    AdmissionPipeline,
    AdmissionRequest,
    AdmissionResult,
    AuthResolver,
)

__all__ = [
    "BucketReaper",
    "RatePolicy",
    "TokenBucket",
    "TokenBucketRateLimiter",
    "RejectionReason",
    "URLValidator",
    "AdmissionOutcome",
    "AdmissionPipeline",
    "AdmissionRequest",
    "AdmissionResult",
    "AuthResolver",
]
