"""Admission pipeline data models.

This module contains dataclasses for admission requests, credentials and
results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


@dataclass(frozen=True)
class TokenCredentials:
    """Bearer token attached to the backend handle as-is."""
    token: str = field(repr=False)


@dataclass(frozen=True)
class PasswordCredentials:
    """Superuser email and password exchanged for a token."""
    email: str
    password: str = field(repr=False)


Credentials = Union[TokenCredentials, PasswordCredentials]


class AdmissionOutcome(str, Enum):
    """Classification of an admission decision."""
    ADMITTED = "admitted"
    RATE_LIMITED = "rate-limited"
    METHOD_NOT_ALLOWED = "method-not-allowed"
    PAYLOAD_TOO_LARGE = "payload-too-large"
    MISSING_CREDENTIALS = "missing-credentials"
    FORBIDDEN_TARGET = "forbidden-target"
    AUTH_FAILED = "auth-failed"
    INTERNAL_ERROR = "internal-error"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    AdmissionOutcome.ADMITTED: 200,
    AdmissionOutcome.RATE_LIMITED: 429,
    AdmissionOutcome.METHOD_NOT_ALLOWED: 405,
    AdmissionOutcome.PAYLOAD_TOO_LARGE: 413,
    AdmissionOutcome.MISSING_CREDENTIALS: 401,
    AdmissionOutcome.FORBIDDEN_TARGET: 403,
    AdmissionOutcome.AUTH_FAILED: 401,
    AdmissionOutcome.INTERNAL_ERROR: 500,
}


@dataclass
class AdmissionRequest:
    """Per-request attributes read from the transport."""
    identity: str
    method: str
    content_length: Optional[int] = None
    backend_url: Optional[str] = None
    token: Optional[str] = field(default=None, repr=False)
    email: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    request_id: Optional[str] = None


@dataclass
class AdmissionResult:
    """Result of running a request through the admission pipeline."""
    outcome: AdmissionOutcome
    message: str = ""
    reason: Optional[str] = None  # forbidden-target sub-reason
    handle: Any = None
    retry_after: Optional[int] = None

    @property
    def admitted(self) -> bool:
        return self.outcome is AdmissionOutcome.ADMITTED

    @property
    def status_code(self) -> int:
        return self.outcome.status_code
