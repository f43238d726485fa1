"""Request admission pipeline package.

Re-exports the models, the auth resolver and the pipeline itself.
"""

from pbgateway.app.services.admission.models import (
    AdmissionOutcome,
    AdmissionRequest,
    AdmissionResult,
    Credentials,
    PasswordCredentials,
    TokenCredentials,
)
from pbgateway.app.services.admission.auth_resolver import AuthResolver
from pbgateway.app.services.admission.pipeline import (
    AdmissionPipeline,
    AdmissionRejected,
    build_credentials,
)

__all__ = [
    # Models
    "AdmissionOutcome",
    "AdmissionRequest",
    "AdmissionResult",
    "Credentials",
    "PasswordCredentials",
    "TokenCredentials",
    # Gates
    "AuthResolver",
    "AdmissionPipeline",
    "AdmissionRejected",
    "build_credentials",
]
