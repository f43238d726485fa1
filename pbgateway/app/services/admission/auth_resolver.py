"""Select the backend authentication path for an admitted request."""

from typing import Any

from pbgateway.app.providers.base import BackendClient
from pbgateway.app.services.admission.models import (
    Credentials,
    PasswordCredentials,
    TokenCredentials,
)


class AuthResolver:
    """Turn presented credentials into an authenticated backend handle.

    Expects exactly one credential form, already built by the admission
    pipeline's credential gate.
    """

    def __init__(self, backend: BackendClient):
        self._backend = backend

    async def resolve(self, url: str, credentials: Credentials) -> Any:
        """Return a backend handle for ``url``.

        Raises:
            BackendAuthError: If a credential exchange is rejected
        """
        if isinstance(credentials, TokenCredentials):
            return self._backend.attach_token(url, credentials.token)
        if isinstance(credentials, PasswordCredentials):
            return await self._backend.authenticate(url, credentials.email, credentials.password)
        raise TypeError(f"Unsupported credentials: {type(credentials).__name__}")
