from abc import ABC, abstractmethod
from typing import Any


class BackendClient(ABC):
    """Capability interface for producing authenticated backend handles.

    The admission pipeline depends only on this interface; the concrete
    adapter decides how a handle talks to the backend.
    """

    @abstractmethod
    def attach_token(self, url: str, token: str) -> Any:
        """Return a handle for ``url`` that sends ``token`` on every call.

        No network round trip happens here; the backend validates the token
        lazily on the first real call.
        """

    @abstractmethod
    async def authenticate(self, url: str, identity: str, password: str) -> Any:
        """Exchange ``identity``/``password`` for an authenticated handle.

        Raises:
            BackendAuthError: If the backend rejects the credentials
        """
