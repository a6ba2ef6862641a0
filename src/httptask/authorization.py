"""
Authorization collaborator interface for httptask.

An authorization module supplies request credentials (for example an
OAuth2 access token). The client asks it for access before every
request, injects its header fields into every outgoing request, and
asks it to revoke the cached token when a request is rejected.
"""

from abc import ABC, abstractmethod
from typing import Dict


class AuthzModule(ABC):
    """
    Interface for authorization modules.

    Token acquisition, refresh and storage are up to the implementation.
    """

    @abstractmethod
    async def request_access(self) -> bool:
        """
        Make sure a valid credential is available.

        Returns:
            True if access was granted

        Raises:
            Exception: Any failure; the client reports it as an
                       AuthorizationError without touching the network
        """
        pass

    @abstractmethod
    def revoke_local_access_token(self) -> None:
        """Forget the cached credential so the next access refreshes it."""
        pass

    @abstractmethod
    def authorization_fields(self) -> Dict[str, str]:
        """
        Header fields to inject into every outgoing request.

        Returns:
            Mapping of header names to values, e.g.
            ``{"Authorization": "Bearer <token>"}``
        """
        pass
