"""
Protocols (Interfaces) for Dependency Inversion.

Small, focused interfaces so the scheduler and reporter can be driven by
fakes in tests.
"""
from pathlib import Path
from typing import Dict, Any, Protocol, runtime_checkable

from .models import CredentialGrant


@runtime_checkable
class IAPIClient(Protocol):
    """Interface for results service API operations."""

    async def post(self, endpoint: str, json: Dict, format_error: str = ...) -> Dict[str, Any]:
        """POST request to API, returning the response 'data' object."""
        ...


@runtime_checkable
class ICredentialBroker(Protocol):
    """Interface for obtaining fresh storage credentials."""

    async def request_credentials(self, target: str, key_prefix: str) -> CredentialGrant:
        """Request a new grant for key_prefix."""
        ...


@runtime_checkable
class ITransferSession(Protocol):
    """Interface for an object store connection bound to one grant."""

    @property
    def grant(self) -> CredentialGrant:
        """Grant this session was opened with."""
        ...

    async def upload(self, path: Path, key: str) -> int:
        """Upload file to key and return the number of bytes transferred."""
        ...

    def close(self) -> None:
        """Release the underlying connection."""
        ...
