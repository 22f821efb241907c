"""
Credential Broker - Single Responsibility: request fresh storage credentials.

Stateless: each call performs one request to the permit endpoint.
"""
import logging
from dataclasses import replace

from ..models import CredentialGrant, UploadPermit
from ..protocols import IAPIClient
from .api_client import ApiError

logger = logging.getLogger(__name__)

PERMIT_ENDPOINT = "/permitupload"


class CredentialError(RuntimeError):
    """Raised when new credentials cannot be obtained or are refused."""

    def __init__(self, message: str, refused: bool = False):
        super().__init__(message)
        self.message = message
        self.refused = refused


class CredentialBroker:
    """
    Requests time-boxed storage credentials for an upload batch.

    Usage:
        broker = CredentialBroker(api_client)
        grant = await broker.request_credentials(target, key_prefix)
    """

    def __init__(self, api_client: IAPIClient):
        self._api = api_client

    async def request_credentials(self, target: str, key_prefix: str) -> CredentialGrant:
        """
        Request a new credential grant.

        Args:
            target: Target token identifying the results destination
            key_prefix: Key prefix of the current batch

        Returns:
            New grant, scoped to key_prefix

        Raises:
            CredentialError: On request failure, or when the server refuses
                further uploads (refused=True)
        """
        try:
            data = await self._api.post(
                PERMIT_ENDPOINT,
                json={"target": target, "key": key_prefix},
                format_error="Incorrect data format (1).",
            )
        except ApiError as exc:
            logger.warning(f"Credential request failed: {exc.message}")
            raise CredentialError(exc.message) from exc

        upload = data.get("upload")
        if not isinstance(upload, dict):
            raise CredentialError("Error processing response.")

        try:
            permit = UploadPermit.from_response(upload)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(f"Malformed credential response: {exc!r}")
            raise CredentialError("Error processing response.") from exc

        if not permit.permit:
            logger.info(f"Credential renewal refused: {permit.message}")
            raise CredentialError(permit.message, refused=True)

        if permit.key and permit.key != key_prefix:
            logger.debug(f"Renewal returned key {permit.key}, keeping {key_prefix}")
        logger.info(f"Obtained storage credentials expiring at {permit.grant.expires_at}")
        return replace(permit.grant, key_prefix=key_prefix)
