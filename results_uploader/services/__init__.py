"""Services for results_uploader."""
from .api_client import ApiError, HTTPAPIClient
from .credentials import CredentialBroker, CredentialError
from .storage import TransferError, TransferErrorKind, TransferSession

__all__ = [
    "ApiError",
    "HTTPAPIClient",
    "CredentialBroker",
    "CredentialError",
    "TransferError",
    "TransferErrorKind",
    "TransferSession",
]
