"""
Storage Service - Single Responsibility: upload files to the object store.

A TransferSession wraps one credential grant in a live S3 client. It is
replaced, never refreshed, when new credentials are issued.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Optional, List

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from ..models import CredentialGrant, ReporterConfig

logger = logging.getLogger(__name__)

UPLOAD_FAILED = "Failed to upload file."


class TransferErrorKind(Enum):
    """Classification of object store failures."""
    SERVICE_ERROR = "service_error"
    CLIENT_ERROR = "client_error"
    UNKNOWN = "unknown"


class TransferError(Exception):
    """A single file transfer failed."""

    def __init__(
        self,
        kind: TransferErrorKind,
        detail: Optional[str] = None,
        message: Optional[str] = None,
    ):
        super().__init__(message or detail or UPLOAD_FAILED)
        self.kind = kind
        self.detail = detail
        self.message = message

    @classmethod
    def from_exception(cls, exc: BaseException) -> "TransferError":
        """Classify an exception raised while uploading."""
        if isinstance(exc, TransferError):
            return exc
        if isinstance(exc, ClientError):
            error = exc.response.get("Error", {})
            return cls(
                TransferErrorKind.SERVICE_ERROR,
                detail=error.get("Message") or error.get("Code"),
                message=str(exc),
            )
        if isinstance(exc, S3UploadFailedError):
            # upload_file wraps service errors; the original ClientError is chained
            cause = exc.__cause__ or exc.__context__
            if isinstance(cause, ClientError):
                return cls.from_exception(cause)
            return cls(TransferErrorKind.CLIENT_ERROR, message=str(exc))
        if isinstance(exc, BotoCoreError):
            return cls(TransferErrorKind.CLIENT_ERROR, message=str(exc))
        return cls(TransferErrorKind.UNKNOWN, message=str(exc) or type(exc).__name__)

    def warnings(self) -> List[str]:
        """Warning strings reported for this failure."""
        if self.kind is TransferErrorKind.SERVICE_ERROR:
            return [text for text in (self.detail, self.message) if text] + [UPLOAD_FAILED]
        return [UPLOAD_FAILED]


class _BytesCounter:
    """Progress callback target; s3transfer invokes it from worker threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self._seen = 0

    def __call__(self, bytes_amount: int) -> None:
        with self._lock:
            self._seen += bytes_amount

    @property
    def total(self) -> int:
        with self._lock:
            return self._seen


class TransferSession:
    """
    Live connection to the object store, valid until its grant expires.

    Implements ITransferSession protocol.

    Usage:
        session = TransferSession(grant, config)
        num_bytes = await session.upload(path, key)
        session.close()
    """

    def __init__(self, grant: CredentialGrant, config: Optional[ReporterConfig] = None):
        self._grant = grant
        self._config = config or ReporterConfig()
        boto_session = boto3.session.Session(
            aws_access_key_id=grant.access_key_id,
            aws_secret_access_key=grant.secret_access_key,
            aws_session_token=grant.session_token,
            region_name=self._config.region,
        )
        self._client = boto_session.client("s3")
        self._closed = False

    @property
    def grant(self) -> CredentialGrant:
        return self._grant

    @property
    def bucket(self) -> str:
        return self._config.bucket

    async def upload(self, path: Path, key: str) -> int:
        """
        Upload a file.

        Args:
            path: Local file
            key: Object key in the results bucket

        Returns:
            Bytes transferred

        Raises:
            TransferError: If the upload fails
        """
        if self._closed:
            raise TransferError(TransferErrorKind.CLIENT_ERROR, message="Transfer session is closed")

        counter = _BytesCounter()
        try:
            await asyncio.to_thread(
                self._client.upload_file,
                str(path),
                self._config.bucket,
                key,
                Callback=counter,
            )
        except Exception as exc:
            error = TransferError.from_exception(exc)
            logger.debug(f"Upload of {path.name} to {key} failed ({error.kind.value}): {exc}")
            raise error from exc
        return counter.total

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._client.close()
        except Exception as e:
            logger.debug(f"Error closing storage client: {e}")
