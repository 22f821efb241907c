"""
Models for results_uploader.

Immutable dataclasses shared by the reporter, the credential broker and the
upload scheduler.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List


DEFAULT_API_URL = "https://www.tesults.com"
DEFAULT_BUCKET = "tesults-results"
DEFAULT_REGION = "us-east-1"


@dataclass(frozen=True)
class ReporterConfig:
    """Immutable configuration for result reporting and file uploads."""
    api_url: str = DEFAULT_API_URL
    bucket: str = DEFAULT_BUCKET
    region: str = DEFAULT_REGION
    max_active_uploads: int = 10  # Upload at most 10 files at once to avoid hogging the client machine
    expire_buffer: int = 30  # seconds before expiry a grant is treated as unusable
    timeout: int = 60

    def __post_init__(self) -> None:
        if self.max_active_uploads < 1:
            raise ValueError("max_active_uploads must be at least 1")
        if self.expire_buffer < 0:
            raise ValueError("expire_buffer must not be negative")

    @classmethod
    def from_env(cls, api_url: Optional[str] = None, **overrides: Any) -> "ReporterConfig":
        """
        Build configuration from RESULTS_* environment variables.

        Args:
            api_url: Explicit API URL, takes precedence over RESULTS_API_URL
            **overrides: Any other field, takes precedence over the environment

        Returns:
            ReporterConfig instance
        """
        values: Dict[str, Any] = {
            "api_url": api_url or os.getenv("RESULTS_API_URL") or DEFAULT_API_URL,
            "bucket": os.getenv("RESULTS_BUCKET") or DEFAULT_BUCKET,
            "region": os.getenv("RESULTS_REGION") or DEFAULT_REGION,
        }
        for name, env_name in (
            ("max_active_uploads", "RESULTS_MAX_ACTIVE_UPLOADS"),
            ("expire_buffer", "RESULTS_EXPIRE_BUFFER"),
            ("timeout", "RESULTS_TIMEOUT"),
        ):
            raw = os.getenv(env_name)
            if raw:
                try:
                    values[name] = int(raw)
                except ValueError as exc:
                    raise ValueError(f"{env_name} must be an integer, got {raw!r}") from exc
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class UploadTask:
    """A local file attached to the test case at position case_index."""
    case_index: int
    local_path: Path

    @property
    def file_name(self) -> str:
        return self.local_path.name

    def object_key(self, key_prefix: str) -> str:
        """Remote key: <key_prefix>/<case_index>/<file_name>."""
        return f"{key_prefix}/{self.case_index}/{self.file_name}"


@dataclass(frozen=True)
class CredentialGrant:
    """Short-lived storage credentials scoped to one key prefix."""
    key_prefix: str
    access_key_id: str
    secret_access_key: str
    session_token: str
    expires_at: int  # epoch seconds

    @classmethod
    def from_auth(cls, key_prefix: str, auth: Dict[str, Any]) -> "CredentialGrant":
        """
        Build a grant from the server's auth object.

        Raises:
            KeyError, TypeError, ValueError: If the auth object is malformed
        """
        return cls(
            key_prefix=key_prefix,
            access_key_id=str(auth["AccessKeyId"]),
            secret_access_key=str(auth["SecretAccessKey"]),
            session_token=str(auth["SessionToken"]),
            expires_at=int(auth["Expiration"]),
        )

    def is_usable(self, now: float, buffer: int) -> bool:
        return now + buffer < self.expires_at


@dataclass(frozen=True)
class UploadPermit:
    """Parsed 'upload' object returned by the results and permit endpoints."""
    key: str
    message: str
    permit: bool
    grant: Optional[CredentialGrant] = None

    @classmethod
    def from_response(cls, upload: Dict[str, Any]) -> "UploadPermit":
        """
        Parse the 'upload' object.

        The grant is only built when the upload is permitted.

        Raises:
            KeyError, TypeError, ValueError: If the object is malformed
        """
        key = str(upload["key"]) if upload.get("key") is not None else ""
        message = str(upload.get("message") or "")
        permit = upload.get("permit") is True
        grant = CredentialGrant.from_auth(key, upload["auth"]) if permit else None
        return cls(key=key, message=message, permit=permit, grant=grant)


@dataclass
class UploadOutcome:
    """Aggregate result of an upload batch."""
    files_uploaded: int = 0
    bytes_uploaded: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return (
            f"Success. {self.files_uploaded} files uploaded. "
            f"{self.bytes_uploaded} bytes uploaded."
        )

    def record_upload(self, num_bytes: int) -> None:
        self.files_uploaded += 1
        self.bytes_uploaded += num_bytes

    def warn(self, *messages: str) -> None:
        self.warnings.extend(messages)


@dataclass(frozen=True)
class ReportResult:
    """Immutable result of a results submission."""
    success: bool
    message: str
    warnings: List[str] = field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        return [] if self.success else [self.message]

    @classmethod
    def ok(cls, message: str, warnings: Optional[List[str]] = None) -> "ReportResult":
        return cls(success=True, message=message, warnings=list(warnings or []))

    @classmethod
    def fail(cls, message: str, warnings: Optional[List[str]] = None) -> "ReportResult":
        return cls(success=False, message=message, warnings=list(warnings or []))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "warnings": list(self.warnings),
            "errors": self.errors,
        }
