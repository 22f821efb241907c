"""
results_uploader - Report test results and upload result files.

Submits a results payload to the results service. When the service permits
it, the files attached to test cases are uploaded to the results bucket using
short-lived storage credentials, which are renewed as they approach expiry.

Usage:
    from results_uploader import upload

    data = {
        "target": "token",
        "results": {
            "cases": [
                {"name": "Login", "result": "pass", "files": ["/tmp/login.png"]},
            ]
        },
    }
    result = upload(data)
    # {"success": True, "message": "...", "warnings": [...], "errors": [...]}

    # Async, with upload progress events
    async with ResultsReporter(ReporterConfig.from_env()) as reporter:
        reporter.events.on("file_complete", on_complete)
        result = await reporter.submit(data)
"""
import asyncio
from typing import Any, Dict, Optional

from .models import (
    CredentialGrant,
    ReportResult,
    ReporterConfig,
    UploadOutcome,
    UploadPermit,
    UploadTask,
)
from .orchestrator import ResultsReporter, UploadScheduler, extract_files
from .services import (
    ApiError,
    CredentialBroker,
    CredentialError,
    HTTPAPIClient,
    TransferError,
    TransferErrorKind,
    TransferSession,
)


async def submit_results(data: Dict[str, Any], config: Optional[ReporterConfig] = None) -> ReportResult:
    """Submit results and upload case files."""
    async with ResultsReporter(config) as reporter:
        return await reporter.submit(data)


def upload(data: Dict[str, Any], config: Optional[ReporterConfig] = None) -> Dict[str, Any]:
    """
    Submit results and upload case files, blocking until done.

    Returns:
        {"success": bool, "message": str, "warnings": [str], "errors": [str]}
    """
    return asyncio.run(submit_results(data, config)).as_dict()


__version__ = "0.1.0"
__all__ = [
    # Main
    "upload",
    "submit_results",
    "ResultsReporter",
    "UploadScheduler",
    "extract_files",
    # Models
    "CredentialGrant",
    "ReportResult",
    "ReporterConfig",
    "UploadOutcome",
    "UploadPermit",
    "UploadTask",
    # Services
    "ApiError",
    "CredentialBroker",
    "CredentialError",
    "HTTPAPIClient",
    "TransferError",
    "TransferErrorKind",
    "TransferSession",
]
