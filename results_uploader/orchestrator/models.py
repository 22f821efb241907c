"""Orchestrator data models."""
from dataclasses import dataclass

from ..models import UploadTask


@dataclass(frozen=True)
class InFlightTransfer:
    """A dispatched upload and the object key it is writing."""
    task: UploadTask
    key: str
