"""Orchestrator package - coordinates result submission and file uploads."""
from .core import ResultsReporter
from .file_collector import FileCollector, extract_files
from .models import InFlightTransfer
from .scheduler import UploadScheduler

__all__ = ["ResultsReporter", "FileCollector", "extract_files", "InFlightTransfer", "UploadScheduler"]
