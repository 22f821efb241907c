"""File collection utilities for results uploads."""
from pathlib import Path
from typing import Any, Dict, List

from ..models import UploadTask


class FileCollector:
    """Collects the files attached to test cases in a results payload."""

    @staticmethod
    def collect_files(data: Dict[str, Any]) -> List[UploadTask]:
        """
        Collect upload tasks in case order, then file order within a case.

        Cases without a 'files' field contribute nothing but still count
        towards the case index.

        Args:
            data: Results payload ({"target": ..., "results": {"cases": [...]}})

        Returns:
            Ordered list of upload tasks
        """
        results = data.get("results") or {}
        cases = results.get("cases") or []
        tasks = []
        for index, case in enumerate(cases):
            for file_path in case.get("files") or []:
                tasks.append(UploadTask(case_index=index, local_path=Path(file_path)))
        return tasks


def extract_files(data: Dict[str, Any]) -> List[UploadTask]:
    """Ordered upload tasks for every file attached to a test case."""
    return FileCollector.collect_files(data)
