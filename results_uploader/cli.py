"""Command line interface for results_uploader."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from rich.logging import RichHandler

from .cli_progress import (
    BatchUploadProgressDisplay,
    console,
    render_configuration_summary,
    render_result,
)
from .models import ReportResult, ReporterConfig
from .orchestrator.core import ResultsReporter
from .orchestrator.file_collector import extract_files


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug or --log-level is provided.
    Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    if silent or (not debug and not log_level):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    else:
        level = getattr(logging, log_level.upper(), logging.INFO)

    handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # boto3 is very chatty at DEBUG
    for name in ("botocore", "boto3", "s3transfer", "urllib3", "httpcore"):
        logging.getLogger(name).setLevel(max(level, logging.INFO))
    return logging.getLevelName(level)


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _load_env_file(path: Path, override: bool = False) -> None:
    if not path.exists():
        raise CLIError(f"env file not found: {path}")
    if not path.is_file():
        raise CLIError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


def _load_results(path: Path, target: Optional[str]) -> Dict[str, Any]:
    """Read a results payload from a JSON file, applying the target override."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise CLIError(f"could not read results file {path}: {exc}") from exc
    except ValueError as exc:
        raise CLIError(f"results file {path} is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise CLIError(f"results file {path} must contain a JSON object")

    if target:
        data["target"] = target
    if not data.get("target"):
        raise CLIError("no target token: pass --target, set RESULTS_TARGET or add 'target' to the results file")
    return data


def _count_files(data: Dict[str, Any]) -> int:
    return len(extract_files(data))


async def _run_upload(data: Dict[str, Any], config: ReporterConfig, show_progress: bool) -> ReportResult:
    async with ResultsReporter(config) as reporter:
        if show_progress:
            display = BatchUploadProgressDisplay(total_files=_count_files(data))
            reporter.events.on("file_start", display.on_file_start)
            reporter.events.on("file_complete", display.on_file_complete)
            reporter.events.on("file_fail", display.on_file_fail)
            reporter.events.on("credentials_renewed", display.on_credentials_renewed)
            reporter.events.on("finish", display.on_finish)
        return await reporter.submit(data)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="results-up",
        description="Submit test results and upload the files attached to test cases.",
    )
    parser.add_argument("results", nargs="?", type=Path, help="Results payload (JSON file)")
    parser.add_argument(
        "-t",
        "--target",
        default=None,
        help="Target token (default from RESULTS_TARGET or the 'target' field of the results file)",
    )
    parser.add_argument(
        "--api-url",
        default=None,
        help="Results service URL (default from RESULTS_API_URL or https://www.tesults.com)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON instead of rendering progress",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="results-up (from results_uploader)",
    )
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if args.results is None:
        parser.print_help()
        return 0

    try:
        config = ReporterConfig.from_env(api_url=args.api_url)
        data = _load_results(Path(args.results).expanduser(), args.target or os.getenv("RESULTS_TARGET"))
    except (CLIError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    show_progress = not args.json and not args.silent
    if show_progress:
        render_configuration_summary(
            {
                "Results": str(args.results),
                "Cases": len((data.get("results") or {}).get("cases") or []),
                "Files": _count_files(data),
                "Results API": config.api_url,
                "Bucket": f"{config.bucket} ({config.region})",
                "Max Uploads": config.max_active_uploads,
                "Env File": str(used_env_file) if used_env_file else "-",
                "Logging": effective_log_mode,
            }
        )

    try:
        result = asyncio.run(_run_upload(data, config, show_progress))
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130

    if args.json:
        print(json.dumps(result.as_dict(), indent=2))
    elif not args.silent:
        render_result(result)
    elif not result.success:
        print(f"ERROR: {result.message}", file=sys.stderr)
    return 0 if result.success else 1


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
