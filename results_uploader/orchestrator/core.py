"""Core reporter - submits results and coordinates file uploads."""
import logging
from typing import Any, Callable, Dict, Optional

from ..models import ReportResult, ReporterConfig, UploadPermit
from ..protocols import IAPIClient
from ..services.api_client import ApiError, HTTPAPIClient
from ..services.credentials import CredentialBroker
from ..utils.events import EventEmitter
from .file_collector import extract_files
from .scheduler import SessionFactory, UploadScheduler

logger = logging.getLogger(__name__)

RESULTS_ENDPOINT = "/results"


class ResultsReporter:
    """
    Submits test results and uploads the files attached to test cases.

    Usage:
        async with ResultsReporter(config) as reporter:
            result = await reporter.submit(data)

        # Listen to upload progress
        reporter.events.on("file_complete", lambda task, num_bytes: ...)
    """

    def __init__(
        self,
        config: Optional[ReporterConfig] = None,
        api_client: Optional[IAPIClient] = None,
        session_factory: Optional[SessionFactory] = None,
        clock: Optional[Callable[[], float]] = None,
        events: Optional[EventEmitter] = None,
    ):
        """
        Initialize reporter with dependencies.

        Args:
            config: Reporter configuration
            api_client: Pre-built API client; one is created from config.api_url otherwise
            session_factory: Builds transfer sessions from credential grants
            clock: Epoch-seconds clock used for credential expiry checks
            events: Emitter receiving upload events
        """
        self._config = config or ReporterConfig()
        self._external_api = api_client
        self._session_factory = session_factory
        self._clock = clock
        self._events = events or EventEmitter()

        # Initialized in __aenter__
        self._api_client: Optional[IAPIClient] = None
        self._owned_client: Optional[HTTPAPIClient] = None

    @property
    def events(self) -> EventEmitter:
        return self._events

    async def __aenter__(self):
        if self._external_api is not None:
            self._api_client = self._external_api
        else:
            self._owned_client = HTTPAPIClient(self._config.api_url, timeout=self._config.timeout)
            await self._owned_client.__aenter__()
            self._api_client = self._owned_client
        return self

    async def __aexit__(self, *args):
        if self._owned_client:
            await self._owned_client.__aexit__(*args)
            self._owned_client = None
        self._api_client = None

    async def submit(self, data: Dict[str, Any]) -> ReportResult:
        """
        Submit results, then upload case files if the service permits it.

        Results being recorded is reported as success even when some or all
        file uploads fail; those failures are returned as warnings.
        """
        if self._api_client is None:
            raise RuntimeError("ResultsReporter not initialized. Use 'async with' context.")

        try:
            response = await self._api_client.post(
                RESULTS_ENDPOINT,
                json=data,
                format_error="Incorrect data format (2).",
            )
        except ApiError as exc:
            logger.error(f"Results submission failed: {exc.message}")
            return ReportResult.fail(exc.message)

        message = str(response.get("message") or "")
        upload = response.get("upload")
        if upload is None:
            # upload not required
            return ReportResult.ok(message)

        try:
            permit = UploadPermit.from_response(upload)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning(f"Malformed upload permission in response: {exc!r}")
            return ReportResult.ok(message, ["Error processing response."])

        if not permit.permit:
            logger.info(f"File upload not permitted: {permit.message}")
            return ReportResult.ok(message, [permit.message])

        tasks = extract_files(data)
        scheduler = UploadScheduler(
            CredentialBroker(self._api_client),
            config=self._config,
            session_factory=self._session_factory,
            clock=self._clock,
            events=self._events,
        )
        outcome = await scheduler.run(tasks, permit.grant, str(data.get("target") or ""))
        return ReportResult.ok(outcome.message, outcome.warnings)

