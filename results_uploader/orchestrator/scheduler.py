from collections import deque
from typing import Callable, Deque, Dict, Iterable, Optional
import asyncio
import logging
import time

from ..models import CredentialGrant, ReporterConfig, UploadOutcome, UploadTask
from ..protocols import ICredentialBroker, ITransferSession
from ..services.credentials import CredentialError
from ..services.storage import TransferError, TransferSession
from ..utils.events import (
    CREDENTIALS_RENEWED,
    FILE_COMPLETE,
    FILE_FAIL,
    FILE_START,
    FINISH,
    EventEmitter,
)
from .models import InFlightTransfer
logger = logging.getLogger(__name__)

SessionFactory = Callable[[CredentialGrant], ITransferSession]


class UploadScheduler:
    """
    Uploads files under a concurrency cap while keeping storage credentials fresh.

    - At most config.max_active_uploads transfers run at once
    - A grant is renewed once now + expire_buffer reaches its expiry
    - Renewal waits until every in-flight transfer has finished, so only
      one session is ever open
    - A failed or refused renewal ends the batch; remaining files are abandoned
    - Per-file failures become warnings and never stop the batch
    """

    # Consecutive renewals returning already-expiring grants before giving up
    MAX_UNUSABLE_RENEWALS = 3

    def __init__(
        self,
        broker: ICredentialBroker,
        config: Optional[ReporterConfig] = None,
        session_factory: Optional[SessionFactory] = None,
        clock: Optional[Callable[[], float]] = None,
        events: Optional[EventEmitter] = None,
    ):
        self._broker = broker
        self._config = config or ReporterConfig()
        self._session_factory = session_factory or (lambda grant: TransferSession(grant, self._config))
        self._clock = clock or time.time
        self._events = events or EventEmitter()

    @property
    def events(self) -> EventEmitter:
        return self._events

    async def run(
        self,
        tasks: Iterable[UploadTask],
        grant: CredentialGrant,
        target: str,
    ) -> UploadOutcome:
        """
        Upload every task, renewing credentials as needed.

        Args:
            tasks: Files to upload, in dispatch order
            grant: Initial credential grant
            target: Target token used for credential renewal

        Returns:
            Aggregate outcome (counts and warnings)
        """
        pending: Deque[UploadTask] = deque(tasks)
        in_flight: Dict[asyncio.Task, InFlightTransfer] = {}
        finished: Deque[asyncio.Task] = deque()
        outcome = UploadOutcome()
        key_prefix = grant.key_prefix
        buffer = self._config.expire_buffer
        max_active = self._config.max_active_uploads
        unusable_renewals = 0

        logger.info(f"Uploading {len(pending)} files (max {max_active} at once)")
        session = self._open_session(grant, pending, outcome) if pending else None

        try:
            while pending or in_flight:
                now = self._clock()

                if len(in_flight) < max_active and pending:
                    if not session.grant.is_usable(now, buffer) and not in_flight:
                        try:
                            new_grant = await self._broker.request_credentials(target, key_prefix)
                        except CredentialError as exc:
                            outcome.warn(exc.message)
                            self._abandon(pending)
                            break

                        session.close()
                        session = self._open_session(new_grant, pending, outcome)
                        if session is None:
                            break
                        logger.info(f"Storage credentials renewed, expire at {new_grant.expires_at}")
                        await self._events.emit(CREDENTIALS_RENEWED, new_grant)

                        if new_grant.is_usable(now, buffer):
                            unusable_renewals = 0
                        else:
                            unusable_renewals += 1
                            if unusable_renewals >= self.MAX_UNUSABLE_RENEWALS:
                                outcome.warn("Upload credentials expired.")
                                self._abandon(pending)
                                break

                    if session.grant.is_usable(now, buffer):
                        await self._admit(pending.popleft(), session, key_prefix, in_flight, finished, outcome)

                if in_flight:
                    can_admit_more = (
                        len(in_flight) < max_active
                        and bool(pending)
                        and session.grant.is_usable(now, buffer)
                    )
                    await self._sweep(in_flight, finished, outcome, block=not can_admit_more)
        finally:
            for handle in in_flight:
                handle.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)
            if session is not None:
                session.close()

        logger.info(outcome.message)
        await self._events.emit(FINISH, outcome)
        return outcome

    async def _admit(
        self,
        task: UploadTask,
        session: ITransferSession,
        key_prefix: str,
        in_flight: Dict[asyncio.Task, InFlightTransfer],
        finished: Deque[asyncio.Task],
        outcome: UploadOutcome,
    ) -> None:
        """Dispatch one task, or record a warning if it cannot be uploaded."""
        path = task.local_path
        try:
            if not path.exists() or path.is_dir():
                warning = f"File not found: {task.file_name}"
                logger.warning(warning)
                outcome.warn(warning)
                await self._events.emit(FILE_FAIL, task, [warning])
                return

            key = task.object_key(key_prefix)
            handle = asyncio.create_task(session.upload(path, key))
            handle.add_done_callback(finished.append)
            in_flight[handle] = InFlightTransfer(task=task, key=key)
            logger.debug(f"Dispatched {path} -> {key} ({len(in_flight)} in flight)")
            await self._events.emit(FILE_START, task, key)
        except Exception as exc:
            warnings = TransferError.from_exception(exc).warnings()
            logger.error(f"Error dispatching {path}: {exc}")
            outcome.warn(*warnings)
            await self._events.emit(FILE_FAIL, task, warnings)

    async def _sweep(
        self,
        in_flight: Dict[asyncio.Task, InFlightTransfer],
        finished: Deque[asyncio.Task],
        outcome: UploadOutcome,
        block: bool,
    ) -> None:
        """Collect finished transfers in completion order."""
        if block and not finished:
            await asyncio.wait(list(in_flight), return_when=asyncio.FIRST_COMPLETED)
        else:
            # Let running transfers make progress before the next admission
            await asyncio.sleep(0)

        while finished:
            handle = finished.popleft()
            transfer = in_flight.pop(handle, None)
            if transfer is None:
                continue
            try:
                num_bytes = handle.result()
            except Exception as exc:
                warnings = TransferError.from_exception(exc).warnings()
                logger.warning(f"Failed to upload {transfer.task.local_path}: {exc}")
                outcome.warn(*warnings)
                await self._events.emit(FILE_FAIL, transfer.task, warnings)
                continue

            outcome.record_upload(num_bytes)
            logger.debug(f"Uploaded {transfer.key} ({num_bytes} bytes)")
            await self._events.emit(FILE_COMPLETE, transfer.task, num_bytes)

    def _open_session(
        self,
        grant: CredentialGrant,
        pending: Deque[UploadTask],
        outcome: UploadOutcome,
    ) -> Optional[ITransferSession]:
        """Open a transfer session, or end the batch if the client cannot be built."""
        try:
            return self._session_factory(grant)
        except Exception as exc:
            logger.error(f"Could not open storage session: {exc}")
            outcome.warn(*TransferError.from_exception(exc).warnings())
            self._abandon(pending)
            return None

    @staticmethod
    def _abandon(pending: Deque[UploadTask]) -> None:
        for task in pending:
            logger.warning(f"Upload abandoned: {task.local_path}")
        pending.clear()
