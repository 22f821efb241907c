"""Shared fakes for results_uploader tests."""
import asyncio
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from results_uploader.models import CredentialGrant, UploadTask
from results_uploader.services.credentials import CredentialError


class FakeClock:
    """Epoch clock that only moves when told to."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_grant(expires_at: int, key_prefix: str = "run-1", n: int = 1) -> CredentialGrant:
    return CredentialGrant(
        key_prefix=key_prefix,
        access_key_id=f"AKIA{n}",
        secret_access_key=f"secret{n}",
        session_token=f"token{n}",
        expires_at=expires_at,
    )


class FakeSession:
    """In-memory transfer session recording uploads on its storage."""

    def __init__(self, grant: CredentialGrant, storage: "FakeStorage"):
        self.grant = grant
        self.closed = False
        self._storage = storage

    async def upload(self, path: Path, key: str) -> int:
        storage = self._storage
        assert not self.closed, "upload on a closed session"
        storage.active += 1
        storage.max_active = max(storage.max_active, storage.active)
        storage.log.append(f"upload:{key}")
        try:
            for _ in range(storage.delays.get(path.name, storage.default_delay)):
                await asyncio.sleep(0)
            if storage.on_upload:
                storage.on_upload(path, key)
            storage.uploaded_keys.append(key)
            return path.stat().st_size
        finally:
            storage.active -= 1

    def close(self) -> None:
        self.closed = True


class FakeStorage:
    """Session factory plus shared bookkeeping across sessions."""

    def __init__(self):
        self.sessions: List[FakeSession] = []
        self.uploaded_keys: List[str] = []
        self.log: List[str] = []
        self.active = 0
        self.max_active = 0
        self.default_delay = 3
        self.delays: Dict[str, int] = {}
        self.on_upload: Optional[Callable[[Path, str], None]] = None

    def __call__(self, grant: CredentialGrant) -> FakeSession:
        session = FakeSession(grant, self)
        self.sessions.append(session)
        return session


class FakeBroker:
    """Credential broker returning queued grants or errors."""

    def __init__(self, storage: FakeStorage, responses=None):
        self._storage = storage
        self.responses = list(responses or [])
        self.calls: List[tuple] = []
        self.active_at_call: List[int] = []

    async def request_credentials(self, target: str, key_prefix: str) -> CredentialGrant:
        self.calls.append((target, key_prefix))
        self.active_at_call.append(self._storage.active)
        self._storage.log.append("renew")
        if not self.responses:
            raise CredentialError("No more credentials.")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def make_files(tmp_path):
    """Create files with given sizes and return upload tasks for them."""

    def _make(sizes, case_index: int = 0) -> List[UploadTask]:
        tasks = []
        for i, size in enumerate(sizes):
            path = tmp_path / f"case{case_index}-file{i}.log"
            path.write_bytes(b"x" * size)
            tasks.append(UploadTask(case_index=case_index, local_path=path))
        return tasks

    return _make
