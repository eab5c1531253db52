"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest
import pytest_asyncio

from classtally.acquisition.base import RepositoryAcquirer, RepositorySnapshot
from classtally.analysis.events import ProgressChannel
from classtally.config import Settings
from classtally.database.session import build_engine, build_session_maker, init_db
from classtally.database.store import AnalysisStore
from classtally.schemas import EligibilityResult, RepoFile


NOW = datetime(2024, 6, 1, 12, 0, 0)

ELIGIBLE = EligibilityResult(
    is_eligible=True,
    has_framework_dependency=True,
    manifest_exists=True,
)


class FakeSnapshot(RepositorySnapshot):
    """In-memory snapshot; ``None`` content simulates an unreadable file."""

    def __init__(
        self,
        files: dict[str, str | None],
        eligibility: EligibilityResult = ELIGIBLE,
        owner: str = "octocat",
        name: str = "hello-world",
        default_branch: str = "main",
        list_error: Exception | None = None,
    ):
        super().__init__(owner, name, default_branch, eligibility)
        self.files = files
        self.list_error = list_error
        self.reads: list[str] = []
        self.cleanup_calls = 0

    async def list_files(self) -> list[RepoFile]:
        if self.list_error is not None:
            raise self.list_error
        return [RepoFile(path=path, size=len(content or "")) for path, content in self.files.items()]

    async def read_file(self, path: str) -> str | None:
        self.reads.append(path)
        return self.files.get(path)

    async def cleanup(self) -> None:
        self.cleanup_calls += 1


class FakeAcquirer(RepositoryAcquirer):
    """Hands out pre-built snapshots and records every call."""

    def __init__(self, snapshot: RepositorySnapshot | None = None, delay: float = 0.0):
        self.snapshot = snapshot
        self.delay = delay
        self.calls: list[tuple[str, str]] = []

    @property
    def backend_name(self) -> str:
        return "fake"

    async def acquire(self, owner, name, branch=None):
        self.calls.append((owner, name))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.snapshot


@pytest.fixture
def make_snapshot():
    """Factory for in-memory snapshots."""
    return FakeSnapshot


@pytest.fixture
def make_acquirer():
    """Factory for fake acquirers."""
    return FakeAcquirer


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway SQLite database."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'classtally.db'}",
        snapshot_root=str(tmp_path / "snapshots"),
        github_token="",
    )


@pytest_asyncio.fixture
async def store(settings):
    """Aggregation store on a fresh database."""
    engine = build_engine(settings.database_url)
    await init_db(engine)
    yield AnalysisStore(build_session_maker(engine))
    await engine.dispose()


async def collect_events(orchestrator, reference: str, channel: ProgressChannel | None = None):
    """Run the orchestrator and gather every event it emits."""
    channel = channel or ProgressChannel()
    task = asyncio.create_task(orchestrator.run(reference, channel))
    events = [event async for event in channel]
    await task
    return events


@pytest.fixture
def collect():
    return collect_events


@pytest.fixture
def now():
    """Fixed clock reading used by orchestrator tests."""
    return NOW
