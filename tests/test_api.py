"""Tests for the HTTP API."""

import json
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from classtally.api.main import app
from classtally.api.routes import get_orchestrator, get_store
from classtally.database.models import Repository
from classtally.schemas import (
    AnalysisStatus,
    ClassCount,
    CompletedEvent,
    ErrorCode,
    ErrorEvent,
    FileProcessedEvent,
    GlobalStats,
    LongestClass,
    ProgressEvent,
    RepositoryRead,
)


def _repository(**fields) -> Repository:
    values = dict(
        id=1,
        url="https://github.com/octocat/hello-world",
        owner="octocat",
        name="hello-world",
        status="processing",
        total_files=4,
        processed_files=1,
        created_at=datetime(2024, 6, 1),
    )
    values.update(fields)
    return Repository(**values)


class FakeStore:
    def __init__(self, repository=None, fail=False):
        self.repository = repository
        self.fail = fail
        self.limits = []

    def _check(self):
        if self.fail:
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    async def get_repository(self, repository_id):
        self._check()
        if self.repository is not None and self.repository.id == repository_id:
            return self.repository
        return None

    async def get_repository_by_url(self, url):
        self._check()
        if self.repository is not None and self.repository.url == url:
            return self.repository
        return None

    async def get_global_top_classes(self, limit):
        self._check()
        self.limits.append(limit)
        return [ClassCount(class_name="flex", count=10), ClassCount(class_name="p-4", count=3)]

    async def get_global_stats(self):
        self._check()
        return GlobalStats(total_repositories=2, total_class_instances=13, unique_classes=2, total_files=9)

    async def get_longest_class_name(self):
        self._check()
        if self.repository is None:
            return None
        return LongestClass(class_name="bg-gradient-to-r", length=16, owner="octocat", name="hello-world")


class FakeOrchestrator:
    def __init__(self, events):
        self.events = events
        self.references = []

    async def run(self, reference, channel):
        self.references.append(reference)
        try:
            for event in self.events:
                await channel.emit(event)
        finally:
            await channel.close()


def _parse_sse(body: str) -> list[tuple[str, dict]]:
    frames = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        frames.append((lines["event"], json.loads(lines["data"])))
    return frames


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


def _use_store(store):
    app.dependency_overrides[get_store] = lambda: store


def _use_orchestrator(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator


class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_root_lists_entry_points(self, client):
        body = client.get("/").json()
        assert body["name"] == "ClassTally"
        assert body["analyze"] == "/api/repositories/analyze"


class TestAnalyze:

    def test_streams_events(self, client):
        repository = RepositoryRead.model_validate(_repository(status="completed"))
        orchestrator = FakeOrchestrator([
            ProgressEvent(status=AnalysisStatus.FETCHING, current_file="Repository metadata"),
            ProgressEvent(status=AnalysisStatus.PARSING, current_file="a.html", files_processed=0, total_files=1),
            FileProcessedEvent(file_path="a.html", files_processed=1, total_files=1),
            CompletedEvent(
                repository=repository,
                total_classes=1,
                top_classes=[ClassCount(class_name="flex", count=1)],
                class_counts={"flex": 1},
            ),
        ])
        _use_orchestrator(orchestrator)

        response = client.post("/api/repositories/analyze", json={"repo": "octocat/hello-world"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        frames = _parse_sse(response.text)
        assert [name for name, _ in frames] == ["connected", "progress", "progress", "file-processed", "completed"]
        assert frames[0][1] == {}
        assert frames[3][1]["file_path"] == "a.html"
        assert frames[4][1]["class_counts"] == {"flex": 1}
        assert orchestrator.references == ["octocat/hello-world"]

    def test_streams_error(self, client):
        _use_orchestrator(FakeOrchestrator([
            ErrorEvent(message="Repository is already being processed", code=ErrorCode.ALREADY_PROCESSING, retryable=True),
        ]))

        response = client.post("/api/repositories/analyze", json={"repo": "octocat/hello-world"})

        frames = _parse_sse(response.text)
        assert frames[-1][0] == "error"
        assert frames[-1][1]["code"] == "ALREADY_PROCESSING"
        assert frames[-1][1]["retryable"] is True

    def test_requires_repo(self, client):
        response = client.post("/api/repositories/analyze", json={})
        assert response.status_code == 422


class TestRepositoryQueries:

    def test_progress(self, client):
        _use_store(FakeStore(_repository()))

        response = client.get("/api/repositories/1/progress")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "processing"
        assert body["progress"] == {
            "total_files": 4,
            "processed_files": 1,
            "total_class_instances": 0,
            "percentage": 25,
        }

    def test_progress_unknown_repository(self, client):
        _use_store(FakeStore())
        assert client.get("/api/repositories/42/progress").status_code == 404

    def test_progress_invalid_id(self, client):
        _use_store(FakeStore())
        assert client.get("/api/repositories/0/progress").status_code == 422

    def test_lookup_by_shorthand(self, client):
        _use_store(FakeStore(_repository()))

        response = client.get("/api/repositories", params={"url": "octocat/hello-world"})

        assert response.status_code == 200
        assert response.json()["url"] == "https://github.com/octocat/hello-world"

    def test_lookup_invalid_reference(self, client):
        _use_store(FakeStore())
        response = client.get("/api/repositories", params={"url": "https://gitlab.com/a/b"})
        assert response.status_code == 422

    def test_store_unavailable(self, client):
        _use_store(FakeStore(fail=True))
        assert client.get("/api/repositories/1/progress").status_code == 503


class TestGlobalQueries:

    def test_leaderboard(self, client):
        store = FakeStore()
        _use_store(store)

        response = client.get("/api/global", params={"limit": 2})

        assert response.status_code == 200
        body = response.json()
        assert body["top_classes"][0] == {"class_name": "flex", "count": 10}
        assert body["stats"]["total_repositories"] == 2
        assert store.limits == [2]

    def test_leaderboard_default_limit(self, client):
        store = FakeStore()
        _use_store(store)
        client.get("/api/global")
        assert store.limits == [50]

    @pytest.mark.parametrize("limit", [0, 501])
    def test_leaderboard_limit_bounds(self, client, limit):
        _use_store(FakeStore())
        assert client.get("/api/global", params={"limit": limit}).status_code == 422

    def test_leaderboard_store_unavailable(self, client):
        _use_store(FakeStore(fail=True))
        assert client.get("/api/global").status_code == 503

    def test_longest_class(self, client):
        _use_store(FakeStore(_repository()))

        response = client.get("/api/longest-class")

        assert response.status_code == 200
        assert response.json() == {
            "class_name": "bg-gradient-to-r",
            "length": 16,
            "owner": "octocat",
            "name": "hello-world",
        }

    def test_longest_class_empty(self, client):
        _use_store(FakeStore())
        assert client.get("/api/longest-class").status_code == 404
