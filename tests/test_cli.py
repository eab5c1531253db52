"""Tests for the command line interface."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from classtally.cli import app
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


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def no_shutdown():
    with patch("classtally.cli._shutdown", AsyncMock()) as shutdown:
        yield shutdown


def _orchestrator_emitting(*events):
    class FakeOrchestrator:
        def __init__(self, **kwargs):
            pass

        async def run(self, reference, channel):
            for event in events:
                await channel.emit(event)
            await channel.close()

    return FakeOrchestrator


def _completed(from_cache=False) -> CompletedEvent:
    repository = RepositoryRead(
        id=1,
        url="https://github.com/octocat/hello-world",
        owner="octocat",
        name="hello-world",
        status="completed",
        last_analyzed_at=datetime(2024, 6, 1),
    )
    return CompletedEvent(
        repository=repository,
        total_classes=3,
        top_classes=[ClassCount(class_name="flex", count=2), ClassCount(class_name="p-4", count=1)],
        class_counts={"flex": 2, "p-4": 1},
        from_cache=from_cache,
    )


class TestAnalyzeCommand:

    def test_prints_progress_and_top_classes(self, runner):
        orchestrator = _orchestrator_emitting(
            ProgressEvent(status=AnalysisStatus.FETCHING),
            ProgressEvent(status=AnalysisStatus.PARSING, current_file="index.html"),
            FileProcessedEvent(file_path="index.html", files_processed=1, total_files=1),
            _completed(),
        )
        with patch("classtally.analysis.orchestrator.AnalysisOrchestrator", orchestrator):
            result = runner.invoke(app, ["analyze", "octocat/hello-world"])

        assert result.exit_code == 0
        assert "[fetching]" in result.output
        assert "[parsing]" not in result.output
        assert "(1/1) index.html" in result.output
        assert "octocat/hello-world: 3 class instances (2 unique, from fresh analysis)" in result.output
        assert "flex" in result.output

    def test_top_option_limits_rows(self, runner):
        with patch("classtally.analysis.orchestrator.AnalysisOrchestrator", _orchestrator_emitting(_completed(True))):
            result = runner.invoke(app, ["analyze", "octocat/hello-world", "--top", "1"])

        assert result.exit_code == 0
        assert "from cache" in result.output
        assert "flex" in result.output
        assert "p-4" not in result.output

    def test_error_exits_non_zero(self, runner, no_shutdown):
        orchestrator = _orchestrator_emitting(
            ErrorEvent(message="Invalid repository reference", code=ErrorCode.INVALID_REFERENCE),
        )
        with patch("classtally.analysis.orchestrator.AnalysisOrchestrator", orchestrator):
            result = runner.invoke(app, ["analyze", "not a repo"])

        assert result.exit_code == 1
        assert "INVALID_REFERENCE" in result.output
        no_shutdown.assert_awaited_once()


class TestQueryCommands:

    def _store(self):
        store = MagicMock()
        store.get_global_top_classes = AsyncMock(return_value=[ClassCount(class_name="flex", count=9)])
        store.get_global_stats = AsyncMock(
            return_value=GlobalStats(total_repositories=2, total_class_instances=9, unique_classes=1, total_files=4)
        )
        store.get_longest_class_name = AsyncMock(
            return_value=LongestClass(class_name="bg-gradient-to-r", length=16, owner="a", name="b")
        )
        return store

    def test_leaderboard(self, runner):
        store = self._store()
        with patch("classtally.database.store.AnalysisStore", return_value=store):
            result = runner.invoke(app, ["leaderboard", "--limit", "5"])

        assert result.exit_code == 0
        assert "2 repositories, 4 files, 9 class instances, 1 unique classes" in result.output
        assert "flex" in result.output
        store.get_global_top_classes.assert_awaited_once_with(5)

    def test_leaderboard_rejects_zero_limit(self, runner):
        result = runner.invoke(app, ["leaderboard", "--limit", "0"])
        assert result.exit_code != 0

    def test_longest(self, runner):
        with patch("classtally.database.store.AnalysisStore", return_value=self._store()):
            result = runner.invoke(app, ["longest"])

        assert result.exit_code == 0
        assert "bg-gradient-to-r (16 chars) in a/b" in result.output

    def test_longest_when_empty(self, runner):
        store = self._store()
        store.get_longest_class_name = AsyncMock(return_value=None)
        with patch("classtally.database.store.AnalysisStore", return_value=store):
            result = runner.invoke(app, ["longest"])

        assert "No classes recorded yet." in result.output
