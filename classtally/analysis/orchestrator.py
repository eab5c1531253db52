"""Analysis orchestrator.

Run structure:
normalize → lookup → (cache hit | conflict | reclaim) → lock → acquire
          → eligibility → read files → extract → save → completed
                                    ↓
                     error (from any stage, lock released as failed)

Every run ends with exactly one terminal event on its channel, after which the
channel is closed. All coordination between concurrent runs goes through the
store; a run keeps its progress in a run-local :class:`AnalysisRun`.
Writes made under the processing lease are conditional on that lease, so a
run whose stale lease was reclaimed by another run stops without writing.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from classtally.acquisition.base import AcquisitionError, RepositoryAcquirer, RepositorySnapshot
from classtally.analysis.events import ProgressChannel
from classtally.analysis.extractor import count_occurrences, rank_classes
from classtally.analysis.filters import is_eligible_path
from classtally.analysis.references import (
    InvalidRepositoryReference,
    RepositoryReference,
    normalize_repository_reference,
)
from classtally.config import Settings, get_settings
from classtally.database.models import Repository, utcnow
from classtally.database.store import AnalysisStore
from classtally.schemas import (
    AnalysisEvent,
    AnalysisRun,
    AnalysisStatus,
    CompletedEvent,
    ErrorCode,
    ErrorEvent,
    FileProcessedEvent,
    ProgressEvent,
    RepositoryRead,
    RepositoryStatus,
)


logger = logging.getLogger(__name__)


class LeaseLostError(RuntimeError):
    """The processing lease was reclaimed by another run while this one held it."""


class _RunContext:
    """Per-run mutable state. Never shared between runs."""

    def __init__(self, channel: ProgressChannel):
        self.channel = channel
        self.run = AnalysisRun()
        self.tag = "[?]"
        self.repository_id: int | None = None
        self.lock_held = False
        self.lease: datetime | None = None


class AnalysisOrchestrator:
    """Drives one repository analysis from reference to terminal event."""

    def __init__(
        self,
        store: AnalysisStore | None = None,
        acquirer: RepositoryAcquirer | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if acquirer is None:
            from classtally.acquisition.router import get_acquirer

            acquirer = get_acquirer()
        self.store = store or AnalysisStore()
        self.acquirer = acquirer
        self.settings = settings or get_settings()
        self.clock = clock

    @property
    def freshness(self) -> timedelta:
        return timedelta(hours=self.settings.freshness_hours)

    @property
    def staleness(self) -> timedelta:
        return timedelta(minutes=self.settings.staleness_minutes)

    # =========================================================================
    # Entry point
    # =========================================================================

    async def run(self, reference: str, channel: ProgressChannel) -> None:
        """Analyze ``reference``, reporting every step on ``channel``.

        Never raises for analysis failures: each outcome becomes one terminal
        event, then the channel is closed.
        """
        ctx = _RunContext(channel)
        try:
            event = await self._analyze(reference, ctx)
        except LeaseLostError:
            logger.warning(f"{ctx.tag} Processing lease was reclaimed by another run, abandoning")
            ctx.lock_held = False
            event = self._error(
                ctx,
                "Repository analysis was taken over by another run",
                ErrorCode.ALREADY_PROCESSING,
                retryable=True,
            )
        except AcquisitionError as e:
            logger.error(f"{ctx.tag} Acquisition failed: {e}")
            await self._release_lock(ctx)
            event = self._error(
                ctx,
                "Failed to read repository contents",
                ErrorCode.ACQUISITION_FAILED,
                retryable=True,
            )
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"{ctx.tag} Store unavailable: {e}")
            await self._release_lock(ctx)
            event = self._error(
                ctx,
                "Storage is temporarily unavailable, please try again later",
                ErrorCode.STORE_UNAVAILABLE,
                retryable=True,
            )
        except Exception:
            logger.exception(f"{ctx.tag} Unexpected error during analysis")
            await self._release_lock(ctx)
            event = self._error(ctx, "Analysis failed due to an internal error", ErrorCode.INTERNAL_ERROR)

        try:
            await channel.emit(event)
        finally:
            await channel.close()

    # =========================================================================
    # Stages
    # =========================================================================

    async def _analyze(self, reference: str, ctx: _RunContext) -> AnalysisEvent:
        try:
            ref = normalize_repository_reference(reference, host=self.settings.code_host)
        except InvalidRepositoryReference as e:
            logger.info(f"Rejected repository reference {reference!r}: {e}")
            return self._error(ctx, str(e), ErrorCode.INVALID_REFERENCE)

        ctx.tag = f"[{ref.full_name}]"
        await self._progress(ctx, AnalysisStatus.FETCHING, current_file="Repository metadata")

        now = self.clock()
        record = await self.store.get_repository_by_url(ref.url)

        if record is not None:
            ctx.repository_id = record.id

            if self._is_fresh(record, now):
                logger.info(f"{ctx.tag} Serving cached analysis from {record.last_analyzed_at}")
                return await self._cached_result(ctx, record)

            if record.status == RepositoryStatus.PROCESSING.value:
                if not self._is_stale(record, now):
                    logger.info(f"{ctx.tag} Already being processed since {record.processing_started_at}")
                    return self._conflict(ctx)
                if await self.store.reclaim_stale_lock(record.id, now - self.staleness):
                    logger.warning(
                        f"{ctx.tag} Reclaimed stale lock from {record.processing_started_at}"
                    )

            acquired = await self.store.acquire_lock(record.id, now)
        else:
            created = await self.store.create_processing_repository(
                url=ref.url,
                owner=ref.owner,
                name=ref.name,
                now=now,
            )
            acquired = created is not None
            if created is not None:
                ctx.repository_id = created.id

        if not acquired:
            logger.info(f"{ctx.tag} Lost the processing lock to a concurrent run")
            return self._conflict(ctx)

        ctx.lock_held = True
        ctx.lease = now
        logger.info(f"{ctx.tag} Acquired processing lock")
        return await self._acquire_and_process(ctx, ref)

    async def _acquire_and_process(
        self,
        ctx: _RunContext,
        ref: RepositoryReference,
    ) -> AnalysisEvent:
        snapshot = await self.acquirer.acquire(ref.owner, ref.name)
        if snapshot is None:
            await self._release_lock(ctx)
            return self._error(
                ctx,
                f"Failed to fetch repository {ref.full_name}",
                ErrorCode.ACQUISITION_FAILED,
                retryable=True,
            )

        try:
            if not snapshot.eligibility.is_eligible:
                return await self._mark_ineligible(ctx, snapshot)
            return await self._process(ctx, snapshot)
        finally:
            await snapshot.cleanup()

    async def _mark_ineligible(
        self,
        ctx: _RunContext,
        snapshot: RepositorySnapshot,
    ) -> AnalysisEvent:
        eligibility = snapshot.eligibility
        logger.info(f"{ctx.tag} Not eligible: {eligibility.reason}")

        await self._finish(
            ctx,
            [],
            status=RepositoryStatus.INELIGIBLE.value,
            default_branch=snapshot.default_branch,
            is_eligible=False,
            has_framework_dependency=eligibility.has_framework_dependency,
            has_manifest_file=eligibility.manifest_exists,
            eligibility_reason=eligibility.reason,
            total_class_instances=0,
            last_analyzed_at=self.clock(),
            processing_started_at=None,
        )
        ctx.lock_held = False

        return self._error(
            ctx,
            eligibility.reason or "Repository is not eligible for analysis",
            ErrorCode.INELIGIBLE,
        )

    async def _process(
        self,
        ctx: _RunContext,
        snapshot: RepositorySnapshot,
    ) -> AnalysisEvent:
        repository_id = ctx.repository_id
        run = ctx.run

        await self._update(
            ctx,
            default_branch=snapshot.default_branch,
            is_eligible=True,
            has_framework_dependency=snapshot.eligibility.has_framework_dependency,
            has_manifest_file=snapshot.eligibility.manifest_exists,
            eligibility_reason=None,
        )

        files = [f for f in await snapshot.list_files() if is_eligible_path(f.path)]
        run.total_files = len(files)
        await self._update(ctx, total_files=run.total_files)
        logger.info(f"{ctx.tag} Parsing {run.total_files} files on {snapshot.default_branch}")

        buffer: list[dict[str, str]] = []
        for repo_file in files:
            await self._progress(ctx, AnalysisStatus.PARSING, current_file=repo_file.path)

            content = await snapshot.read_file(repo_file.path)
            if content is None:
                logger.warning(f"{ctx.tag} Skipping unreadable file {repo_file.path}")
            else:
                buffer.append({"path": repo_file.path, "content": content})

            run.files_processed += 1
            await self._update(ctx, processed_files=run.files_processed)
            await ctx.channel.emit(
                FileProcessedEvent(
                    file_path=repo_file.path,
                    files_processed=run.files_processed,
                    total_files=run.total_files,
                )
            )

        await self._progress(ctx, AnalysisStatus.ANALYZING)
        counts = await asyncio.to_thread(count_occurrences, buffer)
        total_classes = sum(counts.values())
        logger.info(f"{ctx.tag} Found {total_classes} class instances, {len(counts)} unique")

        await self._progress(ctx, AnalysisStatus.SAVING)
        await self._finish(
            ctx,
            list(counts.items()),
            status=RepositoryStatus.COMPLETED.value,
            total_class_instances=total_classes,
            last_analyzed_at=self.clock(),
            processing_started_at=None,
        )
        ctx.lock_held = False
        run.advance(AnalysisStatus.COMPLETED)
        logger.info(f"{ctx.tag} Analysis completed")

        record = await self.store.get_repository(repository_id)
        return CompletedEvent(
            repository=RepositoryRead.model_validate(record),
            total_classes=total_classes,
            top_classes=rank_classes(counts, self.settings.top_classes_limit),
            class_counts=counts,
        )

    async def _cached_result(self, ctx: _RunContext, record: Repository) -> AnalysisEvent:
        counts = await self.store.get_class_counts(record.id)
        total_classes = record.total_class_instances
        if total_classes is None:
            total_classes = sum(counts.values())
        return CompletedEvent(
            repository=RepositoryRead.model_validate(record),
            total_classes=total_classes,
            top_classes=rank_classes(counts, self.settings.top_classes_limit),
            class_counts=counts,
            from_cache=True,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _is_fresh(self, record: Repository, now: datetime) -> bool:
        return (
            record.status == RepositoryStatus.COMPLETED.value
            and record.last_analyzed_at is not None
            and now - record.last_analyzed_at < self.freshness
        )

    def _is_stale(self, record: Repository, now: datetime) -> bool:
        started = record.processing_started_at
        return started is None or now - started > self.staleness

    async def _progress(
        self,
        ctx: _RunContext,
        status: AnalysisStatus,
        current_file: str | None = None,
    ) -> None:
        run = ctx.run
        run.advance(status)
        run.current_file = current_file
        await ctx.channel.emit(
            ProgressEvent(
                status=status,
                current_file=current_file,
                files_processed=run.files_processed,
                total_files=run.total_files,
                repository_id=ctx.repository_id,
            )
        )

    async def _update(self, ctx: _RunContext, **fields) -> None:
        """Update the record while this run still holds its lease."""
        if not await self.store.update_repository(ctx.repository_id, lease=ctx.lease, **fields):
            raise LeaseLostError(f"Lease {ctx.lease} on repository {ctx.repository_id} lost")

    async def _finish(self, ctx: _RunContext, rows: list[tuple[str, int]], **fields) -> None:
        """Replace class counts and end the lease in one guarded transaction."""
        finished = await self.store.complete_analysis(
            ctx.repository_id,
            ctx.lease,
            rows,
            batch_size=self.settings.class_count_batch_size,
            **fields,
        )
        if not finished:
            raise LeaseLostError(f"Lease {ctx.lease} on repository {ctx.repository_id} lost")

    async def _release_lock(self, ctx: _RunContext) -> None:
        """Set a held lock back to failed. Store errors here are logged only."""
        if not ctx.lock_held or ctx.repository_id is None:
            return
        try:
            await self.store.update_repository(
                ctx.repository_id,
                lease=ctx.lease,
                status=RepositoryStatus.FAILED.value,
                processing_started_at=None,
            )
            ctx.lock_held = False
            logger.info(f"{ctx.tag} Released processing lock as failed")
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"{ctx.tag} Could not release processing lock: {e}")

    def _conflict(self, ctx: _RunContext) -> ErrorEvent:
        return self._error(
            ctx,
            "Repository is already being processed, please try again later",
            ErrorCode.ALREADY_PROCESSING,
            retryable=True,
        )

    @staticmethod
    def _error(
        ctx: _RunContext,
        message: str,
        code: ErrorCode,
        retryable: bool = False,
    ) -> ErrorEvent:
        return ErrorEvent(
            message=message,
            code=code,
            retryable=retryable,
            repository_id=ctx.repository_id,
        )
