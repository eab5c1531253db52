"""Aggregation store used by the analysis orchestrator and the query endpoints.

Each operation opens its own short-lived session and commits before returning,
so no transaction is ever held across a suspension point of an analysis run.
Lock transitions are single conditional UPDATE statements: a caller owns the
processing lease only if its statement changed exactly one row.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import delete, desc, distinct, func, insert, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from classtally.database.models import ClassCount as ClassCountRow
from classtally.database.models import Repository
from classtally.schemas import ClassCount, GlobalStats, LongestClass, RepositoryStatus


logger = logging.getLogger(__name__)


class AnalysisStore:
    """Async persistence contract for repository records and class counts."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None):
        if session_maker is None:
            from classtally.database.session import async_session_maker

            session_maker = async_session_maker
        self._session_maker = session_maker

    # =========================================================================
    # Repository records
    # =========================================================================

    async def get_repository_by_url(self, url: str) -> Repository | None:
        async with self._session_maker() as session:
            result = await session.execute(
                select(Repository).where(Repository.url == url)
            )
            return result.scalar_one_or_none()

    async def get_repository(self, repository_id: int) -> Repository | None:
        async with self._session_maker() as session:
            return await session.get(Repository, repository_id)

    async def create_processing_repository(
        self,
        url: str,
        owner: str,
        name: str,
        now: datetime,
    ) -> Repository | None:
        """Insert a new record already holding the processing lease.

        Returns None when another caller inserted the same URL first.
        """
        repository = Repository(
            url=url,
            owner=owner,
            name=name,
            status=RepositoryStatus.PROCESSING.value,
            processing_started_at=now,
            processed_files=0,
            created_at=now,
        )
        async with self._session_maker() as session:
            session.add(repository)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(f"Lost insert race for {url}")
                return None
            await session.refresh(repository)
            return repository

    async def reclaim_stale_lock(self, repository_id: int, cutoff: datetime) -> bool:
        """Reset an abandoned processing lease (started before ``cutoff``) to failed."""
        statement = (
            update(Repository)
            .where(Repository.id == repository_id)
            .where(Repository.status == RepositoryStatus.PROCESSING.value)
            .where(
                or_(
                    Repository.processing_started_at.is_(None),
                    Repository.processing_started_at < cutoff,
                )
            )
            .values(status=RepositoryStatus.FAILED.value, processing_started_at=None)
            .execution_options(synchronize_session=False)
        )
        return await self._execute_conditional(statement)

    async def acquire_lock(self, repository_id: int, now: datetime) -> bool:
        """Move a non-processing record into processing. True if this caller won."""
        statement = (
            update(Repository)
            .where(Repository.id == repository_id)
            .where(Repository.status != RepositoryStatus.PROCESSING.value)
            .values(
                status=RepositoryStatus.PROCESSING.value,
                processing_started_at=now,
                total_files=None,
                processed_files=0,
            )
            .execution_options(synchronize_session=False)
        )
        return await self._execute_conditional(statement)

    async def update_repository(
        self,
        repository_id: int,
        lease: datetime | None = None,
        **fields: Any,
    ) -> bool:
        """Partial update of a single record.

        With ``lease``, the update applies only while the record is still
        processing under that lease. Returns whether a row was changed.
        """
        if not fields:
            return True
        statement = self._update_statement(repository_id, lease, fields)
        return await self._execute_conditional(statement)

    async def complete_analysis(
        self,
        repository_id: int,
        lease: datetime,
        rows: Iterable[tuple[str, int]],
        batch_size: int = 100,
        **fields: Any,
    ) -> bool:
        """Replace a repository's class counts and finish its processing lease.

        Runs in one transaction. Nothing is written, and False is returned,
        when the lease is no longer held.
        """
        rows = list(rows)
        async with self._session_maker() as session:
            result = await session.execute(self._update_statement(repository_id, lease, fields))
            if result.rowcount != 1:
                await session.rollback()
                return False
            await session.execute(
                delete(ClassCountRow)
                .where(ClassCountRow.repository_id == repository_id)
                .execution_options(synchronize_session=False)
            )
            for start in range(0, len(rows), batch_size):
                await self._insert_rows(session, repository_id, rows[start:start + batch_size])
            await session.commit()
        return True

    
    def _update_statement(repository_id: int, lease: datetime | None, fields: dict[str, Any]):
        statement = update(Repository).where(Repository.id == repository_id)
        if lease is not None:
            statement = statement.where(
                Repository.status == RepositoryStatus.PROCESSING.value,
                Repository.processing_started_at == lease,
            )
        return statement.values(**fields).execution_options(synchronize_session=False)

    async def _execute_conditional(self, statement) -> bool:
        async with self._session_maker() as session:
            result = await session.execute(statement)
            await session.commit()
            return result.rowcount == 1

    # =========================================================================
    # Class counts
    # =========================================================================

    async def delete_class_counts(self, repository_id: int) -> int:
        async with self._session_maker() as session:
            result = await session.execute(
                delete(ClassCountRow)
                .where(ClassCountRow.repository_id == repository_id)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    async def insert_class_counts(
        self,
        repository_id: int,
        rows: Iterable[tuple[str, int]],
    ) -> int:
        """Insert one batch of (class_name, count) rows in a single statement."""
        rows = list(rows)
        if not rows:
            return 0
        async with self._session_maker() as session:
            count = await self._insert_rows(session, repository_id, rows)
            await session.commit()
        return count

    async def _insert_rows(
        self,
        session: AsyncSession,
        repository_id: int,
        rows: list[tuple[str, int]],
    ) -> int:
        if not rows:
            return 0
        values = [
            {"repository_id": repository_id, "class_name": class_name, "count": count}
            for class_name, count in rows
        ]
        await session.execute(insert(ClassCountRow).values(values))
        return len(values)

    async def get_class_counts(self, repository_id: int) -> dict[str, int]:
        """Class counts for a repository, in the order they were inserted."""
        async with self._session_maker() as session:
            result = await session.execute(
                select(ClassCountRow.class_name, ClassCountRow.count)
                .where(ClassCountRow.repository_id == repository_id)
                .order_by(ClassCountRow.id)
            )
            return {class_name: count for class_name, count in result.all()}

    # =========================================================================
    # Global aggregates
    # =========================================================================

    async def get_global_top_classes(self, limit: int = 50) -> list[ClassCount]:
        total = func.sum(ClassCountRow.count).label("total")
        async with self._session_maker() as session:
            result = await session.execute(
                select(ClassCountRow.class_name, total)
                .group_by(ClassCountRow.class_name)
                .order_by(desc(total), ClassCountRow.class_name)
                .limit(limit)
            )
            return [
                ClassCount(class_name=class_name, count=int(count or 0))
                for class_name, count in result.all()
            ]

    async def get_global_stats(self) -> GlobalStats:
        async with self._session_maker() as session:
            total_repositories = await session.scalar(
                select(func.count(Repository.id)).where(
                    Repository.has_framework_dependency.is_(True)
                )
            )
            total_class_instances = await session.scalar(
                select(func.coalesce(func.sum(Repository.total_class_instances), 0))
            )
            unique_classes = await session.scalar(
                select(func.count(distinct(ClassCountRow.class_name)))
            )
            total_files = await session.scalar(
                select(func.coalesce(func.sum(Repository.total_files), 0))
            )
        return GlobalStats(
            total_repositories=int(total_repositories or 0),
            total_class_instances=int(total_class_instances or 0),
            unique_classes=int(unique_classes or 0),
            total_files=int(total_files or 0),
        )

    async def get_longest_class_name(self) -> LongestClass | None:
        length = func.length(ClassCountRow.class_name).label("length")
        async with self._session_maker() as session:
            result = await session.execute(
                select(ClassCountRow.class_name, length, Repository.owner, Repository.name)
                .join(Repository, ClassCountRow.repository_id == Repository.id)
                .order_by(desc(length), ClassCountRow.class_name)
                .limit(1)
            )
            row = result.first()
        if row is None:
            return None
        class_name, class_length, owner, name = row
        return LongestClass(
            class_name=class_name,
            length=int(class_length),
            owner=owner,
            name=name,
        )
