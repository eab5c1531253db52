"""SQLModel database tables.

Tables:
- Repository: one row per analyzed repository URL, carries the processing lease
- ClassCount: per-repository class name counts, rewritten on every analysis
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from classtally.schemas import RepositoryStatus


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Repository Model
# =============================================================================

class Repository(SQLModel, table=True):
    """An analyzed (or being analyzed) source repository."""

    __tablename__ = "repositories"

    id: int | None = Field(default=None, primary_key=True)
    url: str = Field(unique=True, index=True, description="Normalized repository URL")
    owner: str = Field(max_length=255)
    name: str = Field(max_length=255)
    default_branch: str | None = Field(default=None, max_length=255)

    # Lifecycle
    status: str = Field(default=RepositoryStatus.PENDING.value, max_length=50, index=True)

    # Eligibility
    is_eligible: bool | None = Field(default=None)
    has_framework_dependency: bool | None = Field(default=None)
    has_manifest_file: bool | None = Field(default=None)
    eligibility_reason: str | None = Field(default=None, sa_column=Column(Text))

    # Progress counters
    total_files: int | None = Field(default=None)
    processed_files: int | None = Field(default=None)

    # Result summary
    total_class_instances: int | None = Field(default=None)

    # Timestamps; processing_started_at is set only while status is processing
    last_analyzed_at: datetime | None = Field(default=None, sa_column=Column(DateTime, nullable=True))
    processing_started_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime, nullable=True)
    )
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime, nullable=False))


# =============================================================================
# ClassCount Model
# =============================================================================

class ClassCount(SQLModel, table=True):
    """Occurrences of one class name within one repository."""

    __tablename__ = "class_counts"
    __table_args__ = (
        UniqueConstraint("repository_id", "class_name", name="uq_class_counts_repo_class"),
    )

    id: int | None = Field(default=None, primary_key=True)
    repository_id: int = Field(foreign_key="repositories.id", ondelete="CASCADE", index=True)
    class_name: str = Field(sa_column=Column(Text, nullable=False, index=True))
    count: int = Field(default=0, ge=0)
