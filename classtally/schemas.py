"""Pydantic schemas for all analysis I/O contracts.

These schemas define the strict contracts between:
- API endpoints and clients
- The orchestrator and its event channel
- Tool calls and results
- Aggregate queries decoded from the store
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Enums
# =============================================================================

class RepositoryStatus(str, Enum):
    """Lifecycle of a persisted repository record."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    INELIGIBLE = "ineligible"
    FAILED = "failed"


class AnalysisStatus(str, Enum):
    """Stage of a single analysis run. Only ever moves forward."""
    FETCHING = "fetching"
    PARSING = "parsing"
    ANALYZING = "analyzing"
    SAVING = "saving"
    COMPLETED = "completed"


class ErrorCode(str, Enum):
    """Codes carried by terminal error events."""
    INVALID_REFERENCE = "INVALID_REFERENCE"
    ALREADY_PROCESSING = "ALREADY_PROCESSING"
    ACQUISITION_FAILED = "ACQUISITION_FAILED"
    INELIGIBLE = "INELIGIBLE"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_STATUS_ORDER = [
    AnalysisStatus.FETCHING,
    AnalysisStatus.PARSING,
    AnalysisStatus.ANALYZING,
    AnalysisStatus.SAVING,
    AnalysisStatus.COMPLETED,
]


# =============================================================================
# Tool Schemas
# =============================================================================

class ToolResult(BaseModel):
    """Standard response from any tool call."""
    ok: bool = Field(..., description="Whether the tool call succeeded")
    data: Any | None = Field(default=None, description="Tool-specific response data")
    error_code: str | None = Field(default=None, description="Error code if failed")
    error_message: str | None = Field(default=None, description="Human-readable error message")
    retryable: bool = Field(default=False, description="Whether the error is retryable")
    latency_ms: int | None = Field(default=None, description="Time taken in milliseconds")


class RepoFile(BaseModel):
    """A file inside a repository snapshot."""
    path: str = Field(..., description="Path relative to the repository root, '/' separated")
    size: int | None = Field(default=None, description="Size hint in bytes, when known")


class EligibilityResult(BaseModel):
    """Outcome of inspecting a repository's package manifest."""
    is_eligible: bool
    has_framework_dependency: bool
    manifest_exists: bool
    reason: str | None = None


# =============================================================================
# Aggregate Schemas
# =============================================================================

class ClassCount(BaseModel):
    """A class name and how many times it was found."""
    class_name: str
    count: int = Field(..., ge=0)


class GlobalStats(BaseModel):
    """Summary statistics across every analyzed repository."""
    total_repositories: int = 0
    total_class_instances: int = 0
    unique_classes: int = 0
    total_files: int = 0


class LongestClass(BaseModel):
    """The longest class name ever recorded, with its repository."""
    class_name: str
    length: int
    owner: str
    name: str


class RepositoryRead(BaseModel):
    """Public view of a repository record."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    url: str
    owner: str
    name: str
    default_branch: str | None = None
    status: RepositoryStatus
    is_eligible: bool | None = None
    has_framework_dependency: bool | None = None
    has_manifest_file: bool | None = None
    eligibility_reason: str | None = None
    total_files: int | None = None
    processed_files: int | None = None
    total_class_instances: int | None = None
    last_analyzed_at: datetime | None = None
    processing_started_at: datetime | None = None


# =============================================================================
# Run State
# =============================================================================

class AnalysisRun(BaseModel):
    """Ephemeral, run-local progress state. Never persisted."""
    status: AnalysisStatus = AnalysisStatus.FETCHING
    files_processed: int = 0
    total_files: int = 0
    current_file: str | None = None

    def advance(self, status: AnalysisStatus) -> None:
        """Move to ``status``; staying put is allowed, going back is not."""
        if _STATUS_ORDER.index(status) < _STATUS_ORDER.index(self.status):
            raise ValueError(
                f"Cannot move analysis run from {self.status.value} back to {status.value}"
            )
        self.status = status

    @property
    def percentage(self) -> int:
        if not self.total_files:
            return 0
        return round(self.files_processed / self.total_files * 100)


# =============================================================================
# Event Schemas
# =============================================================================

class _Event(BaseModel):
    def to_sse(self) -> str:
        """Render as a server-sent-events frame."""
        payload = self.model_dump_json(exclude={"type"})
        return f"event: {self.type}\ndata: {payload}\n\n"

    @property
    def is_terminal(self) -> bool:
        return False


class ProgressEvent(_Event):
    """Lifecycle/progress update."""
    type: Literal["progress"] = "progress"
    status: AnalysisStatus
    current_file: str | None = None
    files_processed: int | None = None
    total_files: int | None = None
    repository_id: int | None = None


class FileProcessedEvent(_Event):
    """A single file has been read into the processing buffer."""
    type: Literal["file-processed"] = "file-processed"
    file_path: str
    files_processed: int
    total_files: int


class CompletedEvent(_Event):
    """Final result of a run."""
    type: Literal["completed"] = "completed"
    repository: RepositoryRead
    total_classes: int
    top_classes: list[ClassCount] = Field(default_factory=list)
    class_counts: dict[str, int] = Field(default_factory=dict)
    from_cache: bool = False

    @property
    def is_terminal(self) -> bool:
        return True


class ErrorEvent(_Event):
    """Terminal failure or rejection of a run."""
    type: Literal["error"] = "error"
    message: str
    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False
    repository_id: int | None = None

    @property
    def is_terminal(self) -> bool:
        return True


AnalysisEvent = Union[ProgressEvent, FileProcessedEvent, CompletedEvent, ErrorEvent]


# =============================================================================
# API Request/Response Schemas
# =============================================================================

class AnalyzeRequest(BaseModel):
    """API request to analyze a repository."""
    repo: str = Field(..., description="Repository URL or owner/name shorthand")

    model_config = ConfigDict(
        json_schema_extra={"example": {"repo": "octocat/hello-world"}}
    )


class ProgressCounters(BaseModel):
    total_files: int = 0
    processed_files: int = 0
    total_class_instances: int = 0
    percentage: int = 0


class RepositoryProgressResponse(BaseModel):
    """Persisted progress of a repository analysis."""
    repository_id: int
    status: RepositoryStatus
    progress: ProgressCounters
    is_eligible: bool | None = None
    eligibility_reason: str | None = None


class GlobalLeaderboardResponse(BaseModel):
    """Global top classes and summary statistics."""
    top_classes: list[ClassCount]
    stats: GlobalStats
