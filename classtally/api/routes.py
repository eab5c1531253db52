"""FastAPI routes for the ClassTally API.

Endpoints:
- POST /repositories/analyze        - Analyze a repository (server-sent events)
- GET  /repositories?url=...        - Look up a repository record
- GET  /repositories/{id}/progress  - Persisted progress of an analysis
- GET  /global                      - Global top classes and summary statistics
- GET  /longest-class               - Longest class name ever recorded
- GET  /health                      - Health check
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError

from classtally.analysis.events import ProgressChannel
from classtally.analysis.orchestrator import AnalysisOrchestrator
from classtally.analysis.references import (
    InvalidRepositoryReference,
    normalize_repository_reference,
)
from classtally.config import get_settings
from classtally.database.store import AnalysisStore
from classtally.schemas import (
    AnalyzeRequest,
    GlobalLeaderboardResponse,
    LongestClass,
    ProgressCounters,
    RepositoryProgressResponse,
    RepositoryRead,
)


logger = logging.getLogger(__name__)
router = APIRouter()

settings = get_settings()

# Strong references to running analyses; the event loop only keeps weak ones
_analysis_tasks: set[asyncio.Task] = set()

_store: AnalysisStore | None = None


def get_store() -> AnalysisStore:
    """Dependency that provides the shared aggregation store."""
    global _store
    if _store is None:
        _store = AnalysisStore()
    return _store


def get_orchestrator(
    store: AnalysisStore = Depends(get_store),
) -> AnalysisOrchestrator:
    """Dependency that provides an orchestrator bound to the shared store."""
    return AnalysisOrchestrator(store=store)


def _sse_headers() -> dict[str, str]:
    return {
        "Cache-Control": "no-store, no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }


def _store_unavailable(e: Exception) -> HTTPException:
    logger.error(f"Store unavailable: {e}")
    return HTTPException(status_code=503, detail="Storage is temporarily unavailable")


# =============================================================================
# Health Check
# =============================================================================

@router.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.environment,
    }


# =============================================================================
# Analysis
# =============================================================================

@router.post("/repositories/analyze")
async def analyze_repository(
    request: AnalyzeRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """Analyze a repository and stream lifecycle events.

    The first frame is ``event: connected``. The run continues in the
    background if the client disconnects; later events are then dropped.
    """
    channel = ProgressChannel(maxsize=settings.event_queue_size)
    task = asyncio.create_task(orchestrator.run(request.repo, channel))
    _analysis_tasks.add(task)
    task.add_done_callback(_analysis_tasks.discard)

    async def event_stream():
        try:
            yield "event: connected\ndata: {}\n\n"
            async for event in channel:
                yield event.to_sse()
        except asyncio.CancelledError:
            logger.debug(f"Analysis stream for {request.repo!r} cancelled")
            raise
        finally:
            channel.detach()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers=_sse_headers(),
    )


# =============================================================================
# Repository Queries
# =============================================================================

@router.get("/repositories", response_model=RepositoryRead)
async def get_repository_by_url(
    url: Annotated[str, Query(description="Repository URL or owner/name shorthand")],
    store: AnalysisStore = Depends(get_store),
) -> RepositoryRead:
    """Look up a repository record by its reference."""
    try:
        ref = normalize_repository_reference(url, host=settings.code_host)
    except InvalidRepositoryReference as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        repository = await store.get_repository_by_url(ref.url)
    except SQLAlchemyError as e:
        raise _store_unavailable(e)

    if repository is None:
        raise HTTPException(status_code=404, detail="Repository not found")
    return RepositoryRead.model_validate(repository)


@router.get("/repositories/{repository_id}/progress", response_model=RepositoryProgressResponse)
async def get_repository_progress(
    repository_id: Annotated[int, Path(ge=1)],
    store: AnalysisStore = Depends(get_store),
) -> RepositoryProgressResponse:
    """Persisted status and counters of a repository analysis."""
    try:
        repository = await store.get_repository(repository_id)
    except SQLAlchemyError as e:
        raise _store_unavailable(e)

    if repository is None:
        raise HTTPException(status_code=404, detail="Repository not found")

    total_files = repository.total_files or 0
    processed_files = repository.processed_files or 0
    percentage = round(processed_files / total_files * 100) if total_files else 0

    return RepositoryProgressResponse(
        repository_id=repository.id,
        status=repository.status,
        progress=ProgressCounters(
            total_files=total_files,
            processed_files=processed_files,
            total_class_instances=repository.total_class_instances or 0,
            percentage=percentage,
        ),
        is_eligible=repository.is_eligible,
        eligibility_reason=repository.eligibility_reason,
    )


# =============================================================================
# Global Queries
# =============================================================================

@router.get("/global", response_model=GlobalLeaderboardResponse)
async def get_global_leaderboard(
    limit: Annotated[int, Query(ge=1, le=settings.global_top_max)] = settings.global_top_limit,
    store: AnalysisStore = Depends(get_store),
) -> GlobalLeaderboardResponse:
    """Top classes across every repository, with summary statistics."""
    try:
        top_classes = await store.get_global_top_classes(limit)
        stats = await store.get_global_stats()
    except SQLAlchemyError as e:
        raise _store_unavailable(e)

    return GlobalLeaderboardResponse(top_classes=top_classes, stats=stats)


@router.get("/longest-class", response_model=LongestClass)
async def get_longest_class(
    store: AnalysisStore = Depends(get_store),
) -> LongestClass:
    """The longest class name ever recorded and the repository it came from."""
    try:
        longest = await store.get_longest_class_name()
    except SQLAlchemyError as e:
        raise _store_unavailable(e)

    if longest is None:
        raise HTTPException(status_code=404, detail="No classes recorded yet")
    return longest
