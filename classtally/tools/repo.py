"""Local snapshot file tools.

These tools give the acquirer structured access to a cloned working tree:
- list_files: Recursive file listing, skipping dotfiles and dot-directories
- read_file: Read a single file as text, bounded by size and repo root
- remove_tree: Delete a snapshot directory

Filesystem work runs in a worker thread so callers on the event loop never block.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import time

from classtally.schemas import RepoFile, ToolResult


# Maximum file size to read (1MB)
MAX_FILE_SIZE = 1024 * 1024


def _is_safe_path(repo_path: str, file_path: str) -> bool:
    """Check if file_path is safely within repo_path."""
    repo_abs = os.path.abspath(repo_path)
    file_abs = os.path.abspath(os.path.join(repo_path, file_path))
    return file_abs == repo_abs or file_abs.startswith(repo_abs + os.sep)


def _walk(repo_path: str) -> list[RepoFile] | None:
    if not os.path.isdir(repo_path):
        return None
    files: list[RepoFile] = []
    for root, dirs, filenames in os.walk(repo_path):
        # Prune hidden directories (.git included) in place
        dirs[:] = sorted(d for d in dirs if not d.startswith("."))
        for filename in sorted(filenames):
            if filename.startswith("."):
                continue
            full_path = os.path.join(root, filename)
            if not os.path.isfile(full_path):
                continue
            rel_path = os.path.relpath(full_path, repo_path).replace(os.sep, "/")
            try:
                size = os.path.getsize(full_path)
            except OSError:
                size = None
            files.append(RepoFile(path=rel_path, size=size))
    return files


async def list_files(repo_path: str) -> ToolResult:
    """List every non-hidden file under the repository root.

    Args:
        repo_path: Path to the repository

    Returns:
        ToolResult with ``{"files": [RepoFile, ...]}``
    """
    start = time.perf_counter()

    files = await asyncio.to_thread(_walk, repo_path)
    if files is None:
        return ToolResult(
            ok=False,
            error_code="INVALID_PATH",
            error_message=f"Repository path does not exist: {repo_path}",
        )
    latency_ms = int((time.perf_counter() - start) * 1000)

    return ToolResult(
        ok=True,
        data={"files": files, "total_files": len(files)},
        latency_ms=latency_ms,
    )


def _read_text(full_path: str) -> str:
    with open(full_path, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def _read_checked(repo_path: str, file_path: str, max_size: int) -> ToolResult:
    if not _is_safe_path(repo_path, file_path):
        return ToolResult(
            ok=False,
            error_code="PATH_ESCAPE",
            error_message="File path attempts to escape repository",
        )

    full_path = os.path.join(repo_path, file_path)

    if not os.path.isfile(full_path):
        return ToolResult(
            ok=False,
            error_code="FILE_NOT_FOUND",
            error_message=f"File not found: {file_path}",
        )

    file_size = os.path.getsize(full_path)
    if file_size > max_size:
        return ToolResult(
            ok=False,
            error_code="FILE_TOO_LARGE",
            error_message=f"File too large ({file_size} bytes, max {max_size})",
        )

    return ToolResult(
        ok=True,
        data={"content": _read_text(full_path), "path": file_path, "size": file_size},
    )


async def read_file(
    repo_path: str,
    file_path: str,
    max_size: int = MAX_FILE_SIZE,
) -> ToolResult:
    """Read file content as text.

    Args:
        repo_path: Repository root path
        file_path: Relative path within repo
        max_size: Files larger than this are refused

    Returns:
        ToolResult with ``{"content": ..., "path": ..., "size": ...}``
    """
    try:
        return await asyncio.to_thread(_read_checked, repo_path, file_path, max_size)
    except OSError as e:
        return ToolResult(
            ok=False,
            error_code="READ_ERROR",
            error_message=str(e),
            retryable=True,
        )


def _remove(path: str) -> bool:
    if not os.path.exists(path):
        return False
    shutil.rmtree(path)
    return True


async def remove_tree(path: str) -> ToolResult:
    """Remove a directory tree. Removing a missing directory succeeds."""
    try:
        removed = await asyncio.to_thread(_remove, path)
    except OSError as e:
        return ToolResult(
            ok=False,
            error_code="CLEANUP_ERROR",
            error_message=str(e),
        )
    return ToolResult(ok=True, data={"removed": removed})
