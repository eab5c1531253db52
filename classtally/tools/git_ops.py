"""Git operations tooling.

Provides bounded, non-blocking git operations against remote repositories:
- run_git: Run a git command as an asyncio subprocess with a hard timeout
- git_remote_head: Resolve the remote's default branch via its symbolic HEAD
- git_branch_exists: Check whether a remote branch exists
- resolve_default_branch: Symbolic HEAD, then candidate branch checks, then a fixed fallback
- git_clone_shallow: Shallow, single-branch clone into a destination directory
"""

from __future__ import annotations

import asyncio
import logging
import os
import time

from classtally.schemas import ToolResult


logger = logging.getLogger(__name__)

# Never wait on an interactive credential prompt for private or missing repos
_GIT_ENV = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}


async def run_git(
    args: list[str],
    timeout: float,
    cwd: str | None = None,
) -> ToolResult:
    """Run ``git <args>`` and capture its output.

    Args:
        args: Arguments after ``git``
        timeout: Seconds before the process is killed
        cwd: Optional working directory

    Returns:
        ToolResult with stdout/stderr/returncode in ``data``
    """
    start = time.perf_counter()

    try:
        process = await asyncio.create_subprocess_exec(
            "git", *args,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=_GIT_ENV,
        )
    except FileNotFoundError:
        return ToolResult(
            ok=False,
            error_code="GIT_NOT_INSTALLED",
            error_message="git is not installed or not in PATH",
        )

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return ToolResult(
            ok=False,
            error_code="GIT_TIMEOUT",
            error_message=f"git {args[0]} timed out after {timeout:g}s",
            retryable=True,
        )

    latency_ms = int((time.perf_counter() - start) * 1000)
    data = {
        "stdout": stdout.decode("utf-8", errors="replace"),
        "stderr": stderr.decode("utf-8", errors="replace"),
        "returncode": process.returncode,
    }

    if process.returncode != 0:
        return ToolResult(
            ok=False,
            data=data,
            error_code="GIT_ERROR",
            error_message=data["stderr"].strip() or f"git {args[0]} exited with {process.returncode}",
            retryable=True,
            latency_ms=latency_ms,
        )

    return ToolResult(ok=True, data=data, latency_ms=latency_ms)


async def git_remote_head(repo_url: str, timeout: float = 30.0) -> ToolResult:
    """Read the branch the remote's HEAD points at.

    Returns:
        ToolResult with ``{"branch": ...}``
    """
    result = await run_git(["ls-remote", "--symref", repo_url, "HEAD"], timeout=timeout)
    if not result.ok:
        return result

    # Expected line: "ref: refs/heads/main\tHEAD"
    for line in result.data["stdout"].splitlines():
        if line.startswith("ref:") and line.endswith("HEAD"):
            ref = line[len("ref:"):].split("\t")[0].strip()
            if ref.startswith("refs/heads/"):
                return ToolResult(
                    ok=True,
                    data={"branch": ref[len("refs/heads/"):]},
                    latency_ms=result.latency_ms,
                )

    return ToolResult(
        ok=False,
        error_code="BRANCH_NOT_FOUND",
        error_message="Remote did not advertise a symbolic HEAD",
    )


async def git_branch_exists(repo_url: str, branch: str, timeout: float = 30.0) -> ToolResult:
    """Check whether ``branch`` exists on the remote.

    Returns:
        ToolResult with ``{"branch": ..., "exists": bool}``
    """
    result = await run_git(["ls-remote", "--heads", repo_url, branch], timeout=timeout)
    if not result.ok:
        return result

    exists = any(
        line.split("\t")[-1].strip() == f"refs/heads/{branch}"
        for line in result.data["stdout"].splitlines()
        if line
    )
    return ToolResult(
        ok=True,
        data={"branch": branch, "exists": exists},
        latency_ms=result.latency_ms,
    )


async def resolve_default_branch(
    repo_url: str,
    candidates: list[str],
    fallback: str = "main",
    timeout: float = 30.0,
) -> str:
    """Resolve the default branch, never failing.

    Order: symbolic HEAD, then each candidate in turn, then ``fallback``.
    Every remote call gets its own ``timeout``.
    """
    head = await git_remote_head(repo_url, timeout=timeout)
    if head.ok:
        return head.data["branch"]
    logger.info(f"Symbolic HEAD lookup failed for {repo_url}: {head.error_message}")

    for candidate in candidates:
        branch_check = await git_branch_exists(repo_url, candidate, timeout=timeout)
        if branch_check.ok and branch_check.data["exists"]:
            return candidate

    logger.warning(f"Could not resolve default branch of {repo_url}, using {fallback}")
    return fallback


async def git_clone_shallow(
    repo_url: str,
    dest: str,
    branch: str,
    timeout: float = 120.0,
) -> ToolResult:
    """Clone the tip of a single branch into ``dest``.

    Returns:
        ToolResult with ``{"path": dest, "branch": branch}``
    """
    result = await run_git(
        [
            "clone",
            "--single-branch",
            "--depth=1",
            f"--branch={branch}",
            repo_url,
            dest,
        ],
        timeout=timeout,
    )
    if not result.ok:
        if result.error_code == "GIT_ERROR":
            return result.model_copy(update={"error_code": "CLONE_FAILED"})
        return result

    return ToolResult(
        ok=True,
        data={"path": dest, "branch": branch},
        latency_ms=result.latency_ms,
    )
