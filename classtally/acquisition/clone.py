"""Shallow-clone acquisition backend.

Each acquisition clones into its own directory,
``<snapshot_root>/<prefix>-<owner>-<name>-<ms timestamp>``, so concurrent runs
never share a working tree.
"""

from __future__ import annotations

import logging
import os
import time

from classtally.acquisition.base import (
    AcquisitionError,
    RepositoryAcquirer,
    RepositorySnapshot,
    evaluate_manifest,
)
from classtally.config import Settings, get_settings
from classtally.schemas import EligibilityResult, RepoFile
from classtally.tools.git_ops import git_clone_shallow, resolve_default_branch
from classtally.tools.repo import list_files, read_file, remove_tree


logger = logging.getLogger(__name__)


class LocalSnapshot(RepositorySnapshot):
    """Snapshot backed by a local clone directory."""

    def __init__(
        self,
        owner: str,
        name: str,
        default_branch: str,
        eligibility: EligibilityResult,
        local_path: str,
        max_file_size: int,
    ):
        super().__init__(owner, name, default_branch, eligibility)
        self.local_path = local_path
        self.max_file_size = max_file_size
        self._cleaned = False

    async def list_files(self) -> list[RepoFile]:
        result = await list_files(self.local_path)
        if not result.ok:
            raise AcquisitionError(result.error_message)
        return result.data["files"]

    async def read_file(self, path: str) -> str | None:
        result = await read_file(self.local_path, path, max_size=self.max_file_size)
        if not result.ok:
            logger.warning(f"Skipping {path}: {result.error_message}")
            return None
        return result.data["content"]

    async def cleanup(self) -> None:
        if self._cleaned:
            return
        self._cleaned = True
        result = await remove_tree(self.local_path)
        if not result.ok:
            logger.error(f"Error cleaning up {self.local_path}: {result.error_message}")


class GitCloneAcquirer(RepositoryAcquirer):
    """Acquire repositories with ``git clone --depth=1 --single-branch``."""

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or get_settings()

    @property
    def backend_name(self) -> str:
        return "clone"

    def clone_url(self, owner: str, name: str) -> str:
        return f"{self._settings.git_base_url.rstrip('/')}/{owner}/{name}.git"

    def snapshot_path(self, owner: str, name: str) -> str:
        stamp = int(time.time() * 1000)
        dirname = f"{self._settings.snapshot_prefix}-{owner}-{name}-{stamp}"
        return os.path.join(self._settings.snapshot_root, dirname)

    async def acquire(
        self,
        owner: str,
        name: str,
        branch: str | None = None,
    ) -> RepositorySnapshot | None:
        settings = self._settings
        repo_url = self.clone_url(owner, name)

        if branch is None:
            branch = await resolve_default_branch(
                repo_url,
                candidates=settings.candidate_branches,
                fallback=settings.fallback_branch,
                timeout=settings.branch_resolve_timeout_seconds,
            )

        dest = self.snapshot_path(owner, name)
        logger.info(f"Cloning repository {owner}/{name}@{branch} into {dest}")

        clone = await git_clone_shallow(
            repo_url,
            dest,
            branch,
            timeout=settings.clone_timeout_seconds,
        )
        if not clone.ok:
            logger.error(f"Error cloning {owner}/{name}: [{clone.error_code}] {clone.error_message}")
            await remove_tree(dest)
            return None

        manifest = await read_file(dest, settings.manifest_filename, max_size=settings.max_file_size_bytes)
        eligibility = evaluate_manifest(
            manifest.data["content"] if manifest.ok else None,
            settings.framework_packages,
            settings.manifest_filename,
        )

        return LocalSnapshot(
            owner=owner,
            name=name,
            default_branch=branch,
            eligibility=eligibility,
            local_path=dest,
            max_file_size=settings.max_file_size_bytes,
        )
