"""Abstract base classes for repository acquisition backends."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Sequence

from classtally.schemas import EligibilityResult, RepoFile


class AcquisitionError(RuntimeError):
    """A snapshot could not be read after it was acquired."""


def evaluate_manifest(
    manifest_text: str | None,
    framework_packages: Sequence[str],
    manifest_filename: str = "package.json",
) -> EligibilityResult:
    """Decide eligibility from the raw manifest text (None when absent).

    Eligible iff the manifest is a JSON object whose ``dependencies`` or
    ``devDependencies`` name one of ``framework_packages`` exactly, or any
    package in the scope of the first one (``@tailwindcss/*``).
    """
    if manifest_text is None:
        return EligibilityResult(
            is_eligible=False,
            has_framework_dependency=False,
            manifest_exists=False,
            reason=f"No {manifest_filename} found - not a Node.js project",
        )

    try:
        manifest = json.loads(manifest_text)
    except ValueError:
        manifest = None
    if not isinstance(manifest, dict):
        return EligibilityResult(
            is_eligible=False,
            has_framework_dependency=False,
            manifest_exists=True,
            reason=f"Invalid {manifest_filename} format",
        )

    declared: set[str] = set()
    for section in ("dependencies", "devDependencies"):
        deps = manifest.get(section)
        if isinstance(deps, dict):
            declared.update(deps)

    scope = f"@{framework_packages[0]}/" if framework_packages else None
    has_framework = any(name in declared for name in framework_packages) or (
        scope is not None and any(name.startswith(scope) for name in declared)
    )

    if not has_framework:
        wanted = framework_packages[0] if framework_packages else "framework"
        return EligibilityResult(
            is_eligible=False,
            has_framework_dependency=False,
            manifest_exists=True,
            reason=f"No framework dependency found ({wanted}) in dependencies",
        )

    return EligibilityResult(
        is_eligible=True,
        has_framework_dependency=True,
        manifest_exists=True,
    )


class RepositorySnapshot(ABC):
    """Read-only view of one repository's default-branch tree.

    Owned by exactly one analysis run; ``cleanup`` must be awaited once the run
    is done with it, on every exit path. Calling it again is a no-op.
    """

    def __init__(
        self,
        owner: str,
        name: str,
        default_branch: str,
        eligibility: EligibilityResult,
    ):
        self.owner = owner
        self.name = name
        self.default_branch = default_branch
        self.eligibility = eligibility

    @abstractmethod
    async def list_files(self) -> list[RepoFile]:
        """All files in the tree, hidden files and directories excluded."""
        ...

    @abstractmethod
    async def read_file(self, path: str) -> str | None:
        """File content as text, or None if it cannot be read."""
        ...

    @abstractmethod
    async def cleanup(self) -> None:
        """Release local resources. Idempotent."""
        ...


class RepositoryAcquirer(ABC):
    """Abstract base class for acquisition backends.

    Backends (shallow clone, hosted API) implement this interface so the
    orchestrator does not care how a snapshot was obtained.
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend name (e.g., 'clone', 'api')."""
        ...

    @abstractmethod
    async def acquire(
        self,
        owner: str,
        name: str,
        branch: str | None = None,
    ) -> RepositorySnapshot | None:
        """Obtain a snapshot, or None if the repository could not be fetched.

        Args:
            owner: Repository owner
            name: Repository name
            branch: Branch to fetch; the default branch is resolved when None

        Returns:
            A snapshot whose ``eligibility`` is already evaluated, or None
        """
        ...

    async def close(self) -> None:
        """Release backend-wide resources."""
        return None
