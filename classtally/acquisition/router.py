"""Acquisition router with fallback logic.

Strategy:
- Try the configured primary backend (shallow clone by default)
- If it cannot produce a snapshot, try the fallback backend when one is set
"""

from __future__ import annotations

import logging

from classtally.acquisition.base import RepositoryAcquirer, RepositorySnapshot
from classtally.acquisition.clone import GitCloneAcquirer
from classtally.acquisition.github_api import GitHubApiAcquirer
from classtally.config import Settings, get_settings


logger = logging.getLogger(__name__)


def build_acquirer(backend: str, settings: Settings | None = None) -> RepositoryAcquirer:
    """Create a backend by name."""
    if backend == "clone":
        return GitCloneAcquirer(settings)
    if backend == "api":
        return GitHubApiAcquirer(settings)
    raise ValueError(f"Unknown acquisition backend: {backend}")


class AcquisitionRouter(RepositoryAcquirer):
    """Routes acquisition to a primary backend, falling back on failure."""

    def __init__(
        self,
        primary: RepositoryAcquirer,
        fallback: RepositoryAcquirer | None = None,
    ):
        self.primary = primary
        self.fallback = fallback

    @property
    def backend_name(self) -> str:
        if self.fallback is None:
            return self.primary.backend_name
        return f"{self.primary.backend_name}+{self.fallback.backend_name}"

    async def acquire(
        self,
        owner: str,
        name: str,
        branch: str | None = None,
    ) -> RepositorySnapshot | None:
        snapshot = await self._try(self.primary, owner, name, branch)
        if snapshot is not None or self.fallback is None:
            return snapshot

        logger.warning(
            f"{self.primary.backend_name} acquisition of {owner}/{name} failed, "
            f"falling back to {self.fallback.backend_name}"
        )
        return await self._try(self.fallback, owner, name, branch)

    @staticmethod
    async def _try(
        acquirer: RepositoryAcquirer,
        owner: str,
        name: str,
        branch: str | None,
    ) -> RepositorySnapshot | None:
        try:
            return await acquirer.acquire(owner, name, branch)
        except OSError as e:
            logger.error(f"Error with {acquirer.backend_name} backend: {e}")
            return None

    async def close(self) -> None:
        """Close all backends."""
        await self.primary.close()
        if self.fallback is not None:
            await self.fallback.close()


# Singleton instance
_acquirer: AcquisitionRouter | None = None


def get_acquirer() -> AcquisitionRouter:
    """Get the global acquisition router built from settings."""
    global _acquirer
    if _acquirer is None:
        settings = get_settings()
        fallback = None
        if settings.acquisition_fallback not in ("none", settings.acquisition_primary):
            fallback = build_acquirer(settings.acquisition_fallback, settings)
        _acquirer = AcquisitionRouter(
            primary=build_acquirer(settings.acquisition_primary, settings),
            fallback=fallback,
        )
    return _acquirer


async def close_acquirer() -> None:
    """Close and forget the global acquisition router."""
    global _acquirer
    if _acquirer is not None:
        await _acquirer.close()
        _acquirer = None
