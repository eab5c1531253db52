"""Hosted-API acquisition backend.

Reads the repository through the GitHub REST API instead of cloning it:
- GET /repos/{owner}/{name}                          default branch
- GET /repos/{owner}/{name}/git/trees/{ref}?recursive=1   file listing
- GET /repos/{owner}/{name}/contents/{path}?ref={ref}     file content (base64)

Nothing touches the local filesystem, so snapshot cleanup only drops the
cached listing.
"""

from __future__ import annotations

import base64
import binascii
import logging
from urllib.parse import quote

import httpx

from classtally.acquisition.base import (
    AcquisitionError,
    RepositoryAcquirer,
    RepositorySnapshot,
    evaluate_manifest,
)
from classtally.config import Settings, get_settings
from classtally.schemas import EligibilityResult, RepoFile


logger = logging.getLogger(__name__)


def _is_hidden(path: str) -> bool:
    return any(part.startswith(".") for part in path.split("/"))


class ApiSnapshot(RepositorySnapshot):
    """Snapshot that reads files lazily over HTTP."""

    def __init__(
        self,
        owner: str,
        name: str,
        default_branch: str,
        eligibility: EligibilityResult,
        acquirer: GitHubApiAcquirer,
    ):
        super().__init__(owner, name, default_branch, eligibility)
        self._acquirer = acquirer
        self._files: list[RepoFile] | None = None
        self._cleaned = False

    async def list_files(self) -> list[RepoFile]:
        if self._files is None:
            try:
                self._files = await self._acquirer.fetch_tree(
                    self.owner, self.name, self.default_branch
                )
            except (httpx.HTTPError, ValueError) as e:
                raise AcquisitionError(f"Could not list files: {e}") from e
        return list(self._files)

    async def read_file(self, path: str) -> str | None:
        return await self._acquirer.fetch_file(
            self.owner, self.name, path, self.default_branch
        )

    async def cleanup(self) -> None:
        if self._cleaned:
            return
        self._cleaned = True
        self._files = None


class GitHubApiAcquirer(RepositoryAcquirer):
    """Acquire repositories through the GitHub REST API using httpx."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings or get_settings()

        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": self._settings.app_name,
        }
        if self._settings.github_token:
            headers["Authorization"] = f"Bearer {self._settings.github_token}"

        self._client = httpx.AsyncClient(
            base_url=self._settings.github_api_url,
            headers=headers,
            timeout=self._settings.http_timeout_seconds,
            transport=transport,
        )

    @property
    def backend_name(self) -> str:
        return "api"

    async def acquire(
        self,
        owner: str,
        name: str,
        branch: str | None = None,
    ) -> RepositorySnapshot | None:
        settings = self._settings
        try:
            if branch is None:
                response = await self._client.get(f"/repos/{owner}/{name}")
                response.raise_for_status()
                branch = response.json().get("default_branch") or settings.fallback_branch
            manifest = await self._get_content(owner, name, settings.manifest_filename, branch)
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Error fetching {owner}/{name} metadata: HTTP {e.response.status_code}"
            )
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Error fetching {owner}/{name} metadata: {e}")
            return None

        eligibility = evaluate_manifest(
            manifest,
            settings.framework_packages,
            settings.manifest_filename,
        )

        logger.info(f"Opened API snapshot of {owner}/{name}@{branch}")
        return ApiSnapshot(
            owner=owner,
            name=name,
            default_branch=branch,
            eligibility=eligibility,
            acquirer=self,
        )

    async def fetch_tree(self, owner: str, name: str, ref: str) -> list[RepoFile]:
        """Every non-hidden blob on ``ref``, sorted by path."""
        response = await self._client.get(
            f"/repos/{owner}/{name}/git/trees/{quote(ref, safe='')}",
            params={"recursive": "1"},
        )
        response.raise_for_status()
        data = response.json()
        if data.get("truncated"):
            logger.warning(f"Tree listing for {owner}/{name}@{ref} was truncated")

        files = [
            RepoFile(path=entry["path"], size=entry.get("size"))
            for entry in data.get("tree", [])
            if entry.get("type") == "blob" and not _is_hidden(entry["path"])
        ]
        files.sort(key=lambda f: f.path)
        return files

    async def fetch_file(self, owner: str, name: str, path: str, ref: str) -> str | None:
        """Decoded file content, or None when missing, too large or unreadable."""
        try:
            return await self._get_content(owner, name, path, ref)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Could not fetch {owner}/{name}:{path}: {e}")
            return None

    async def _get_content(self, owner: str, name: str, path: str, ref: str) -> str | None:
        """Like fetch_file, but HTTP failures other than 404 propagate."""
        response = await self._client.get(
            f"/repos/{owner}/{name}/contents/{quote(path)}",
            params={"ref": ref},
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = response.json()

        if not isinstance(data, dict) or data.get("type", "file") != "file":
            return None
        if (data.get("size") or 0) > self._settings.max_file_size_bytes:
            logger.info(f"Skipping {path}: larger than {self._settings.max_file_size_bytes} bytes")
            return None

        try:
            raw = base64.b64decode(data.get("content") or "")
        except (binascii.Error, ValueError):
            logger.warning(f"Could not decode {owner}/{name}:{path}")
            return None
        return raw.decode("utf-8", errors="replace")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
