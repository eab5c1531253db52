"""Normalization of user-supplied repository references.

Accepted forms:
- Shorthand: ``owner/name``
- Full URL: ``https://github.com/owner/name``
- URL with extra path segments: ``https://github.com/owner/name/tree/main``
- URL without scheme: ``github.com/owner/name``
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlparse

from classtally.config import get_settings


_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")
_SHORTHAND_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+/[a-zA-Z0-9._-]+$")


class InvalidRepositoryReference(ValueError):
    """The input cannot be resolved to an owner/name pair on the code host."""


@dataclass(frozen=True)
class RepositoryReference:
    owner: str
    name: str
    url: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


def _strip_git_suffix(name: str) -> str:
    if name.endswith(".git") and len(name) > len(".git"):
        return name[: -len(".git")]
    return name


def normalize_repository_reference(value: str, host: str | None = None) -> RepositoryReference:
    """Resolve ``value`` to a canonical ``https://<host>/<owner>/<name>`` reference.

    Raises:
        InvalidRepositoryReference: if the input is empty, malformed, on another
            host, or has an invalid owner/name.
    """
    host = host or get_settings().code_host

    if not value or not isinstance(value, str) or not value.strip():
        raise InvalidRepositoryReference("Repository input is required")

    cleaned = value.strip().rstrip("/")

    if _SHORTHAND_PATTERN.match(cleaned):
        owner, name = cleaned.split("/")
    else:
        url_string = cleaned if cleaned.startswith("http") else f"https://{cleaned}"
        try:
            parsed = urlparse(url_string)
            hostname = parsed.hostname
        except ValueError as e:
            raise InvalidRepositoryReference("Invalid URL format") from e

        if not hostname:
            raise InvalidRepositoryReference("Invalid URL format")
        if hostname.lower() != host:
            raise InvalidRepositoryReference(f"URL must be from {host}")

        parts = [part for part in parsed.path.split("/") if part]
        if len(parts) < 2:
            raise InvalidRepositoryReference(
                "Invalid repository URL - missing owner or repository name"
            )
        owner, name = parts[0], parts[1]

    name = _strip_git_suffix(name)
    if not _NAME_PATTERN.match(owner) or not _NAME_PATTERN.match(name):
        raise InvalidRepositoryReference("Invalid repository name format")

    return RepositoryReference(owner=owner, name=name, url=f"https://{host}/{owner}/{name}")
