"""Source repositories.

This module handles:
- The Repo and SourceFS interfaces used by the loader and builder
- Creating repositories from "host/owner/repo" paths
"""

from __future__ import annotations

import httpx

from llar.errors import VCSError
from llar.types import split_path
from llar.vcs.base import Repo, RepoFactory, SourceFS
from llar.vcs.github import GitHubRepo
from llar.vcs.local import LocalRepo, local_repo_factory

GITHUB_HOST = "github.com"


def new_repo(repo_path: str, client: httpx.Client | None = None) -> GitHubRepo:
    """Create a repository from a "host/owner/repo" path.

    Args:
        repo_path: Repository path, e.g. "github.com/madler/zlib".
        client: HTTPX client; a new one is created when omitted.

    Returns:
        Repository handle.

    Raises:
        VCSError: If the host is not supported.
        ResolutionError: If the owner/repo part is malformed.
    """
    host, sep, rest = repo_path.partition("/")
    if not sep or host != GITHUB_HOST:
        raise VCSError(f"Unsupported code host in {repo_path!r}", code="unsupported_host")
    owner, name = split_path(rest)
    if client is None:
        client = httpx.Client(follow_redirects=True)
    return GitHubRepo(owner, name, client)


def github_repo_factory(client: httpx.Client) -> RepoFactory:
    """Return a factory mapping module paths "owner/repo" to GitHub repos."""

    def factory(path: str) -> GitHubRepo:
        return new_repo(f"{GITHUB_HOST}/{path}", client)

    return factory


__all__ = [
    "GitHubRepo",
    "LocalRepo",
    "Repo",
    "RepoFactory",
    "SourceFS",
    "github_repo_factory",
    "local_repo_factory",
    "new_repo",
]
