"""GitHub-hosted repositories.

This module handles:
- Listing tags and the default branch head through the GitHub REST API
- Reading single files from raw.githubusercontent.com
- Downloading tarballs and extracting a sub-path safely
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import tempfile
from pathlib import Path, PurePosixPath
from typing import Any

import httpx

from llar.errors import VCSError

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
GITHUB_RAW_BASE = "https://raw.githubusercontent.com"

# Timeout for API and raw file requests (seconds)
REQUEST_TIMEOUT = 60

# Timeout for tarball downloads (seconds)
DOWNLOAD_TIMEOUT = 3600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

# Tags requested per API page
TAGS_PER_PAGE = 100


def _vcs_error(what: str, e: httpx.HTTPError) -> VCSError:
    """Map an httpx failure to a VCSError with a stable code."""
    if isinstance(e, httpx.HTTPStatusError):
        return VCSError(
            f"HTTP error {what}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        )
    if isinstance(e, httpx.TimeoutException):
        return VCSError(f"Timeout {what}", code="timeout")
    return VCSError(f"Network error {what}: {e}", code="network_error")


class GitHubSourceFS:
    """Files of a GitHub repository at one ref, fetched on demand.

    Fetched files are kept under local_dir so each is downloaded once.
    """

    def __init__(self, repo: GitHubRepo, ref: str, local_dir: Path) -> None:
        self.repo = repo
        self.ref = ref
        self.local_dir = Path(local_dir)

    def read_file(self, name: str) -> bytes:
        rel = PurePosixPath(name)
        if rel.is_absolute() or ".." in rel.parts:
            raise FileNotFoundError(name)
        cached = self.local_dir / rel
        if cached.is_file():
            return cached.read_bytes()
        data = self.repo.read_file(self.ref, str(rel))
        cached.parent.mkdir(parents=True, exist_ok=True)
        cached.write_bytes(data)
        return data


class GitHubRepo:
    """A repository hosted on github.com.

    Attributes:
        owner: Repository owner.
        name: Repository name.
    """

    def __init__(
        self,
        owner: str,
        name: str,
        client: httpx.Client,
        api_base: str = GITHUB_API_BASE,
        raw_base: str = GITHUB_RAW_BASE,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.owner = owner
        self.name = name
        self.client = client
        self.api_base = api_base.rstrip("/")
        self.raw_base = raw_base.rstrip("/")
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"GitHubRepo({self.owner}/{self.name})"

    @property
    def _repo_url(self) -> str:
        return f"{self.api_base}/repos/{self.owner}/{self.name}"

    def _get_json(self, url: str, what: str, **params: Any) -> Any:
        try:
            response = self.client.get(url, params=params or None, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise _vcs_error(what, e) from e
        except ValueError as e:
            raise VCSError(f"Invalid JSON {what}: {e}", code="invalid_response") from e

    def tags(self) -> list[str]:
        """List every tag, following pagination.

        Raises:
            VCSError: If a request fails.
        """
        tags: list[str] = []
        page = 1
        while True:
            data = self._get_json(
                f"{self._repo_url}/tags",
                f"listing tags of {self.owner}/{self.name}",
                per_page=TAGS_PER_PAGE,
                page=page,
            )
            if not isinstance(data, list):
                raise VCSError(
                    f"Unexpected tags response for {self.owner}/{self.name}",
                    code="invalid_response",
                )
            tags.extend(item["name"] for item in data if "name" in item)
            if len(data) < TAGS_PER_PAGE:
                break
            page += 1
        logger.debug("Found %d tags for %s/%s", len(tags), self.owner, self.name)
        return tags

    def latest(self) -> str:
        """Return the commit sha of the default branch head.

        Raises:
            VCSError: If the request fails.
        """
        data = self._get_json(
            f"{self._repo_url}/commits/HEAD",
            f"fetching HEAD of {self.owner}/{self.name}",
        )
        sha = data.get("sha") if isinstance(data, dict) else None
        if not sha:
            raise VCSError(
                f"No HEAD commit for {self.owner}/{self.name}", code="invalid_response"
            )
        return sha

    def read_file(self, ref: str, path: str) -> bytes:
        """Fetch one file at ref.

        Raises:
            FileNotFoundError: If the file does not exist.
            VCSError: If the request fails otherwise.
        """
        url = f"{self.raw_base}/{self.owner}/{self.name}/{ref or 'HEAD'}/{path}"
        logger.debug("Fetching %s", url)
        try:
            response = self.client.get(url, timeout=self.timeout)
            if response.status_code == 404:
                raise FileNotFoundError(f"{self.owner}/{self.name}@{ref}: {path}")
            response.raise_for_status()
            return response.content
        except httpx.HTTPError as e:
            raise _vcs_error(f"fetching {path}", e) from e

    def at(self, ref: str, local_dir: Path) -> GitHubSourceFS:
        return GitHubSourceFS(self, ref, local_dir)

    def sync(self, ref: str, path: str, dest_dir: Path) -> None:
        """Download the tarball at ref and extract path under dest_dir.

        Raises:
            VCSError: If the download or extraction fails.
        """
        prefix = path.strip("/")
        if prefix == ".":
            prefix = ""
        url = f"{self._repo_url}/tarball"
        if ref:
            url = f"{url}/{ref}"

        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="llar-sync-") as tmp:
            archive = Path(tmp) / "source.tar.gz"
            self._download(url, archive)
            target = dest_dir / prefix if prefix else dest_dir
            if prefix and target.exists():
                shutil.rmtree(target)
            extract_subtree(archive, prefix, dest_dir)
        logger.info(
            "Synced %s/%s@%s%s to %s",
            self.owner,
            self.name,
            ref or "HEAD",
            f" ({prefix})" if prefix else "",
            dest_dir,
        )

    def _download(self, url: str, dest_path: Path) -> None:
        logger.debug("Downloading %s", url)
        try:
            with self.client.stream(
                "GET", url, timeout=DOWNLOAD_TIMEOUT, follow_redirects=True
            ) as response:
                response.raise_for_status()
                with dest_path.open("wb") as f:
                    for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
        except httpx.HTTPError as e:
            raise _vcs_error(f"downloading {url}", e) from e


def extract_subtree(archive_path: Path, prefix: str, dest_dir: Path) -> int:
    """Extract the entries of a GitHub tarball below prefix.

    GitHub tarballs wrap the tree in a single "<owner>-<repo>-<sha>/"
    directory, which is stripped. Entries keep their path relative to the
    repository root.

    Args:
        archive_path: Path of the .tar.gz archive.
        prefix: Repository-relative directory to extract ("" for all).
        dest_dir: Destination directory.

    Returns:
        Number of extracted entries.

    Raises:
        VCSError: If the archive is invalid or an entry escapes dest_dir.
    """
    selected: list[tarfile.TarInfo] = []
    try:
        with tarfile.open(archive_path, "r:*") as tar:
            for member in tar.getmembers():
                parts = PurePosixPath(member.name).parts
                if len(parts) < 2:
                    continue
                rel = PurePosixPath(*parts[1:])
                if rel.is_absolute() or ".." in rel.parts:
                    raise VCSError(
                        f"Refusing to extract {member.name}: path traversal detected",
                        code="path_traversal",
                    )
                if prefix and not (
                    str(rel) == prefix or str(rel).startswith(prefix + "/")
                ):
                    continue
                selected.append(member.replace(name=str(rel), deep=False))

            if not selected:
                raise VCSError(
                    f"Nothing to extract for {prefix or 'repository root'}",
                    code="path_not_found",
                )
            tar.extractall(dest_dir, members=selected, filter="data")
    except tarfile.TarError as e:
        raise VCSError(f"Failed to extract {archive_path}: {e}", code="extraction_error") from e
    except OSError as e:
        raise VCSError(f"OS error extracting {archive_path}: {e}", code="os_error") from e
    return len(selected)


__all__ = [
    "GITHUB_API_BASE",
    "GITHUB_RAW_BASE",
    "GitHubRepo",
    "GitHubSourceFS",
    "extract_subtree",
]
