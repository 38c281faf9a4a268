"""Git utilities for cloning repositories."""

import logging
import os
import re
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, Optional
from urllib.parse import urlparse

from git import Git, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError

from .errors import (
    AcquisitionError,
    AuthenticationRequiredError,
    CloneTimeoutError,
    InvalidRepositoryUrlError,
    RepositoryNotFoundError,
)
from .models import RepositoryInfo, RepositoryMetadata

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = {"http", "https", "git", "ssh"}
_SCP_LIKE_URL = re.compile(r"^git@(?P<host>[^:/\s]+):(?P<path>.+)$")


@dataclass(frozen=True)
class CloneOptions:
    """Clone parameters. ``branch=None`` checks out the remote's default branch."""

    timeout: float = 300.0
    depth: int = 1
    branch: Optional[str] = None


def is_valid_repository_url(url: str) -> bool:
    """Accept ``git@host:owner/repo`` or an http(s)/git/ssh URL with a host."""
    if not url:
        return False
    if url.startswith("git@"):
        return _SCP_LIKE_URL.match(url) is not None
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ALLOWED_SCHEMES and bool(parsed.hostname)


def parse_repository_from_url(url: str) -> tuple[str, str]:
    """Return ``(owner, name)`` from a repository URL, ``unknown`` when absent."""
    scp = _SCP_LIKE_URL.match(url)
    path = scp.group("path") if scp else urlparse(url).path
    parts = [p for p in path.split("/") if p]
    if len(parts) >= 2:
        return parts[0], re.sub(r"\.git$", "", parts[1])
    return "unknown", "unknown"


def calculate_repository_stats(repo_path: Path) -> tuple[int, int]:
    """Total size and count of regular files, skipping ``.git``.

    Returns:
        ``(size_in_bytes, file_count)``.
    """
    total_size = 0
    file_count = 0
    for dirpath, dirnames, filenames in os.walk(repo_path):
        dirnames[:] = [d for d in dirnames if d != ".git"]
        for name in filenames:
            full_path = Path(dirpath) / name
            if not full_path.is_file() or full_path.is_symlink():
                continue
            try:
                total_size += full_path.stat().st_size
            except OSError:
                continue
            file_count += 1
    return total_size, file_count


def _map_clone_error(error: GitCommandError) -> AcquisitionError:
    message = f"{error.stderr or ''} {error}".lower()
    if "authentication failed" in message or "could not read username" in message:
        return AuthenticationRequiredError("Repository is private or requires authentication")
    if "repository not found" in message or "not found" in message:
        return RepositoryNotFoundError("Repository not found or access denied")
    if "timeout" in message or "timed out" in message or "did not complete" in message:
        return CloneTimeoutError("Repository cloning timed out")
    return AcquisitionError("Failed to clone repository. Please check the URL and try again.")


def _extract_metadata(url: str, repo_path: Path) -> RepositoryMetadata:
    owner, name = parse_repository_from_url(url)
    size, file_count = calculate_repository_stats(repo_path)
    commit_hash = "unknown"
    branch = "unknown"
    try:
        repo = Repo(repo_path)
        commit_hash = repo.head.commit.hexsha
        branch = "HEAD" if repo.head.is_detached else repo.active_branch.name
    except (InvalidGitRepositoryError, ValueError, TypeError) as e:
        logger.warning(f"Could not read git metadata for {url}: {e}")
    return RepositoryMetadata(
        name=name,
        owner=owner,
        url=url,
        size=size,
        file_count=file_count,
        commit_hash=commit_hash,
        branch=branch,
        clone_time=datetime.now(timezone.utc),
    )


def clone_repository(repo_url: str, options: CloneOptions | None = None) -> RepositoryInfo:
    """Shallow-clone a repository into a fresh temporary directory.

    Args:
        repo_url: URL of the repository to clone.
        options: Timeout, depth and branch.

    Returns:
        RepositoryInfo with the clone path and metadata. The caller owns the
        directory and must pass it to ``cleanup_repo``.

    Raises:
        InvalidRepositoryUrlError: The URL is not a supported git URL.
        AuthenticationRequiredError: The remote asked for credentials.
        RepositoryNotFoundError: The remote does not exist or is not visible.
        CloneTimeoutError: The clone did not finish within the timeout.
        AcquisitionError: Any other clone failure.
    """
    options = options or CloneOptions()
    if not is_valid_repository_url(repo_url):
        raise InvalidRepositoryUrlError("Invalid repository URL provided")

    temp_path = Path(tempfile.mkdtemp(prefix="repo_threat_scanner_"))
    clone_kwargs: dict = {"depth": options.depth, "single_branch": True}
    if options.branch:
        clone_kwargs["branch"] = options.branch

    try:
        Git().clone(
            repo_url,
            str(temp_path),
            kill_after_timeout=options.timeout,
            **clone_kwargs,
        )
    except GitCommandError as e:
        cleanup_repo(temp_path)
        mapped = _map_clone_error(e)
        logger.error(f"Clone of {repo_url} failed: {mapped} ({e.status})")
        raise mapped from e

    return RepositoryInfo(path=str(temp_path), metadata=_extract_metadata(repo_url, temp_path))


def cleanup_repo(repo_path: Path | str) -> None:
    """Remove a cloned repository directory. Safe to call more than once."""
    path = Path(repo_path)
    if path.exists():
        shutil.rmtree(path, ignore_errors=True)


@contextmanager
def cloned_repo(repo_url: str, options: CloneOptions | None = None) -> Generator[RepositoryInfo, None, None]:
    """Context manager for cloning and auto-cleanup of a repository.

    Yields:
        RepositoryInfo of the clone.
    """
    info = clone_repository(repo_url, options)
    try:
        yield info
    finally:
        cleanup_repo(info.path)
