"""Tests for git utilities."""

import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from git.exc import GitCommandError

from repo_threat_scanner.errors import (
    AcquisitionError,
    AuthenticationRequiredError,
    CloneTimeoutError,
    InvalidRepositoryUrlError,
    RepositoryNotFoundError,
)
from repo_threat_scanner.git_utils import (
    CloneOptions,
    calculate_repository_stats,
    cleanup_repo,
    clone_repository,
    cloned_repo,
    is_valid_repository_url,
    parse_repository_from_url,
)
from repo_threat_scanner.models import RepositoryInfo, RepositoryMetadata


class TestIsValidRepositoryUrl:
    """Test URL validation."""

    def test_valid_urls(self):
        assert is_valid_repository_url("https://github.com/owner/repo")
        assert is_valid_repository_url("https://github.com/owner/repo.git")
        assert is_valid_repository_url("http://gitlab.example.com/group/project")
        assert is_valid_repository_url("ssh://git@github.com/owner/repo.git")
        assert is_valid_repository_url("git://example.com/repo.git")
        assert is_valid_repository_url("git@github.com:owner/repo.git")

    def test_invalid_urls(self):
        assert not is_valid_repository_url("")
        assert not is_valid_repository_url("not a url")
        assert not is_valid_repository_url("ftp://example.com/repo.git")
        assert not is_valid_repository_url("file:///tmp/repo")
        assert not is_valid_repository_url("mailto:dev@example.com")
        assert not is_valid_repository_url("git@github.com")
        assert not is_valid_repository_url("https://")


class TestParseRepositoryFromUrl:
    """Test owner/name extraction."""

    def test_https(self):
        assert parse_repository_from_url("https://github.com/acme/widgets.git") == ("acme", "widgets")

    def test_scp_like(self):
        assert parse_repository_from_url("git@github.com:acme/widgets.git") == ("acme", "widgets")

    def test_unknown(self):
        assert parse_repository_from_url("https://github.com/acme") == ("unknown", "unknown")


class TestCalculateRepositoryStats:
    """Test size and count, skipping .git."""

    def test_skips_git_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / ".git").mkdir()
            (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
            (root / "src").mkdir()
            (root / "src" / "a.js").write_text("12345")
            (root / "b.ts").write_text("123")

            assert calculate_repository_stats(root) == (8, 2)


class TestCleanupRepo:
    """Test cleanup."""

    def test_cleanup_is_idempotent(self):
        path = Path(tempfile.mkdtemp())
        (path / "file.txt").write_text("x")

        cleanup_repo(path)
        assert not path.exists()
        cleanup_repo(path)
        cleanup_repo(str(path))


class TestCloneRepository:
    """Test clone error mapping with git mocked out."""

    def test_invalid_url_rejected_before_clone(self):
        with patch("repo_threat_scanner.git_utils.Git") as git_cls:
            with pytest.raises(InvalidRepositoryUrlError):
                clone_repository("ftp://example.com/repo.git")
            git_cls.assert_not_called()

    @pytest.mark.parametrize(
        "stderr,expected",
        [
            ("fatal: Authentication failed for 'https://github.com/a/b'", AuthenticationRequiredError),
            ("remote: Repository not found.", RepositoryNotFoundError),
            ("Timeout: the command did not complete in 300 secs", CloneTimeoutError),
            ("fatal: unable to access: SSL error", AcquisitionError),
        ],
    )
    def test_error_mapping(self, stderr, expected):
        created = []
        real_mkdtemp = tempfile.mkdtemp

        def tracking_mkdtemp(*args, **kwargs):
            path = real_mkdtemp(*args, **kwargs)
            created.append(Path(path))
            return path

        git = MagicMock()
        git.clone.side_effect = GitCommandError(["git", "clone"], 128, stderr=stderr)
        with patch("repo_threat_scanner.git_utils.Git", return_value=git), patch(
            "repo_threat_scanner.git_utils.tempfile.mkdtemp", side_effect=tracking_mkdtemp
        ):
            with pytest.raises(expected) as exc_info:
                clone_repository("https://github.com/a/b")

        assert type(exc_info.value) is expected
        assert created and not created[0].exists()

    def test_clone_arguments(self):
        git = MagicMock()
        with patch("repo_threat_scanner.git_utils.Git", return_value=git), patch(
            "repo_threat_scanner.git_utils.Repo", side_effect=ValueError("no head")
        ):
            info = clone_repository(
                "https://github.com/acme/widgets.git",
                CloneOptions(timeout=60, depth=2, branch="dev"),
            )

        try:
            args, kwargs = git.clone.call_args
            assert args[0] == "https://github.com/acme/widgets.git"
            assert args[1] == info.path
            assert kwargs["depth"] == 2
            assert kwargs["branch"] == "dev"
            assert kwargs["single_branch"] is True
            assert kwargs["kill_after_timeout"] == 60
            assert info.metadata.owner == "acme"
            assert info.metadata.name == "widgets"
            assert info.metadata.commit_hash == "unknown"
        finally:
            cleanup_repo(info.path)


class TestClonedRepo:
    """Test the clone context manager removes the clone."""

    @staticmethod
    def _fake_clone():
        path = Path(tempfile.mkdtemp())
        (path / "index.js").write_text("run();\n")
        return path, RepositoryInfo(path=str(path), metadata=RepositoryMetadata(name="widgets", owner="acme"))

    def test_removed_after_use(self):
        path, info = self._fake_clone()
        with patch("repo_threat_scanner.git_utils.clone_repository", return_value=info) as clone:
            with cloned_repo("https://github.com/acme/widgets", CloneOptions(depth=3)) as repository:
                assert repository is info
                assert path.exists()

        clone.assert_called_once()
        assert clone.call_args.args[1].depth == 3
        assert not path.exists()

    def test_removed_after_error(self):
        path, info = self._fake_clone()
        with patch("repo_threat_scanner.git_utils.clone_repository", return_value=info):
            with pytest.raises(RuntimeError):
                with cloned_repo("https://github.com/acme/widgets"):
                    raise RuntimeError("scan failed")

        assert not path.exists()
