"""Scan sessions: discover, read, parse and scan a source tree.

One session walks the tree once, then runs a bounded pool of per-file jobs.
Each job reads the file under the memory ceiling, parses it and applies the
rule table. Per-file problems become error strings on the session; only a
failure to obtain the tree at all ends a scan early.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

from .ast_parser import ParserOptions, is_parseable
from .config import ScanConfig
from .errors import AcquisitionError, ReadError
from .file_processing import ProcessingOptions, read_file_with_memory_monitoring
from .file_types import filter_files_by_type, get_code_files, get_file_statistics
from .file_walker import traverse_directory
from .git_utils import (
    CloneOptions,
    calculate_repository_stats,
    cleanup_repo,
    clone_repository,
    parse_repository_from_url,
)
from .memory import MemoryMonitor, MemorySampler, get_memory_usage
from .models import (
    FileRecord,
    MemoryUsage,
    RepositoryInfo,
    RepositoryMetadata,
    ScanResult,
    ScanSession,
)
from .scanners import CodeExecutionScanner, FileScanOutcome

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def discover_files(root: Path, config: ScanConfig) -> tuple[list[FileRecord], list[str]]:
    """Walk ``root`` and return the files to consider plus traversal errors."""
    traversal = traverse_directory(
        root,
        max_depth=config.max_depth,
        include_hidden=config.include_hidden,
        file_extensions=config.file_extensions,
        max_file_size=config.max_file_size,
        follow_symlinks=config.follow_symlinks,
        exclude_dirs=config.exclude_dirs,
    )
    files = filter_files_by_type(traversal.files, max_file_size=config.max_file_size)
    return files, traversal.errors


async def _analyze_file(
    record: FileRecord,
    scanner: CodeExecutionScanner,
    monitor: MemoryMonitor,
    config: ScanConfig,
    sampler: MemorySampler,
) -> Optional[FileScanOutcome]:
    """Read, parse and scan one file. Returns None for files with nothing to scan."""
    if record.size == 0:
        return None

    monitor.refresh()
    if monitor.is_over_limit():
        logger.warning(f"Memory limit exceeded, skipping {record.relative_path}")
        return FileScanOutcome(
            file=record.relative_path,
            error=f"Memory limit exceeded while analyzing {record.relative_path}",
        )

    options = ProcessingOptions(chunk_size=config.chunk_size, max_memory_usage=config.memory_limit)
    try:
        unit = await asyncio.wait_for(
            asyncio.to_thread(read_file_with_memory_monitoring, record, options, sampler),
            timeout=config.file_timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Timed out reading {record.relative_path}")
        return FileScanOutcome(
            file=record.relative_path,
            error=f"Timed out reading {record.relative_path} after {config.file_timeout:g}s",
        )
    except ReadError as e:
        logger.warning(f"Failed to read {record.relative_path}: {e}")
        return FileScanOutcome(file=record.relative_path, error=f"Failed to read {record.relative_path}: {e}")

    return await asyncio.to_thread(scanner.scan_unit, unit)


async def scan_directory(
    root: str | Path,
    config: ScanConfig | None = None,
    cancel_event: asyncio.Event | None = None,
    scanner: CodeExecutionScanner | None = None,
    sampler: MemorySampler = get_memory_usage,
) -> ScanSession:
    """Scan a local directory for code-execution threats.

    Args:
        root: Directory to scan.
        config: Scan configuration; defaults come from the environment.
        cancel_event: Set it to stop the scan early. Partial results are kept.
        scanner: Scanner to apply; defaults to the built-in rule table.
        sampler: Memory sampler, replaceable in tests.

    Returns:
        ScanSession with findings sorted by file path, in source order within
        each file.
    """
    config = config or ScanConfig()
    scanner = scanner or CodeExecutionScanner(
        parser_options=ParserOptions(ecma_version=config.ecma_version, source_type=config.source_type)
    )
    root_path = Path(root).resolve()
    start = time.perf_counter()
    logger.info(f"Starting scan of {root_path}")

    monitor = MemoryMonitor(max_memory=config.memory_limit, sampler=sampler)
    monitor.checkpoint("scan-start")
    session = ScanSession(root=str(root_path))

    files, traversal_errors = discover_files(root_path, config)
    session.files = files
    session.statistics = get_file_statistics(files)
    session.errors.extend(traversal_errors)
    monitor.checkpoint("after-discovery")

    targets = [f for f in get_code_files(files) if is_parseable(f.relative_path)]
    outcomes: dict[str, FileScanOutcome] = {}
    finished: set[str] = set()
    semaphore = asyncio.Semaphore(config.max_concurrency)

    async def worker(record: FileRecord) -> None:
        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                return
            outcome = await _analyze_file(record, scanner, monitor, config, sampler)
            finished.add(record.relative_path)
            if outcome is not None:
                outcomes[record.relative_path] = outcome

    tasks = [asyncio.create_task(worker(record)) for record in targets]
    all_done = asyncio.gather(*tasks)
    waiters: set[asyncio.Future] = {all_done}
    cancel_waiter = None
    if cancel_event is not None:
        cancel_waiter = asyncio.create_task(cancel_event.wait())
        waiters.add(cancel_waiter)

    done, _ = await asyncio.wait(waiters, timeout=config.scan_timeout, return_when=asyncio.FIRST_COMPLETED)
    completed = all_done in done and len(finished) == len(targets)

    if all_done not in done:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    else:
        all_done.result()
    if cancel_waiter is not None and not cancel_waiter.done():
        cancel_waiter.cancel()

    monitor.checkpoint("after-scan")

    for relative_path in sorted(outcomes):
        outcome = outcomes[relative_path]
        session.findings.extend(outcome.findings)
        if outcome.error:
            session.errors.append(outcome.error)
        if outcome.parsed:
            session.scanned_files += 1

    if not completed:
        unscanned = len(targets) - len(finished)
        reason = "cancelled" if cancel_event is not None and cancel_event.is_set() else "timed out"
        logger.warning(f"Scan of {root_path} {reason} with {unscanned} files not scanned")
        session.errors.append(f"Scan {reason}: {unscanned} of {len(targets)} files were not scanned")

    monitor.checkpoint("scan-end")
    report = monitor.get_report()
    session.memory_usage = MemoryUsage(start=report.start.used, peak=report.peak.used, end=report.current.used)
    session.scan_time = _elapsed_ms(start)
    session.scan_completed = completed
    logger.info(
        f"Finished scan of {root_path}: {len(session.findings)} findings in "
        f"{session.scanned_files} files, {len(session.errors)} errors"
    )
    return session


def build_scan_result(session: ScanSession, repository: RepositoryInfo) -> ScanResult:
    """Map a session onto the result contract."""
    return ScanResult(
        repository=repository,
        scan_completed=session.scan_completed,
        errors=list(session.errors),
        threats=list(session.findings),
        overall_status=session.overall_status,
        scan_time=session.scan_time,
        scanned_files=session.scanned_files,
    )


async def scan_local_path(
    path: str | Path,
    config: ScanConfig | None = None,
    cancel_event: asyncio.Event | None = None,
) -> ScanResult:
    """Scan a directory that is already on disk."""
    root = Path(path).resolve()
    if not root.is_dir():
        return ScanResult(
            repository=RepositoryInfo(path=str(root), metadata=RepositoryMetadata(url=str(path))),
            errors=[f"Path is not a directory: {path}"],
        )

    size, file_count = calculate_repository_stats(root)
    metadata = RepositoryMetadata(
        name=root.name, owner="local", url=str(root), size=size, file_count=file_count
    )
    session = await scan_directory(root, config, cancel_event)
    return build_scan_result(session, RepositoryInfo(path=str(root), metadata=metadata))


async def scan_repository(
    repo_url: str,
    config: ScanConfig | None = None,
    clone_options: CloneOptions | None = None,
    cancel_event: asyncio.Event | None = None,
) -> ScanResult:
    """Clone a repository, scan it and remove the clone.

    A failed clone gives a result with ``scan_completed=False`` and a single
    error; it is never raised.
    """
    start = time.perf_counter()
    try:
        repository = await asyncio.to_thread(clone_repository, repo_url, clone_options)
    except AcquisitionError as e:
        logger.error(f"Failed to acquire {repo_url}: {e}")
        owner, name = parse_repository_from_url(repo_url)
        return ScanResult(
            repository=RepositoryInfo(metadata=RepositoryMetadata(name=name, owner=owner, url=repo_url)),
            errors=[f"Failed to clone repository: {e}"],
            scan_time=_elapsed_ms(start),
        )

    try:
        session = await scan_directory(repository.path, config, cancel_event)
    finally:
        cleanup_repo(repository.path)

    result = build_scan_result(session, repository)
    result.scan_time = _elapsed_ms(start)
    return result
