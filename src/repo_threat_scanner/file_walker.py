"""Bounded-depth directory traversal producing classified FileRecords."""

import logging
import os
import stat
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .config import DEFAULT_SKIP_DIRS
from .file_types import extension_of, identify_file_type
from .models import FileRecord

logger = logging.getLogger(__name__)


@dataclass
class TraversalResult:
    """Everything a traversal saw. Errors never abort the walk."""

    files: list[FileRecord] = field(default_factory=list)
    directories: list[FileRecord] = field(default_factory=list)
    symlinks: list[FileRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    total_size: int = 0


def build_file_record(
    path: str | Path,
    relative_path: str,
    stat_result: os.stat_result,
    is_symlink: bool = False,
) -> FileRecord:
    """Create a classified FileRecord from a stat result."""
    file_type = identify_file_type(relative_path)
    return FileRecord(
        path=str(path),
        relative_path=relative_path,
        size=stat_result.st_size,
        modified=datetime.fromtimestamp(stat_result.st_mtime, tz=timezone.utc),
        is_directory=stat.S_ISDIR(stat_result.st_mode),
        is_symlink=is_symlink,
        is_file=stat.S_ISREG(stat_result.st_mode),
        extension=extension_of(relative_path),
        category=file_type.category,
        language=file_type.language,
        priority=file_type.priority,
        is_dependency_file=file_type.is_dependency_file,
        is_lock_file=file_type.is_lock_file,
    )


def is_hidden_path(relative_path: str) -> bool:
    """True when any path segment starts with a dot."""
    return any(part.startswith(".") for part in relative_path.split("/") if part)


def should_include_file(
    record: FileRecord,
    include_hidden: bool = False,
    file_extensions: frozenset[str] | set[str] | None = None,
    max_file_size: int | None = None,
) -> bool:
    """Apply the hidden, size and extension filters to one file."""
    if not include_hidden and is_hidden_path(record.relative_path):
        return False
    if max_file_size is not None and record.size > max_file_size:
        return False
    if file_extensions and record.extension not in file_extensions:
        return False
    return True


def traverse_directory(
    root: str | Path,
    max_depth: int = 10,
    include_hidden: bool = False,
    file_extensions: list[str] | tuple[str, ...] = (),
    max_file_size: int | None = None,
    follow_symlinks: bool = False,
    exclude_dirs: frozenset[str] | set[str] | list[str] | None = None,
) -> TraversalResult:
    """Walk a directory tree and collect file and directory records.

    Entries are visited in sorted order so repeated walks of the same tree
    produce identical results. The root's direct entries are at depth 0 and
    subdirectories are only entered while their depth stays within
    ``max_depth``.

    Args:
        root: Directory to walk.
        max_depth: Deepest directory level to enter.
        include_hidden: Keep entries with a path segment starting with '.'.
        file_extensions: Allowed extensions without the dot; empty means all.
        max_file_size: Skip files larger than this many bytes.
        follow_symlinks: Resolve symlinked files and use the target's metadata.
        exclude_dirs: Directory names never descended (default: DEFAULT_SKIP_DIRS).

    Returns:
        TraversalResult with files, directories, symlinks and error strings.
    """
    base_path = Path(root).resolve()
    extensions = frozenset(ext.lower().lstrip(".") for ext in file_extensions)
    skip = frozenset(exclude_dirs) if exclude_dirs is not None else DEFAULT_SKIP_DIRS
    result = TraversalResult()

    if not base_path.is_dir():
        result.errors.append(f"Failed to read directory {root}: not a directory")
        return result

    def keep(record: FileRecord) -> bool:
        return should_include_file(record, include_hidden, extensions, max_file_size)

    def traverse(current: Path, depth: int) -> None:
        if depth > max_depth:
            return

        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            result.errors.append(f"Failed to read directory {current}: {e}")
            return

        for entry in entries:
            relative = Path(entry.path).relative_to(base_path).as_posix()
            try:
                if entry.is_symlink():
                    _handle_symlink(entry, relative)
                elif entry.is_dir(follow_symlinks=False):
                    if entry.name in skip:
                        continue
                    if not include_hidden and entry.name.startswith("."):
                        continue
                    record = build_file_record(entry.path, relative, entry.stat(follow_symlinks=False))
                    result.directories.append(record)
                    if depth + 1 <= max_depth:
                        traverse(Path(entry.path), depth + 1)
                elif entry.is_file(follow_symlinks=False):
                    record = build_file_record(entry.path, relative, entry.stat(follow_symlinks=False))
                    if keep(record):
                        result.files.append(record)
                        result.total_size += record.size
            except OSError as e:
                result.errors.append(f"Failed to process {entry.path}: {e}")

    def _handle_symlink(entry: os.DirEntry, relative: str) -> None:
        if not include_hidden and is_hidden_path(relative):
            return
        link_stat = entry.stat(follow_symlinks=False)
        if not follow_symlinks:
            result.symlinks.append(build_file_record(entry.path, relative, link_stat, is_symlink=True))
            return

        try:
            real_path = Path(os.path.realpath(entry.path))
            real_stat = real_path.stat()
        except OSError as e:
            result.errors.append(f"Failed to follow symlink {entry.path}: {e}")
            return

        if stat.S_ISDIR(real_stat.st_mode):
            # Symlinked directories are recorded but never entered
            result.symlinks.append(build_file_record(entry.path, relative, link_stat, is_symlink=True))
            return

        record = build_file_record(real_path, relative, real_stat, is_symlink=True)
        if keep(record):
            result.files.append(record)
            result.total_size += record.size

    traverse(base_path, 0)
    logger.debug(
        f"Traversed {base_path}: {len(result.files)} files, "
        f"{len(result.directories)} directories, {len(result.errors)} errors"
    )
    return result
