"""File type identification, filtering and statistics.

Classification is a pure function of the file name: lock and dependency
manifests are matched by exact name first, then the extension is looked up
in the static tables below.
"""

import re
from pathlib import PurePosixPath
from typing import NamedTuple, Optional

from .models import FileCategory, FileRecord, FileStatistics, Priority


class FileTypeInfo(NamedTuple):
    """Classification of a single path."""

    category: FileCategory
    language: Optional[str]
    priority: Priority
    is_dependency_file: bool = False
    is_lock_file: bool = False
    is_config_file: bool = False


CODE_EXTENSIONS: dict[str, tuple[str, Priority]] = {
    # TypeScript and JavaScript
    "ts": ("TypeScript", Priority.high),
    "tsx": ("TypeScript React", Priority.high),
    "mts": ("TypeScript", Priority.high),
    "cts": ("TypeScript", Priority.high),
    "js": ("JavaScript", Priority.high),
    "jsx": ("JavaScript React", Priority.high),
    "mjs": ("JavaScript", Priority.high),
    "cjs": ("JavaScript", Priority.high),
    # Other mainstream languages
    "py": ("Python", Priority.medium),
    "java": ("Java", Priority.medium),
    "cpp": ("C++", Priority.medium),
    "c": ("C", Priority.medium),
    "go": ("Go", Priority.medium),
    "rs": ("Rust", Priority.medium),
    "php": ("PHP", Priority.medium),
    "rb": ("Ruby", Priority.medium),
    "swift": ("Swift", Priority.medium),
    "kt": ("Kotlin", Priority.medium),
    "sh": ("Shell", Priority.medium),
    "ps1": ("PowerShell", Priority.medium),
    # Everything else
    "scala": ("Scala", Priority.low),
    "clj": ("Clojure", Priority.low),
    "hs": ("Haskell", Priority.low),
    "ml": ("OCaml", Priority.low),
    "f90": ("Fortran", Priority.low),
    "pas": ("Pascal", Priority.low),
}

CONFIG_EXTENSIONS: dict[str, str] = {
    "json": "JSON",
    "yaml": "YAML",
    "yml": "YAML",
    "toml": "TOML",
    "ini": "INI",
    "cfg": "Configuration",
    "conf": "Configuration",
    "xml": "XML",
    "properties": "Properties",
}

DOCUMENT_EXTENSIONS: dict[str, str] = {
    "md": "Markdown",
    "txt": "Text",
    "rst": "reStructuredText",
    "adoc": "AsciiDoc",
    "tex": "LaTeX",
    "doc": "Word Document",
    "docx": "Word Document",
    "pdf": "PDF",
}

BINARY_EXTENSIONS: frozenset[str] = frozenset({
    "png", "jpg", "jpeg", "gif", "ico", "webp",
    "zip", "tar", "gz", "rar", "7z",
    "exe", "dll", "so", "dylib", "bin", "wasm",
    "woff", "woff2", "ttf", "eot",
    "mp3", "mp4", "avi", "mov", "wav",
    "pyc", "class", "o",
})

DEPENDENCY_FILES: frozenset[str] = frozenset({
    "package.json",
    "Cargo.toml",
    "requirements.txt",
    "Pipfile",
    "Gemfile",
    "composer.json",
    "pom.xml",
    "build.gradle",
    "build.sbt",
    "go.mod",
    "mix.exs",
})

LOCK_FILES: frozenset[str] = frozenset({
    "package-lock.json",
    "npm-shrinkwrap.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "Cargo.lock",
    "Pipfile.lock",
    "poetry.lock",
    "Gemfile.lock",
    "composer.lock",
    "go.sum",
    "mix.lock",
})

SMALL_FILE_THRESHOLD = 100 * 1024
MEDIUM_FILE_THRESHOLD = 5 * 1024 * 1024
LARGE_FILE_THRESHOLD = 10 * 1024 * 1024


def extension_of(path: str) -> str:
    """Lower-case extension without the dot, '' when there is none."""
    name = PurePosixPath(path.replace("\\", "/")).name
    if "." not in name.lstrip("."):
        return ""
    return name.rsplit(".", 1)[1].lower()


def identify_file_type(path: str) -> FileTypeInfo:
    """Classify a path by file name and extension."""
    file_name = PurePosixPath(path.replace("\\", "/")).name
    ext = extension_of(file_name)

    # Lock files take precedence over everything else
    if file_name in LOCK_FILES:
        return FileTypeInfo(
            FileCategory.config, "Lock File", Priority.high,
            is_lock_file=True, is_config_file=True,
        )

    if file_name in DEPENDENCY_FILES:
        return FileTypeInfo(
            FileCategory.config, "Dependency Configuration", Priority.high,
            is_dependency_file=True, is_config_file=True,
        )

    if ext in CODE_EXTENSIONS:
        language, priority = CODE_EXTENSIONS[ext]
        return FileTypeInfo(FileCategory.code, language, priority)

    if ext in CONFIG_EXTENSIONS:
        return FileTypeInfo(
            FileCategory.config, CONFIG_EXTENSIONS[ext], Priority.medium, is_config_file=True,
        )

    if ext in DOCUMENT_EXTENSIONS:
        return FileTypeInfo(FileCategory.document, DOCUMENT_EXTENSIONS[ext], Priority.low)

    if ext in BINARY_EXTENSIONS:
        return FileTypeInfo(FileCategory.binary, None, Priority.low)

    return FileTypeInfo(FileCategory.other, None, Priority.low)


def filter_files_by_type(
    files: list[FileRecord],
    include_code_files: bool = True,
    include_config_files: bool = True,
    include_dependency_files: bool = True,
    include_lock_files: bool = True,
    include_document_files: bool = True,
    include_binary_files: bool = True,
    include_other_files: bool = True,
    max_file_size: int | None = None,
    exclude_patterns: list[str] | None = None,
) -> list[FileRecord]:
    """Filter records by category, size and path patterns.

    Dependency/lock flags are checked before the category flags, so
    ``include_config_files=False`` still drops a lock file even when
    ``include_lock_files`` is left on.

    Args:
        files: Records to filter.
        max_file_size: Drop files larger than this many bytes.
        exclude_patterns: Substrings or regular expressions matched against
            the relative path.

    Returns:
        The records that pass every filter, in input order.
    """
    category_flags = {
        FileCategory.code: include_code_files,
        FileCategory.config: include_config_files,
        FileCategory.document: include_document_files,
        FileCategory.binary: include_binary_files,
        FileCategory.other: include_other_files,
    }
    compiled = []
    for pattern in exclude_patterns or []:
        try:
            compiled.append(re.compile(pattern))
        except re.error:
            compiled.append(re.compile(re.escape(pattern)))

    kept = []
    for record in files:
        if record.is_dependency_file and not include_dependency_files:
            continue
        if record.is_lock_file and not include_lock_files:
            continue
        if not category_flags[record.category]:
            continue
        if max_file_size is not None and record.size > max_file_size:
            continue
        if any(pattern in record.relative_path for pattern in exclude_patterns or []):
            continue
        if any(regex.search(record.relative_path) for regex in compiled):
            continue
        kept.append(record)
    return kept


def get_files_by_priority(files: list[FileRecord], priority: Priority) -> list[FileRecord]:
    return [f for f in files if f.priority == priority]


def get_code_files(files: list[FileRecord]) -> list[FileRecord]:
    return [f for f in files if f.category == FileCategory.code]


def get_dependency_files(files: list[FileRecord]) -> list[FileRecord]:
    return [f for f in files if f.is_dependency_file or f.is_lock_file]


def is_large_file(size: int) -> str:
    """Bucket a size into 'small', 'medium' or 'large'."""
    if size < SMALL_FILE_THRESHOLD:
        return "small"
    if size < MEDIUM_FILE_THRESHOLD:
        return "medium"
    return "large"


def get_file_statistics(files: list[FileRecord]) -> FileStatistics:
    """Count files by category, language and priority."""
    stats = FileStatistics(total_files=len(files), total_size=sum(f.size for f in files))

    for record in files:
        category = record.category.value
        stats.by_category[category] = stats.by_category.get(category, 0) + 1
        if record.language:
            stats.by_language[record.language] = stats.by_language.get(record.language, 0) + 1
        stats.by_priority[record.priority.value] += 1
        if record.size >= LARGE_FILE_THRESHOLD:
            stats.large_files += 1
        if record.is_dependency_file or record.is_lock_file:
            stats.dependency_files += 1

    return stats


def format_file_size(size: int) -> str:
    """Human-readable size, e.g. ``1.5 KB``."""
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    if size <= 0:
        return "0 Bytes"
    i = 0
    while size >= 1024 ** (i + 1) and i < len(units) - 1:
        i += 1
    value = round(size / (1024 ** i), 2)
    if value == int(value):
        value = int(value)
    return f"{value} {units[i]}"
