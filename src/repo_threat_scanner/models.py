"""Pydantic models for repo-threat-scanner."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, JsonValue, computed_field
from pydantic.alias_generators import to_camel


class Severity(str, Enum):
    """Severity levels for findings, ordered INFO < WARNING < CRITICAL."""

    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.CRITICAL: 2}


class OverallStatus(str, Enum):
    """Session verdict derived from the most severe finding."""

    SAFE = "SAFE"
    WARNING = "WARNING"
    UNSAFE = "UNSAFE"


class FileCategory(str, Enum):
    code = "code"
    config = "config"
    document = "document"
    binary = "binary"
    other = "other"


class Priority(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


class FileRecord(BaseModel):
    """A file or directory seen during traversal."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(description="Absolute path")
    relative_path: str = Field(description="POSIX path relative to the scan root")
    size: int = Field(description="Size in bytes")
    modified: datetime = Field(description="Modification time")
    is_directory: bool = False
    is_symlink: bool = False
    is_file: bool = False
    extension: str = Field(default="", description="Lower-case extension without the dot")
    category: FileCategory = FileCategory.other
    language: Optional[str] = None
    priority: Priority = Priority.low
    is_dependency_file: bool = False
    is_lock_file: bool = False


class Finding(BaseModel):
    """A single threat occurrence tied to one file, line and pattern."""

    model_config = ConfigDict(frozen=True)

    category: str = Field(description="Threat category, e.g. code_execution")
    subcategory: str = Field(description="Specific pattern name, e.g. eval_usage")
    severity: Severity = Field(description="Severity level")
    description: str = Field(description="Human-readable description")
    file: str = Field(description="Path of the file, relative to the scan root")
    line: Optional[int] = Field(default=None, description="1-based line number")
    code: Optional[str] = Field(default=None, description="Numbered code excerpt")
    details: dict[str, JsonValue] = Field(default_factory=dict, description="Pattern-specific details")


class MemoryInfo(BaseModel):
    """One memory sample."""

    used: int = Field(description="Resident memory of this process in bytes")
    total: int = Field(description="Total system memory in bytes")
    percentage: float = Field(default=0.0, description="used / total * 100")
    is_over_limit: bool = False


class MemoryUsage(BaseModel):
    """Start/peak/end memory of a scan in bytes."""

    start: int = 0
    peak: int = 0
    end: int = 0


class FileStatistics(BaseModel):
    total_files: int = 0
    total_size: int = 0
    by_category: dict[str, int] = Field(default_factory=dict)
    by_language: dict[str, int] = Field(default_factory=dict)
    by_priority: dict[str, int] = Field(
        default_factory=lambda: {"high": 0, "medium": 0, "low": 0}
    )
    large_files: int = 0
    dependency_files: int = 0


def overall_status_for(findings: list[Finding]) -> OverallStatus:
    """UNSAFE if any critical finding, WARNING if any finding, else SAFE."""
    if any(f.severity is Severity.CRITICAL for f in findings):
        return OverallStatus.UNSAFE
    if findings:
        return OverallStatus.WARNING
    return OverallStatus.SAFE


class ScanSession(BaseModel):
    """Everything one scan of one source tree produced."""

    root: str = Field(description="Scanned root directory")
    files: list[FileRecord] = Field(default_factory=list, description="Files considered, in traversal order")
    findings: list[Finding] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list, description="Non-fatal errors")
    memory_usage: MemoryUsage = Field(default_factory=MemoryUsage)
    statistics: FileStatistics = Field(default_factory=FileStatistics)
    scan_time: int = Field(default=0, description="Elapsed time in milliseconds")
    scanned_files: int = Field(default=0, description="Files read and parsed")
    scan_completed: bool = False

    @computed_field
    @property
    def overall_status(self) -> OverallStatus:
        return overall_status_for(self.findings)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RepositoryMetadata(_CamelModel):
    name: str = "unknown"
    owner: str = "unknown"
    url: str = ""
    size: int = 0
    file_count: int = 0
    commit_hash: str = "unknown"
    branch: str = "unknown"
    clone_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RepositoryInfo(_CamelModel):
    path: str = ""
    metadata: RepositoryMetadata = Field(default_factory=RepositoryMetadata)


class ScanResult(_CamelModel):
    """Result handed to the presentation layer. Field names are a stable contract."""

    repository: RepositoryInfo = Field(default_factory=RepositoryInfo)
    scan_completed: bool = False
    errors: list[str] = Field(default_factory=list)
    threats: list[Finding] = Field(default_factory=list)
    overall_status: OverallStatus = OverallStatus.SAFE
    scan_time: int = Field(default=0, description="Elapsed time in milliseconds")
    scanned_files: int = 0


class ScanRequest(BaseModel):
    """Request body for ``POST /scan``. Exactly one of ``repo_url`` or ``path``."""

    repo_url: Optional[str] = Field(default=None, description="Git URL to clone and scan")
    path: Optional[str] = Field(default=None, description="Local directory to scan")
    branch: Optional[str] = Field(default=None, description="Branch to clone; remote default when omitted")
    depth: int = Field(default=1, ge=1, description="Clone depth")
    options: dict[str, JsonValue] = Field(
        default_factory=dict, description="ScanConfig overrides, e.g. {\"max_depth\": 5}"
    )
