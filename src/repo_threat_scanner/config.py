"""Scanner configuration using Pydantic Settings.

Every field can be overridden from the environment with the
``THREAT_SCANNER_`` prefix, e.g. ``THREAT_SCANNER_MAX_DEPTH=5``.
"""

from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024

DEFAULT_SKIP_DIRS: frozenset[str] = frozenset({
    "node_modules",
    "dist",
    "build",
    "coverage",
    "vendor",
    "bower_components",
    "__pycache__",
    "venv",
    "out",
})


class ScanConfig(BaseSettings):
    """Options consumed by discovery, acquisition, parsing and the session."""

    model_config = SettingsConfigDict(
        env_prefix="THREAT_SCANNER_",
        case_sensitive=False,
        extra="ignore",
    )

    # Discovery
    max_depth: int = Field(default=10, ge=0, description="Maximum traversal depth (root is 0)")
    include_hidden: bool = Field(default=False, description="Include dot-files and dot-directories")
    file_extensions: list[str] = Field(
        default_factory=list, description="Allowed extensions without the dot; empty means all"
    )
    max_file_size: Optional[int] = Field(default=None, ge=0, description="Per-file size cap in bytes")
    follow_symlinks: bool = Field(default=False, description="Resolve symlinked files")
    exclude_dirs: list[str] = Field(
        default_factory=lambda: sorted(DEFAULT_SKIP_DIRS),
        description="Directory names that are never descended",
    )

    # Resources
    memory_limit: int = Field(default=200 * MIB, gt=0, description="Memory ceiling in bytes")
    chunk_size: int = Field(default=64 * 1024, gt=0, description="Streaming chunk size in bytes")
    file_timeout: float = Field(default=30.0, gt=0, description="Per-file read timeout in seconds")
    scan_timeout: Optional[float] = Field(default=None, gt=0, description="Whole-scan timeout in seconds")
    max_concurrency: int = Field(default=4, ge=1, description="Files processed at the same time")

    # Parser
    ecma_version: int = Field(default=2022, ge=2015, description="Newest ECMAScript syntax accepted")
    source_type: Literal["module", "script"] = Field(default="module")

    @field_validator("file_extensions")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        return [ext.lower().lstrip(".") for ext in value if ext.strip(".")]
