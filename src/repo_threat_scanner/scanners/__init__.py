"""Structural pattern scanners."""

from .code_execution import CodeExecutionScanner, FileScanOutcome
from .rules import (
    DEFAULT_RULES,
    ArgumentClass,
    ScannerRule,
    assess_injection_risk,
    classify_argument,
    extract_code_context,
)

__all__ = [
    "CodeExecutionScanner",
    "FileScanOutcome",
    "DEFAULT_RULES",
    "ArgumentClass",
    "ScannerRule",
    "assess_injection_risk",
    "classify_argument",
    "extract_code_context",
]
