"""Detect code-execution patterns in parsed TypeScript/JavaScript."""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..ast_parser import (
    NodeKind,
    ParserOptions,
    SyntaxNode,
    node_field,
    node_field_list,
    parse_ast,
)
from ..file_processing import ContentUnit
from ..models import Finding
from .rules import (
    CATEGORY,
    DEFAULT_RULES,
    STATIC,
    ArgumentClass,
    RuleMatch,
    ScannerRule,
    classify_argument,
    extract_code_context,
)

logger = logging.getLogger(__name__)


@dataclass
class FileScanOutcome:
    """Result of scanning one file. ``error`` is set when it could not be parsed."""

    file: str
    findings: list[Finding] = field(default_factory=list)
    error: Optional[str] = None
    parsed: bool = False


class CodeExecutionScanner:
    """Matches a rule table against the node arena of each file.

    Findings come out in node order, and for a single node in rule-table
    order. A rule that raises on one node is logged and skipped; the rest
    of the file is still scanned.
    """

    name = "code-execution"
    category = CATEGORY

    def __init__(
        self,
        rules: Iterable[ScannerRule] = DEFAULT_RULES,
        parser_options: ParserOptions | None = None,
    ):
        self.rules = tuple(rules)
        self.parser_options = parser_options or ParserOptions()
        self._rules_by_kind: dict[NodeKind, list[ScannerRule]] = {}
        for rule in self.rules:
            self._rules_by_kind.setdefault(rule.target, []).append(rule)

    def scan_nodes(self, nodes: tuple[SyntaxNode, ...], file_path: str, content: str) -> list[Finding]:
        """Apply every rule to every node of one parsed file.

        Args:
            nodes: Flattened node arena from ``parse_ast``.
            file_path: Path reported on each finding.
            content: Source text, used for code excerpts.

        Returns:
            Findings in source order.
        """
        findings: list[Finding] = []
        for node in nodes:
            for rule in self._rules_by_kind.get(node.kind, ()):
                try:
                    finding = self._apply(rule, node, nodes, file_path, content)
                except Exception as e:
                    logger.warning(f"Rule {rule.name} failed on {file_path}:{node.line}: {e}")
                    continue
                if finding is not None:
                    findings.append(finding)
        return findings

    def _apply(
        self,
        rule: ScannerRule,
        node: SyntaxNode,
        nodes: tuple[SyntaxNode, ...],
        file_path: str,
        content: str,
    ) -> Optional[Finding]:
        callee_name = None
        callee = node_field(nodes, node, "callee")
        if callee is not None and callee.kind is NodeKind.IDENTIFIER:
            callee_name = callee.attrs.get("name")

        if rule.callee_names and callee_name not in rule.callee_names:
            return None

        arguments = node_field_list(nodes, node, "arguments")
        if rule.argument_predicate is not None and not rule.argument_predicate(arguments):
            return None

        source = node_field(nodes, node, "source")
        match = RuleMatch(
            node=node,
            callee_name=callee_name,
            arguments=arguments,
            source=source,
            argument_class=self._classify(rule, arguments),
        )
        return Finding(
            category=rule.category,
            subcategory=rule.subcategory,
            severity=rule.severity,
            description=rule.describe(match),
            file=file_path,
            line=node.line,
            code=extract_code_context(content, node.line),
            details=rule.details(match),
        )

    @staticmethod
    def _classify(rule: ScannerRule, arguments: list[SyntaxNode]) -> ArgumentClass:
        match rule.dynamism:
            case "first":
                return classify_argument(arguments[0] if arguments else None)
            case "any":
                classes = [classify_argument(arg) for arg in arguments]
                return next((c for c in classes if c.is_dynamic), STATIC)
            case _:
                return STATIC

    def scan_content(self, content: str, file_path: str) -> FileScanOutcome:
        """Parse one file's text and scan it."""
        result = parse_ast(content, file_path, self.parser_options)
        if not result.success:
            logger.warning(f"Failed to parse {file_path}: {result.error}")
            return FileScanOutcome(file=file_path, error=f"Failed to parse {file_path}: {result.error}")
        return FileScanOutcome(
            file=file_path,
            findings=self.scan_nodes(result.nodes, file_path, content),
            parsed=True,
        )

    def scan_unit(self, unit: ContentUnit) -> FileScanOutcome:
        return self.scan_content(unit.text, unit.record.relative_path)

    def scan(self, units: Iterable[ContentUnit]) -> list[FileScanOutcome]:
        """Scan several files; one bad file never stops the others."""
        return [self.scan_unit(unit) for unit in units]
