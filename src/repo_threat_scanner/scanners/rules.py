"""Rule table for code-execution patterns.

A rule names the node kind it targets, the callee identifiers that trigger
it and how to describe a match. Rules are plain values: build a tuple of
them and hand it to ``CodeExecutionScanner``.
"""

from dataclasses import dataclass
from typing import Callable, Literal, NamedTuple, Optional

from pydantic import JsonValue

from ..ast_parser import NodeKind, SyntaxNode
from ..models import Severity

CATEGORY = "code_execution"

Dynamism = Literal["none", "first", "any"]


class ArgumentClass(NamedTuple):
    is_dynamic: bool
    risk_level: str


STATIC = ArgumentClass(False, "medium")
DYNAMIC = ArgumentClass(True, "high")


def classify_argument(node: Optional[SyntaxNode]) -> ArgumentClass:
    """Classify one call argument as static or dynamic.

    One level only: a variable, concatenation, call result, property access
    or interpolated template counts as dynamic without tracing where the
    value comes from.
    """
    if node is None:
        return STATIC
    match node.kind:
        case NodeKind.TEMPLATE_LITERAL:
            return DYNAMIC if node.attrs.get("hasSubstitutions") else STATIC
        case (
            NodeKind.IDENTIFIER
            | NodeKind.BINARY_EXPRESSION
            | NodeKind.CALL_EXPRESSION
            | NodeKind.MEMBER_EXPRESSION
        ):
            return DYNAMIC
        case _:
            return STATIC


def assess_injection_risk(node: Optional[SyntaxNode]) -> str:
    """Name the injection pattern of a Function constructor's first argument."""
    if node is None:
        return "unknown_risk"
    match node.kind:
        case NodeKind.LITERAL:
            return "static_string"
        case NodeKind.IDENTIFIER:
            return "variable_based_code"
        case NodeKind.TEMPLATE_LITERAL:
            if node.attrs.get("hasSubstitutions"):
                return "template_literal_with_expressions"
            return "static_string"
        case NodeKind.BINARY_EXPRESSION:
            return "string_concatenation"
        case NodeKind.CALL_EXPRESSION:
            return "function_call_result"
        case NodeKind.MEMBER_EXPRESSION:
            return "object_property_access"
        case _:
            return "unknown_risk"


def extract_code_context(content: str, line: Optional[int]) -> Optional[str]:
    """Numbered excerpt of lines ``line-2`` through ``line+1``, each stripped.

    Returns None when the line is unknown or outside the content.
    """
    if line is None or line < 1:
        return None
    lines = content.splitlines()
    if line > len(lines):
        return None
    start = max(0, line - 3)
    end = min(len(lines), line + 1)
    return "\n".join(f"{start + i + 1}: {text.strip()}" for i, text in enumerate(lines[start:end]))


@dataclass(frozen=True)
class RuleMatch:
    """What a rule saw at one node."""

    node: SyntaxNode
    callee_name: Optional[str]
    arguments: list[SyntaxNode]
    source: Optional[SyntaxNode]
    argument_class: ArgumentClass


DetailBuilder = Callable[[RuleMatch], dict[str, JsonValue]]
ArgumentPredicate = Callable[[list[SyntaxNode]], bool]


@dataclass(frozen=True)
class ScannerRule:
    """One structural pattern.

    ``callee_names`` empty means the node kind alone triggers the rule.
    ``dynamism`` says which arguments feed ``classify_argument``: the first
    one, any of them, or none. Descriptions may use ``{name}`` for the
    matched callee.
    """

    name: str
    subcategory: str
    target: NodeKind
    severity: Severity
    description: str
    details: DetailBuilder
    callee_names: frozenset[str] = frozenset()
    dynamism: Dynamism = "none"
    dynamic_description: Optional[str] = None
    argument_predicate: Optional[ArgumentPredicate] = None
    category: str = CATEGORY

    def describe(self, match: RuleMatch) -> str:
        template = self.description
        if match.argument_class.is_dynamic and self.dynamic_description:
            template = self.dynamic_description
        return template.format(name=match.callee_name or "")


def _first_is_string_literal(arguments: list[SyntaxNode]) -> bool:
    if not arguments:
        return False
    first = arguments[0]
    if first.kind is NodeKind.LITERAL:
        return first.attrs.get("literalType") == "string"
    return first.kind is NodeKind.TEMPLATE_LITERAL and not first.attrs.get("hasSubstitutions")


def _eval_details(match: RuleMatch) -> dict[str, JsonValue]:
    return {
        "nodeType": match.node.type,
        "arguments": len(match.arguments),
        "isDynamic": match.argument_class.is_dynamic,
        "riskLevel": match.argument_class.risk_level,
    }


def _function_constructor_details(match: RuleMatch) -> dict[str, JsonValue]:
    details = _eval_details(match)
    details["injectionRisk"] = assess_injection_risk(match.arguments[0] if match.arguments else None)
    return details


def _dynamic_import_details(match: RuleMatch) -> dict[str, JsonValue]:
    source = match.source
    specifier = None
    if source is not None and source.kind is NodeKind.LITERAL and source.attrs.get("literalType") == "string":
        specifier = source.attrs.get("value")
    return {
        "nodeType": match.node.type,
        "source": specifier,
        "isDynamic": match.argument_class.is_dynamic,
        "riskLevel": match.argument_class.risk_level,
    }


def _timer_details(match: RuleMatch) -> dict[str, JsonValue]:
    return {
        "nodeType": match.node.type,
        "functionName": match.callee_name,
        "argumentType": "string",
    }


def _shell_details(match: RuleMatch) -> dict[str, JsonValue]:
    return {
        "nodeType": match.node.type,
        "functionName": match.callee_name,
        "arguments": len(match.arguments),
    }


EVAL_RULE = ScannerRule(
    name="eval",
    subcategory="eval_usage",
    target=NodeKind.CALL_EXPRESSION,
    callee_names=frozenset({"eval"}),
    severity=Severity.CRITICAL,
    dynamism="first",
    description="eval() function usage detected - potential code injection vulnerability",
    dynamic_description="Dynamic eval() function usage detected - high risk code injection vulnerability",
    details=_eval_details,
)

DYNAMIC_IMPORT_RULE = ScannerRule(
    name="dynamic-import",
    subcategory="dynamic_import",
    target=NodeKind.IMPORT_EXPRESSION,
    severity=Severity.WARNING,
    dynamism="first",
    description="Dynamic import() detected - potential code loading vulnerability",
    details=_dynamic_import_details,
)

FUNCTION_CONSTRUCTOR_RULE = ScannerRule(
    name="function-constructor",
    subcategory="function_constructor",
    target=NodeKind.NEW_EXPRESSION,
    callee_names=frozenset({"Function"}),
    severity=Severity.WARNING,
    dynamism="any",
    description="Function constructor usage detected - potential code injection vulnerability",
    dynamic_description="Dynamic Function constructor usage detected - potential code injection vulnerability",
    details=_function_constructor_details,
)

TIMER_RULE = ScannerRule(
    name="timer-string",
    subcategory="timer_code_injection",
    target=NodeKind.CALL_EXPRESSION,
    callee_names=frozenset({"setTimeout", "setInterval"}),
    severity=Severity.WARNING,
    argument_predicate=_first_is_string_literal,
    description="String argument in {name} detected - potential code injection vulnerability",
    details=_timer_details,
)

SHELL_RULE = ScannerRule(
    name="shell-execution",
    subcategory="shell_execution",
    target=NodeKind.CALL_EXPRESSION,
    callee_names=frozenset({"exec", "spawn", "execSync", "spawnSync"}),
    severity=Severity.CRITICAL,
    description="Shell execution function {name} detected - potential command injection vulnerability",
    details=_shell_details,
)

DEFAULT_RULES: tuple[ScannerRule, ...] = (
    EVAL_RULE,
    DYNAMIC_IMPORT_RULE,
    FUNCTION_CONSTRUCTOR_RULE,
    TIMER_RULE,
    SHELL_RULE,
)
