"""TypeScript/JavaScript parsing into a flat, positioned node arena.

tree-sitter produces the concrete syntax tree. It is flattened depth-first,
pre-order, into a tuple of ``SyntaxNode``s whose relations (parent,
children, callee, arguments, ...) are integer indices into the same tuple.
The tree itself is dropped once the arena is built.

Node kinds follow ESTree naming (``CallExpression``, ``Literal``, ...) for
the shapes the scanners care about; every other node is ``NodeKind.OTHER``
and keeps the grammar's own type name in ``raw_type``.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Iterable, Literal, Mapping, Optional

import tree_sitter_javascript as tsjs
import tree_sitter_typescript as tsts
from pydantic import JsonValue
from tree_sitter import Language, Node, Parser

from .file_types import extension_of

logger = logging.getLogger(__name__)


class NodeKind(str, Enum):
    """Closed set of node kinds the scanners can match on."""

    PROGRAM = "Program"
    CALL_EXPRESSION = "CallExpression"
    NEW_EXPRESSION = "NewExpression"
    IMPORT_EXPRESSION = "ImportExpression"
    IMPORT_DECLARATION = "ImportDeclaration"
    VARIABLE_DECLARATION = "VariableDeclaration"
    VARIABLE_DECLARATOR = "VariableDeclarator"
    FUNCTION_DECLARATION = "FunctionDeclaration"
    ARROW_FUNCTION_EXPRESSION = "ArrowFunctionExpression"
    IDENTIFIER = "Identifier"
    LITERAL = "Literal"
    TEMPLATE_LITERAL = "TemplateLiteral"
    BINARY_EXPRESSION = "BinaryExpression"
    MEMBER_EXPRESSION = "MemberExpression"
    EXPRESSION_STATEMENT = "ExpressionStatement"
    BLOCK_STATEMENT = "BlockStatement"
    RETURN_STATEMENT = "ReturnStatement"
    JSX_ELEMENT = "JSXElement"
    JSX_EXPRESSION_CONTAINER = "JSXExpressionContainer"
    OTHER = "Other"


_KIND_BY_TYPE: dict[str, NodeKind] = {
    "program": NodeKind.PROGRAM,
    "call_expression": NodeKind.CALL_EXPRESSION,
    "new_expression": NodeKind.NEW_EXPRESSION,
    "import_statement": NodeKind.IMPORT_DECLARATION,
    "variable_declaration": NodeKind.VARIABLE_DECLARATION,
    "lexical_declaration": NodeKind.VARIABLE_DECLARATION,
    "variable_declarator": NodeKind.VARIABLE_DECLARATOR,
    "function_declaration": NodeKind.FUNCTION_DECLARATION,
    "generator_function_declaration": NodeKind.FUNCTION_DECLARATION,
    "arrow_function": NodeKind.ARROW_FUNCTION_EXPRESSION,
    "identifier": NodeKind.IDENTIFIER,
    "property_identifier": NodeKind.IDENTIFIER,
    "shorthand_property_identifier": NodeKind.IDENTIFIER,
    "string": NodeKind.LITERAL,
    "number": NodeKind.LITERAL,
    "true": NodeKind.LITERAL,
    "false": NodeKind.LITERAL,
    "null": NodeKind.LITERAL,
    "regex": NodeKind.LITERAL,
    "template_string": NodeKind.TEMPLATE_LITERAL,
    "binary_expression": NodeKind.BINARY_EXPRESSION,
    "member_expression": NodeKind.MEMBER_EXPRESSION,
    "subscript_expression": NodeKind.MEMBER_EXPRESSION,
    "expression_statement": NodeKind.EXPRESSION_STATEMENT,
    "statement_block": NodeKind.BLOCK_STATEMENT,
    "return_statement": NodeKind.RETURN_STATEMENT,
    "jsx_element": NodeKind.JSX_ELEMENT,
    "jsx_self_closing_element": NodeKind.JSX_ELEMENT,
    "jsx_expression": NodeKind.JSX_EXPRESSION_CONTAINER,
}

_LITERAL_TYPES = {
    "string": "string",
    "number": "number",
    "true": "boolean",
    "false": "boolean",
    "null": "null",
    "regex": "regex",
}

_SKIPPED_TYPES = frozenset({"comment", "html_comment"})

_JSX_TYPES = frozenset({"jsx_element", "jsx_self_closing_element", "jsx_fragment"})

# Syntax newer than ES2015 baseline: node type -> (label, first ECMAScript version)
_ECMA_FEATURES: dict[str, tuple[str, int]] = {
    "await_expression": ("await", 2017),
    "optional_chain": ("optional chaining", 2020),
    "class_static_block": ("class static block", 2022),
    "private_property_identifier": ("private class member", 2022),
}

_ECMA_OPERATORS: dict[str, tuple[str, int]] = {
    "**": ("exponent operator", 2016),
    "??": ("nullish coalescing", 2020),
}


class Dialect(str, Enum):
    TYPESCRIPT = "typescript"
    TSX = "tsx"
    JAVASCRIPT = "javascript"
    JSX = "jsx"


_DIALECT_BY_EXTENSION: dict[str, Dialect] = {
    "ts": Dialect.TYPESCRIPT,
    "mts": Dialect.TYPESCRIPT,
    "cts": Dialect.TYPESCRIPT,
    "tsx": Dialect.TSX,
    "js": Dialect.JAVASCRIPT,
    "mjs": Dialect.JAVASCRIPT,
    "cjs": Dialect.JAVASCRIPT,
    "jsx": Dialect.JSX,
}

SUPPORTED_EXTENSIONS: frozenset[str] = frozenset(_DIALECT_BY_EXTENSION)


class ParseErrorKind(str, Enum):
    INVALID_CONTENT = "invalid_content"
    UNSUPPORTED_FILE_TYPE = "unsupported_file_type"
    SYNTAX_ERROR = "syntax_error"


@dataclass(frozen=True)
class ParserOptions:
    """Parser configuration.

    ``jsx=None`` follows the file extension. ``True`` on a TypeScript file
    switches to the TSX grammar; ``False`` on a JavaScript file rejects JSX.
    """

    ecma_version: int = 2022
    source_type: Literal["module", "script"] = "module"
    jsx: Optional[bool] = None


@dataclass(frozen=True)
class SourceSpan:
    start_line: int
    start_column: int
    end_line: int
    end_column: int
    start_byte: int
    end_byte: int


@dataclass(frozen=True)
class SyntaxNode:
    """One node of the flattened tree. Relations are indices into the arena."""

    index: int
    kind: NodeKind
    raw_type: str
    span: Optional[SourceSpan] = None
    parent: Optional[int] = None
    children: tuple[int, ...] = ()
    fields: Mapping[str, int | tuple[int, ...]] = field(default_factory=dict)
    attrs: Mapping[str, JsonValue] = field(default_factory=dict)

    @property
    def type(self) -> str:
        return self.raw_type if self.kind is NodeKind.OTHER else self.kind.value

    @property
    def line(self) -> Optional[int]:
        return self.span.start_line if self.span else None


@dataclass(frozen=True)
class ParseResult:
    """Outcome of ``parse_ast``. Failures are values, never exceptions."""

    success: bool
    file_path: str
    nodes: tuple[SyntaxNode, ...] = ()
    dialect: Optional[Dialect] = None
    error: Optional[str] = None
    error_kind: Optional[ParseErrorKind] = None


class _SyntaxProblem(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@lru_cache(maxsize=None)
def _language(dialect: Dialect) -> Language:
    if dialect is Dialect.TYPESCRIPT:
        return Language(tsts.language_typescript())
    if dialect is Dialect.TSX:
        return Language(tsts.language_tsx())
    return Language(tsjs.language())


def detect_dialect(file_path: str, jsx: Optional[bool] = None) -> Optional[Dialect]:
    """Pick the grammar for a path, or None when the extension is unsupported."""
    dialect = _DIALECT_BY_EXTENSION.get(extension_of(file_path))
    if dialect is Dialect.TYPESCRIPT and jsx:
        return Dialect.TSX
    return dialect


def is_parseable(file_path: str) -> bool:
    return extension_of(file_path) in SUPPORTED_EXTENSIONS


def _failure(file_path: str, kind: ParseErrorKind, message: str, dialect: Dialect | None = None) -> ParseResult:
    return ParseResult(success=False, file_path=file_path, dialect=dialect, error=message, error_kind=kind)


def parse_ast(content: str, file_path: str, options: ParserOptions | None = None) -> ParseResult:
    """Parse TypeScript/JavaScript source into a flat node arena.

    Args:
        content: Source text.
        file_path: Logical path; only its extension is used, to pick the grammar.
        options: Parser configuration (language version ceiling, module or
            script mode, JSX).

    Returns:
        ParseResult. On failure ``success`` is False and ``error`` explains why.
    """
    options = options or ParserOptions()

    if not isinstance(content, str) or not content or "\x00" in content:
        return _failure(file_path, ParseErrorKind.INVALID_CONTENT, "Invalid content: must be a non-empty text string")

    dialect = detect_dialect(file_path, options.jsx)
    if dialect is None:
        return _failure(file_path, ParseErrorKind.UNSUPPORTED_FILE_TYPE, f"Unsupported file type: {file_path}")

    source = content.encode("utf-8")
    parser = Parser(_language(dialect))
    tree = parser.parse(source)
    root = tree.root_node

    if root.has_error:
        message = _describe_syntax_error(root)
        logger.debug(f"{file_path}: {message}")
        return _failure(file_path, ParseErrorKind.SYNTAX_ERROR, message, dialect)

    allow_jsx = options.jsx is not False and dialect is not Dialect.TYPESCRIPT
    try:
        nodes = _flatten(root, source, options, allow_jsx)
    except _SyntaxProblem as e:
        return _failure(file_path, ParseErrorKind.SYNTAX_ERROR, e.message, dialect)

    return ParseResult(success=True, file_path=file_path, nodes=nodes, dialect=dialect)


def _position(node: Node) -> str:
    row, column = node.start_point
    return f"line {row + 1}, column {column + 1}"


def _describe_syntax_error(root: Node) -> str:
    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_missing:
            return f"Syntax error at {_position(node)}: missing '{node.type}'"
        if node.type == "ERROR":
            return f"Syntax error at {_position(node)}: unexpected token"
        stack.extend(reversed([child for child in node.children if child.has_error or child.is_missing]))
    return "Syntax error"


def _check_syntax(node: Node, parent: Optional[Node], options: ParserOptions, allow_jsx: bool) -> None:
    node_type = node.type
    if node_type in _JSX_TYPES and not allow_jsx:
        raise _SyntaxProblem(f"JSX syntax is not enabled at {_position(node)}")

    if (
        options.source_type == "script"
        and parent is not None
        and parent.type == "program"
        and node_type in ("import_statement", "export_statement")
    ):
        raise _SyntaxProblem(
            f"'import' and 'export' may appear only with sourceType 'module' ({_position(node)})"
        )

    feature = _ECMA_FEATURES.get(node_type)
    if feature is None and node_type == "binary_expression":
        operator = node.child_by_field_name("operator")
        if operator is not None:
            feature = _ECMA_OPERATORS.get(operator.type)
    if feature is not None and feature[1] > options.ecma_version:
        label, version = feature
        raise _SyntaxProblem(
            f"{label} requires ecmaVersion {version} or later "
            f"(configured {options.ecma_version}) at {_position(node)}"
        )


def _visible_children(node: Node) -> list[Node]:
    return [child for child in node.named_children if child.type not in _SKIPPED_TYPES]


def _unwrap_parentheses(node: Optional[Node]) -> Optional[Node]:
    """``((x))`` -> ``x``. The grammar keeps grouping parentheses as nodes."""
    while node is not None and node.type == "parenthesized_expression":
        inner = _visible_children(node)
        if not inner:
            break
        node = inner[0]
    return node


def _flatten(root: Node, source: bytes, options: ParserOptions, allow_jsx: bool) -> tuple[SyntaxNode, ...]:
    # Pass 1: pre-order numbering. Children are pushed in reverse so they pop in source order.
    order: list[tuple[Node, Optional[int]]] = []
    index_by_id: dict[int, int] = {}
    children_of: dict[int, list[int]] = {}
    stack: list[tuple[Node, Optional[int], Optional[Node]]] = [(root, None, None)]

    while stack:
        node, parent_index, parent_node = stack.pop()
        _check_syntax(node, parent_node, options, allow_jsx)
        index = len(order)
        order.append((node, parent_index))
        index_by_id[node.id] = index
        if parent_index is not None:
            children_of.setdefault(parent_index, []).append(index)
        for child in reversed(_visible_children(node)):
            stack.append((child, index, node))

    # Pass 2: resolve relations now that every node has an index.
    builder = _NodeBuilder(source, index_by_id)
    return tuple(
        builder.build(index, node, parent_index, tuple(children_of.get(index, ())))
        for index, (node, parent_index) in enumerate(order)
    )


class _NodeBuilder:
    def __init__(self, source: bytes, index_by_id: dict[int, int]):
        self._source = source
        self._index_by_id = index_by_id

    def _text(self, node: Node) -> str:
        return self._source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")

    def _ref(self, node: Optional[Node]) -> Optional[int]:
        if node is None:
            return None
        return self._index_by_id.get(node.id)

    def _refs(self, nodes: Iterable[Node]) -> tuple[int, ...]:
        return tuple(i for i in (self._ref(n) for n in nodes) if i is not None)

    def _arguments(self, node: Node) -> tuple[int, ...]:
        args = node.child_by_field_name("arguments")
        if args is None:
            return ()
        if args.type == "arguments":
            return self._refs(_unwrap_parentheses(arg) for arg in _visible_children(args))
        # Tagged template: tag`...`
        return self._refs([args])

    def _kind(self, node: Node) -> NodeKind:
        if node.type == "call_expression":
            function = node.child_by_field_name("function")
            if function is not None and function.type == "import":
                return NodeKind.IMPORT_EXPRESSION
        return _KIND_BY_TYPE.get(node.type, NodeKind.OTHER)

    def build(self, index: int, node: Node, parent: Optional[int], children: tuple[int, ...]) -> SyntaxNode:
        kind = self._kind(node)
        start_row, start_col = node.start_point
        end_row, end_col = node.end_point
        span = SourceSpan(
            start_line=start_row + 1,
            start_column=start_col,
            end_line=end_row + 1,
            end_column=end_col,
            start_byte=node.start_byte,
            end_byte=node.end_byte,
        )
        fields, attrs = self._payload(node, kind)
        return SyntaxNode(
            index=index,
            kind=kind,
            raw_type=node.type,
            span=span,
            parent=parent,
            children=children,
            fields={k: v for k, v in fields.items() if v is not None},
            attrs=attrs,
        )

    def _payload(self, node: Node, kind: NodeKind) -> tuple[dict, dict]:
        fields: dict[str, int | tuple[int, ...] | None] = {}
        attrs: dict[str, JsonValue] = {}
        by_field = node.child_by_field_name

        match kind:
            case NodeKind.CALL_EXPRESSION:
                fields["callee"] = self._ref(_unwrap_parentheses(by_field("function")))
                fields["arguments"] = self._arguments(node)
            case NodeKind.IMPORT_EXPRESSION:
                arguments = self._arguments(node)
                fields["arguments"] = arguments
                fields["source"] = arguments[0] if arguments else None
            case NodeKind.NEW_EXPRESSION:
                fields["callee"] = self._ref(_unwrap_parentheses(by_field("constructor")))
                fields["arguments"] = self._arguments(node)
            case NodeKind.VARIABLE_DECLARATION:
                fields["declarations"] = self._refs(
                    c for c in node.named_children if c.type == "variable_declarator"
                )
                kind_node = by_field("kind")
                attrs["kind"] = self._text(kind_node) if kind_node is not None else "var"
            case NodeKind.VARIABLE_DECLARATOR:
                fields["id"] = self._ref(by_field("name"))
                fields["init"] = self._ref(by_field("value"))
            case NodeKind.FUNCTION_DECLARATION:
                fields["id"] = self._ref(by_field("name"))
                params = by_field("parameters")
                fields["params"] = self._refs(_visible_children(params)) if params is not None else ()
                fields["body"] = self._ref(by_field("body"))
            case NodeKind.ARROW_FUNCTION_EXPRESSION:
                params = by_field("parameters")
                if params is not None:
                    fields["params"] = self._refs(_visible_children(params))
                else:
                    fields["params"] = self._refs([p for p in [by_field("parameter")] if p is not None])
                fields["body"] = self._ref(by_field("body"))
            case NodeKind.IMPORT_DECLARATION:
                fields["source"] = self._ref(by_field("source"))
                fields["specifiers"] = self._refs(self._import_specifiers(node))
            case NodeKind.MEMBER_EXPRESSION:
                fields["object"] = self._ref(by_field("object"))
                prop = by_field("property") or by_field("index")
                fields["property"] = self._ref(prop)
                attrs["computed"] = node.type == "subscript_expression"
                if prop is not None and node.type == "member_expression":
                    attrs["propertyName"] = self._text(prop)
            case NodeKind.BINARY_EXPRESSION:
                fields["left"] = self._ref(by_field("left"))
                fields["right"] = self._ref(by_field("right"))
                operator = by_field("operator")
                attrs["operator"] = operator.type if operator is not None else None
            case NodeKind.TEMPLATE_LITERAL:
                substitutions = [c for c in node.named_children if c.type == "template_substitution"]
                attrs["hasSubstitutions"] = bool(substitutions)
                fields["expressions"] = self._refs(
                    expr for sub in substitutions for expr in _visible_children(sub)
                )
            case NodeKind.IDENTIFIER:
                attrs["name"] = self._text(node)
            case NodeKind.LITERAL:
                attrs.update(self._literal(node))
            case NodeKind.RETURN_STATEMENT:
                argument = _visible_children(node)
                fields["argument"] = self._ref(argument[0]) if argument else None
            case NodeKind.EXPRESSION_STATEMENT | NodeKind.JSX_EXPRESSION_CONTAINER:
                expression = _visible_children(node)
                fields["expression"] = self._ref(expression[0]) if expression else None
            case NodeKind.PROGRAM | NodeKind.BLOCK_STATEMENT:
                fields["body"] = self._refs(_visible_children(node))
            case NodeKind.JSX_ELEMENT | NodeKind.OTHER:
                pass

        return fields, attrs

    def _import_specifiers(self, node: Node) -> list[Node]:
        specifiers: list[Node] = []
        for clause in node.named_children:
            if clause.type != "import_clause":
                continue
            for part in clause.named_children:
                if part.type in ("identifier", "namespace_import"):
                    specifiers.append(part)
                elif part.type == "named_imports":
                    specifiers.extend(c for c in part.named_children if c.type == "import_specifier")
        return specifiers

    def _literal(self, node: Node) -> dict[str, JsonValue]:
        literal_type = _LITERAL_TYPES[node.type]
        text = self._text(node)
        value: JsonValue
        if literal_type == "string":
            value = text[1:-1] if len(text) >= 2 else ""
        elif literal_type == "boolean":
            value = node.type == "true"
        elif literal_type == "null":
            value = None
        else:
            value = text
        return {"literalType": literal_type, "value": value, "raw": text}


def get_nodes_by_kind(nodes: Iterable[SyntaxNode], kind: NodeKind) -> list[SyntaxNode]:
    return [node for node in nodes if node.kind is kind]


def contains_kinds(nodes: Iterable[SyntaxNode], kinds: Iterable[NodeKind]) -> bool:
    wanted = set(kinds)
    return any(node.kind in wanted for node in nodes)


def node_field(nodes: tuple[SyntaxNode, ...], node: SyntaxNode, name: str) -> Optional[SyntaxNode]:
    """Follow a single-valued relation such as ``callee``."""
    ref = node.fields.get(name)
    if isinstance(ref, int):
        return nodes[ref]
    return None


def node_field_list(nodes: tuple[SyntaxNode, ...], node: SyntaxNode, name: str) -> list[SyntaxNode]:
    """Follow a list-valued relation such as ``arguments``."""
    ref = node.fields.get(name)
    if isinstance(ref, tuple):
        return [nodes[i] for i in ref]
    if isinstance(ref, int):
        return [nodes[ref]]
    return []
