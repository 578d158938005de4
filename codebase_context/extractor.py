"""
Tree-sitter based identifier reference extraction.

Turns one file's source text into :class:`VariableReference` records
classified as declarations, imports, exports or usages.

Supports: JavaScript (incl. JSX), TypeScript, TSX.  Files in any other
language produce no references but are still embedded and stored.

Uses tree-sitter >= 0.22 API with individual language packages.
"""

from __future__ import annotations

import enum
import logging
import os
from typing import Optional

import tree_sitter as ts
import tree_sitter_javascript
import tree_sitter_typescript

from .errors import ParseFailure
from .models import RefType, VariableReference

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Dialect mapping
# ---------------------------------------------------------------------------

EXTENSION_TO_DIALECT: dict[str, str] = {
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",   # the javascript grammar parses JSX natively
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
}

_LANGUAGE_FUNCS = {
    "javascript": tree_sitter_javascript.language,
    "typescript": tree_sitter_typescript.language_typescript,
    "tsx": tree_sitter_typescript.language_tsx,
}


def detect_dialect(file_path: str) -> Optional[str]:
    """
    Return the grammar name for *file_path*, or None if unsupported.

    Parameters
    ----------
    file_path:
        Any file path; only the extension is examined.
    """
    ext = os.path.splitext(file_path)[1].lower()
    return EXTENSION_TO_DIALECT.get(ext)


# Language objects are immutable and safe to share between threads.
_LANG_CACHE: dict[str, ts.Language] = {}


def _get_language(dialect: str) -> ts.Language:
    if dialect not in _LANG_CACHE:
        _LANG_CACHE[dialect] = ts.Language(_LANGUAGE_FUNCS[dialect]())
    return _LANG_CACHE[dialect]


def parse_source(source_bytes: bytes, dialect: str) -> ts.Tree:
    """Parse *source_bytes* with a fresh parser (parsers are not thread-safe)."""
    parser = ts.Parser(_get_language(dialect))
    return parser.parse(source_bytes)


# ---------------------------------------------------------------------------
# Node classification
# ---------------------------------------------------------------------------

class NodeKind(enum.Enum):
    """The syntax node kinds the extractor acts on; everything else is OTHER."""

    IMPORT = "import"
    EXPORT = "export"
    DECLARATION = "declaration"
    IDENTIFIER = "identifier"
    OTHER = "other"


_DECLARATION_TYPES = frozenset({
    "variable_declarator",
    "function_declaration",
    "generator_function_declaration",
    "class_declaration",
    "abstract_class_declaration",
    "interface_declaration",
    "type_alias_declaration",
    "enum_declaration",
})

_IDENTIFIER_TYPES = frozenset({
    "identifier",
    "property_identifier",
    "shorthand_property_identifier",
    "shorthand_property_identifier_pattern",
    "type_identifier",
    "private_property_identifier",
    "statement_identifier",
})

_FUNCTION_DECLARATIONS = ("function_declaration", "generator_function_declaration")

_VARIABLE_DECLARATIONS = ("lexical_declaration", "variable_declaration")


def classify(node: ts.Node) -> NodeKind:
    """Map a tree-sitter node onto the closed set of kinds the extractor visits."""
    node_type = node.type
    if node_type == "import_statement":
        return NodeKind.IMPORT
    if node_type == "export_statement":
        return NodeKind.EXPORT
    if node_type in _DECLARATION_TYPES:
        return NodeKind.DECLARATION
    if node_type in _IDENTIFIER_TYPES:
        return NodeKind.IDENTIFIER
    return NodeKind.OTHER


# ---------------------------------------------------------------------------
# Node text helpers
# ---------------------------------------------------------------------------

def _text(node: Optional[ts.Node]) -> str:
    """Decode a tree-sitter Node's text as UTF-8."""
    if node is None:
        return ""
    return node.text.decode("utf-8", errors="replace") if node.text else ""


def _line(node: ts.Node) -> int:
    return node.start_point[0] + 1


def _key(node: ts.Node) -> tuple[int, int, str]:
    return (node.start_byte, node.end_byte, node.type)


def _string_value(node: Optional[ts.Node]) -> Optional[str]:
    """Return the unquoted value of a string literal node."""
    if node is None or node.type != "string":
        return None
    return _text(node)[1:-1]


def _binding_names(pattern: Optional[ts.Node]) -> list[ts.Node]:
    """
    Return the identifier nodes bound by a declarator name.

    Handles plain identifiers as well as object and array destructuring.
    Default values (``{a = b}``) and property keys (``{key: a}``) are not
    bindings and are skipped.
    """
    if pattern is None:
        return []
    found: list[ts.Node] = []
    stack = [pattern]
    while stack:
        node = stack.pop()
        if node.type in ("identifier", "shorthand_property_identifier_pattern"):
            found.append(node)
        elif node.type in ("assignment_pattern", "object_assignment_pattern"):
            left = node.child_by_field_name("left")
            if left is not None:
                stack.append(left)
        elif node.type == "pair_pattern":
            value = node.child_by_field_name("value")
            if value is not None:
                stack.append(value)
        else:
            stack.extend(reversed(node.named_children))
    return found


def _parameter_names(parameters: Optional[ts.Node]) -> list[ts.Node]:
    """Return the identifier nodes bound by a ``formal_parameters`` list."""
    if parameters is None:
        return []
    found: list[ts.Node] = []
    for param in parameters.named_children:
        # TypeScript wraps each parameter together with its type annotation.
        if param.type in ("required_parameter", "optional_parameter"):
            param = param.child_by_field_name("pattern")
        found.extend(_binding_names(param))
    return found


def _require_source(declarator: ts.Node) -> Optional[str]:
    """Return the module specifier of ``const x = require("y")``, if any."""
    value = declarator.child_by_field_name("value")
    if value is None or value.type != "call_expression":
        return None
    func = value.child_by_field_name("function")
    if func is None or func.type != "identifier" or _text(func) != "require":
        return None
    args = value.child_by_field_name("arguments")
    if args is None or not args.named_children:
        return None
    return _string_value(args.named_children[0])


# ---------------------------------------------------------------------------
# Reference collection
# ---------------------------------------------------------------------------

class _ReferenceCollector:
    """Accumulates references while the tree is walked once, top-down."""

    def __init__(self, file_path: str) -> None:
        self.file_path = file_path
        self.refs: list[VariableReference] = []
        self._bound: set[tuple[int, int, str]] = set()

    def _add(
        self,
        name: str,
        line: int,
        ref_type: RefType,
        source: Optional[str] = None,
    ) -> None:
        if not name:
            return
        self.refs.append(VariableReference(
            variable_name=name,
            file_path=self.file_path,
            line_number=line,
            ref_type=ref_type,
            source_path=source,
        ))

    def _bind(
        self,
        node: ts.Node,
        ref_type: RefType,
        source: Optional[str] = None,
    ) -> None:
        """Record *node* as a binding site so it is not counted as a usage."""
        key = _key(node)
        if key in self._bound:
            return
        self._bound.add(key)
        self._add(_text(node), _line(node), ref_type, source)

    def _mark(self, node: Optional[ts.Node]) -> None:
        if node is not None:
            self._bound.add(_key(node))

    # ------------------------------------------------------------------
    # Handlers, one per NodeKind
    # ------------------------------------------------------------------

    def visit_import(self, node: ts.Node) -> None:
        source = _string_value(node.child_by_field_name("source"))
        for child in node.named_children:
            if child.type == "import_clause":
                self._import_clause(child, source)
            elif child.type == "import_require_clause":
                # TypeScript: import x = require("y")
                req_source = _string_value(child.child_by_field_name("source"))
                for sub in child.named_children:
                    if sub.type == "identifier":
                        self._bind(sub, RefType.IMPORT, req_source or source)
                        break

    def _import_clause(self, clause: ts.Node, source: Optional[str]) -> None:
        for child in clause.named_children:
            if child.type == "identifier":
                self._bind(child, RefType.IMPORT, source)
            elif child.type == "namespace_import":
                for sub in child.named_children:
                    if sub.type == "identifier":
                        self._bind(sub, RefType.IMPORT, source)
            elif child.type == "named_imports":
                for specifier in child.named_children:
                    if specifier.type != "import_specifier":
                        continue
                    name = specifier.child_by_field_name("name")
                    alias = specifier.child_by_field_name("alias")
                    if alias is not None:
                        self._mark(name)
                        self._bind(alias, RefType.IMPORT, source)
                    elif name is not None:
                        self._bind(name, RefType.IMPORT, source)

    def visit_export(self, node: ts.Node) -> None:
        declaration = node.child_by_field_name("declaration")
        if declaration is not None:
            if declaration.type in _VARIABLE_DECLARATIONS:
                for declarator in declaration.named_children:
                    if declarator.type != "variable_declarator":
                        continue
                    for name in _binding_names(declarator.child_by_field_name("name")):
                        self._bind(name, RefType.EXPORT)
            else:
                name = declaration.child_by_field_name("name")
                if name is not None:
                    self._bind(name, RefType.EXPORT)

        for child in node.named_children:
            if child.type == "export_clause":
                for specifier in child.named_children:
                    if specifier.type != "export_specifier":
                        continue
                    name = specifier.child_by_field_name("name")
                    alias = specifier.child_by_field_name("alias")
                    if alias is not None:
                        self._mark(name)
                        self._bind(alias, RefType.EXPORT)
                    elif name is not None:
                        self._bind(name, RefType.EXPORT)
            elif child.type == "namespace_export":
                for sub in child.named_children:
                    if sub.type == "identifier":
                        self._bind(sub, RefType.EXPORT)

    def visit_declaration(self, node: ts.Node) -> None:
        if node.type == "variable_declarator":
            names = _binding_names(node.child_by_field_name("name"))
            source = _require_source(node)
            ref_type = RefType.IMPORT if source is not None else RefType.DECLARATION
        else:
            name = node.child_by_field_name("name")
            names = [name] if name is not None else []
            source = None
            ref_type = RefType.DECLARATION
            if node.type in _FUNCTION_DECLARATIONS:
                for param in _parameter_names(node.child_by_field_name("parameters")):
                    self._mark(param)
        for name in names:
            self._bind(name, ref_type, source)

    def visit_identifier(self, node: ts.Node) -> None:
        if _key(node) in self._bound:
            return
        self._add(_text(node), _line(node), RefType.USAGE)


def _walk(root: ts.Node, collector: _ReferenceCollector) -> None:
    """Pre-order traversal with an explicit stack; parents before children."""
    stack = [root]
    while stack:
        node = stack.pop()
        kind = classify(node)
        if kind is NodeKind.IMPORT:
            collector.visit_import(node)
        elif kind is NodeKind.EXPORT:
            collector.visit_export(node)
        elif kind is NodeKind.DECLARATION:
            collector.visit_declaration(node)
        elif kind is NodeKind.IDENTIFIER:
            collector.visit_identifier(node)
        stack.extend(reversed(node.children))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_or_raise(source_text: str, file_path: str) -> list[VariableReference]:
    """
    Extract references from *source_text*, raising on unparsable input.

    Raises
    ------
    ParseFailure
        If the file's dialect cannot be parsed or the tree contains errors.
    """
    if not source_text.strip():
        return []

    dialect = detect_dialect(file_path)
    if dialect is None:
        logger.debug("No reference grammar for %s", file_path)
        return []

    source_bytes = source_text.encode("utf-8", errors="replace")
    try:
        tree = parse_source(source_bytes, dialect)
    except Exception as exc:
        raise ParseFailure(file_path, str(exc)) from exc

    root = tree.root_node
    if root.has_error:
        raise ParseFailure(file_path, f"syntax error in {dialect} source")

    collector = _ReferenceCollector(file_path)
    _walk(root, collector)
    return collector.refs


def extract(source_text: str, file_path: str) -> list[VariableReference]:
    """
    Extract identifier references from one file's source text.

    Never raises: a :class:`ParseFailure` is logged as a warning and an
    empty list is returned so the file can still be embedded and stored.

    Parameters
    ----------
    source_text:
        Full text of the file.
    file_path:
        Path recorded on every reference; its extension selects the grammar.

    Returns
    -------
    list[VariableReference]
        References in source order.
    """
    try:
        refs = extract_or_raise(source_text, file_path)
    except ParseFailure as exc:
        logger.warning("%s", exc)
        return []
    logger.debug("Found %d variable references in %s", len(refs), file_path)
    return refs
