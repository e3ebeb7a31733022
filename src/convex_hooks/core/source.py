"""Lightweight parsed view of Convex source files.

Only the shapes the checks need are extracted: top-level function
definitions built with the Convex constructors, the call sites inside their
handlers, and the tables and indexes declared by ``defineSchema``.
"""

import re
from collections.abc import Iterator
from pathlib import PurePosixPath
from typing import cast

from pydantic import BaseModel, ConfigDict
from tree_sitter import Node
from tree_sitter_language_pack import SupportedLanguage, get_parser

FUNCTION_CONSTRUCTORS = frozenset(
    {
        "query",
        "mutation",
        "action",
        "internalQuery",
        "internalMutation",
        "internalAction",
        "httpAction",
    }
)
QUERY_KINDS = frozenset({"query", "internalQuery"})

_SUFFIX_GRAMMARS = {
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
}

_DECLARATION_TYPES = frozenset({"lexical_declaration", "variable_declaration"})
_FUNCTION_NODE_TYPES = frozenset({"arrow_function", "function_expression", "function", "method_definition"})
_WHITESPACE = re.compile(r"\s+")
_PROMISE_METHODS = frozenset({"then", "catch", "finally"})
_SETTLING_NODES = frozenset({"await_expression", "return_statement"})


class CallSite(BaseModel):
    """A call or ``new`` expression inside a handler.

    The flags describe what happens to the value, looking through parentheses
    and ``.then/.catch/.finally`` chains: awaited, dropped as a statement,
    dropped with ``void``, or stored in a local named ``assigned_to``.
    """

    model_config = ConfigDict(frozen=True)

    callee: str
    line: int
    arguments: tuple[str, ...] = ()
    awaited: bool = False
    discarded: bool = False
    voided: bool = False
    assigned_to: str | None = None
    constructed: bool = False


class FunctionDef(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    kind: str
    exported: bool = True
    line: int
    has_args: bool = False
    has_returns: bool = False
    body: str = ""
    body_line: int = 0
    calls: tuple[CallSite, ...] = ()
    # identifiers appearing under an `await` or a `return` in the handler
    settled_names: frozenset[str] = frozenset()

    @property
    def is_query(self) -> bool:
        return self.kind in QUERY_KINDS


class IndexDef(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    fields: tuple[str, ...]
    line: int


class TableDef(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    line: int
    indexes: tuple[IndexDef, ...] = ()


class SourceFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    text: str = ""
    functions: tuple[FunctionDef, ...] = ()
    tables: tuple[TableDef, ...] = ()

    def lines(self) -> Iterator[tuple[int, str]]:
        for number, text in enumerate(self.text.splitlines(), start=1):
            yield number, text


def grammar_for(path: str) -> str | None:
    return _SUFFIX_GRAMMARS.get(PurePosixPath(path).suffix)


def parse_source(path: str, text: str) -> SourceFile:
    """Parse *text* into a ``SourceFile``; unsupported suffixes yield no definitions."""
    grammar = grammar_for(path)
    if grammar is None:
        return SourceFile(path=path, text=text)

    source = text.encode("utf-8")
    tree = get_parser(cast(SupportedLanguage, grammar)).parse(source)
    root = tree.root_node
    return SourceFile(
        path=path,
        text=text,
        functions=tuple(_function_defs(root, source)),
        tables=tuple(_table_defs(root, source)),
    )


# ---------------------------------------------------------------------------
# Node helpers
# ---------------------------------------------------------------------------


def _text(node: Node | None, source: bytes) -> str:
    if node is None:
        return ""
    return source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


def _line(node: Node) -> int:
    return node.start_point[0] + 1


def _walk(node: Node) -> Iterator[Node]:
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def _unquote(literal: str) -> str:
    if len(literal) >= 2 and literal[0] == literal[-1] and literal[0] in "\"'`":
        return literal[1:-1]
    return literal


def _argument_nodes(call: Node) -> list[Node]:
    arguments = call.child_by_field_name("arguments")
    if arguments is None:
        return []
    return [child for child in arguments.named_children if child.type != "comment"]


def _value_consumer(node: Node, source: bytes) -> tuple[Node, Node | None]:
    """Return the outermost node carrying *node*'s value and that node's parent."""
    current = node
    while True:
        parent = current.parent
        if parent is None:
            return current, None
        if parent.type == "parenthesized_expression":
            current = parent
            continue
        outer = parent.parent
        if (
            parent.type == "member_expression"
            and parent.child_by_field_name("object") == current
            and _text(parent.child_by_field_name("property"), source) in _PROMISE_METHODS
            and outer is not None
            and outer.type == "call_expression"
            and outer.child_by_field_name("function") == parent
        ):
            current = outer
            continue
        return current, parent


# ---------------------------------------------------------------------------
# Function definitions
# ---------------------------------------------------------------------------


def _function_defs(root: Node, source: bytes) -> Iterator[FunctionDef]:
    for statement in root.named_children:
        exported = statement.type == "export_statement"
        declaration = statement.child_by_field_name("declaration") if exported else statement
        if declaration is None or declaration.type not in _DECLARATION_TYPES:
            continue
        for declarator in declaration.named_children:
            if declarator.type != "variable_declarator":
                continue
            value = declarator.child_by_field_name("value")
            if value is None or value.type != "call_expression":
                continue
            kind = _text(value.child_by_field_name("function"), source)
            if kind not in FUNCTION_CONSTRUCTORS:
                continue
            name = _text(declarator.child_by_field_name("name"), source)
            yield _build_function(name, kind, exported, value, source)


def _build_function(name: str, kind: str, exported: bool, call: Node, source: bytes) -> FunctionDef:
    has_args = False
    has_returns = False
    handler: Node | None = None

    arguments = _argument_nodes(call)
    config = arguments[0] if arguments else None
    if config is not None and config.type == "object":
        for prop in config.named_children:
            if prop.type == "pair":
                key = _unquote(_text(prop.child_by_field_name("key"), source))
                if key == "args":
                    has_args = True
                elif key == "returns":
                    has_returns = True
                elif key == "handler":
                    handler = prop.child_by_field_name("value")
            elif prop.type == "method_definition" and _text(prop.child_by_field_name("name"), source) == "handler":
                handler = prop
    elif config is not None and config.type in _FUNCTION_NODE_TYPES:
        handler = config

    return FunctionDef(
        name=name,
        kind=kind,
        exported=exported,
        line=_line(call),
        has_args=has_args,
        has_returns=has_returns,
        body=_text(handler, source),
        body_line=_line(handler) if handler is not None else _line(call),
        calls=tuple(_call_sites(handler, source)) if handler is not None else (),
        settled_names=_settled_names(handler, source) if handler is not None else frozenset(),
    )


def _call_sites(handler: Node, source: bytes) -> Iterator[CallSite]:
    for node in _walk(handler):
        if node.type == "call_expression":
            callee = node.child_by_field_name("function")
        elif node.type == "new_expression":
            callee = node.child_by_field_name("constructor")
        else:
            continue
        value, parent = _value_consumer(node, source)
        parent_type = parent.type if parent is not None else ""
        yield CallSite(
            callee=_WHITESPACE.sub("", _text(callee, source)),
            line=_line(node),
            arguments=tuple(_text(arg, source) for arg in _argument_nodes(node)),
            awaited=parent_type == "await_expression",
            discarded=parent_type == "expression_statement",
            voided=_is_void(parent, source),
            assigned_to=_assigned_name(value, parent, source),
            constructed=node.type == "new_expression",
        )


def _is_void(parent: Node | None, source: bytes) -> bool:
    return (
        parent is not None
        and parent.type == "unary_expression"
        and _text(parent.child_by_field_name("operator"), source) == "void"
    )


def _assigned_name(value: Node, parent: Node | None, source: bytes) -> str | None:
    if parent is None:
        return None
    if parent.type == "variable_declarator" and parent.child_by_field_name("value") == value:
        target = parent.child_by_field_name("name")
    elif parent.type == "assignment_expression" and parent.child_by_field_name("right") == value:
        target = parent.child_by_field_name("left")
    else:
        return None
    if target is None or target.type != "identifier":
        return None
    return _text(target, source)


def _settled_names(handler: Node, source: bytes) -> frozenset[str]:
    names: set[str] = set()
    for node in _walk(handler):
        if node.type in _SETTLING_NODES:
            names.update(_text(child, source) for child in _walk(node) if child.type == "identifier")
    return frozenset(names)


# ---------------------------------------------------------------------------
# Schema tables and indexes
# ---------------------------------------------------------------------------


def _table_defs(root: Node, source: bytes) -> Iterator[TableDef]:
    for node in _walk(root):
        if node.type != "call_expression" or _text(node.child_by_field_name("function"), source) != "defineSchema":
            continue
        arguments = _argument_nodes(node)
        if not arguments or arguments[0].type != "object":
            continue
        for prop in arguments[0].named_children:
            if prop.type != "pair":
                continue
            value = prop.child_by_field_name("value")
            if value is None:
                continue
            yield TableDef(
                name=_unquote(_text(prop.child_by_field_name("key"), source)),
                line=_line(prop),
                indexes=tuple(_index_defs(value, source)),
            )


def _index_defs(table: Node, source: bytes) -> Iterator[IndexDef]:
    found: list[tuple[int, IndexDef]] = []
    for node in _walk(table):
        if node.type != "call_expression":
            continue
        member = node.child_by_field_name("function")
        if member is None or member.type != "member_expression":
            continue
        prop = member.child_by_field_name("property")
        if prop is None or _text(prop, source) != "index":
            continue
        arguments = _argument_nodes(node)
        if len(arguments) < 2 or arguments[1].type != "array":
            continue
        fields = tuple(_unquote(_text(item, source)) for item in arguments[1].named_children if item.type == "string")
        index = IndexDef(name=_unquote(_text(arguments[0], source)), fields=fields, line=_line(prop))
        found.append((prop.start_byte, index))
    for _, index in sorted(found, key=lambda item: item[0]):
        yield index
