"""Parser for the rdump query language (RQL).

A query is a set of ``key:value`` predicates joined by ``&``/``and``,
``|``/``or``, negated with ``!``/``not`` and grouped with parentheses.
``and`` binds tighter than ``or``; both associate to the left.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum, StrEnum
from functools import reduce


class QuerySyntaxError(ValueError):
    """Raised when a query cannot be parsed."""


class PredicateKey(StrEnum):
    """The predicate keys the query language knows about."""

    EXT = "ext"
    NAME = "name"
    PATH = "path"
    CONTAINS = "contains"
    MATCHES = "matches"
    SIZE = "size"
    MODIFIED = "modified"
    IN = "in"
    DEF = "def"
    FUNC = "func"
    IMPORT = "import"
    CLASS = "class"
    STRUCT = "struct"
    ENUM = "enum"
    INTERFACE = "interface"
    TRAIT = "trait"
    TYPE = "type"
    IMPL = "impl"
    MACRO = "macro"
    COMMENT = "comment"
    STR = "str"
    CALL = "call"
    COMPONENT = "component"
    ELEMENT = "element"
    HOOK = "hook"
    CUSTOM_HOOK = "customhook"
    PROP = "prop"


Key = PredicateKey | str


def parse_key(name: str) -> Key:
    """Return the known key called ``name``, or ``name`` itself when unknown."""
    try:
        return PredicateKey(name)
    except ValueError:
        return name


def key_name(key: Key) -> str:
    """Return the name of a key as written in a query."""
    return key.value if isinstance(key, PredicateKey) else str(key)


class LogicalOperator(Enum):
    AND = "and"
    OR = "or"


@dataclass(frozen=True)
class Predicate:
    key: Key
    value: str


@dataclass(frozen=True)
class LogicalOp:
    op: LogicalOperator
    left: AstNode
    right: AstNode


@dataclass(frozen=True)
class Not:
    node: AstNode


AstNode = Predicate | LogicalOp | Not


# --- Tokenizing -----------------------------------------------------------

_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_BARE_VALUE = re.compile(r"[^\s()&|]+")
_SYMBOLS = {"(": "lparen", ")": "rparen", "&": "and", "|": "or", "!": "not"}
_KEYWORDS = {"and": "and", "or": "or", "not": "not"}
_OPERATORS = {"and": LogicalOperator.AND, "or": LogicalOperator.OR}


@dataclass(frozen=True)
class _Token:
    kind: str
    pos: int
    key: str = ""
    raw: str = ""


def _syntax_error(query: str, pos: int, message: str) -> QuerySyntaxError:
    line = query.count("\n", 0, pos) + 1
    column = pos - (query.rfind("\n", 0, pos) + 1) + 1
    return QuerySyntaxError(f"Invalid query syntax:\n  --> {line}:{column}\n  {message}")


def _scan_value(query: str, start: int) -> tuple[str, int]:
    if start >= len(query) or query[start].isspace():
        raise _syntax_error(query, start, "expected a value after ':'")
    quote = query[start]
    if quote in "\"'":
        i = start + 1
        while i < len(query):
            char = query[i]
            if char == "\\":
                i += 2
                continue
            if char == quote:
                return query[start : i + 1], i + 1
            i += 1
        raise _syntax_error(query, start, "unterminated quoted value")
    match = _BARE_VALUE.match(query, start)
    if match is None:
        raise _syntax_error(query, start, "expected a value after ':'")
    return match.group(), match.end()


def _tokenize(query: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(query):
        char = query[pos]
        if char.isspace():
            pos += 1
            continue
        if char in _SYMBOLS:
            tokens.append(_Token(_SYMBOLS[char], pos))
            pos += 1
            continue
        match = _WORD.match(query, pos)
        if match is None:
            raise _syntax_error(query, pos, "expected a predicate, operator or parenthesis")
        word, end = match.group(), match.end()
        if end < len(query) and query[end] == ":":
            raw, pos_after = _scan_value(query, end + 1)
            tokens.append(_Token("pred", pos, key=word, raw=raw))
            pos = pos_after
            continue
        kind = _KEYWORDS.get(word.lower())
        if kind is None:
            raise _syntax_error(query, end, "expected ':' after predicate key")
        tokens.append(_Token(kind, pos))
        pos = end
    return tokens


# --- Reading the grammar --------------------------------------------------


@dataclass(frozen=True)
class _Term:
    negated: bool
    factor: Predicate | list


class _Reader:
    def __init__(self, query: str, tokens: list[_Token]) -> None:
        self._query = query
        self._tokens = tokens
        self._index = 0

    def _peek(self) -> _Token | None:
        return self._tokens[self._index] if self._index < len(self._tokens) else None

    def _error(self, message: str) -> QuerySyntaxError:
        token = self._peek()
        pos = token.pos if token is not None else len(self._query)
        return _syntax_error(self._query, pos, message)

    def read_query(self) -> list:
        items = self._read_expression()
        if self._peek() is not None:
            raise self._error("unexpected ')'")
        return items

    def _read_expression(self) -> list:
        items: list = []
        while (token := self._peek()) is not None and token.kind != "rparen":
            if token.kind in _OPERATORS:
                if not items or isinstance(items[-1], LogicalOperator):
                    raise self._error("expected a predicate before the operator")
                items.append(_OPERATORS[token.kind])
                self._index += 1
            else:
                items.append(self._read_term())
        if not items:
            raise self._error("expected a predicate")
        return items

    def _read_term(self) -> _Term:
        negated = False
        token = self._peek()
        if token is not None and token.kind == "not":
            negated = True
            self._index += 1
            token = self._peek()
        if token is None:
            raise self._error("expected a predicate or '('")
        if token.kind == "pred":
            self._index += 1
            return _Term(negated, Predicate(parse_key(token.key), unescape_value(token.raw)))
        if token.kind == "lparen":
            self._index += 1
            inner = self._read_expression()
            closing = self._peek()
            if closing is None or closing.kind != "rparen":
                raise self._error("expected ')'")
            self._index += 1
            return _Term(negated, inner)
        raise self._error("expected a predicate or '('")


# --- Building the tree ----------------------------------------------------


def _build_term(term: _Term) -> AstNode:
    node = _build_expression(term.factor) if isinstance(term.factor, list) else term.factor
    return Not(node) if term.negated else node


def _build_expression(items: list) -> AstNode:
    if isinstance(items[-1], LogicalOperator):
        raise QuerySyntaxError("Invalid query syntax: query cannot end with an operator.")
    for previous, current in zip(items, items[1:]):
        if isinstance(previous, _Term) and isinstance(current, _Term):
            raise QuerySyntaxError(
                "Invalid query syntax: missing logical operator (like '&' or '|') between "
                "predicates. Implicit operators are not supported."
            )

    groups: list[list[AstNode]] = [[_build_term(items[0])]]
    for op, term in zip(items[1::2], items[2::2]):
        node = _build_term(term)
        if op is LogicalOperator.AND:
            groups[-1].append(node)
        else:
            groups.append([node])

    conjunctions = [
        reduce(lambda left, right: LogicalOp(LogicalOperator.AND, left, right), group)
        for group in groups
    ]
    return reduce(lambda left, right: LogicalOp(LogicalOperator.OR, left, right), conjunctions)


def parse_query(query: str) -> AstNode:
    """Parse an RQL query into its syntax tree."""
    if not query.strip():
        raise QuerySyntaxError("Query cannot be empty.")
    items = _Reader(query, _tokenize(query)).read_query()
    return _build_expression(items)


def unescape_value(value: str) -> str:
    """Strip surrounding quotes from a value and resolve backslash escapes."""
    if not value or value[0] not in "\"'":
        return value
    inner = value[1:-1]
    result: list[str] = []
    chars = iter(inner)
    for char in chars:
        if char == "\\":
            result.append(next(chars, ""))
        else:
            result.append(char)
    return "".join(result)