"""Evaluation of a parsed query against a single file."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from rdump.parser import AstNode, Key, LogicalOp, LogicalOperator, Not, Predicate


@dataclass(frozen=True, order=True)
class Point:
    """A zero-based row and column position in a file."""

    row: int = 0
    column: int = 0


@dataclass(frozen=True)
class Range:
    """A span of a file, in bytes and in row/column positions."""

    start_byte: int
    end_byte: int
    start_point: Point = Point()
    end_point: Point = Point()


@dataclass(frozen=True)
class MatchResult:
    """Outcome of evaluating a query on one file.

    A result is either a plain boolean (a whole-file match or non-match)
    or a collection of hunks: the ranges of the file that matched.
    """

    value: bool = False
    ranges: tuple[Range, ...] | None = None

    @classmethod
    def boolean(cls, value: bool) -> MatchResult:
        """A whole-file result."""
        return cls(value=bool(value))

    @classmethod
    def hunks(cls, ranges: Iterable[Range]) -> MatchResult:
        """A result made of the given matching ranges."""
        return cls(ranges=tuple(ranges))

    @property
    def is_hunks(self) -> bool:
        return self.ranges is not None

    def is_match(self) -> bool:
        """True when the result counts as a match."""
        if self.ranges is not None:
            return bool(self.ranges)
        return self.value

    def combine_with(self, other: MatchResult, op: LogicalOperator) -> MatchResult:
        """Combine two results with a logical operator."""
        if op is LogicalOperator.AND:
            return self._combine_and(other)
        return self._combine_or(other)

    def _is_true(self) -> bool:
        return self.ranges is None and self.value

    def _combine_and(self, other: MatchResult) -> MatchResult:
        if not self.is_match() or not other.is_match():
            return MatchResult.boolean(False)
        if self.is_hunks and other.is_hunks:
            return _merge_hunks(self.ranges, other.ranges)
        if self.is_hunks:
            return self
        if other.is_hunks:
            return other
        return MatchResult.boolean(True)

    def _combine_or(self, other: MatchResult) -> MatchResult:
        if self._is_true() or other._is_true():
            return MatchResult.boolean(True)
        if self.is_hunks and other.is_hunks:
            return _merge_hunks(self.ranges, other.ranges)
        if self.is_hunks:
            return self
        if other.is_hunks:
            return other
        return MatchResult.boolean(False)


def _merge_hunks(first: Iterable[Range], second: Iterable[Range]) -> MatchResult:
    ordered = sorted([*first, *second], key=lambda r: r.start_byte)
    merged: list[Range] = []
    for hunk in ordered:
        if not merged or merged[-1] != hunk:
            merged.append(hunk)
    return MatchResult.hunks(merged)


@dataclass
class FileContext:
    """A file under evaluation; its content is read once and cached."""

    path: Path
    root: Path
    _content: str | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self.root = Path(self.root)

    def content(self) -> str:
        """Return the file's text, reading it on first use.

        Raises ``OSError`` if the file cannot be read and
        ``UnicodeDecodeError`` if it is not valid UTF-8.
        """
        if self._content is None:
            self._content = self.path.read_bytes().decode("utf-8")
        return self._content


class PredicateEvaluator(ABC):
    """Evaluates one kind of predicate against a file."""

    @abstractmethod
    def evaluate(self, context: FileContext, key: Key, value: str) -> MatchResult:
        """Return the result of the predicate ``key:value`` for the file."""


class Evaluator:
    """Evaluates a query syntax tree using a registry of predicate evaluators.

    Predicates whose key is absent from the registry pass, so that a
    registry holding only some predicates can be used as a pre-filter.
    """

    def __init__(self, ast: AstNode, registry: Mapping[Key, PredicateEvaluator]) -> None:
        self._ast = ast
        self._registry = registry

    def evaluate(self, context: FileContext) -> MatchResult:
        """Evaluate the query for one file."""
        return self._evaluate_node(self._ast, context)

    def _evaluate_node(self, node: AstNode, context: FileContext) -> MatchResult:
        match node:
            case Predicate(key=key, value=value):
                evaluator = self._registry.get(key)
                if evaluator is None:
                    return MatchResult.boolean(True)
                return evaluator.evaluate(context, key, value)
            case LogicalOp(op=op, left=left, right=right):
                left_result = self._evaluate_node(left, context)
                if op is LogicalOperator.AND and not left_result.is_match():
                    return MatchResult.boolean(False)
                if op is LogicalOperator.OR and left_result._is_true():
                    return left_result
                right_result = self._evaluate_node(right, context)
                return left_result.combine_with(right_result, op)
            case Not(node=inner):
                # An unregistered predicate cannot rule the file out here.
                if isinstance(inner, Predicate) and inner.key not in self._registry:
                    return MatchResult.boolean(True)
                return MatchResult.boolean(not self._evaluate_node(inner, context).is_match())
        raise TypeError(f"unknown query node: {node!r}")