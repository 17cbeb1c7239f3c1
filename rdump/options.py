"""Options that control a search: output format, colour choice and search arguments."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Format(Enum):
    """How matching files are written out."""

    HUNKS = "hunks"
    """Only the code blocks ("hunks") that match a semantic query."""
    MARKDOWN = "markdown"
    """Human-readable markdown with file headers."""
    JSON = "json"
    """Machine-readable JSON."""
    PATHS = "paths"
    """A simple list of matching file paths."""
    CAT = "cat"
    """Raw concatenated file content, for piping."""
    FIND = "find"
    """An ``ls``-like listing with file metadata."""


class ColorChoice(Enum):
    """When to use syntax highlighting."""

    AUTO = "auto"
    ALWAYS = "always"
    NEVER = "never"


def _optional_count(name: str, value: int | None) -> int | None:
    if value is None:
        return None
    count = int(value)
    if count < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return count


@dataclass
class SearchArgs:
    """Arguments of a search run.

    String values for ``format`` and ``color`` are converted to their enums,
    and ``root``/``output`` to paths; unknown names raise ``ValueError``.
    """

    query: str | None = None
    preset: list[str] = field(default_factory=list)
    root: Path = Path(".")
    output: Path | None = None
    line_numbers: bool = False
    no_headers: bool = False
    format: Format = Format.HUNKS
    no_ignore: bool = False
    hidden: bool = False
    color: ColorChoice = ColorChoice.AUTO
    max_depth: int | None = None
    context: int | None = None
    find: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.preset, str):
            self.preset = [self.preset]
        else:
            self.preset = list(self.preset)
        self.root = Path(self.root)
        if self.output is not None:
            self.output = Path(self.output)
        self.format = Format(self.format)
        self.color = ColorChoice(self.color)
        self.max_depth = _optional_count("max_depth", self.max_depth)
        self.context = _optional_count("context", self.context)