"""Writing of search results in the supported output formats."""

from __future__ import annotations

import json
import os
import re
import stat
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import TextIO

from pygments import highlight
from pygments.formatters import TerminalTrueColorFormatter
from pygments.lexers import TextLexer, get_lexer_for_filename
from pygments.util import ClassNotFound

from rdump.evaluator import Range
from rdump.options import Format

_THEME = "monokai"
_RESET = "\x1b[0m"
_LINE_WITH_ENDING = re.compile(r"[^\n]*\n|[^\n]+")

MatchingFile = tuple[Path, Sequence[Range]]


def _read_text(path: Path) -> str:
    return Path(path).read_bytes().decode("utf-8")


def _extension(path: Path) -> str:
    return Path(path).suffix[1:]


def _lines(content: str) -> list[str]:
    """Split into lines without their endings; a final newline adds no line."""
    if not content:
        return []
    parts = content.split("\n")
    if parts[-1] == "":
        parts.pop()
    return [part[:-1] if part.endswith("\r") else part for part in parts]


def _lines_with_endings(content: str) -> list[str]:
    return _LINE_WITH_ENDING.findall(content)


def print_output(
    writer: TextIO,
    matching_files: Iterable[MatchingFile],
    format: Format,
    with_line_numbers: bool,
    no_headers: bool,
    use_color: bool,
    context_lines: int,
) -> None:
    """Write the matching files to ``writer`` in the chosen format."""
    files = [(Path(path), list(hunks)) for path, hunks in matching_files]
    match Format(format):
        case Format.FIND:
            _print_find(writer, files)
        case Format.PATHS:
            _print_paths(writer, files)
        case Format.JSON:
            _print_json(writer, files)
        case Format.CAT:
            _print_cat(writer, files, with_line_numbers, use_color)
        case Format.MARKDOWN:
            _print_markdown(writer, files, with_line_numbers, not no_headers)
        case Format.HUNKS:
            _print_hunks(
                writer, files, with_line_numbers, not no_headers, use_color, context_lines
            )


def _write_header(writer: TextIO, index: int, path: Path) -> None:
    if index > 0:
        writer.write("\n---\n\n")
    writer.write(f"File: {path}\n---\n")


def _print_markdown(writer, files, with_line_numbers, with_headers) -> None:
    for index, (path, _) in enumerate(files):
        if with_headers:
            _write_header(writer, index, path)
        content = _read_text(path)
        writer.write(f"```{_extension(path)}\n")
        _print_plain(writer, content, with_line_numbers, 0)
        writer.write("```\n")


def _print_cat(writer, files, with_line_numbers, use_color) -> None:
    for path, _ in files:
        content = _read_text(path)
        _print_styled(writer, content, _extension(path), with_line_numbers, use_color, 0)


def _print_json(writer, files) -> None:
    outputs = []
    for path, _ in files:
        try:
            content = _read_text(path)
        except (OSError, UnicodeDecodeError) as exc:
            exc.add_note(f"Failed to read file for final output: {path}")
            raise
        outputs.append({"path": str(path), "content": content})
    writer.write(json.dumps(outputs, indent=2, ensure_ascii=False))


def _print_paths(writer, files) -> None:
    for path, _ in files:
        writer.write(f"{path}\n")


def _print_find(writer, files) -> None:
    for path, _ in files:
        try:
            info = os.stat(path)
        except OSError as exc:
            exc.add_note(f"Failed to read metadata for {path}")
            raise
        perms = format_mode(stat.S_IMODE(info.st_mode))
        size = format_size(info.st_size)
        modified = datetime.fromtimestamp(info.st_mtime).strftime("%b %d %H:%M")
        writer.write(f"{perms:<12} {size:>8} {modified} {path}\n")


def _print_hunks(writer, files, with_line_numbers, with_headers, use_color, context_lines):
    for index, (path, hunks) in enumerate(files):
        if with_headers:
            _write_header(writer, index, path)
        content = _read_text(path)
        extension = _extension(path)

        if not hunks:
            _print_styled(writer, content, extension, with_line_numbers, use_color, 0)
            continue

        lines = _lines_with_endings(content)
        for position, line_range in enumerate(
            contextual_line_ranges(hunks, lines, context_lines)
        ):
            if position > 0:
                writer.write("...\n")
            hunk_content = "".join(lines[line_range.start : line_range.stop])
            _print_styled(
                writer, hunk_content, extension, with_line_numbers, use_color, line_range.start
            )


def contextual_line_ranges(
    hunks: Sequence[Range], lines: Sequence[str], context_lines: int
) -> list[range]:
    """Return the line ranges covering the hunks plus context, merged where they touch."""
    if not hunks or not lines:
        return []

    ranges = []
    for hunk in hunks:
        start = max(hunk.start_point.row - context_lines, 0)
        end = min(hunk.end_point.row + context_lines, len(lines) - 1)
        if end >= start:
            ranges.append(range(start, end + 1))
    ranges.sort(key=lambda r: r.start)

    merged: list[range] = []
    for current in ranges:
        if merged and current.start <= merged[-1].stop:
            last = merged[-1]
            merged[-1] = range(last.start, max(last.stop, current.stop))
        else:
            merged.append(current)
    return merged


def _print_styled(writer, content, extension, with_line_numbers, use_color, start_line):
    if use_color:
        _print_highlighted(writer, content, extension, with_line_numbers, start_line)
    else:
        _print_plain(writer, content, with_line_numbers, start_line)


def _lexer_for(extension: str):
    if extension:
        try:
            return get_lexer_for_filename(f"file.{extension}", stripnl=False, ensurenl=False)
        except ClassNotFound:
            pass
    return TextLexer(stripnl=False, ensurenl=False)


def _print_highlighted(writer, content, extension, with_line_numbers, start_line) -> None:
    formatter = TerminalTrueColorFormatter(style=_THEME)
    highlighted = highlight(content, _lexer_for(extension), formatter) if content else ""
    for offset, line in enumerate(_lines_with_endings(highlighted)):
        if with_line_numbers:
            writer.write(f"{start_line + offset + 1:>5} | ")
        writer.write(line)
    writer.write(_RESET)


def _print_plain(writer, content, with_line_numbers, start_line) -> None:
    for offset, line in enumerate(_lines(content)):
        if with_line_numbers:
            writer.write(f"{start_line + offset + 1:>5} | {line}\n")
        else:
            writer.write(f"{line}\n")


def format_mode(mode: int) -> str:
    """Render permission bits the way ``ls -l`` does for a regular file."""
    flags = "rwxrwxrwx"
    bits = (0o400, 0o200, 0o100, 0o040, 0o020, 0o010, 0o004, 0o002, 0o001)
    return "-" + "".join(flag if mode & bit else "-" for flag, bit in zip(flags, bits))


def format_size(size: int) -> str:
    """Render a byte count in a short human-readable form."""
    kb = 1024
    mb = kb * 1024
    gb = mb * 1024
    if size >= gb:
        return f"{size / gb:.1f}G"
    if size >= mb:
        return f"{size / mb:.1f}M"
    if size >= kb:
        return f"{size / kb:.1f}K"
    return f"{size}B"