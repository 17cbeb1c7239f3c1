"""The search command: collect candidate files, evaluate a query, write results."""

from __future__ import annotations

import os
import re
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

import platformdirs

from rdump.config import load_config
from rdump.evaluator import Evaluator, FileContext, PredicateEvaluator, Range
from rdump.formatter import print_output
from rdump.options import ColorChoice, Format, SearchArgs
from rdump.parser import AstNode, Key, LogicalOp, Not, Predicate, key_name, parse_query

CUSTOM_IGNORE_NAME = ".rdumpignore"

_DEFAULT_IGNORES = """\
# Default rdump ignores
node_modules/
target/
dist/
build/
.git/
.svn/
.hg/
*.pyc
__pycache__/
"""

_CATEGORIES = ("custom", "ignore", "git", "exclude")
_GIT_CATEGORIES = frozenset({"git", "exclude"})


class SearchError(Exception):
    """Raised when a search cannot be carried out."""


def _warn(message: str) -> None:
    print(f"Warning: {message}", file=sys.stderr)


# --- Query composition -----------------------------------------------------


def compose_query(
    query: str | None, preset_names: list[str], presets: Mapping[str, str]
) -> str:
    """Combine the named presets and the query into one query string."""
    final = query
    if preset_names:
        parts = []
        for name in preset_names:
            if name not in presets:
                raise SearchError(f"Preset '{name}' not found")
            parts.append(f"({presets[name]})")
        all_presets = " & ".join(parts)
        final = all_presets if final is None else f"({all_presets}) & ({final})"
    if final is None:
        raise SearchError("No query provided. Please provide a query or use a preset.")
    if not final.strip():
        raise SearchError("Empty query.")
    return final


# --- Ignore rules ----------------------------------------------------------


def _class_to_regex(body: str) -> str:
    if body.startswith("!"):
        body = "^" + body[1:]
    return "[" + body.replace("\\", "\\\\") + "]"


def _glob_to_regex(pattern: str) -> str:
    out: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        at_segment_start = i == 0 or pattern[i - 1] == "/"
        if at_segment_start and pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif at_segment_start and pattern.startswith("**", i) and i + 2 == n:
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        elif pattern[i] == "[":
            j = i + 1
            if j < n and pattern[j] in "!^":
                j += 1
            if j < n and pattern[j] == "]":
                j += 1
            while j < n and pattern[j] != "]":
                j += 1
            if j >= n:
                out.append(re.escape("["))
                i += 1
            else:
                out.append(_class_to_regex(pattern[i + 1 : j]))
                i = j + 1
        elif pattern[i] == "\\" and i + 1 < n:
            out.append(re.escape(pattern[i + 1]))
            i += 2
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return "".join(out)


@dataclass(frozen=True)
class _Rule:
    regex: re.Pattern[str]
    negated: bool
    dir_only: bool
    anchored: bool


def _parse_rule(line: str) -> _Rule | None:
    line = line.rstrip("\r\n")
    if not line or line.startswith("#"):
        return None
    while line.endswith(" ") and not line.endswith("\\ "):
        line = line[:-1]
    negated = False
    if line.startswith("!"):
        negated = True
        line = line[1:]
    elif line.startswith(("\\!", "\\#")):
        line = line[1:]
    dir_only = line.endswith("/")
    if dir_only:
        line = line.rstrip("/")
    anchored = "/" in line
    line = line.lstrip("/")
    if not line:
        return None
    return _Rule(re.compile(_glob_to_regex(line)), negated, dir_only, anchored)


@dataclass
class _IgnoreFile:
    base: Path
    rules: list[_Rule] = field(default_factory=list)

    @classmethod
    def from_text(cls, base: Path, text: str) -> _IgnoreFile:
        rules = [rule for line in text.splitlines() if (rule := _parse_rule(line))]
        return cls(base, rules)

    @classmethod
    def from_path(cls, base: Path, path: Path) -> _IgnoreFile | None:
        try:
            if not path.is_file():
                return None
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            _warn(f"could not read ignore file {path}: {exc}")
            return None
        return cls.from_text(base, text)

    def match(self, path: Path, is_dir: bool) -> bool | None:
        """True if ignored, False if whitelisted, None if no rule applies."""
        try:
            relative = path.relative_to(self.base).as_posix()
        except ValueError:
            relative = path.as_posix()
        for rule in reversed(self.rules):
            if rule.dir_only and not is_dir:
                continue
            target = relative if rule.anchored else path.name
            if rule.regex.fullmatch(target):
                return not rule.negated
        return None


@dataclass
class _Level:
    directory: Path
    in_repo: bool
    files: dict[str, _IgnoreFile | None]


def _load_level(directory: Path, parent_in_repo: bool, enabled: bool) -> _Level:
    in_repo = parent_in_repo or (directory / ".git").exists()
    if not enabled:
        return _Level(directory, in_repo, {})
    files = {
        "custom": _IgnoreFile.from_path(directory, directory / CUSTOM_IGNORE_NAME),
        "ignore": _IgnoreFile.from_path(directory, directory / ".ignore"),
        "git": _IgnoreFile.from_path(directory, directory / ".gitignore"),
        "exclude": _IgnoreFile.from_path(directory, directory / ".git" / "info" / "exclude"),
    }
    return _Level(directory, in_repo, files)


def _global_git_ignore(base: Path) -> _IgnoreFile | None:
    config_home = os.environ.get("XDG_CONFIG_HOME")
    try:
        root = Path(config_home) if config_home else Path.home() / ".config"
    except RuntimeError:
        return None
    return _IgnoreFile.from_path(base, root / "git" / "ignore")


class _Matcher:
    def __init__(self, root: Path, enabled: bool) -> None:
        self.enabled = enabled
        self.explicit: list[_IgnoreFile] = []
        self.global_git: _IgnoreFile | None = None
        if not enabled:
            return
        self.explicit.append(_IgnoreFile.from_text(root, _DEFAULT_IGNORES))
        global_ignore = platformdirs.user_config_path() / "rdump" / "ignore"
        if global_ignore.exists():
            try:
                text = global_ignore.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                _warn(f"could not add global ignore file: {exc}")
            else:
                self.explicit.append(_IgnoreFile.from_text(root, text))
        self.global_git = _global_git_ignore(root)

    def match(self, levels: list[_Level], path: Path, is_dir: bool) -> bool | None:
        if not self.enabled:
            return None
        in_repo = levels[-1].in_repo
        for category in _CATEGORIES:
            if category in _GIT_CATEGORIES and not in_repo:
                continue
            for level in reversed(levels):
                ignore_file = level.files.get(category)
                if ignore_file is not None:
                    verdict = ignore_file.match(path, is_dir)
                    if verdict is not None:
                        return verdict
        if in_repo and self.global_git is not None:
            verdict = self.global_git.match(path, is_dir)
            if verdict is not None:
                return verdict
        for ignore_file in reversed(self.explicit):
            verdict = ignore_file.match(path, is_dir)
            if verdict is not None:
                return verdict
        return None


def get_candidate_files(
    root: Path | str,
    no_ignore: bool = False,
    hidden: bool = False,
    max_depth: int | None = None,
) -> list[Path]:
    """Walk ``root`` and return the regular files that survive the ignore rules.

    Symbolic links are not followed, hidden entries are skipped unless
    ``hidden`` is set, and ``max_depth`` limits how deep the walk goes
    (files directly in ``root`` are at depth 1).
    """
    root = Path(root)
    if not os.path.lexists(root):
        raise SearchError(f"root path '{root}' does not exist or is not accessible.")
    if not root.is_dir():
        return [root]

    enabled = not no_ignore
    absolute_root = Path(os.path.abspath(root))
    matcher = _Matcher(absolute_root, enabled)

    parent_levels: list[_Level] = []
    in_repo = False
    for ancestor in reversed(absolute_root.parents):
        level = _load_level(ancestor, in_repo, enabled)
        in_repo = level.in_repo
        parent_levels.append(level)

    files: list[Path] = []

    def walk(directory: Path, shown: Path, depth: int, levels: list[_Level]) -> None:
        parent_in_repo = levels[-1].in_repo if levels else False
        levels = [*levels, _load_level(directory, parent_in_repo, enabled)]
        if max_depth is not None and depth >= max_depth:
            return
        try:
            entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
        except OSError as exc:
            _warn(f"could not access entry: {exc}")
            return
        for entry in entries:
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
                is_file = entry.is_file(follow_symlinks=False)
            except OSError as exc:
                _warn(f"could not access entry: {exc}")
                continue
            path = directory / entry.name
            verdict = matcher.match(levels, path, is_dir)
            if verdict is True:
                continue
            if verdict is None and not hidden and entry.name.startswith("."):
                continue
            if is_dir:
                walk(path, shown / entry.name, depth + 1, levels)
            elif is_file:
                files.append(shown / entry.name)

    walk(absolute_root, root, 0, parent_levels)
    return files


# --- Evaluation ------------------------------------------------------------


def validate_ast_predicates(node: AstNode, registry: Mapping[Key, PredicateEvaluator]) -> None:
    """Raise ``SearchError`` if the query uses a predicate missing from ``registry``."""
    match node:
        case Predicate(key=key):
            if key not in registry:
                raise SearchError(f"Unknown predicate: '{key_name(key)}'")
        case LogicalOp(left=left, right=right):
            validate_ast_predicates(left, registry)
            validate_ast_predicates(right, registry)
        case Not(node=inner):
            validate_ast_predicates(inner, registry)
        case _:
            raise TypeError(f"unknown query node: {node!r}")


def perform_search(
    args: SearchArgs,
    registry: Mapping[Key, PredicateEvaluator],
    metadata_registry: Mapping[Key, PredicateEvaluator],
) -> list[tuple[Path, list[Range]]]:
    """Return the matching files, sorted by path, with their matching hunks.

    ``metadata_registry`` drives a cheap pre-filtering pass; the files that
    survive it are evaluated with the full ``registry``.
    """
    config = load_config()
    query = compose_query(args.query, args.preset, config.presets)

    candidates = get_candidate_files(args.root, args.no_ignore, args.hidden, args.max_depth)

    ast = parse_query(query)
    validate_ast_predicates(ast, registry)

    pre_filter = Evaluator(ast, metadata_registry)
    pre_filtered = []
    for path in candidates:
        try:
            matched = pre_filter.evaluate(FileContext(path, args.root)).is_match()
        except Exception as exc:
            raise SearchError(f"Error during pre-filter on {path}: {exc}") from exc
        if matched:
            pre_filtered.append(path)

    evaluator = Evaluator(ast, registry)
    matching: list[tuple[Path, list[Range]]] = []
    for path in pre_filtered:
        try:
            result = evaluator.evaluate(FileContext(path, args.root))
        except Exception as exc:
            raise SearchError(f"Error evaluating file {path}: {exc}") from exc
        if result.is_hunks:
            if result.ranges:
                matching.append((path, list(result.ranges)))
        elif result.value:
            matching.append((path, []))

    matching.sort(key=lambda item: item[0])
    return matching


def _use_color(args: SearchArgs) -> bool:
    if args.output is not None:
        return args.color is ColorChoice.ALWAYS
    match args.color:
        case ColorChoice.ALWAYS:
            return True
        case ColorChoice.NEVER:
            return False
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


def run_search(
    args: SearchArgs,
    registry: Mapping[Key, PredicateEvaluator],
    metadata_registry: Mapping[Key, PredicateEvaluator],
) -> None:
    """Run a search and write its results to ``args.output`` or stdout."""
    if args.no_headers:
        args = replace(args, format=Format.CAT)
    if args.find:
        args = replace(args, format=Format.FIND)

    matching = perform_search(args, registry, metadata_registry)
    use_color = _use_color(args)
    context_lines = args.context or 0

    def write(writer) -> None:
        print_output(
            writer,
            matching,
            args.format,
            args.line_numbers,
            args.no_headers,
            use_color,
            context_lines,
        )

    if args.output is not None:
        with open(args.output, "w", encoding="utf-8", newline="") as writer:
            write(writer)
    else:
        write(sys.stdout)