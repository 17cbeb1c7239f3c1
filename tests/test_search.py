import os

import pytest

from rdump.evaluator import MatchResult, Point, PredicateEvaluator, Range
from rdump.options import ColorChoice, Format, SearchArgs
from rdump.parser import PredicateKey, parse_query
from rdump.search import (
    SearchError,
    compose_query,
    get_candidate_files,
    perform_search,
    run_search,
    validate_ast_predicates,
)


class ExtPredicate(PredicateEvaluator):
    def evaluate(self, context, key, value):
        return MatchResult.boolean(context.path.suffix[1:] == value)


class InPredicate(PredicateEvaluator):
    def evaluate(self, context, key, value):
        parent = context.path.parent.relative_to(context.root).as_posix()
        return MatchResult.boolean(parent == value)


class ContainsPredicate(PredicateEvaluator):
    def evaluate(self, context, key, value):
        return MatchResult.boolean(value in context.content())


class CommentPredicate(PredicateEvaluator):
    def evaluate(self, context, key, value):
        hunks = []
        offset = 0
        for row, line in enumerate(context.content().splitlines(keepends=True)):
            if "//" in line and value in line:
                hunks.append(Range(offset, offset + len(line), Point(row, 0), Point(row, 0)))
            offset += len(line)
        return MatchResult.hunks(hunks)


METADATA = {PredicateKey.EXT: ExtPredicate(), PredicateKey.IN: InPredicate()}
REGISTRY = {
    **METADATA,
    PredicateKey.CONTAINS: ContainsPredicate(),
    PredicateKey.COMMENT: CommentPredicate(),
}


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("RDUMP_TEST_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def project(env):
    root = env / "project"
    for sub in ("src", "tests", "benches", "docs"):
        (root / sub).mkdir(parents=True)
    (root / "src/user.rs").write_text("// TODO: Add more fields\nstruct User {}")
    (root / "src/order.rs").write_text("struct Order {}")
    (root / "src/special.txt").write_text("the user's settings\nvalue * 2")
    (root / "tests/user_test.rs").write_text("fn test_user() {}")
    (root / "benches/user.rs").write_text("fn bench_user() {}")
    (root / "docs/api.md").write_text("# API Docs")
    return root


def names(root, **kwargs):
    paths = get_candidate_files(root, **kwargs)
    return sorted(p.relative_to(root).as_posix() for p in paths)


def search(root, query, **kwargs):
    args = SearchArgs(
        query=query,
        root=root,
        format=Format.PATHS,
        no_ignore=True,
        hidden=True,
        color=ColorChoice.NEVER,
        **kwargs,
    )
    results = perform_search(args, REGISTRY, METADATA)
    return sorted(p.relative_to(root).as_posix() for p, _ in results)


# --- compose_query ---------------------------------------------------------


def test_compose_query_without_presets():
    assert compose_query("ext:rs", [], {}) == "ext:rs"


def test_compose_query_with_preset_and_query():
    presets = {"rust": "ext:rs", "docs": "ext:md"}
    assert compose_query("contains:x", ["rust"], presets) == "((ext:rs)) & (contains:x)"


def test_compose_query_presets_only():
    presets = {"rust": "ext:rs", "docs": "ext:md"}
    assert compose_query(None, ["rust", "docs"], presets) == "(ext:rs) & (ext:md)"


def test_compose_query_unknown_preset():
    with pytest.raises(SearchError, match="Preset 'nope' not found"):
        compose_query("ext:rs", ["nope"], {})


def test_compose_query_missing_query():
    with pytest.raises(SearchError, match="No query provided"):
        compose_query(None, [], {})


def test_compose_query_blank_query():
    with pytest.raises(SearchError, match="Empty query."):
        compose_query("   ", [], {})


# --- get_candidate_files ---------------------------------------------------


def test_custom_rdumpignore_file(tmp_path):
    (tmp_path / ".rdumpignore").write_text("*.log\n")
    (tmp_path / "app.js").touch()
    (tmp_path / "app.log").touch()
    assert names(tmp_path) == ["app.js"]


def test_unignore_via_rdumpignore(tmp_path):
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules/some_dep.js").touch()
    (tmp_path / "app.js").touch()
    (tmp_path / ".rdumpignore").write_text("!node_modules/\n")
    assert names(tmp_path) == ["app.js", "node_modules/some_dep.js"]


def test_default_ignores_apply_unless_disabled(tmp_path):
    (tmp_path / "target").mkdir()
    (tmp_path / "target/build_info.txt").touch()
    (tmp_path / "main.pyc").touch()
    (tmp_path / "main.rs").touch()
    assert names(tmp_path) == ["main.rs"]
    assert names(tmp_path, no_ignore=True) == ["main.pyc", "main.rs", "target/build_info.txt"]


def test_rdumpignore_unignore_overrides_default_ignores(tmp_path):
    (tmp_path / "target").mkdir()
    (tmp_path / "target/build_info.txt").touch()
    (tmp_path / ".rdumpignore").write_text("!target/")
    assert names(tmp_path) == ["target/build_info.txt"]


def test_hidden_files(tmp_path):
    (tmp_path / ".secret").touch()
    (tmp_path / "visible.txt").touch()
    assert names(tmp_path) == ["visible.txt"]
    assert names(tmp_path, hidden=True) == [".secret", "visible.txt"]


def test_max_depth(tmp_path):
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub/deep.rs").touch()
    (tmp_path / "top.rs").touch()
    assert names(tmp_path, max_depth=1) == ["top.rs"]
    assert names(tmp_path, max_depth=0) == []
    assert names(tmp_path) == ["sub/deep.rs", "top.rs"]


def test_gitignore_only_inside_repository(tmp_path):
    (tmp_path / ".gitignore").write_text("*.log")
    (tmp_path / "debug.log").touch()
    assert names(tmp_path) == ["debug.log"]
    (tmp_path / ".git").mkdir()
    assert names(tmp_path) == []


def test_rdumpignore_unignore_overrides_gitignore(tmp_path):
    (tmp_path / ".git").mkdir()
    (tmp_path / "main.log").write_text("main log")
    (tmp_path / "debug.log").write_text("debug log")
    (tmp_path / ".gitignore").write_text("*.log")
    (tmp_path / ".rdumpignore").write_text("!main.log")
    assert names(tmp_path) == ["main.log"]


def test_anchored_and_globstar_patterns(tmp_path):
    for rel in ("sub/a.txt", "other/sub/a.txt", "x/gen/b.txt", "gen/c.txt", "keep.txt"):
        (tmp_path / rel).parent.mkdir(parents=True, exist_ok=True)
        (tmp_path / rel).touch()
    (tmp_path / ".rdumpignore").write_text("sub/*.txt\n**/gen/*.txt\n")
    assert names(tmp_path) == ["keep.txt", "other/sub/a.txt"]


def test_nested_rdumpignore_applies_to_its_directory(tmp_path):
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub/.rdumpignore").write_text("*.md\n")
    (tmp_path / "sub/notes.md").touch()
    (tmp_path / "readme.md").touch()
    assert names(tmp_path) == ["readme.md"]


def test_symlinks_are_not_followed(tmp_path):
    target = tmp_path / "target.txt"
    target.write_text("content")
    os.symlink(target, tmp_path / "link.txt")
    assert names(tmp_path) == ["target.txt"]


def test_missing_root_is_an_error(tmp_path):
    with pytest.raises(SearchError, match="does not exist or is not accessible"):
        get_candidate_files(tmp_path / "missing")


# --- validate_ast_predicates -----------------------------------------------


def test_validate_unknown_predicate():
    with pytest.raises(SearchError, match="Unknown predicate: 'foo'"):
        validate_ast_predicates(parse_query("ext:rs & !foo:bar"), REGISTRY)


def test_validate_known_key_missing_from_registry():
    with pytest.raises(SearchError, match="Unknown predicate: 'func'"):
        validate_ast_predicates(parse_query("ext:rs | func:main"), REGISTRY)


# --- perform_search --------------------------------------------------------


def test_query_with_negated_group(project):
    results = search(project, "ext:rs & !(in:tests | in:benches)")
    assert results == ["src/order.rs", "src/user.rs"]


def test_query_with_literal_glob_character(project):
    assert search(project, "contains:'value * 2'") == ["src/special.txt"]


def test_query_with_escaped_quote(project):
    assert search(project, "contains:\"user's settings\"") == ["src/special.txt"]


def test_metadata_and_content_combined(project):
    assert search(project, "in:src & contains:struct") == ["src/order.rs", "src/user.rs"]
    assert search(project, "in:docs & contains:struct") == []


def test_hunk_results_are_returned(project):
    args = SearchArgs(query="comment:TODO", root=project, no_ignore=True, hidden=True)
    results = perform_search(args, REGISTRY, METADATA)
    assert [p.relative_to(project).as_posix() for p, _ in results] == ["src/user.rs"]
    hunks = results[0][1]
    assert len(hunks) == 1
    assert hunks[0].start_point.row == 0
    assert hunks[0].start_byte == 0


def test_search_uses_presets(project):
    config_dir = project.parent / "config" / "rdump"
    config_dir.mkdir(parents=True)
    (config_dir / "config.toml").write_text('[presets]\nrust = "ext:rs"\n')
    assert search(project, None, preset=["rust"]) == [
        "benches/user.rs",
        "src/order.rs",
        "src/user.rs",
        "tests/user_test.rs",
    ]
    assert search(project, "in:src", preset=["rust"]) == ["src/order.rs", "src/user.rs"]


def test_search_rejects_unknown_predicate(project):
    with pytest.raises(SearchError, match="Unknown predicate: 'bogus'"):
        search(project, "bogus:x")


def test_search_reports_unreadable_file(env):
    root = env / "data"
    root.mkdir()
    (root / "invalid.bin").write_bytes(bytes([0x41, 0x42, 0xC3, 0x28, 0x43, 0x44]))
    with pytest.raises(SearchError, match="Error evaluating file"):
        search(root, "contains:any")


# --- run_search ------------------------------------------------------------


def _rust_project(env):
    root = env / "rust"
    root.mkdir()
    (root / "test.rs").write_text("fn main() {}\n")
    return root


def test_output_to_file_disables_color(env):
    root = _rust_project(env)
    output = env / "dump.txt"
    args = SearchArgs(query="ext:rs", root=root, output=output, context=0)
    run_search(args, REGISTRY, METADATA)
    text = output.read_text()
    assert "fn main() {}" in text
    assert "\x1b" not in text


def test_output_to_file_with_color_never(env):
    root = _rust_project(env)
    output = env / "dump.txt"
    args = SearchArgs(query="ext:rs", root=root, output=output, color=ColorChoice.NEVER)
    run_search(args, REGISTRY, METADATA)
    assert "\x1b" not in output.read_text()


def test_output_to_file_with_color_always(env):
    root = _rust_project(env)
    output = env / "dump.txt"
    args = SearchArgs(
        query="ext:rs", root=root, output=output, color=ColorChoice.ALWAYS, format=Format.CAT
    )
    run_search(args, REGISTRY, METADATA)
    assert "\x1b" in output.read_text()


def test_no_headers_switches_to_cat(env):
    root = _rust_project(env)
    output = env / "dump.txt"
    args = SearchArgs(query="ext:rs", root=root, output=output, no_headers=True)
    run_search(args, REGISTRY, METADATA)
    assert output.read_text() == "fn main() {}\n"


def test_find_flag_lists_metadata(env):
    root = _rust_project(env)
    output = env / "dump.txt"
    args = SearchArgs(query="ext:rs", root=root, output=output, find=True)
    run_search(args, REGISTRY, METADATA)
    text = output.read_text()
    assert text.startswith("-")
    assert str(root / "test.rs") in text
    assert "File:" not in text


def test_run_search_writes_to_stdout(env, capsys):
    root = _rust_project(env)
    args = SearchArgs(query="ext:rs", root=root, format=Format.PATHS, color=ColorChoice.NEVER)
    run_search(args, REGISTRY, METADATA)
    assert capsys.readouterr().out == f"{root / 'test.rs'}\n"