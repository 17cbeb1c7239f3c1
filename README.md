# rdump

rdump is a library for finding files under a directory with a small,
expressive query language and writing out what it found: the matching
code blocks, whole files, plain paths, JSON, Markdown, or an `ls`-like
listing with permissions, sizes and modification times.

## The query language

A query is built from `key:value` predicates joined by logical
operators:

| Operator | Symbol | Keyword |
|----------|--------|---------|
| and      | `&`    | `and`   |
| or       | `\|`   | `or`    |
| not      | `!`    | `not`   |

Keywords are matched without regard to case (`AND`, `Or`, ...). `and`
binds tighter than `or`; both associate to the left. Parentheses group
sub-expressions. Values that contain spaces or operator characters are
quoted with single or double quotes, and inside a quoted value a
backslash escapes the next character:

```
ext:rs & (name:"foo" | name:"bar") & !path:tests
contains:'fn main' or matches:"(hello|world)"
contains:"user's settings"
in:**/shared/*/use-boolean and ext:ts
```

Two predicates side by side with no operator between them, a query that
ends with an operator, an unclosed parenthesis or a predicate without a
value are rejected with `rdump.parser.QuerySyntaxError` (a
`ValueError`). An empty or blank query is rejected with the message
`Query cannot be empty.`

## Parsing queries

```python
from rdump.parser import parse_query, unescape_value

ast = parse_query("ext:rs & !path:tests")
print(ast)

print(unescape_value('"hello \\"world\\""'))   # hello "world"
```

`parse_query` returns a tree of `Predicate`, `LogicalOp` and `Not`
nodes. `PredicateKey` lists the known keys: the metadata keys `ext`,
`name`, `path`, `in`, `size` and `modified`, the content keys
`contains` and `matches`, code-aware keys such as `def`, `func`,
`import`, `call`, `class`, `struct`, `enum`, `interface`, `trait`,
`type`, `impl`, `macro`, `comment` and `str`, and `component`,
`element`, `hook`, `customhook` and `prop`. Any other key still parses
and is kept as a plain string. `parse_key` turns a key name into a
`PredicateKey` (or returns the name itself when it is unknown) and
`key_name` turns a key back into its name.

## Evaluating queries

Predicates are evaluated by subclasses of
`rdump.evaluator.PredicateEvaluator`, whose `evaluate(context, key,
value)` returns a `MatchResult`. A registry is a mapping from keys to
evaluators, and an `Evaluator` walks the query tree over a
`FileContext`, which reads a file's content as UTF-8 on first use and
caches it.

A result is either a whole-file boolean (`MatchResult.boolean`) or a
set of *hunks* (`MatchResult.hunks`): `Range` values, with byte offsets
and `Point` row/column positions, marking the blocks that matched.
`combine_with` joins two results:

- `and` is a non-match unless both sides match; hunks on both sides are
  merged, hunks beside a whole-file match are kept;
- `or` is a whole-file match if either side is one; otherwise hunks
  from both sides are merged;
- merged hunks are sorted by start byte and duplicates dropped.

`and` stops after a non-matching left side, and `or` stops after a
whole-file match. Predicates missing from the registry pass, and so
does a `not` applied directly to such a predicate, so a cheap registry
can pre-filter files before a full registry does the expensive work.

## Searching

The package does not ship predicate evaluators: a search is given its
registries by the caller.

```python
from rdump.evaluator import MatchResult, PredicateEvaluator
from rdump.options import SearchArgs
from rdump.parser import PredicateKey
from rdump.search import run_search


class Ext(PredicateEvaluator):
    def evaluate(self, context, key, value):
        return MatchResult.boolean(context.path.suffix[1:] == value)


class Contains(PredicateEvaluator):
    def evaluate(self, context, key, value):
        return MatchResult.boolean(value in context.content())


metadata = {PredicateKey.EXT: Ext()}
full = {**metadata, PredicateKey.CONTAINS: Contains()}

args = SearchArgs(query="ext:py & contains:TODO", root="src", format="paths", color="never")
run_search(args, full, metadata)
```

`rdump.search.perform_search(args, registry, metadata_registry)`
composes the query, walks the root directory, checks that every
predicate in the query is in `registry` (raising `SearchError` with
`Unknown predicate: '...'` otherwise), evaluates the candidates with
`metadata_registry` and then the survivors with `registry`, and returns
the matching paths with their hunks, sorted by path. A failure while
evaluating a file is raised as `SearchError`. `run_search` does the
same and then writes the result with `rdump.formatter.print_output` to
standard output or to `args.output`.

`SearchArgs` (in `rdump.options`) holds the query, preset names, root,
output path, line numbers, `no_headers` (which switches the format to
cat), `find` (which switches it to find), the format, `no_ignore`,
`hidden`, `color`, `max_depth` and `context`. Strings given for
`format` and `color` are converted to `Format` and `ColorChoice`;
negative `max_depth` or `context` raise `ValueError`.

### The file walk

`get_candidate_files(root, no_ignore, hidden, max_depth)` returns the
regular files under `root`. It does not follow symbolic links, skips
hidden entries unless `hidden` is set, and stops at `max_depth` (files
directly in `root` are at depth 1). A root that does not exist raises
`SearchError`.

Unless `no_ignore` is set, entries are filtered by gitignore-style
rules, most specific first:

- `.rdumpignore` files in the walked directories and their parents;
- `.ignore` files;
- inside a git repository, `.gitignore`, `.git/info/exclude` and the
  global `git/ignore` in the XDG configuration directory;
- an `ignore` file under `rdump` in the user's configuration directory;
- built-in defaults: `node_modules/`, `target/`, `dist/`, `build/`,
  `.git/`, `.svn/`, `.hg/`, `*.pyc` and `__pycache__/`.

A `!pattern` line brings a path back, so `!target/` in `.rdumpignore`
overrides the default, and `!main.log` overrides a `*.log` in
`.gitignore`.

### Colour

Colour follows `ColorChoice`: `always`, `never`, or `auto` (when
standard output is a terminal). Output written to a file is coloured
only with `always`.

## Output formats

`Format` selects what `print_output(writer, matching_files, format,
with_line_numbers, no_headers, use_color, context_lines)` writes:

- `hunks`: the matching blocks with `context_lines` lines around them,
  separated by `...`, or the whole file for whole-file matches, under
  `File:` headers;
- `markdown`: each file in a fenced code block tagged with its
  extension, under a header; never coloured;
- `json`: a list of objects with `path` and `content`;
- `paths`: one path per line;
- `cat`: the concatenated contents, for piping;
- `find`: permissions, human-readable size, modification time and path.

Line numbers (`    1 | ...`) can be added to the content formats, and
highlighting uses Pygments with 24-bit terminal colours.
`contextual_line_ranges`, `format_size` (for example `512B`, `1.5K`)
and `format_mode` (for example `-rw-r--r--`) are available on their own.

## Presets

Frequently used queries can be saved as named presets. They live in
`rdump/config.toml` under the user's configuration directory, and the
nearest `.rdump.toml` in the current directory or one of its parents
adds to them and overrides them. Setting the `RDUMP_TEST_CONFIG_DIR`
environment variable moves the global file elsewhere.

```python
import sys
from rdump.preset import AddPreset, ListPresets, RemovePreset, run_preset

run_preset(AddPreset(name="rust", query="ext:rs"), sys.stdout)
run_preset(ListPresets(), sys.stdout)
run_preset(RemovePreset(name="rust"), sys.stdout)
```

Adding and removing change only the global file. Removing a preset
that is not there, or removing when the global file does not exist,
raises `PresetError`. `rdump.config` offers `Config`, `load_config`,
`save_config`, `read_config`, `find_local_config` and
`global_config_path`; unreadable or malformed files raise
`ConfigError`.

When a search names presets, `compose_query` joins them with `&`, each
in parentheses, and ands the result with the query itself. Naming an
unknown preset, giving neither a query nor a preset, or a blank query
raises `SearchError`.

## What the package does not do

- It has no command-line program; searches and preset actions are run
  from Python.
- It provides no predicate evaluators: matching by extension, name,
  size, content, regular expression or code structure is up to the
  registries the caller passes in.
- It cannot list or describe supported languages.