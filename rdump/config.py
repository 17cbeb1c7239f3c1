"""Loading and saving of preset configuration.

Presets come from a global ``rdump/config.toml`` in the user's
configuration directory, overlaid by the nearest ``.rdump.toml`` found in
the current directory or one of its parents.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs
import tomli_w

CONFIG_DIR_ENV = "RDUMP_TEST_CONFIG_DIR"
LOCAL_CONFIG_NAME = ".rdump.toml"
_GLOBAL_CONFIG_RELATIVE = Path("rdump") / "config.toml"


class ConfigError(Exception):
    """Raised when a configuration file cannot be read, parsed or written."""


@dataclass
class Config:
    """Named query presets."""

    presets: dict[str, str] = field(default_factory=dict)


def global_config_path() -> Path | None:
    """Return the path of the global configuration file.

    The ``RDUMP_TEST_CONFIG_DIR`` environment variable, when set, replaces
    the platform's configuration directory.
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override is not None:
        return Path(override) / _GLOBAL_CONFIG_RELATIVE
    base = platformdirs.user_config_path()
    return base / _GLOBAL_CONFIG_RELATIVE if base else None


def find_local_config(start_dir: Path | str) -> Path | None:
    """Return the nearest ``.rdump.toml`` in ``start_dir`` or its parents."""
    start = Path(start_dir)
    for directory in (start, *start.parents):
        candidate = directory / LOCAL_CONFIG_NAME
        if candidate.exists():
            return candidate
    return None


def read_config(path: Path | str) -> Config:
    """Read a configuration file."""
    path = Path(path)
    try:
        text = path.read_bytes().decode("utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Failed to read config at {str(path)!r}: {exc}") from exc
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid config at {str(path)!r}: {exc}") from exc

    presets = data.get("presets", {})
    if not isinstance(presets, dict):
        raise ConfigError(f"Invalid config at {str(path)!r}: 'presets' must be a table")
    for name, query in presets.items():
        if not isinstance(query, str):
            raise ConfigError(
                f"Invalid config at {str(path)!r}: preset {name!r} must be a string"
            )
    return Config(presets=dict(presets))


def load_config() -> Config:
    """Load the global configuration overlaid by the nearest local one."""
    final = Config()

    global_path = global_config_path()
    if global_path is not None and global_path.exists():
        final.presets.update(read_config(global_path).presets)

    local_path = find_local_config(Path.cwd())
    if local_path is not None:
        final.presets.update(read_config(local_path).presets)

    return final


def save_config(config: Config) -> Path:
    """Write ``config`` to the global configuration file and return its path."""
    path = global_config_path()
    if path is None:
        raise ConfigError("Could not determine global config path")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigError(
            f"Failed to create config directory at {str(path.parent)!r}: {exc}"
        ) from exc

    text = tomli_w.dumps({"presets": dict(config.presets)})
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to write global config to {str(path)!r}: {exc}") from exc

    print(f"Successfully saved config to {str(path)!r}")
    return path