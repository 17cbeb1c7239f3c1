"""Listing, adding and removing saved query presets."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import TextIO

from rdump.config import Config, global_config_path, load_config, read_config, save_config


class PresetError(Exception):
    """Raised when a preset action cannot be carried out."""


@dataclass(frozen=True)
class ListPresets:
    """List every preset from the global and local configuration."""


@dataclass(frozen=True)
class AddPreset:
    """Add or update a preset in the global configuration."""

    name: str
    query: str


@dataclass(frozen=True)
class RemovePreset:
    """Remove a preset from the global configuration."""

    name: str


PresetAction = ListPresets | AddPreset | RemovePreset


def _require_global_path():
    path = global_config_path()
    if path is None:
        raise PresetError("Could not determine global config path")
    return path


def _list_presets(out: TextIO) -> None:
    presets = load_config().presets
    if not presets:
        out.write("No presets found.\n")
        return
    out.write("Available presets:\n")
    width = max(len(name) for name in presets)
    for name in sorted(presets):
        out.write(f"  {name:<{width}} : {presets[name]}\n")


def _add_preset(out: TextIO, name: str, query: str) -> None:
    path = _require_global_path()
    config = read_config(path) if path.exists() else Config()
    out.write(f"Adding/updating preset '{name}'...\n")
    config.presets[name] = query
    save_config(config)


def _remove_preset(out: TextIO, name: str) -> None:
    path = _require_global_path()
    if not path.exists():
        raise PresetError("Global config file does not exist. No presets to remove.")
    config = read_config(path)
    if name not in config.presets:
        raise PresetError(f"Preset '{name}' not found in global config.")
    out.write(f"Removing preset '{name}'...\n")
    del config.presets[name]
    save_config(config)


def run_preset(action: PresetAction, out: TextIO | None = None) -> None:
    """Carry out a preset action, writing messages to ``out`` (stdout by default)."""
    out = sys.stdout if out is None else out
    match action:
        case ListPresets():
            _list_presets(out)
        case AddPreset(name=name, query=query):
            _add_preset(out, name, query)
        case RemovePreset(name=name):
            _remove_preset(out, name)
        case _:
            raise TypeError(f"unknown preset action: {action!r}")