"""Config file I/O for JSON, YAML and TOML.

Format is always inferred from the file extension:
  .json        → JSON
  .yaml / .yml → YAML  (pyyaml)
  .toml        → TOML  (read: stdlib tomllib; write: tomli-w)
"""
from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any

import tomli_w
import yaml

_YAML_EXTS = {".yaml", ".yml"}
_TOML_EXTS = {".toml"}

_CONFIG_NAMES = ["config.json", "config.yaml", "config.yml", "config.toml"]


def find_config(directory: Path) -> Path | None:
    """Return the first config file present in *directory*, in ``_CONFIG_NAMES`` order."""
    return next((p for p in (directory / n for n in _CONFIG_NAMES) if p.is_file()), None)


def load_config(path: Path) -> dict[str, Any]:
    ext = path.suffix.lower()
    if ext in _TOML_EXTS:
        with open(path, "rb") as f:
            return tomllib.load(f)
    with open(path, "r", encoding="utf-8") as f:
        if ext in _YAML_EXTS:
            return yaml.safe_load(f) or {}
        return json.load(f)


def save_config(data: dict[str, Any], path: Path) -> None:
    """Write *data* to *path*, creating parent directories as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    ext = path.suffix.lower()
    if ext in _TOML_EXTS:
        with open(path, "wb") as f:
            tomli_w.dump(data, f)
        return
    with open(path, "w", encoding="utf-8") as f:
        if ext in _YAML_EXTS:
            yaml.safe_dump(data, f, allow_unicode=True, sort_keys=False, default_flow_style=False)
        else:
            json.dump(data, f, ensure_ascii=False, indent=2)
