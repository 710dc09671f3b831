"""JSON persistence for the canonical tables.

Layout under the data root::

    global/arknights/characters.json
    global/arknights/scan_stats.json
    <lang_dir>/arknights/names.json
    <lang_dir>/arknights/storys.json
    <lang_dir>/arknights/search_index.json

Files are UTF-8, two-space indented with sorted keys, and replaced atomically
so readers never observe a half-written table.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from akstory.consolidate import ConsolidatedTables
from akstory.errors import ConfigError
from akstory.settings import Settings
from akstory.variants import dump_scan_state

__all__ = ["DataStore", "dump_json", "read_json", "write_json"]

logger = logging.getLogger(__name__)


def read_json(path: Path) -> dict[str, Any]:
    """Load a JSON object, or ``{}`` if the file does not exist.

    Raises:
        ConfigError: If the file exists but is not a JSON object.
    """

    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object")
    return data


def dump_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True) + "\n"


def write_json(path: Path, data: Any) -> None:
    """Write ``data`` to ``path`` via a temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(dump_json(data), encoding="utf-8")
    os.replace(tmp, path)
    logger.debug("Wrote %s", path)


class DataStore:
    """Load/save the global and per-language tables for one data root."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    # --- paths ---

    def characters_path(self) -> Path:
        return self.settings.global_dir() / "characters.json"

    def scan_state_path(self) -> Path:
        return self.settings.global_dir() / "scan_stats.json"

    def names_path(self, lang_code: str) -> Path:
        return self.settings.language_dir(lang_code) / "names.json"

    def storys_path(self, lang_code: str) -> Path:
        return self.settings.language_dir(lang_code) / "storys.json"

    def search_index_path(self, lang_code: str) -> Path:
        return self.settings.language_dir(lang_code) / "search_index.json"

    # --- loaders ---

    def load_characters(self) -> dict[str, Any]:
        return read_json(self.characters_path())

    def load_scan_state(self) -> dict[str, Any]:
        return read_json(self.scan_state_path())

    def load_names(self, lang_code: str) -> dict[str, Any]:
        return read_json(self.names_path(lang_code))

    def load_storys(self, lang_code: str) -> dict[str, Any]:
        return read_json(self.storys_path(lang_code))

    def load_search_index(self, lang_code: str) -> dict[str, Any]:
        return read_json(self.search_index_path(lang_code))

    # --- writers ---

    def save_pass(self, lang_code: str, tables: ConsolidatedTables, include_global: bool = True) -> None:
        """Persist a consolidated language pass.

        Global tables are written last; ``include_global=False`` leaves
        ``characters.json`` and ``scan_stats.json`` untouched.
        """

        write_json(self.names_path(lang_code), tables.names)
        write_json(self.storys_path(lang_code), tables.storys)
        write_json(self.search_index_path(lang_code), tables.search_index)
        if include_global:
            write_json(self.characters_path(), tables.characters)
            write_json(self.scan_state_path(), dump_scan_state(tables.scan_state))
        logger.info("Saved %s tables under %s", lang_code, self.settings.data_root)
