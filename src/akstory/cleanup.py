"""One-off normalization of ids already stored in the data tables.

Older runs stored mixed-case ids and historic aliases. ``cleanup_tables``
lowercases every key, applies the legacy id remaps and the configured fix
table, drops built-in and configured excluded ids and merges records whose
keys collapse together.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from typing import Any

from akstory.identity import CHAR_PATH_FIXES, EXCLUDE_IDS, SPECIAL_ID_MAPPINGS
from akstory.rules import RuleCache
from akstory.settings import Settings
from akstory.storage import DataStore, read_json, write_json

__all__ = ["LEGACY_ID_MAPPINGS", "IdCleaner", "cleanup_tables", "normalize_stored_id"]

logger = logging.getLogger(__name__)

LEGACY_ID_MAPPINGS: dict[str, str] = {
    **SPECIAL_ID_MAPPINGS,
    "$ill_amiya_normal": "char_002_amiya_1",
    "char_2001_aya_rock": "npc_2001_aya_rock",
}

RE_ID_SEPARATORS = re.compile(r"[#$.]")


def _stored_base_id(value: str) -> str:
    parts = RE_ID_SEPARATORS.split(value)
    if parts[0] == "" and value.startswith("$") and len(parts) > 1:
        return "$" + parts[1]
    return parts[0]


def normalize_stored_id(value: str, fixes: Mapping[str, str] | None = None) -> str:
    """Lowercase ``value`` and remap its base id (variant suffixes are kept).

    Legacy remaps are applied first, then ``fixes``.
    """

    if not value:
        return value
    normalized = value.lower()
    for table in (LEGACY_ID_MAPPINGS, fixes or {}):
        base_id = _stored_base_id(normalized)
        target = table.get(base_id)
        if target:
            normalized = target + normalized[len(base_id) :]
    return normalized


def _merge_values(existing: Any, incoming: Any) -> Any:
    """Merge two stored values for the same id: lists union, the first scalar wins."""
    if isinstance(existing, list) and isinstance(incoming, list):
        return list(dict.fromkeys([*existing, *incoming]))
    if isinstance(existing, dict) and isinstance(incoming, dict):
        merged = dict(existing)
        for key, value in incoming.items():
            merged[key] = _merge_values(merged[key], value) if key in merged else value
        return merged
    return existing


class IdCleaner:
    """Normalize and filter the keys of persisted tables."""

    def __init__(self, fixes: Mapping[str, str] | None = None, excluded_ids: frozenset[str] = EXCLUDE_IDS) -> None:
        self.fixes = dict(fixes or {})
        self.excluded_ids = excluded_ids

    @classmethod
    def from_rules(cls, rules: RuleCache) -> IdCleaner:
        return cls(fixes={**CHAR_PATH_FIXES, **rules.fixes()}, excluded_ids=rules.excluded_ids())

    def normalize(self, value: str) -> str:
        return normalize_stored_id(value, self.fixes)

    def is_excluded(self, value: str) -> bool:
        return value in self.excluded_ids or _stored_base_id(value) in self.excluded_ids

    def clean_keyed(self, data: dict[str, Any], sort_lists: bool = False) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for char_id, value in data.items():
            new_id = self.normalize(char_id)
            if self.is_excluded(new_id):
                logger.info("Excluding %s", new_id)
                continue
            if new_id in out:
                logger.info("Merging %s into %s", char_id, new_id)
                value = _merge_values(out[new_id], value)
            if sort_lists and isinstance(value, list):
                value = sorted(value)
            out[new_id] = value
        return out

    def clean_characters(self, data: dict[str, Any]) -> dict[str, Any]:
        out = self.clean_keyed(data)
        for char_id, record in out.items():
            if not isinstance(record, dict):
                continue
            record = dict(record)
            record["charId"] = char_id
            record["validVariants"] = sorted({self.normalize(v) for v in record.get("validVariants") or ()})
            out[char_id] = record
        return out


def cleanup_tables(
    settings: Settings,
    store: DataStore | None = None,
    rules: RuleCache | None = None,
) -> dict[str, int]:
    """Normalize ids in every stored table; returns entry counts per file."""
    store = store or DataStore(settings)
    cleaner = IdCleaner.from_rules(rules or RuleCache(settings))
    counts: dict[str, int] = {}

    jobs: list[tuple[Any, Callable[[dict[str, Any]], dict[str, Any]]]] = [
        (store.characters_path(), cleaner.clean_characters),
        (store.scan_state_path(), cleaner.clean_keyed),
    ]
    for lang_code in settings.languages:
        jobs.append((store.names_path(lang_code), cleaner.clean_keyed))
        jobs.append((store.storys_path(lang_code), lambda d: cleaner.clean_keyed(d, sort_lists=True)))

    for path, clean in jobs:
        if not path.exists():
            continue
        cleaned = clean(read_json(path))
        write_json(path, cleaned)
        counts[str(path)] = len(cleaned)
        logger.info("Normalized %s (%d entries)", path, len(cleaned))
    return counts
