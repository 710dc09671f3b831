"""Curated rule tables and the per-invocation rule cache.

Rule files are maintained by hand next to the site config:

* ``arknights-fixes.json`` – ``{sourceId: targetId}`` hard merges.
* ``arknights-combine.json`` – ``{sourceId: targetId}`` search-index aliases.
* ``arknights-exclude-ids.json`` – optional list of extra excluded base ids.
* ``locale/<locale>/arknights-search-exclude.json`` – ``{name: [charId, ...]}``
  pairs known to be wrong for that language.

A missing file is an empty table. :class:`RuleCache` reads each file at most
once and hands out immutable :class:`RuleTables` snapshots that can be shipped
to worker processes.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from akstory.errors import ConfigError
from akstory.identity import CHAR_PATH_FIXES, EXCLUDE_IDS, SPECIAL_ID_MAPPINGS, IdentityTables
from akstory.name_filter import NameFilterConfig
from akstory.settings import Settings

__all__ = [
    "EXCLUDE_MAPPINGS",
    "ExcludeRules",
    "RuleCache",
    "RuleTables",
    "load_json_rules",
]

logger = logging.getLogger(__name__)

# Character -> speaker names wrongly attached by upstream data, any language.
EXCLUDE_MAPPINGS: dict[str, tuple[str, ...]] = {
    "char_010_chen": ("埃内斯托", "林雨霞"),
    "char_010_chen_summer": ("埃内斯托", "林雨霞"),
    "char_010_chen_1": ("埃内斯托", "林雨霞"),
    "avg_1013_spchen_1": ("埃内斯托", "林雨霞"),
    "avg_npc_003": ("格拉尼",),
    "avg_npc_010": ("格拉尼",),
}


def load_json_rules(path: Path) -> Any:
    """Read a rule file, returning ``{}`` when it does not exist.

    Raises:
        ConfigError: If the file exists but is not valid JSON.
    """

    if not path.exists():
        logger.debug("Rule file %s not found; using empty table", path)
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read rule file {path}: {e}") from e


def _str_map(data: Any, path: Path) -> dict[str, str]:
    if not isinstance(data, dict):
        raise ConfigError(f"Rule file {path} must contain an object")
    bad = sorted(str(k) for k, v in data.items() if not isinstance(v, str))
    if bad:
        raise ConfigError(f"Rule file {path} maps {', '.join(bad)} to a non-string id")
    return {str(k): v for k, v in data.items()}


@dataclass(frozen=True)
class ExcludeRules:
    """Incorrect ``(speaker name, character)`` pairs.

    Attributes:
        by_name: Language table, name -> excluded character ids.
        by_char: Global table, base character id -> excluded names.
    """

    by_name: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    by_char: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: dict(EXCLUDE_MAPPINGS))

    @classmethod
    def from_json(cls, data: Any, path: Path | None = None) -> ExcludeRules:
        if not isinstance(data, dict):
            raise ConfigError(f"Exclude rules {path} must contain an object")
        by_name: dict[str, tuple[str, ...]] = {}
        for name, ids in data.items():
            if isinstance(ids, str):
                ids = [ids]
            if not isinstance(ids, list):
                raise ConfigError(f"Exclude rules {path}: ids for {name!r} must be a list or a string")
            by_name[str(name)] = tuple(str(i) for i in ids)
        return cls(by_name=by_name)

    def excludes(self, char_id: str, name: str) -> bool:
        """Return True if ``name`` must never be attributed to ``char_id``.

        ``char_id`` may be a full variant; both it and its base id are checked.
        """

        if not char_id or not name:
            return False
        base_id = char_id.split("#")[0]
        if name in self.by_char.get(base_id, ()):
            return True
        listed = self.by_name.get(name, ())
        return base_id in listed or char_id in listed


@dataclass(frozen=True)
class RuleTables:
    """Immutable rule snapshot for one language pass."""

    lang_code: str = "zh_CN"
    identity: IdentityTables = field(default_factory=IdentityTables)
    combine: Mapping[str, str] = field(default_factory=dict)
    excludes: ExcludeRules = field(default_factory=ExcludeRules)
    name_filter: NameFilterConfig = field(default_factory=NameFilterConfig)

    @property
    def fixes(self) -> Mapping[str, str]:
        return self.identity.fixes

    def fix(self, char_id: str) -> str:
        return self.identity.fix(char_id)


class RuleCache:
    """Read-through cache of rule files, constructed once per invocation.

    Tests can seed the cache with fixed tables through ``preload`` to avoid
    filesystem access entirely.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._fixes: dict[str, str] | None = None
        self._combine: dict[str, str] | None = None
        self._excluded_ids: frozenset[str] | None = None
        self._excludes: dict[str, ExcludeRules] = {}
        self._tables: dict[str, RuleTables] = {}

    def preload(
        self,
        *,
        fixes: dict[str, str] | None = None,
        combine: dict[str, str] | None = None,
        excluded_ids: set[str] | None = None,
        excludes: dict[str, ExcludeRules] | None = None,
    ) -> None:
        if fixes is not None:
            self._fixes = dict(fixes)
        if combine is not None:
            self._combine = dict(combine)
        if excluded_ids is not None:
            self._excluded_ids = frozenset(excluded_ids)
        if excludes is not None:
            self._excludes.update(excludes)
        self._tables.clear()

    def fixes(self) -> dict[str, str]:
        if self._fixes is None:
            path = self.settings.fixes_path()
            self._fixes = _str_map(load_json_rules(path), path)
        return self._fixes

    def combine(self) -> dict[str, str]:
        if self._combine is None:
            path = self.settings.combine_path()
            self._combine = _str_map(load_json_rules(path), path)
        return self._combine

    def excluded_ids(self) -> frozenset[str]:
        if self._excluded_ids is None:
            path = self.settings.exclude_ids_path()
            data = load_json_rules(path)
            if isinstance(data, dict):
                data = list(data)
            if not isinstance(data, list):
                raise ConfigError(f"Rule file {path} must contain a list of ids")
            self._excluded_ids = EXCLUDE_IDS | frozenset(str(i) for i in data)
        return self._excluded_ids

    def excludes(self, lang_code: str) -> ExcludeRules:
        if lang_code not in self._excludes:
            path = self.settings.search_exclude_path(lang_code)
            self._excludes[lang_code] = ExcludeRules.from_json(load_json_rules(path), path)
        return self._excludes[lang_code]

    def tables(self, lang_code: str) -> RuleTables:
        """Return the rule snapshot for ``lang_code``."""
        if lang_code not in self._tables:
            identity = IdentityTables(
                special_ids=dict(SPECIAL_ID_MAPPINGS),
                fixes={**CHAR_PATH_FIXES, **self.fixes()},
                excluded_ids=self.excluded_ids(),
            )
            self._tables[lang_code] = RuleTables(
                lang_code=lang_code,
                identity=identity,
                combine=dict(self.combine()),
                excludes=self.excludes(lang_code),
                name_filter=self.settings.name_filters,
            )
        return self._tables[lang_code]
