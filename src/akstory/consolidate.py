"""Merge a language pass into the canonical tables.

The consolidator is the only component that changes persisted state, and it
does so in two phases: :meth:`Consolidator.consolidate` computes the complete
next state in memory from the loaded tables, then the caller writes it. A
failure anywhere before the write leaves every file untouched.

Rules applied, in order:

1. parse results are keyed by their fixed id (``arknights-fixes.json``);
2. the master language creates/updates global character records, other
   languages only create missing ones;
3. names are replaced by the latest parse, story lists are unioned;
4. fixed-away source ids are deleted everywhere;
5. excluded ``(name, character)`` pairs are removed;
6. story paths missing from the upstream allowlist are pruned, then
   characters without stories are dropped from the language tables;
7. the search index is rebuilt from the surviving names.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from typing import Any

from akstory.identity import char_type
from akstory.parser import ParseResult
from akstory.rules import ExcludeRules, RuleTables
from akstory.variants import ScanStats, default_variant, update_scan_stats

__all__ = [
    "ConsolidatedTables",
    "ConsolidationStats",
    "Consolidator",
    "build_search_index",
    "rename_variant",
]

logger = logging.getLogger(__name__)

SearchIndex = dict[str, str | list[str]]


@dataclass
class ConsolidationStats:
    """Counters reported after a pass."""

    new_characters: int = 0
    updated_names: int = 0
    removed_sources: int = 0
    excluded_names: int = 0
    pruned_story_paths: int = 0
    pruned_names: int = 0


@dataclass
class ConsolidatedTables:
    """Complete next state of every table touched by a language pass."""

    characters: dict[str, dict[str, Any]]
    names: dict[str, dict[str, Any]]
    storys: dict[str, list[str]]
    search_index: SearchIndex
    scan_state: dict[str, ScanStats]
    stats: ConsolidationStats = field(default_factory=ConsolidationStats)


def rename_variant(variant: str, source_id: str, target_id: str) -> str:
    """Point a ``source#f$b`` variant at ``target``; other strings pass through."""
    if source_id != target_id and variant.startswith(f"{source_id}#"):
        return target_id + variant[len(source_id) :]
    return variant


def _ordered(*groups: Any) -> list[str]:
    seen: dict[str, None] = {}
    for group in groups:
        for item in group or ():
            seen.setdefault(item, None)
    return list(seen)


def build_search_index(
    names: Mapping[str, Mapping[str, Any]],
    excludes: ExcludeRules,
    combine: Mapping[str, str] | None = None,
) -> SearchIndex:
    """Map every searchable name to its character id(s).

    A name shared by several characters maps to a list of ids in sorted
    character order; excluded pairs never enter the index.
    """

    combine = combine or {}
    index: SearchIndex = {}
    for char_id in sorted(names):
        record = names[char_id]
        candidates = _ordered([record.get("displayName")], record.get("speakerNames"), record.get("searchNames"))
        actual_id = combine.get(char_id, char_id)
        for name in candidates:
            if not isinstance(name, str) or not name.strip():
                continue
            if excludes.excludes(char_id, name):
                continue
            current = index.get(name)
            if current is None:
                index[name] = actual_id
            elif isinstance(current, str):
                if current != actual_id:
                    index[name] = [current, actual_id]
            elif actual_id not in current:
                current.append(actual_id)
    return index


class Consolidator:
    """Fold one language's parse results into the canonical tables."""

    def __init__(self, rules: RuleTables, master_language: str = "zh_CN") -> None:
        self.rules = rules
        self.master_language = master_language

    @property
    def lang_code(self) -> str:
        return self.rules.lang_code

    @property
    def is_master(self) -> bool:
        return self.lang_code == self.master_language

    def _group_by_target(
        self,
        results: Mapping[str, ParseResult],
        variants: Mapping[str, list[str] | None],
    ) -> dict[str, tuple[ParseResult, list[str] | None]]:
        grouped: dict[str, tuple[ParseResult, list[str] | None]] = {}
        for base_id in sorted(results):
            data = results[base_id]
            target = self.rules.fix(base_id)
            renamed = ParseResult(
                char_id=target,
                speaker_names=list(data.speaker_names),
                story_files=list(data.story_files),
                variants=[rename_variant(v, base_id, target) for v in data.variants],
                dialog_count=data.dialog_count,
            )
            verified = variants.get(base_id)
            if verified is not None:
                verified = [rename_variant(v, base_id, target) for v in verified]
            if target in grouped:
                prev, prev_verified = grouped[target]
                prev.merge(renamed)
                if verified is not None:
                    verified = sorted(set(prev_verified or ()) | set(verified))
                else:
                    verified = prev_verified
                grouped[target] = (prev, verified)
            else:
                grouped[target] = (renamed, verified)
        return grouped

    def _update_character(
        self,
        characters: dict[str, dict[str, Any]],
        target: str,
        data: ParseResult,
        verified: list[str] | None,
        stats: ConsolidationStats,
    ) -> None:
        record = characters.get(target)
        if record is None:
            initial = verified or data.variants or [default_variant(target)]
            characters[target] = {
                "charId": target,
                "validVariants": sorted(set(initial)),
                "charType": char_type(target),
                "dialogCount": data.dialog_count if self.is_master else 0,
            }
            stats.new_characters += 1
            return
        if not self.is_master:
            return
        if verified:
            record["validVariants"] = sorted(set(record.get("validVariants") or ()) | set(verified))
        record["dialogCount"] = data.dialog_count

    def consolidate(
        self,
        results: Mapping[str, ParseResult],
        variants: Mapping[str, list[str] | None],
        characters: Mapping[str, Any],
        names: Mapping[str, Any],
        storys: Mapping[str, Any],
        scan_state: Mapping[str, ScanStats],
        valid_story_paths: Collection[str] | None = None,
        scanned: Collection[str] = (),
        now: int | None = None,
    ) -> ConsolidatedTables:
        """Compute the next state of every table without touching disk.

        Args:
            results: Merged parse results keyed by base id.
            variants: Output of :func:`akstory.variants.generate_variants`.
            characters: Current global ``characters.json``.
            names: Current language ``names.json``.
            storys: Current language ``storys.json``.
            scan_state: Current scan statistics.
            valid_story_paths: Upstream allowlist, or ``None`` to skip pruning.
            scanned: Ids already verified this run (scan stats left as is).
            now: Scan timestamp in epoch milliseconds.

        Returns:
            The consolidated tables plus counters.
        """

        out_chars: dict[str, dict[str, Any]] = copy.deepcopy(dict(characters))
        out_names: dict[str, dict[str, Any]] = copy.deepcopy(dict(names))
        out_storys: dict[str, list[str]] = {k: list(v) for k, v in storys.items() if isinstance(v, list)}
        out_scan: dict[str, ScanStats] = {k: copy.copy(v) for k, v in scan_state.items()}
        stats = ConsolidationStats()

        for target, (data, verified) in self._group_by_target(results, variants).items():
            if self.is_master or target not in out_chars:
                self._update_character(out_chars, target, data, verified, stats)
            if self.is_master and target not in scanned:
                update_scan_stats(out_scan, target, len(out_chars[target]["validVariants"]), now)

            if data.speaker_names:
                out_names[target] = {
                    "speakerNames": list(data.speaker_names),
                    "searchNames": list(data.speaker_names),
                    "displayName": data.speaker_names[0],
                }
                stats.updated_names += 1
            elif target not in out_names:
                out_names[target] = {"speakerNames": [], "searchNames": [], "displayName": target}

            if data.story_files:
                out_storys[target] = sorted(set(out_storys.get(target, [])) | set(data.story_files))

        for source, target in sorted(self.rules.fixes.items()):
            if source == target:
                continue
            for table in (out_chars, out_names, out_storys):
                if table.pop(source, None) is not None:
                    stats.removed_sources += 1
                    logger.info("Removed fixed source %s (-> %s)", source, target)

        self._apply_excludes(out_names, stats)

        if valid_story_paths is not None:
            self._prune_stories(out_storys, valid_story_paths, stats)
        else:
            logger.warning("No story allowlist for %s; story paths not pruned", self.lang_code)
        for char_id in list(out_names):
            if not out_storys.get(char_id):
                del out_names[char_id]
                stats.pruned_names += 1

        search_index = build_search_index(out_names, self.rules.excludes, self.rules.combine)

        logger.info(
            "Consolidated %s: global %d (%d new), names %d (%d updated), stories %d, search terms %d",
            self.lang_code,
            len(out_chars),
            stats.new_characters,
            len(out_names),
            stats.updated_names,
            len(out_storys),
            len(search_index),
        )
        return ConsolidatedTables(out_chars, out_names, out_storys, search_index, out_scan, stats)

    def _apply_excludes(self, names: dict[str, dict[str, Any]], stats: ConsolidationStats) -> None:
        excludes = self.rules.excludes
        for char_id, record in names.items():
            speaker_names = list(record.get("speakerNames") or [])
            kept = [n for n in speaker_names if not excludes.excludes(char_id, n)]
            if len(kept) == len(speaker_names):
                continue
            stats.excluded_names += len(speaker_names) - len(kept)
            record["speakerNames"] = kept
            record["searchNames"] = list(kept)
            if excludes.excludes(char_id, record.get("displayName") or ""):
                record["displayName"] = kept[0] if kept else char_id
        if stats.excluded_names:
            logger.info("Cleaned %d speakerNames entries via exclude rules", stats.excluded_names)

    def _prune_stories(
        self, storys: dict[str, list[str]], valid: Collection[str], stats: ConsolidationStats
    ) -> None:
        for char_id in list(storys):
            paths = storys[char_id]
            kept = [p for p in paths if p in valid or p.removesuffix(".txt") in valid]
            stats.pruned_story_paths += len(paths) - len(kept)
            if kept:
                storys[char_id] = kept
            else:
                del storys[char_id]
        if stats.pruned_story_paths:
            logger.info("Removed %d obsolete story paths", stats.pruned_story_paths)

    def refresh_names(
        self,
        results: Mapping[str, ParseResult],
        characters: Mapping[str, Any],
        names: Mapping[str, Any],
        storys: Mapping[str, Any],
    ) -> ConsolidatedTables:
        """Recompute names, story lists and search index for known characters only.

        Characters absent from ``characters`` are ignored and the global tables
        are returned unchanged; existing names of characters not seen in this
        parse are kept.
        """

        known = set(characters)
        out_names: dict[str, dict[str, Any]] = {k: copy.deepcopy(v) for k, v in names.items() if k in known}
        out_storys: dict[str, list[str]] = {k: list(v) for k, v in storys.items() if isinstance(v, list)}
        stats = ConsolidationStats()

        for target, (data, _verified) in self._group_by_target(results, {}).items():
            if target not in known:
                continue
            if data.speaker_names:
                out_names[target] = {
                    "speakerNames": list(data.speaker_names),
                    "searchNames": list(data.speaker_names),
                    "displayName": data.speaker_names[0],
                }
                stats.updated_names += 1
            if data.story_files:
                out_storys[target] = sorted(set(out_storys.get(target, [])) | set(data.story_files))

        self._apply_excludes(out_names, stats)
        search_index = build_search_index(out_names, self.rules.excludes, self.rules.combine)
        logger.info(
            "Refreshed %s names: %d characters (%d from stories), %d search terms",
            self.lang_code,
            len(out_names),
            stats.updated_names,
            len(search_index),
        )
        return ConsolidatedTables(dict(characters), out_names, out_storys, search_index, {}, stats)
