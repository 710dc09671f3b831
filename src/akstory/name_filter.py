"""Rejection rules for captured dialogue speaker names.

A name is *meaningless* when it cannot identify a character: blanks,
positional placeholders, question marks, raw character ids leaking into the
name slot, numbers and per-language narrator/system tokens.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "COMMON_FILTERS",
    "FILTERED_NAMES",
    "LANGUAGE_FILTERS",
    "NameFilterConfig",
    "is_meaningless",
]

FILTERED_NAMES: frozenset[str] = frozenset(
    {
        "middle",
        "right",
        "left",
        "char_empty",
        "char_empty_b",
        "$ill_amiya_normal",
        "???",
        "所有人",
        "",
    }
)

COMMON_FILTERS: tuple[str, ...] = (
    "？？？",
    "？？？？",
    "???",
    "?????",
    "?",
    "...",
    "unknown",
    "system",
)

LANGUAGE_FILTERS: dict[str, tuple[str, ...]] = {
    "zh_CN": ("？？？", "？？？？", "所有人", "？", "...", "unknown", "旁白", "画外音", "系统", "system"),
    "en_US": ("???", "?????", "Everyone", "?", "...", "unknown", "narrator", "system", "voice-over", "all"),
    "ja_JP": ("？？？", "?????", "全員", "？", "...", "unknown", "ナレーター", "システム", "system", "みんな"),
}

RE_NUMERIC = re.compile(r"^\d+$")
# Raw actor ids such as ``char_002_amiya_1`` or ``avg_npc_003`` in the name slot
RE_RAW_ID = re.compile(r"^(avg|char)_[a-z0-9]+_\d+(_\d+)?$", re.IGNORECASE)
RE_RAW_ID_SLUG = re.compile(r"^(avg|char)_[a-z0-9]+_[a-z]+_\d+$", re.IGNORECASE)


@dataclass(frozen=True)
class NameFilterConfig:
    """Stopword lists used by :func:`is_meaningless`.

    Attributes:
        common: Tokens rejected for every language.
        languages: Language code -> additional tokens rejected for that language.
    """

    common: tuple[str, ...] = COMMON_FILTERS
    languages: dict[str, tuple[str, ...]] = field(default_factory=lambda: dict(LANGUAGE_FILTERS))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NameFilterConfig:
        """Build a config from a settings mapping, keeping defaults for missing keys."""
        common = tuple(data.get("common", COMMON_FILTERS))
        langs = dict(LANGUAGE_FILTERS)
        for code, names in (data.get("languages") or {}).items():
            langs[code] = tuple(names)
        return cls(common=common, languages=langs)

    def stopwords(self, lang_code: str) -> frozenset[str]:
        return frozenset(self.languages.get(lang_code, ())) | frozenset(self.common)


_DEFAULT_CONFIG = NameFilterConfig()


def is_meaningless(name: object, lang_code: str = "zh_CN", config: NameFilterConfig | None = None) -> bool:
    """Return True if ``name`` should never be recorded as a speaker name.

    The predicate is pure: identical ``(name, lang_code, config)`` always give
    the same answer, in any process.
    """

    if not isinstance(name, str):
        return True
    trimmed = name.strip()
    if not trimmed or trimmed in FILTERED_NAMES:
        return True
    if RE_NUMERIC.match(trimmed):
        return True
    if RE_RAW_ID.match(trimmed) or RE_RAW_ID_SLUG.match(trimmed):
        return True
    cfg = config or _DEFAULT_CONFIG
    return trimmed in cfg.stopwords(lang_code)
