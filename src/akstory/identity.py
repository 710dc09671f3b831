"""Canonical character identities for raw story-script actor tokens.

Story scripts reference character art as ``char_002_amiya#5$1``: a base id
followed by an optional face number (``#``) and body number (``$``). Tokens in
the wild are inconsistent (mixed case, stray spaces, a second ``#`` group,
historic ids), so everything is funnelled through :func:`normalize` before it
reaches the parser state.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field

__all__ = [
    "CHAR_PATH_FIXES",
    "EXCLUDE_IDS",
    "SPECIAL_ID_MAPPINGS",
    "CanonicalVariant",
    "IdentityTables",
    "base_character_id",
    "char_type",
    "normalize",
    "normalize_raw_id",
]

SPECIAL_ID_MAPPINGS: dict[str, str] = {
    "ill_amiya_normal": "char_002_amiya_1",
    "char_2001_aya_1": "npc_2001_aya_1",
}

CHAR_PATH_FIXES: dict[str, str] = {
    "char_2006_weiywfmzuki": "char_2006_fmzuki",
}

EXCLUDE_IDS: frozenset[str] = frozenset({"char_1012_skadi2_1", "$ill_amiya_normal"})

# base, first face group, ignored second face group, body
RE_RAW_TOKEN = re.compile(r"^(.*?)(?:#(\d+)(?:\s*#\d+)?)?(?:\$(\d+))?$", re.DOTALL)
RE_VARIANT_SUFFIX = re.compile(r"[#$]\d+")
RE_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class CanonicalVariant:
    """A character rendering addressed as ``{base_id}#{face}${body}``."""

    base_id: str
    face: int = 1
    body: int = 1

    def __str__(self) -> str:
        return f"{self.base_id}#{self.face}${self.body}"


@dataclass(frozen=True)
class IdentityTables:
    """Read-only id tables applied during normalization.

    Attributes:
        special_ids: Historic/malformed id remaps applied first.
        fixes: Character-fix table (renames/merges) applied second.
        excluded_ids: Base ids dropped from the pipeline entirely.
    """

    special_ids: Mapping[str, str] = field(default_factory=lambda: dict(SPECIAL_ID_MAPPINGS))
    fixes: Mapping[str, str] = field(default_factory=lambda: dict(CHAR_PATH_FIXES))
    excluded_ids: frozenset[str] = EXCLUDE_IDS

    def fix(self, base_id: str) -> str:
        return self.fixes.get(base_id, base_id)


_DEFAULT_TABLES = IdentityTables()


def normalize(raw: object, tables: IdentityTables | None = None) -> CanonicalVariant | None:
    """Canonicalize a raw actor token.

    Args:
        raw: Token as written in the script, e.g. ``"CHAR_002_AMIYA#5"``.
        tables: Remap/fix/exclusion tables; built-in defaults when omitted.

    Returns:
        The canonical variant, or ``None`` when the token is empty, a
        placeholder, malformed, or excluded.
    """

    if not isinstance(raw, str):
        return None
    token = raw.strip()
    if not token or token == "char_empty":
        return None
    m = RE_RAW_TOKEN.match(token)
    if m is None:
        return None
    base_id = RE_WHITESPACE.sub("_", m.group(1).strip()).lower()
    if not base_id:
        return None

    tables = tables or _DEFAULT_TABLES
    base_id = tables.special_ids.get(base_id, base_id)
    base_id = tables.fix(base_id)
    if base_id in tables.excluded_ids:
        return None

    return CanonicalVariant(base_id, int(m.group(2) or 1), int(m.group(3) or 1))


def normalize_raw_id(raw: object, tables: IdentityTables | None = None) -> str | None:
    """Return the canonical ``base#face$body`` string for ``raw`` or ``None``."""
    variant = normalize(raw, tables)
    return str(variant) if variant is not None else None


def base_character_id(variant: str) -> str:
    """Strip face/body suffixes: ``char_002_amiya#5$1`` -> ``char_002_amiya``."""
    if not variant:
        return ""
    cleaned = RE_VARIANT_SUFFIX.sub("", variant).strip().lower()
    return cleaned or variant.lower()


def char_type(char_id: str) -> str:
    """Return ``"operator"`` for ``char_`` ids and ``"npc"`` for everything else."""
    return "operator" if char_id.startswith("char_") else "npc"
