"""Arknights story-data consolidation pipeline.

Parses story scripts into character speaker-name tables and consolidates them
into the JSON indices served by the site front-end.
"""

from __future__ import annotations

from akstory.identity import CanonicalVariant, base_character_id, normalize_raw_id
from akstory.name_filter import is_meaningless
from akstory.parser import ParseResult, parse_story

__all__ = [
    "CanonicalVariant",
    "ParseResult",
    "base_character_id",
    "is_meaningless",
    "normalize_raw_id",
    "parse_story",
]

__version__ = "0.1.0"
