"""Story-script speaker attribution.

Arknights story scripts interleave bracketed stage commands with dialogue::

    [Character(name="char_002_amiya#1", name2="char_010_chen#2", focus=2)]
    [name="陈"]Doctor, over here.
    [charslot(slot="l", name="char_002_amiya#3", focus="l")]
    [name="阿米娅"]...

The dialogue box only carries a display name, so the parser tracks which
character art occupies each stage slot and which slot holds focus, and links
every ``[name="..."]`` line to the character most likely speaking it.

Placeholder names rejected by the name filter ("???", narrator labels) are
dropped before resolution and never count as a character's name. Resolution
for any other name line, in order:

1. a character on stage that already used this name in the file keeps it;
2. otherwise the focused character gets it, but only if it has no name yet;
3. otherwise the line is left unattributed.

Parsing never raises on script content: unknown commands are ignored and
malformed actor tokens simply leave the slot empty.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from akstory.identity import base_character_id, normalize_raw_id
from akstory.name_filter import is_meaningless
from akstory.rules import RuleTables

__all__ = [
    "ALL_SPEAKERS",
    "NO_SPEAKER",
    "ParseResult",
    "Stage",
    "StoryParser",
    "parse_command",
    "parse_story",
]

ALL_SPEAKERS = 99
NO_SPEAKER = 0

# charslot ``slot=`` values -> slot number
SLOT_NUMBERS: dict[str, int] = {"l": 1, "left": 1, "m": 2, "middle": 2, "r": 3, "right": 3}
# charslot ``focus=`` values -> speaker index
FOCUS_VALUES: dict[str, int] = {
    **SLOT_NUMBERS,
    "all": ALL_SPEAKERS,
    "a": ALL_SPEAKERS,
    "none": -1,
    "n": -1,
}

RE_NAME_TAG = re.compile(r"""\[name\s*=\s*"([^"]+)"\]""", re.IGNORECASE)
RE_COMMAND = re.compile(r"^\[([A-Za-z]+)(?:\(([^)]*)\))?\]")
RE_ARG = re.compile(r"""(\w+)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^,]*))""")


@dataclass
class ParseResult:
    """Per-character attribution result for one or more story files.

    Attributes:
        char_id: Base character id.
        speaker_names: Distinct display names, in first-seen order.
        story_files: Story ids (relative path without ``.txt``).
        variants: Distinct ``base#face$body`` variants seen on stage.
        dialog_count: Number of dialogue lines attributed to the character.
    """

    char_id: str
    speaker_names: list[str] = field(default_factory=list)
    story_files: list[str] = field(default_factory=list)
    variants: list[str] = field(default_factory=list)
    dialog_count: int = 0

    def merge(self, other: ParseResult) -> None:
        """Union ``other`` into this result (sets stay ordered by first sighting)."""
        self.speaker_names = list(dict.fromkeys([*self.speaker_names, *other.speaker_names]))
        self.story_files = list(dict.fromkeys([*self.story_files, *other.story_files]))
        self.variants = sorted(set(self.variants) | set(other.variants))
        self.dialog_count += other.dialog_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "charId": self.char_id,
            "speakerNames": list(self.speaker_names),
            "storyFiles": list(self.story_files),
            "variants": list(self.variants),
            "dialogCount": self.dialog_count,
        }


def _slot_key(number: int) -> str:
    return "name" if number == 1 else f"name{number}"


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed or default


@dataclass
class Stage:
    """Mutable scene state while walking one script."""

    characters: dict[str, str] = field(default_factory=dict)
    speaker: int = NO_SPEAKER
    history: list[str] = field(default_factory=list)
    names: dict[str, list[str]] = field(default_factory=dict)
    variants: dict[str, set[str]] = field(default_factory=dict)
    dialog_counts: dict[str, int] = field(default_factory=dict)

    def clear(self) -> None:
        """Empty every slot and drop focus; history and names persist."""
        self.characters = {}
        self.speaker = NO_SPEAKER

    def place(self, slot: str, variant: str) -> None:
        self.characters[slot] = variant
        base_id = base_character_id(variant)
        if base_id:
            self.history.append(base_id)
            self.variants.setdefault(base_id, set()).add(variant)

    def speaking_character(self) -> str | None:
        """Base id of the single focused character, if any."""
        if self.speaker in (ALL_SPEAKERS, -1, NO_SPEAKER):
            return None
        variant = self.characters.get(_slot_key(self.speaker))
        return base_character_id(variant) if variant else None

    def on_stage(self) -> list[str]:
        return [base_character_id(v) for _, v in sorted(self.characters.items())]


def parse_command(line: str) -> tuple[str, dict[str, str]] | None:
    """Split ``[cmd(key=value, ...)]`` into a lowercase command and its arguments."""
    m = RE_COMMAND.match(line)
    if m is None:
        return None
    args: dict[str, str] = {}
    for am in RE_ARG.finditer(m.group(2) or ""):
        value = next((g for g in am.groups()[1:] if g is not None), "")
        args[am.group(1).lower()] = value.strip().strip("\"'")
    return m.group(1).lower(), args


class StoryParser:
    """Attribute dialogue names to characters for scripts of one language."""

    def __init__(self, tables: RuleTables | None = None) -> None:
        self.tables = tables or RuleTables()

    @property
    def lang_code(self) -> str:
        return self.tables.lang_code

    # --------------- command handlers ---------------

    def _normalize(self, raw: str | None) -> str | None:
        return normalize_raw_id(raw, self.tables.identity)

    def _on_character(self, stage: Stage, args: dict[str, str]) -> None:
        if not args.get("name") and not args.get("name2"):
            stage.clear()
            return
        stage.characters = {}
        for slot in ("name", "name2"):
            variant = self._normalize(args.get(slot))
            if variant:
                stage.place(slot, variant)
        stage.speaker = _as_int(args.get("focus"), 1)

    def _on_charslot(self, stage: Stage, args: dict[str, str]) -> None:
        if not args.get("name"):
            stage.clear()
            return
        variant = self._normalize(args["name"])
        if not variant:
            return
        base_id = base_character_id(variant)
        for key in [k for k, v in stage.characters.items() if base_character_id(v) == base_id]:
            del stage.characters[key]

        slot_arg = args.get("slot", "").lower()
        slot_number = SLOT_NUMBERS.get(slot_arg) or _as_int(slot_arg, 1)
        stage.place(_slot_key(slot_number), variant)

        focus_arg = args.get("focus", "").lower()
        speaker = FOCUS_VALUES.get(focus_arg) or _as_int(focus_arg, 0) or slot_number or 1
        stage.speaker = speaker

    def _on_name(self, stage: Stage, name: str) -> None:
        if is_meaningless(name, self.lang_code, self.tables.name_filter):
            return
        target: str | None = None
        for base_id in stage.on_stage():
            if name in stage.names.get(base_id, ()):
                target = base_id
                break
        if target is None:
            speaking = stage.speaking_character()
            if speaking and not stage.names.get(speaking):
                target = speaking
        if target is None or self.tables.excludes.excludes(target, name):
            return
        known = stage.names.setdefault(target, [])
        if name not in known:
            known.append(name)
        stage.dialog_counts[target] = stage.dialog_counts.get(target, 0) + 1

    # --------------- public API ---------------

    def run(self, text: str) -> Stage:
        """Walk ``text`` line by line and return the final stage state."""
        stage = Stage()
        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line or line.startswith("//"):
                continue

            name_match = RE_NAME_TAG.search(line)
            if name_match:
                self._on_name(stage, name_match.group(1))
                continue

            parsed = parse_command(line)
            if parsed is None:
                continue
            cmd, args = parsed
            if cmd == "character":
                self._on_character(stage, args)
            elif cmd == "charslot":
                self._on_charslot(stage, args)
            elif cmd == "dialog":
                stage.clear()
        return stage

    def parse(self, text: str, story_id: str) -> dict[str, ParseResult]:
        """Parse one script into ``{base_id: ParseResult}``.

        Every character that appeared on stage gets an entry, even with no
        surviving names, so its story association is kept.
        """

        stage = self.run(text)
        results: dict[str, ParseResult] = {}
        for base_id in dict.fromkeys(stage.history):
            results[base_id] = ParseResult(
                char_id=base_id,
                speaker_names=list(stage.names.get(base_id, ())),
                story_files=[story_id],
                variants=sorted(stage.variants.get(base_id, ())),
                dialog_count=stage.dialog_counts.get(base_id, 0),
            )
        return results


def parse_story(
    text: str,
    story_id: str,
    lang_code: str = "zh_CN",
    tables: RuleTables | None = None,
) -> dict[str, ParseResult]:
    """Convenience wrapper around :class:`StoryParser`."""
    if tables is None:
        tables = RuleTables(lang_code=lang_code)
    return StoryParser(tables).parse(text, story_id)
