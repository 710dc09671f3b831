"""
Story parser attribution tests.

Scripts are written inline; each test exercises one transition or
resolution rule of the stage state machine.
"""

from __future__ import annotations

from akstory.identity import IdentityTables
from akstory.parser import ALL_SPEAKERS, ParseResult, StoryParser, parse_command, parse_story
from akstory.rules import ExcludeRules, RuleTables


def test_two_line_script_attributes_focused_character() -> None:
    text = '[Character(name=char_002_amiya#1,focus=1)]\n[name="Amiya"]Hello.\n'
    results = parse_story(text, "main/act01/level_01", "en_US")

    assert list(results) == ["char_002_amiya"]
    amiya = results["char_002_amiya"]
    assert amiya.speaker_names == ["Amiya"]
    assert amiya.story_files == ["main/act01/level_01"]
    assert amiya.variants == ["char_002_amiya#1$1"]
    assert amiya.dialog_count == 1


def test_established_name_wins_over_focus() -> None:
    text = "\n".join(
        [
            '[Character(name="char_x",focus=1)]',
            '[name="Alice"]Hi.',
            '[Character(name="char_x",name2="char_y",focus=2)]',
            '[name="Alice"]Again.',
        ]
    )
    results = parse_story(text, "s1", "en_US")

    assert results["char_x"].speaker_names == ["Alice"]
    assert results["char_x"].dialog_count == 2
    assert results["char_y"].speaker_names == []


def test_named_character_is_not_overwritten() -> None:
    text = "\n".join(
        [
            "[Character(name=char_x)]",
            '[name="Alice"]One.',
            "[Character(name=char_x, focus=1)]",
            '[name="Bob"]Two.',
        ]
    )
    results = parse_story(text, "s1", "en_US")
    assert results["char_x"].speaker_names == ["Alice"]


def test_dialog_without_stage_produces_nothing() -> None:
    assert parse_story('[dialog]\n[name="X"]Who?', "s1") == {}


def test_dialog_clears_stage_but_keeps_history() -> None:
    text = '[Character(name=char_x)]\n[dialog]\n[name="Xavier"]...'
    results = parse_story(text, "s1", "en_US")
    assert results["char_x"].speaker_names == []
    assert results["char_x"].story_files == ["s1"]


def test_character_without_names_resets_scene() -> None:
    text = '[Character(name=char_x)]\n[Character]\n[name="Xavier"]...'
    assert parse_story(text, "s1", "en_US")["char_x"].speaker_names == []


def test_charslot_moves_character_between_slots() -> None:
    text = "\n".join(
        [
            '[charslot(slot="l",name="char_a#1")]',
            '[charslot(slot="r",name="char_a#2",focus="r")]',
        ]
    )
    stage = StoryParser().run(text)

    assert stage.characters == {"name3": "char_a#2$1"}
    assert stage.speaker == 3
    assert stage.history == ["char_a", "char_a"]
    assert stage.variants["char_a"] == {"char_a#1$1", "char_a#2$1"}


def test_charslot_focus_falls_back_to_slot() -> None:
    text = "\n".join(
        [
            '[charslot(slot="l",name="char_a")]',
            '[charslot(slot="m",name="char_b")]',
            '[name="Bea"]Hello.',
        ]
    )
    results = parse_story(text, "s1", "en_US")
    assert results["char_b"].speaker_names == ["Bea"]
    assert results["char_a"].speaker_names == []


def test_charslot_focus_all_is_not_attributed() -> None:
    text = "\n".join(
        [
            '[charslot(slot="l",name="char_a")]',
            '[charslot(slot="r",name="char_b",focus="all")]',
            '[name="Both"]Together!',
        ]
    )
    stage = StoryParser().run(text)
    assert stage.speaker == ALL_SPEAKERS
    assert stage.names == {}


def test_charslot_without_name_clears_stage() -> None:
    stage = StoryParser().run('[charslot(slot="l",name="char_a")]\n[charslot]')
    assert stage.characters == {}
    assert stage.speaker == 0


def test_unknown_commands_and_garbage_are_ignored() -> None:
    text = "\n".join(
        [
            "// comment line",
            '[PlayMusic(intro="$m_bat", key="$m_bat_loop", volume=0.6)]',
            "[Blocker(a=1, r=0, g=0, b=0, fadetime=1)]",
            "[[[ not a command",
            "[Character(name=char_x)]",
            "plain dialogue without a name tag",
            '[name="Xavier"]Done.',
        ]
    )
    results = parse_story(text, "s1", "en_US")
    assert results["char_x"].speaker_names == ["Xavier"]


def test_malformed_actor_leaves_slot_empty() -> None:
    text = '[Character(name="char_empty")]\n[name="Ghost"]Boo.'
    assert parse_story(text, "s1", "en_US") == {}


def test_excluded_pair_is_dropped() -> None:
    tables = RuleTables(lang_code="en_US", excludes=ExcludeRules(by_name={"Bob": ("char_x",)}))
    text = '[Character(name=char_x)]\n[name="Bob"]Hi.'
    results = parse_story(text, "s1", "en_US", tables)
    assert results["char_x"].speaker_names == []
    assert results["char_x"].dialog_count == 0


def test_builtin_character_exclusions_apply() -> None:
    text = '[Character(name=char_010_chen#2)]\n[name="林雨霞"]……'
    results = parse_story(text, "s1", "zh_CN")
    assert results["char_010_chen"].speaker_names == []


def test_meaningless_names_filtered_from_output() -> None:
    text = '[Character(name=char_x)]\n[name="???"]Who goes there?'
    results = parse_story(text, "s1", "en_US")
    assert results["char_x"].speaker_names == []


def test_placeholder_name_does_not_block_reveal() -> None:
    text = "\n".join(
        [
            "[Character(name=char_x,focus=1)]",
            '[name="???"]Hi.',
            '[name="Alice"]It is me.',
            '[name="Alice"]Again.',
        ]
    )
    results = parse_story(text, "s1", "en_US")
    assert results["char_x"].speaker_names == ["Alice"]
    assert results["char_x"].dialog_count == 2


def test_story_fix_table_applies_to_actor_tokens() -> None:
    tables = RuleTables(identity=IdentityTables(fixes={"char_old": "char_new"}))
    results = parse_story('[Character(name=char_old#3)]\n[name="Nova"]Hi.', "s1", "en_US", tables)
    assert list(results) == ["char_new"]
    assert results["char_new"].variants == ["char_new#3$1"]


def test_parse_command_handles_quoting() -> None:
    assert parse_command('[charslot(slot="l", name=\'char_a#2\', focus=l)]') == (
        "charslot",
        {"slot": "l", "name": "char_a#2", "focus": "l"},
    )
    assert parse_command("[dialog]") == ("dialog", {})
    assert parse_command("no command") is None


def test_parse_result_merge_unions_sets() -> None:
    a = ParseResult("char_x", ["Alice"], ["s1"], ["char_x#1$1"], 2)
    b = ParseResult("char_x", ["Alicia", "Alice"], ["s2"], ["char_x#2$1"], 3)
    a.merge(b)
    assert a.speaker_names == ["Alice", "Alicia"]
    assert a.story_files == ["s1", "s2"]
    assert a.variants == ["char_x#1$1", "char_x#2$1"]
    assert a.dialog_count == 5
    assert a.to_dict()["speakerNames"] == ["Alice", "Alicia"]
