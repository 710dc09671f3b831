from __future__ import annotations

import json

from akstory.cleanup import IdCleaner, cleanup_tables, normalize_stored_id
from akstory.settings import Settings
from akstory.storage import DataStore, write_json


def test_normalize_stored_id() -> None:
    assert normalize_stored_id("CHAR_002_Amiya#2$1") == "char_002_amiya#2$1"
    assert normalize_stored_id("ill_amiya_normal#3$1") == "char_002_amiya_1#3$1"
    assert normalize_stored_id("$ill_amiya_normal") == "char_002_amiya_1"
    assert normalize_stored_id("char_2001_aya_rock") == "npc_2001_aya_rock"
    assert normalize_stored_id("") == ""


def test_cleanup_tables_rewrites_every_table(settings: Settings) -> None:
    settings.languages = ("en_US",)
    store = DataStore(settings)
    write_json(
        store.characters_path(),
        {
            "CHAR_X": {"charId": "CHAR_X", "validVariants": ["CHAR_X#1$1", "char_x#1$1"]},
            "char_1012_skadi2_1": {"charId": "char_1012_skadi2_1"},
        },
    )
    write_json(store.storys_path("en_US"), {"Char_Y": ["s2"], "char_y": ["s1", "s2"]})
    write_json(store.names_path("en_US"), {"CHAR_X": {"displayName": "X"}})

    counts = cleanup_tables(settings, store)

    assert store.load_characters() == {"char_x": {"charId": "char_x", "validVariants": ["char_x#1$1"]}}
    assert store.load_storys("en_US") == {"char_y": ["s1", "s2"]}
    assert store.load_names("en_US") == {"char_x": {"displayName": "X"}}
    assert counts[str(store.characters_path())] == 1
    assert str(store.scan_state_path()) not in counts


def test_cleanup_applies_configured_rules(settings: Settings) -> None:
    settings.languages = ("en_US",)
    settings.rules_dir.mkdir(parents=True)
    settings.fixes_path().write_text(json.dumps({"char_old": "char_new"}), encoding="utf-8")
    settings.exclude_ids_path().write_text(json.dumps(["char_dupe"]), encoding="utf-8")
    store = DataStore(settings)
    write_json(
        store.characters_path(),
        {
            "char_old": {"charId": "char_old", "validVariants": ["char_old#2$1"]},
            "char_dupe": {"charId": "char_dupe", "validVariants": []},
        },
    )
    write_json(store.storys_path("en_US"), {"CHAR_OLD": ["s1"], "char_dupe": ["s2"]})

    cleanup_tables(settings, store)

    assert store.load_characters() == {"char_new": {"charId": "char_new", "validVariants": ["char_new#2$1"]}}
    assert store.load_storys("en_US") == {"char_new": ["s1"]}


def test_collapsed_name_records_are_merged(settings: Settings) -> None:
    settings.languages = ("en_US",)
    store = DataStore(settings)
    write_json(
        store.names_path("en_US"),
        {
            "CHAR_X": {"displayName": "X", "speakerNames": ["Xavier"]},
            "char_x": {"displayName": "Ex", "speakerNames": ["Xavier", "X"]},
        },
    )

    cleanup_tables(settings, store)

    assert store.load_names("en_US") == {"char_x": {"displayName": "X", "speakerNames": ["Xavier", "X"]}}


def test_id_cleaner_fix_keeps_variant_suffix() -> None:
    cleaner = IdCleaner(fixes={"char_002_amiya_1": "char_002_amiya"})
    assert cleaner.normalize("ILL_AMIYA_NORMAL#3$1") == "char_002_amiya#3$1"
    assert cleaner.is_excluded("char_1012_skadi2_1#1$1")
