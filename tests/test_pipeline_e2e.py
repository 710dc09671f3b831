"""
End-to-end language passes over a small on-disk corpus.

Network access is replaced by an in-memory game data stub so the allowlist
and image probes are deterministic.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from pathlib import Path

import pytest

from akstory import orchestrator
from akstory.errors import WorkerError
from akstory.pipeline import sync_language, update_names_only
from akstory.rules import RuleCache
from akstory.settings import Settings
from akstory.storage import DataStore
from akstory.variants import VariantOptions

NOW = 1_700_000_000_000

ZH_MAIN = """\
[Character(name="char_002_amiya#1",name2="char_010_chen#2",focus=1)]
[name="阿米娅"]博士，这边。
[Character(name="char_002_amiya#1",name2="char_010_chen#2",focus=2)]
[name="陈"]跟上。
[name="林雨霞"]……
"""

ZH_SIDE = """\
[charslot(slot="m",name="char_002_amiya#3$1")]
[name="阿米娅"]我们走吧。
[dialog]
[name="旁白"]夜幕降临。
"""

EN_MAIN = """\
[Character(name="char_002_amiya#1")]
[name="Amiya"]Doctor, over here.
[Character(name="char_010_chen#2")]
[name="Ch'en"]Keep up.
"""


class StubGameData:
    """In-memory replacement for :class:`akstory.gamedata.GameDataClient`."""

    def __init__(self, valid: set[str] | None = None, images: Iterable[str] = ()) -> None:
        self.valid = valid
        self.images = set(images)
        self.regions: list[str] = []

    def fetch_valid_story_paths(self, region: str) -> set[str] | None:
        self.regions.append(region)
        return self.valid

    def image_exists(self, variant: str, sources: Iterable[str]) -> bool:
        return variant in self.images


@pytest.fixture()
def corpus(settings: Settings, write_story: Callable[[str, str, str], Path]) -> Settings:
    write_story("zh_CN", "obt/main/level_main_00-01.txt", ZH_MAIN)
    write_story("zh_CN", "activities/act1/level_act1_01.txt", ZH_SIDE)
    write_story("en_US", "obt/main/level_main_00-01.txt", EN_MAIN)
    return settings


def test_master_then_secondary_language(corpus: Settings) -> None:
    rules = RuleCache(corpus)
    store = DataStore(corpus)
    stub = StubGameData()

    zh = sync_language("zh_CN", corpus, rules=rules, store=store, client=stub, use_processes=False, now=NOW)
    assert zh is not None

    names = store.load_names("zh_CN")
    assert names["char_002_amiya"]["speakerNames"] == ["阿米娅"]
    assert names["char_010_chen"]["speakerNames"] == ["陈"]
    assert store.load_storys("zh_CN")["char_002_amiya"] == [
        "activities/act1/level_act1_01",
        "obt/main/level_main_00-01",
    ]
    index = store.load_search_index("zh_CN")
    assert index["阿米娅"] == "char_002_amiya"
    assert "林雨霞" not in index
    assert "旁白" not in index

    characters = store.load_characters()
    assert characters["char_002_amiya"]["validVariants"] == ["char_002_amiya#1$1", "char_002_amiya#3$1"]
    assert characters["char_002_amiya"]["dialogCount"] == 2
    assert store.load_scan_state()["char_002_amiya"]["lastScanTime"] == NOW

    sync_language("en_US", corpus, rules=rules, store=store, client=stub, use_processes=False, now=NOW)
    assert stub.regions == ["cn", "en"]
    assert store.load_search_index("en_US") == {"Amiya": "char_002_amiya", "Ch'en": "char_010_chen"}
    # the secondary language leaves existing global records alone
    assert store.load_characters() == characters


def test_rerun_is_byte_identical(corpus: Settings) -> None:
    store = DataStore(corpus)
    kwargs = dict(rules=RuleCache(corpus), store=store, client=StubGameData(), use_processes=False, now=NOW)
    sync_language("zh_CN", corpus, **kwargs)
    paths = [store.names_path("zh_CN"), store.storys_path("zh_CN"), store.search_index_path("zh_CN"), store.characters_path()]
    before = [p.read_bytes() for p in paths]

    sync_language("zh_CN", corpus, **kwargs)
    assert [p.read_bytes() for p in paths] == before


def test_allowlist_prunes_removed_stories(corpus: Settings) -> None:
    store = DataStore(corpus)
    stub = StubGameData(valid={"obt/main/level_main_00-01"})
    sync_language("zh_CN", corpus, rules=RuleCache(corpus), store=store, client=stub, use_processes=False, now=NOW)

    assert store.load_storys("zh_CN")["char_002_amiya"] == ["obt/main/level_main_00-01"]


def test_allowlist_removing_everything_drops_names(corpus: Settings) -> None:
    store = DataStore(corpus)
    stub = StubGameData(valid={"obt/main/level_main_00-01"})
    sync_language("en_US", corpus, rules=RuleCache(corpus), store=store, client=stub, use_processes=False, now=NOW)
    assert set(store.load_names("en_US")) == {"char_002_amiya", "char_010_chen"}

    stub.valid = {"something/else"}
    sync_language("en_US", corpus, rules=RuleCache(corpus), store=store, client=stub, use_processes=False, now=NOW)
    assert store.load_names("en_US") == {}
    assert store.load_storys("en_US") == {}
    assert store.load_search_index("en_US") == {}


def test_verified_variants_use_image_probe(corpus: Settings) -> None:
    store = DataStore(corpus)
    stub = StubGameData(images={"char_010_chen#1$1", "char_010_chen#2$1", "char_010_chen#2$2"})
    options = VariantOptions(check_images=True, workers=2)
    sync_language(
        "zh_CN", corpus, rules=RuleCache(corpus), store=store, client=stub, options=options, use_processes=False, now=NOW
    )

    characters = store.load_characters()
    assert characters["char_010_chen"]["validVariants"] == ["char_010_chen#1$1", "char_010_chen#2$1", "char_010_chen#2$2"]
    # nothing hosted: observed variants are kept
    assert characters["char_002_amiya"]["validVariants"] == ["char_002_amiya#1$1", "char_002_amiya#3$1"]
    assert store.load_scan_state()["char_010_chen"]["variantCount"] == 3


def test_rule_files_on_disk_are_applied(corpus: Settings) -> None:
    search_exclude = corpus.search_exclude_path("zh_CN")
    search_exclude.parent.mkdir(parents=True)
    search_exclude.write_text(json.dumps({"陈": ["char_010_chen_main"]}, ensure_ascii=False), encoding="utf-8")
    corpus.fixes_path().write_text(json.dumps({"char_010_chen": "char_010_chen_main"}), encoding="utf-8")

    store = DataStore(corpus)
    sync_language("zh_CN", corpus, rules=RuleCache(corpus), store=store, client=StubGameData(), use_processes=False, now=NOW)

    characters = store.load_characters()
    assert "char_010_chen" not in characters
    assert characters["char_010_chen_main"]["validVariants"] == ["char_010_chen_main#2$1"]
    assert "陈" not in store.load_names("zh_CN")["char_010_chen_main"]["speakerNames"]
    assert "陈" not in store.load_search_index("zh_CN")


def test_worker_failure_writes_nothing(corpus: Settings, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_chunk(*args: object) -> None:
        raise RuntimeError("worker crashed")

    monkeypatch.setattr(orchestrator, "parse_chunk", broken_chunk)
    store = DataStore(corpus)
    with pytest.raises(WorkerError):
        sync_language("zh_CN", corpus, rules=RuleCache(corpus), store=store, client=StubGameData(), use_processes=False)

    assert not store.characters_path().exists()
    assert not store.names_path("zh_CN").exists()


def test_missing_story_dir_is_skipped(settings: Settings) -> None:
    store = DataStore(settings)
    assert sync_language("en_US", settings, store=store, client=StubGameData(), use_processes=False) is None
    assert not store.names_path("en_US").exists()


def test_names_only_refresh_keeps_global_tables(corpus: Settings) -> None:
    store = DataStore(corpus)
    rules = RuleCache(corpus)
    sync_language("zh_CN", corpus, rules=rules, store=store, client=StubGameData(), use_processes=False, now=NOW)
    characters_before = store.characters_path().read_bytes()

    refreshed = update_names_only("en_US", corpus, rules=rules, store=store, use_processes=False)

    assert refreshed is not None
    assert store.characters_path().read_bytes() == characters_before
    assert store.load_names("en_US")["char_010_chen"]["displayName"] == "Ch'en"
    assert store.load_search_index("en_US")["Amiya"] == "char_002_amiya"
