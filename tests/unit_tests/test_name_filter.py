from __future__ import annotations

import pytest

from akstory.name_filter import NameFilterConfig, is_meaningless


@pytest.mark.parametrize(
    "name",
    ["", "   ", "middle", "left", "???", "所有人", "123", "char_002_amiya_1", "avg_npc_003", "avg_npc_003_1", None],
)
def test_rejects_placeholders_numbers_and_raw_ids(name: object) -> None:
    assert is_meaningless(name, "zh_CN")


@pytest.mark.parametrize("name", ["阿米娅", "Amiya", "Closure", "陈"])
def test_keeps_real_names(name: str) -> None:
    assert not is_meaningless(name, "zh_CN")
    assert not is_meaningless(name, "en_US")


def test_language_stopwords_are_scoped() -> None:
    assert is_meaningless("旁白", "zh_CN")
    assert not is_meaningless("旁白", "en_US")
    assert is_meaningless("Everyone", "en_US")
    assert is_meaningless("ナレーター", "ja_JP")


def test_common_list_applies_everywhere() -> None:
    for lang in ("zh_CN", "en_US", "ja_JP", "ko_KR"):
        assert is_meaningless("unknown", lang)


def test_trailing_whitespace_is_trimmed() -> None:
    assert is_meaningless("  system ", "en_US")


def test_custom_config_extends_language_list() -> None:
    cfg = NameFilterConfig.from_dict({"languages": {"en_US": ["Crowd"]}})
    assert is_meaningless("Crowd", "en_US", cfg)
    assert not is_meaningless("Crowd", "en_US")
    # zh_CN keeps its defaults when only en_US is overridden
    assert is_meaningless("旁白", "zh_CN", cfg)


def test_predicate_is_deterministic() -> None:
    answers = {is_meaningless(n, "en_US") for n in ["Amiya"] * 50}
    assert answers == {False}
