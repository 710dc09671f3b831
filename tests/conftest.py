from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path

import pytest

# Ensure src/ is on sys.path so tests import akstory.* without installing the package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from akstory.settings import Settings  # noqa: E402


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temporary directory with single-worker passes."""
    return Settings(data_root=tmp_path / "data", rules_dir=tmp_path / "config", parse_workers=2)


@pytest.fixture()
def write_story(settings: Settings) -> Callable[[str, str, str], Path]:
    """Return a helper writing a story script under the language story dir."""

    def _write(lang_code: str, relative: str, text: str) -> Path:
        path = settings.story_dir(lang_code) / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write
