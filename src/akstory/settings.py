"""Pipeline settings and path conventions.

Settings are plain dataclasses with defaults matching the production layout.
They can be overridden from a YAML file with the following schema::

        data_root: src/public/data
        rules_dir: .vitepress/config
        languages: [zh_CN, en_US, ja_JP]
        master_language: zh_CN
        parse_workers: 4
        verify_workers: 6
        max_scans: 300
        check_images: false
        request_timeout: 30
        probe_timeout: 5
        gamedata_base_url: https://raw.githubusercontent.com/ArknightsAssets/ArknightsGamedata/master
        image_sources:
            - https://raw.githubusercontent.com/akgcc/arkdata/main/assets/avg/characters/
        name_filters:
            common: ["???", "unknown"]
            languages:
                en_US: [Everyone, narrator]

and finally from the ``AKSTORY_DATA_ROOT``, ``AKSTORY_RULES_DIR`` and
``AKSTORY_WORKERS`` environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from akstory.errors import ConfigError
from akstory.name_filter import NameFilterConfig

__all__ = [
    "GAME_ID",
    "LANGUAGES",
    "Language",
    "Settings",
    "language",
    "load_settings",
]

GAME_ID = "arknights"


@dataclass(frozen=True, slots=True)
class Language:
    """Per-language naming used across data, rule and upstream paths.

    Attributes:
        code: Pipeline language code (``zh_CN``).
        data_dir: Directory name under the data root (``zh_cn``).
        locale: Site locale directory holding language rule files (``zh-CN``).
        region: Upstream gamedata region directory (``cn``).
    """

    code: str
    data_dir: str
    locale: str
    region: str


LANGUAGES: dict[str, Language] = {
    "zh_CN": Language("zh_CN", "zh_cn", "zh-CN", "cn"),
    "en_US": Language("en_US", "en_us", "en-US", "en"),
    "ja_JP": Language("ja_JP", "ja_jp", "ja", "jp"),
}


def language(code: str) -> Language:
    """Return the :class:`Language` for ``code``, deriving names for unknown codes."""
    known = LANGUAGES.get(code)
    if known is not None:
        return known
    return Language(code, code.lower(), code.replace("_", "-"), code.split("_")[0].lower())


DEFAULT_IMAGE_SOURCES: tuple[str, ...] = (
    "https://raw.githubusercontent.com/akgcc/arkdata/main/assets/avg/characters/",
    "https://raw.githubusercontent.com/Aceship/Arknight-Images/main/avg/characters/",
)


@dataclass
class Settings:
    """Resolved configuration for one pipeline invocation."""

    data_root: Path = Path("data")
    rules_dir: Path = Path("config")
    languages: tuple[str, ...] = ("zh_CN", "en_US", "ja_JP")
    master_language: str = "zh_CN"
    parse_workers: int = 4
    verify_workers: int = 6
    max_scans: int = 300
    check_images: bool = False
    request_timeout: float = 30.0
    probe_timeout: float = 5.0
    gamedata_base_url: str = "https://raw.githubusercontent.com/ArknightsAssets/ArknightsGamedata/master"
    image_sources: tuple[str, ...] = DEFAULT_IMAGE_SOURCES
    name_filters: NameFilterConfig = field(default_factory=NameFilterConfig)

    # --- path conventions ---

    def language_dir(self, lang_code: str) -> Path:
        return self.data_root / language(lang_code).data_dir / GAME_ID

    def global_dir(self) -> Path:
        return self.data_root / "global" / GAME_ID

    def story_dir(self, lang_code: str) -> Path:
        return self.language_dir(lang_code) / "story"

    def fixes_path(self) -> Path:
        return self.rules_dir / "arknights-fixes.json"

    def combine_path(self) -> Path:
        return self.rules_dir / "arknights-combine.json"

    def exclude_ids_path(self) -> Path:
        return self.rules_dir / "arknights-exclude-ids.json"

    def search_exclude_path(self, lang_code: str) -> Path:
        return self.rules_dir / "locale" / language(lang_code).locale / "arknights-search-exclude.json"


def _coerce(name: str, value: Any) -> Any:
    if name in ("data_root", "rules_dir"):
        return Path(value)
    if name in ("languages", "image_sources"):
        if isinstance(value, str):
            return (value,)
        return tuple(str(v) for v in value)
    if name in ("parse_workers", "verify_workers", "max_scans"):
        return int(value)
    if name in ("request_timeout", "probe_timeout"):
        return float(value)
    if name == "check_images":
        return bool(value)
    if name == "name_filters":
        return NameFilterConfig.from_dict(value or {})
    return value


def load_settings(path: Path | None = None, env: dict[str, str] | None = None) -> Settings:
    """Load settings from an optional YAML file plus environment overrides.

    Args:
        path: YAML settings file. Missing files are ignored.
        env: Environment mapping (defaults to ``os.environ``).

    Returns:
        Resolved :class:`Settings`.

    Raises:
        ConfigError: If ``path`` exists but is not a valid YAML mapping, or a
            setting or environment override has a value of the wrong type.
    """

    env = dict(os.environ if env is None else env)
    data: dict[str, Any] = {}
    if path is not None and path.exists():
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid settings file {path}: {e}") from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Settings file {path} must contain a mapping")
        data = loaded

    known = {f.name for f in fields(Settings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown settings keys in {path}: {', '.join(unknown)}")
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        try:
            kwargs[key] = _coerce(key, value)
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid value for {key!r} in {path}: {value!r}") from e

    if env.get("AKSTORY_DATA_ROOT"):
        kwargs["data_root"] = Path(env["AKSTORY_DATA_ROOT"])
    if env.get("AKSTORY_RULES_DIR"):
        kwargs["rules_dir"] = Path(env["AKSTORY_RULES_DIR"])
    if env.get("AKSTORY_WORKERS"):
        try:
            kwargs["parse_workers"] = int(env["AKSTORY_WORKERS"])
        except ValueError as e:
            raise ConfigError(f"AKSTORY_WORKERS must be an integer, got {env['AKSTORY_WORKERS']!r}") from e
    return Settings(**kwargs)
