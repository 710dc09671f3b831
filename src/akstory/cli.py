"""Command line entry point.

Sub-commands:

* ``sync`` – full pipeline for one or more languages;
* ``names`` – refresh names/storys/search index without touching global data;
* ``parse`` – print the attribution result for a single script;
* ``cleanup`` – normalize ids already stored in the data tables.

Any :class:`~akstory.errors.AkStoryError` ends the process with exit code 1
after the reason has been logged.
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from akstory.cleanup import cleanup_tables
from akstory.errors import AkStoryError
from akstory.logging_setup import setup_logging
from akstory.orchestrator import story_id_for
from akstory.parser import StoryParser
from akstory.pipeline import sync_language, update_names_only
from akstory.rules import RuleCache
from akstory.settings import Settings, load_settings
from akstory.variants import VariantOptions

__all__ = ["build_parser", "main"]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Utilities


def _settings_from_args(args: argparse.Namespace) -> Settings:
    settings = load_settings(args.config)
    if args.data_root is not None:
        settings.data_root = args.data_root
    if args.rules_dir is not None:
        settings.rules_dir = args.rules_dir
    if getattr(args, "workers", None):
        settings.parse_workers = args.workers
    return settings


def _languages(args: argparse.Namespace, settings: Settings) -> list[str]:
    return list(args.lang or settings.languages)


# ---------------------------------------------------------------------------
# Command handlers


def _cmd_sync(args: argparse.Namespace, settings: Settings) -> int:
    rules = RuleCache(settings)
    options = VariantOptions(
        check_images=args.check_images or settings.check_images,
        max_scans=args.max_scans if args.max_scans is not None else settings.max_scans,
        workers=settings.verify_workers,
        scan_all=args.scan_all,
        target_char=args.target_char,
    )
    for lang_code in _languages(args, settings):
        logger.info("Starting character data processing for %s", lang_code)
        sync_language(lang_code, settings, rules=rules, options=options, progress=args.progress)
    return 0


def _cmd_names(args: argparse.Namespace, settings: Settings) -> int:
    rules = RuleCache(settings)
    for lang_code in _languages(args, settings):
        update_names_only(lang_code, settings, rules=rules)
    return 0


def _cmd_parse(args: argparse.Namespace, settings: Settings) -> int:
    tables = RuleCache(settings).tables(args.lang)
    text = args.file.read_text(encoding="utf-8")
    results = StoryParser(tables).parse(text, story_id_for(args.file.name))
    payload = {cid: r.to_dict() for cid, r in results.items()}
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def _cmd_cleanup(args: argparse.Namespace, settings: Settings) -> int:
    cleanup_tables(settings)
    return 0


# ---------------------------------------------------------------------------
# CLI entry


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="akstory", description="Arknights story character data pipeline")
    parser.add_argument("--config", type=Path, default=Path("akstory.yaml"))
    parser.add_argument("--data-root", type=Path, default=None)
    parser.add_argument("--rules-dir", type=Path, default=None)
    parser.add_argument("--log-dir", type=Path, default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_sync = sub.add_parser("sync", help="run the full pipeline")
    p_sync.add_argument("--lang", action="append", help="language code (repeatable)")
    p_sync.add_argument("--check-images", action="store_true")
    p_sync.add_argument("--scan-all", action="store_true")
    p_sync.add_argument("--target-char", type=str, default=None)
    p_sync.add_argument("--max-scans", type=int, default=None)
    p_sync.add_argument("--workers", type=int, default=None)
    p_sync.add_argument("--progress", action="store_true")

    p_names = sub.add_parser("names", help="refresh language name tables only")
    p_names.add_argument("--lang", action="append", help="language code (repeatable)")
    p_names.add_argument("--workers", type=int, default=None)

    p_parse = sub.add_parser("parse", help="parse a single story script")
    p_parse.add_argument("file", type=Path)
    p_parse.add_argument("--lang", type=str, default="zh_CN")

    sub.add_parser("cleanup", help="normalize stored character ids")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_dir)
    handlers = {
        "sync": _cmd_sync,
        "names": _cmd_names,
        "parse": _cmd_parse,
        "cleanup": _cmd_cleanup,
    }
    try:
        settings = _settings_from_args(args)
        return handlers[args.cmd](args, settings)
    except AkStoryError as e:
        logger.error("akstory %s failed: %s", args.cmd, e)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
