"""End-to-end language passes.

``sync_language`` runs the full pipeline for one language:
parse (worker pool) -> variants -> allowlist fetch -> consolidate -> write.
Each stage completes before the next starts, and nothing is written until
consolidation has produced the full next state.
"""

from __future__ import annotations

import logging
from functools import partial

from akstory.consolidate import ConsolidatedTables, Consolidator
from akstory.gamedata import GameDataClient
from akstory.logging_setup import log_call
from akstory.orchestrator import list_story_files, run_parse_pass
from akstory.rules import RuleCache
from akstory.settings import Settings, language
from akstory.storage import DataStore
from akstory.variants import VariantOptions, generate_variants, load_scan_state

__all__ = ["client_for", "sync_language", "update_names_only"]

logger = logging.getLogger(__name__)


def client_for(settings: Settings) -> GameDataClient:
    return GameDataClient(
        base_url=settings.gamedata_base_url,
        timeout_s=settings.request_timeout,
        probe_timeout_s=settings.probe_timeout,
    )


@log_call()
def sync_language(
    lang_code: str,
    settings: Settings,
    *,
    rules: RuleCache | None = None,
    store: DataStore | None = None,
    client: GameDataClient | None = None,
    options: VariantOptions | None = None,
    use_processes: bool = True,
    progress: bool = False,
    now: int | None = None,
) -> ConsolidatedTables | None:
    """Run the full pipeline for ``lang_code``.

    Returns:
        The persisted tables, or ``None`` when no story files exist.

    Raises:
        WorkerError: If a parse or verification worker fails.
        ConfigError: If a rule or data file is unreadable.
    """

    rules = rules or RuleCache(settings)
    store = store or DataStore(settings)
    client = client or client_for(settings)
    options = options or VariantOptions(
        check_images=settings.check_images,
        max_scans=settings.max_scans,
        workers=settings.verify_workers,
    )

    story_dir = settings.story_dir(lang_code)
    story_files = list_story_files(story_dir)
    if not story_files:
        logger.warning("No story files found for %s in %s; skipping", lang_code, story_dir)
        return None
    logger.info("Processing %d story files for %s", len(story_files), lang_code)

    tables = rules.tables(lang_code)
    results = run_parse_pass(
        story_files,
        story_dir,
        tables,
        workers=settings.parse_workers,
        use_processes=use_processes,
        progress=progress,
    )
    logger.info("Found %d characters in %s stories", len(results), lang_code)

    scan_state = load_scan_state(store.load_scan_state())
    probe = partial(client.image_exists, sources=settings.image_sources) if options.check_images else None
    variants = generate_variants(results, scan_state, options, probe, now)
    scanned = {cid for cid, v in variants.items() if v is not None} if options.check_images else set()

    valid_paths = client.fetch_valid_story_paths(language(lang_code).region)

    consolidated = Consolidator(tables, settings.master_language).consolidate(
        results,
        variants,
        store.load_characters(),
        store.load_names(lang_code),
        store.load_storys(lang_code),
        scan_state,
        valid_story_paths=valid_paths,
        scanned=scanned,
        now=now,
    )
    store.save_pass(lang_code, consolidated)
    return consolidated


@log_call()
def update_names_only(
    lang_code: str,
    settings: Settings,
    *,
    rules: RuleCache | None = None,
    store: DataStore | None = None,
    use_processes: bool = True,
) -> ConsolidatedTables | None:
    """Reparse stories and refresh language tables without touching global ones."""
    rules = rules or RuleCache(settings)
    store = store or DataStore(settings)

    characters = store.load_characters()
    story_dir = settings.story_dir(lang_code)
    story_files = list_story_files(story_dir)
    if not story_files:
        logger.warning("No story files found for %s; keeping existing names", lang_code)
        return None

    tables = rules.tables(lang_code)
    results = run_parse_pass(story_files, story_dir, tables, workers=settings.parse_workers, use_processes=use_processes)
    refreshed = Consolidator(tables, settings.master_language).refresh_names(
        results, characters, store.load_names(lang_code), store.load_storys(lang_code)
    )
    store.save_pass(lang_code, refreshed, include_global=False)
    return refreshed
