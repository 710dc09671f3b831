"""Fan-out/fan-in of story parsing across a worker pool.

The corpus is split into contiguous, near-equal chunks, one per worker. Each
worker receives its slice of paths plus a picklable :class:`RuleTables`
snapshot and returns plain :class:`ParseResult` values; the orchestrator then
reduces the partial maps in chunk order. Any worker failure aborts the whole
pass with :class:`WorkerError`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import TypeVar

from tqdm import tqdm

from akstory.errors import WorkerError
from akstory.logging_setup import TRACE_LEVEL
from akstory.parser import ParseResult, StoryParser
from akstory.rules import RuleTables

__all__ = [
    "list_story_files",
    "merge_results",
    "parse_chunk",
    "process_pool",
    "partition",
    "run_chunked",
    "run_parse_pass",
    "story_id_for",
    "thread_pool",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def partition(items: Sequence[T], workers: int) -> list[list[T]]:
    """Split ``items`` into ``min(workers, len(items))`` contiguous chunks."""
    count = min(max(int(workers), 1), len(items))
    if count == 0:
        return []
    n = len(items)
    return [list(items[(n * i) // count : (n * (i + 1)) // count]) for i in range(count)]


def story_id_for(relative: str) -> str:
    """Story id for a relative script path: POSIX separators, no ``.txt``."""
    story_id = relative.replace("\\", "/")
    if story_id.endswith(".txt"):
        story_id = story_id[: -len(".txt")]
    return story_id


def list_story_files(story_dir: Path) -> list[str]:
    """Return sorted ``.txt`` paths under ``story_dir`` relative to it."""
    if not story_dir.is_dir():
        return []
    return sorted(p.relative_to(story_dir).as_posix() for p in story_dir.rglob("*.txt") if p.is_file())


def merge_results(target: dict[str, ParseResult], partial: dict[str, ParseResult]) -> dict[str, ParseResult]:
    """Union ``partial`` into ``target`` in place and return ``target``."""
    for char_id, result in partial.items():
        existing = target.get(char_id)
        if existing is None:
            target[char_id] = ParseResult(
                char_id=result.char_id,
                speaker_names=list(result.speaker_names),
                story_files=list(result.story_files),
                variants=list(result.variants),
                dialog_count=result.dialog_count,
            )
        else:
            existing.merge(result)
    return target


def parse_chunk(story_files: Sequence[str], base_dir: str, tables: RuleTables) -> dict[str, ParseResult]:
    """Worker entry point: parse a slice of the corpus.

    Unreadable files are logged and skipped; anything else propagates and
    fails the worker.
    """

    parser = StoryParser(tables)
    results: dict[str, ParseResult] = {}
    root = Path(base_dir)
    for relative in story_files:
        path = root / relative
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to read %s: %s", path, e)
            continue
        parsed = parser.parse(text, story_id_for(relative))
        logger.log(TRACE_LEVEL, "Parsed %s: %d characters", relative, len(parsed))
        merge_results(results, parsed)
    return results


def run_chunked(
    fn: Callable[..., R],
    chunks: Sequence[Sequence[T]],
    *args: object,
    stage: str,
    executor_factory: Callable[[int], Executor],
    progress: bool = False,
) -> list[R]:
    """Run ``fn(chunk, *args)`` for every chunk on its own worker.

    Returns:
        Worker results in chunk order.

    Raises:
        WorkerError: As soon as any worker fails; pending chunks are cancelled.
    """

    if not chunks:
        return []
    results: list[R | None] = [None] * len(chunks)
    with executor_factory(len(chunks)) as ex:
        future_map: dict[Future[R], int] = {ex.submit(fn, chunk, *args): i for i, chunk in enumerate(chunks)}
        pbar = tqdm(total=len(chunks), desc=f"{stage} chunks", unit="chunk") if progress else None
        try:
            for fut in as_completed(future_map):
                idx = future_map[fut]
                try:
                    results[idx] = fut.result()
                except Exception as e:
                    ex.shutdown(wait=False, cancel_futures=True)
                    raise WorkerError(stage, idx, e) from e
                if pbar is not None:
                    pbar.update(1)
        finally:
            if pbar is not None:
                pbar.close()
    return [r for r in results if r is not None]


def process_pool(workers: int) -> Executor:
    return ProcessPoolExecutor(max_workers=workers)


def thread_pool(workers: int) -> Executor:
    return ThreadPoolExecutor(max_workers=workers)


def run_parse_pass(
    story_files: Iterable[str],
    base_dir: Path,
    tables: RuleTables,
    workers: int = 4,
    use_processes: bool = True,
    progress: bool = False,
) -> dict[str, ParseResult]:
    """Parse the corpus in parallel and reduce to one map keyed by base id."""
    files = sorted(story_files)
    chunks = partition(files, workers)
    logger.info("Parsing %d story files across %d workers (%s)", len(files), len(chunks), tables.lang_code)
    partials = run_chunked(
        parse_chunk,
        chunks,
        str(base_dir),
        tables,
        stage="parse",
        executor_factory=process_pool if use_processes else thread_pool,
        progress=progress,
    )
    merged: dict[str, ParseResult] = {}
    for partial in partials:
        merge_results(merged, partial)
    return merged
