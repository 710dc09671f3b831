"""Valid face/body variants per character and the scan bookkeeping behind them.

In metadata mode the variants of a character are exactly those seen on stage
across the corpus. In verified mode, characters whose last scan is older than
a day are probed against the image hosts on a bounded thread pool, capped at
``max_scans`` characters per run.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from akstory.orchestrator import partition, run_chunked, thread_pool
from akstory.parser import ParseResult

__all__ = [
    "DAY_MS",
    "ScanStats",
    "VariantOptions",
    "default_variant",
    "dump_scan_state",
    "generate_variants",
    "load_scan_state",
    "probe_variants",
    "should_scan",
    "update_scan_stats",
    "verify_chunk",
]

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000

Probe = Callable[[str], bool]


def now_ms() -> int:
    return int(time.time() * 1000)


def default_variant(char_id: str) -> str:
    return f"{char_id}#1$1"


@dataclass
class VariantOptions:
    """Knobs for :func:`generate_variants`.

    Attributes:
        check_images: Probe image hosts instead of trusting observed variants.
        max_scans: Maximum characters probed in one run.
        workers: Upper bound on probe worker threads.
        scan_all: Ignore scan freshness.
        target_char: Only consider this character id.
        smart_detection: Probe faces 1-15 and bodies 1-3 (else faces 1-5, body 1).
    """

    check_images: bool = False
    max_scans: int = 300
    workers: int = 6
    scan_all: bool = False
    target_char: str | None = None
    smart_detection: bool = True


@dataclass
class ScanStats:
    """Verification history for one character."""

    last_scan_time: int = 0
    variant_count: int = 0
    consistent_count: int = 0
    status: str = "active"

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastScanTime": self.last_scan_time,
            "variantCount": self.variant_count,
            "consistentCount": self.consistent_count,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScanStats:
        return cls(
            last_scan_time=int(data.get("lastScanTime") or 0),
            variant_count=int(data.get("variantCount", data.get("lastVariantCount")) or 0),
            consistent_count=int(data.get("consistentCount") or 0),
            status=str(data.get("status") or "active"),
        )


def load_scan_state(data: Mapping[str, Any]) -> dict[str, ScanStats]:
    return {k: ScanStats.from_dict(v) for k, v in data.items() if isinstance(v, Mapping)}


def dump_scan_state(state: Mapping[str, ScanStats]) -> dict[str, dict[str, Any]]:
    return {k: v.to_dict() for k, v in state.items()}


def update_scan_stats(
    state: dict[str, ScanStats], char_id: str, variant_count: int, now: int | None = None
) -> ScanStats:
    """Record a scan outcome and reclassify the character's stability.

    A character whose count repeats 20 times at a single variant is considered
    an ``npc``; 5 repeats with several variants is ``stable``.
    """

    stats = state.get(char_id) or ScanStats()
    if variant_count == stats.variant_count:
        stats.consistent_count += 1
    else:
        stats.consistent_count = 0
    stats.last_scan_time = now_ms() if now is None else now
    stats.variant_count = variant_count
    if variant_count == 1 and stats.consistent_count >= 20:
        stats.status = "npc"
    elif stats.consistent_count >= 5 and variant_count > 1:
        stats.status = "stable"
    else:
        stats.status = "active"
    state[char_id] = stats
    return stats


def should_scan(char_id: str, state: Mapping[str, ScanStats], options: VariantOptions, now: int) -> bool:
    if options.target_char and char_id != options.target_char:
        return False
    if options.scan_all:
        return True
    stats = state.get(char_id)
    if stats is None or not stats.last_scan_time:
        return True
    return now - stats.last_scan_time > DAY_MS


def probe_variants(char_id: str, probe: Probe, smart_detection: bool = True, fallback: Sequence[str] = ()) -> list[str]:
    """Return the variants of ``char_id`` whose images exist.

    Faces are walked upwards; past face 2 a missing image ends the body walk
    for that face. With nothing confirmed, ``fallback`` (or the default
    variant) is returned.
    """

    max_face, max_body = (15, 3) if smart_detection else (5, 1)
    confirmed: list[str] = []
    for face in range(1, max_face + 1):
        for body in range(1, max_body + 1):
            variant = f"{char_id}#{face}${body}"
            if probe(variant):
                confirmed.append(variant)
            elif face > 2:
                break
    if not confirmed:
        return sorted(fallback) or [default_variant(char_id)]
    return sorted(confirmed)


def verify_chunk(
    char_ids: Sequence[str],
    observed: Mapping[str, Sequence[str]],
    probe: Probe,
    smart_detection: bool,
) -> list[tuple[str, list[str]]]:
    """Worker entry point: probe every character of one chunk."""
    return [(cid, probe_variants(cid, probe, smart_detection, observed.get(cid, ()))) for cid in char_ids]


def generate_variants(
    results: Mapping[str, ParseResult],
    scan_state: dict[str, ScanStats],
    options: VariantOptions | None = None,
    probe: Probe | None = None,
    now: int | None = None,
) -> dict[str, list[str] | None]:
    """Decide the valid variant list of every parsed character.

    Returns:
        ``{char_id: variants}``. In verified mode characters that were not
        scanned map to ``None`` (keep whatever is already recorded).

    Raises:
        WorkerError: If a probe worker fails.
    """

    options = options or VariantOptions()
    observed = {cid: sorted(set(r.variants)) for cid, r in results.items()}
    if not options.check_images or probe is None:
        if options.check_images:
            logger.warning("Image check requested without a probe; using observed variants")
        return {cid: variants or [default_variant(cid)] for cid, variants in observed.items()}

    now = now_ms() if now is None else now
    candidates = [cid for cid in sorted(results) if should_scan(cid, scan_state, options, now)]
    active = candidates[: max(options.max_scans, 0)]
    if len(candidates) > len(active):
        logger.info("Scan cap reached: %d of %d characters deferred", len(candidates) - len(active), len(candidates))
    logger.info("Verifying variants for %d characters", len(active))

    chunks = partition(active, options.workers)
    partials = run_chunked(
        verify_chunk,
        chunks,
        observed,
        probe,
        options.smart_detection,
        stage="verify",
        executor_factory=thread_pool,
    )

    out: dict[str, list[str] | None] = {cid: None for cid in results}
    for partial in partials:
        for cid, variants in partial:
            out[cid] = variants
            update_scan_stats(scan_state, cid, len(variants), now)
    return out
