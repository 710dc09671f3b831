"""Thin HTTP client for the upstream gamedata repository and image hosts.

Only two remote facts are consumed by the pipeline:

* the ``story_review_table`` of a region, used as the allowlist of story paths;
* whether a character image exists, used to verify face/body variants.

Both are optional enrichments: every network failure is logged and reported as
"unknown" (``None``) or "missing" (``False``) rather than raised.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import requests

__all__ = [
    "GameDataClient",
    "StoryRef",
    "normalize_story_ref",
    "valid_story_paths",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StoryRef:
    """A story path as listed upstream, without the ``.txt`` extension."""

    path: str


def normalize_story_ref(raw: Any) -> StoryRef | None:
    """Collapse the upstream ``storyTxt`` shapes into a :class:`StoryRef`.

    Upstream tables carry either a plain string or an object with a ``url``
    key; anything else is ignored.
    """

    if isinstance(raw, dict):
        raw = raw.get("url")
    if not isinstance(raw, str):
        return None
    path = raw.strip().replace("\\", "/")
    if path.endswith(".txt"):
        path = path[: -len(".txt")]
    return StoryRef(path) if path else None


def valid_story_paths(review_table: Any) -> set[str]:
    """Collect every story path from a ``story_review_table`` payload."""
    paths: set[str] = set()
    if not isinstance(review_table, dict):
        return paths
    for act in review_table.values():
        if not isinstance(act, dict):
            continue
        for entry in act.get("infoUnlockDatas") or ():
            if not isinstance(entry, dict):
                continue
            ref = normalize_story_ref(entry.get("storyTxt"))
            if ref is not None:
                paths.add(ref.path)
    return paths


@dataclass
class GameDataClient:
    """Requests-based access to gamedata and image sources.

    Attributes:
        base_url: Region-independent gamedata root.
        timeout_s: Timeout for JSON downloads.
        probe_timeout_s: Timeout for image existence probes.
    """

    base_url: str = "https://raw.githubusercontent.com/ArknightsAssets/ArknightsGamedata/master"
    timeout_s: float = 30.0
    probe_timeout_s: float = 5.0

    def __post_init__(self) -> None:
        self._session = requests.Session()

    def region_url(self, region: str) -> str:
        return f"{self.base_url.rstrip('/')}/{region}"

    def fetch_json(self, url: str) -> Any:
        """GET ``url`` and decode JSON.

        Raises:
            requests.RequestException: On connection errors or non-2xx status.
            ValueError: If the body is not JSON.
        """

        r = self._session.get(url, timeout=self.timeout_s)
        r.raise_for_status()
        return r.json()

    def fetch_story_review_table(self, region: str) -> dict[str, Any] | None:
        """Return the region's ``story_review_table`` or ``None`` if unavailable."""
        url = f"{self.region_url(region)}/gamedata/excel/story_review_table.json"
        try:
            data = self.fetch_json(url)
        except (requests.RequestException, ValueError) as e:
            logger.warning("Could not load story_review_table from %s: %s", url, e)
            return None
        if not isinstance(data, dict):
            logger.warning("Unexpected story_review_table payload from %s", url)
            return None
        return data

    def fetch_valid_story_paths(self, region: str) -> set[str] | None:
        table = self.fetch_story_review_table(region)
        if table is None:
            return None
        paths = valid_story_paths(table)
        logger.info("Loaded %d valid story paths for region %s", len(paths), region)
        return paths

    def url_exists(self, url: str) -> bool:
        """HEAD-probe ``url``; any failure counts as missing."""
        try:
            r = self._session.head(url, timeout=self.probe_timeout_s, allow_redirects=True)
        except requests.RequestException as e:
            logger.debug("Probe failed for %s: %s", url, e)
            return False
        return r.status_code == 200

    def image_exists(self, variant: str, sources: Iterable[str]) -> bool:
        """Return True if any source hosts ``{variant}.png``."""
        encoded = quote(variant, safe="")
        return any(self.url_exists(f"{source}{encoded}.png") for source in sources)
