"""
AniList <-> scraper id mappings.

Manual mappings pin an AniList id to a scraper id (a MangaKatana slug or an
AnimePahe session) with the title it was saved under. Identified mappings go
the other way: a MangaKatana slug is matched once against AniList search and
the id is remembered. Both live in process memory.
"""

import logging
import re
import time
from typing import Callable

import anilist
from errors import ScraperError
from mappers import MANGA_PREFIX, strip_prefix
from matching import best_match

log = logging.getLogger("yorumi.mapping")

IDENTIFY_CANDIDATES = 5

_VOLUME_RE = re.compile(r"\(Vol\.\d+\)", re.I)


def clean_title(title: str) -> str:
    """'Berserk (Vol.41)' -> 'Berserk'."""
    return _VOLUME_RE.sub("", title or "").strip()


def title_variants(media: dict) -> list[dict]:
    """One match candidate per romaji/english title and synonym."""
    titles = media.get("title") or {}
    names = [titles.get("romaji"), titles.get("english"), *(media.get("synonyms") or [])]
    return [{"title": name, "anilistId": media["id"]} for name in names if name]


class MappingStore:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        # anilist id -> {"id": scraper id, "title", "timestamp"}
        self._mappings: dict[str, dict] = {}
        # manga slug -> anilist id
        self._identities: dict[str, int] = {}

    def get(self, anilist_id) -> dict | None:
        return self._mappings.get(str(anilist_id))

    def save(self, anilist_id, scraper_id: str, title: str | None = None) -> dict:
        mapping = {"id": scraper_id, "title": title or "", "timestamp": int(self._clock() * 1000)}
        self._mappings[str(anilist_id)] = mapping
        log.info(f"Saved mapping {anilist_id} -> {scraper_id}")
        return mapping

    def delete(self, anilist_id) -> bool:
        removed = self._mappings.pop(str(anilist_id), None) is not None
        if removed:
            log.info(f"Deleted mapping {anilist_id}")
        return removed

    def get_identity(self, slug: str) -> int | None:
        return self._identities.get(strip_prefix(slug, MANGA_PREFIX))

    def remember_identity(self, slug: str, anilist_id: int) -> None:
        self._identities[strip_prefix(slug, MANGA_PREFIX)] = anilist_id


async def identify(store: MappingStore, slug: str, title: str, metadata=anilist) -> int | None:
    """AniList id for a MangaKatana slug, searched once and then remembered.

    The top AniList manga results are checked against every title variant;
    nothing is remembered when none of them fits.
    """
    known = store.get_identity(slug)
    if known is not None:
        log.info(f"Identity hit: {slug} -> {known}")
        return known

    query = clean_title(title)
    if not query:
        return None

    try:
        page = await metadata.search_manga(query, 1, IDENTIFY_CANDIDATES)
    except ScraperError as e:
        log.error(f"AniList search failed identifying '{slug}' [{e.kind}]: {e}")
        return None
    except Exception as e:
        log.error(f"Unexpected error identifying '{slug}': {e}", exc_info=True)
        return None

    candidates = [variant for media in page.get("media") or [] for variant in title_variants(media)]
    match = best_match({"title": query}, candidates)
    if match is None:
        return None

    anilist_id = match["anilistId"]
    store.remember_identity(slug, anilist_id)
    log.info(f"Identified {slug} as AniList {anilist_id} via '{match['title']}'")
    return anilist_id
