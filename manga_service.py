"""
Manga resolution & caching service.

Sits between the routes and the MangaKatana extractor: namespaces ids,
caches every read per operation class, and turns extractor failures into
empty results (or the last known value when one is still in memory).
"""

import asyncio
import logging
import time
from typing import Any, Callable, Coroutine

import anilist
import mangakatana
from browser import BrowserProvider
from cache import TTL_AGGREGATE, TTL_DETAILS, TTL_LISTING, TTL_PAGES, TTL_SEARCH, SWEEP_THRESHOLD, TTLCache
from errors import ScraperError
from mappers import (
    MANGA_PREFIX,
    match_target,
    media_title,
    spotlight_from_hot_update,
    strip_prefix,
    with_latest_chapter,
    with_prefixed_id,
)
from matching import best_match

log = logging.getLogger("yorumi.manga")

HOT_UPDATES_KEY = "hot_updates"
SPOTLIGHT_KEY = "spotlight"
SPOTLIGHT_SIZE = 10


def search_key(query: str) -> str:
    return (query or "").strip().lower()


class MangaService:
    def __init__(
        self,
        provider: BrowserProvider,
        extractor=mangakatana,
        metadata=anilist,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.extractor = extractor
        self.metadata = metadata

        self.search_cache = TTLCache(TTL_SEARCH, max_entries=SWEEP_THRESHOLD, clock=clock, name="manga-search")
        self.details_cache = TTLCache(TTL_DETAILS, max_entries=SWEEP_THRESHOLD, clock=clock, name="manga-details")
        self.chapters_cache = TTLCache(TTL_LISTING, max_entries=SWEEP_THRESHOLD, clock=clock, name="manga-chapters")
        self.pages_cache = TTLCache(TTL_PAGES, max_entries=SWEEP_THRESHOLD, clock=clock, name="manga-pages")
        self.aggregate_cache = TTLCache(TTL_AGGREGATE, clock=clock, name="manga-aggregate")

        self._tasks: set[asyncio.Task] = set()
        self._prefetching: set[str] = set()

    # --- Background work ---

    def schedule(self, coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                log.error(f"Background {label} failed: {exc!r}")

        task.add_done_callback(_done)
        return task

    async def wait_background(self) -> None:
        """Wait for every scheduled background task (tests, shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Catalog ---

    async def unified_search(self, query: str) -> list[dict]:
        key = search_key(query)
        if not key:
            return []
        cached = self.search_cache.get(key)
        if cached is not None:
            return cached

        try:
            results = await self.extractor.search(query.strip())
        except ScraperError as e:
            log.error(f"Manga search failed for '{key}' [{e.kind}]: {e}")
            return self.search_cache.get_stale(key) or []
        except Exception as e:
            log.error(f"Unexpected error searching manga '{key}': {e}", exc_info=True)
            return self.search_cache.get_stale(key) or []

        mapped = [with_prefixed_id(r, MANGA_PREFIX, mangakatana.SOURCE) for r in results]
        self.search_cache.set(key, mapped)
        log.info(f"Manga search '{key}': {len(mapped)} results")
        return mapped

    async def get_details(self, manga_id: str) -> dict | None:
        raw_id = strip_prefix(manga_id, MANGA_PREFIX)
        cached = self.details_cache.get(raw_id)
        if cached is not None:
            return cached

        try:
            details = await self.extractor.get_details(raw_id)
        except ScraperError as e:
            log.error(f"Manga details failed for {raw_id} [{e.kind}]: {e}")
            return self.details_cache.get_stale(raw_id)
        except Exception as e:
            log.error(f"Unexpected error fetching manga details {raw_id}: {e}", exc_info=True)
            return self.details_cache.get_stale(raw_id)

        mapped = with_prefixed_id(details, MANGA_PREFIX, mangakatana.SOURCE)
        self.details_cache.set(raw_id, mapped)
        return mapped

    async def get_chapters(self, manga_id: str) -> list[dict]:
        raw_id = strip_prefix(manga_id, MANGA_PREFIX)
        cached = self.chapters_cache.get(raw_id)
        if cached is not None:
            return cached

        try:
            chapters = await self.extractor.get_chapter_list(raw_id)
        except ScraperError as e:
            log.error(f"Chapter list failed for {raw_id} [{e.kind}]: {e}")
            return self.chapters_cache.get_stale(raw_id) or []
        except Exception as e:
            log.error(f"Unexpected error fetching chapters {raw_id}: {e}", exc_info=True)
            return self.chapters_cache.get_stale(raw_id) or []

        mapped = [with_prefixed_id(c, MANGA_PREFIX) for c in chapters]
        self.chapters_cache.set(raw_id, mapped)
        log.info(f"{raw_id}: {len(mapped)} chapters")
        return mapped

    # --- Reader ---

    async def get_chapter_pages(self, chapter_url: str) -> list[dict]:
        cached = self.pages_cache.get(chapter_url)
        if cached is not None:
            return cached

        try:
            pages = await self.extractor.get_chapter_pages(chapter_url, self.provider)
        except ScraperError as e:
            log.error(f"Chapter pages failed [{e.kind}]: {e}")
            return []
        except Exception as e:
            log.error(f"Unexpected error fetching pages for {chapter_url}: {e}", exc_info=True)
            return []

        # Empty results stay uncached so the next read retries the source.
        if pages:
            self.pages_cache.set(chapter_url, pages)
        return pages

    async def _prefetch_one(self, chapter_url: str) -> None:
        try:
            pages = await self.get_chapter_pages(chapter_url)
            log.info(f"Prefetched {len(pages)} pages: {chapter_url}")
        finally:
            self._prefetching.discard(chapter_url)

    def prefetch(self, urls: list[str]) -> dict:
        """Warm the page cache in the background. Returns at once."""
        queued = skipped = 0
        for url in urls:
            if not url or self.pages_cache.is_fresh(url) or url in self._prefetching:
                skipped += 1
                continue
            self._prefetching.add(url)
            self.schedule(self._prefetch_one(url), f"prefetch of {url}")
            queued += 1
        return {"queued": queued, "skipped": skipped}

    # --- Aggregate feeds ---

    async def get_hot_updates(self) -> list[dict]:
        cached = self.aggregate_cache.get(HOT_UPDATES_KEY)
        if cached is not None:
            return cached

        try:
            updates = await self.extractor.get_hot_updates(self.provider)
        except ScraperError as e:
            log.error(f"Hot updates failed [{e.kind}]: {e}")
            return self.aggregate_cache.get_stale(HOT_UPDATES_KEY) or []
        except Exception as e:
            log.error(f"Unexpected error fetching hot updates: {e}", exc_info=True)
            return self.aggregate_cache.get_stale(HOT_UPDATES_KEY) or []

        mapped = [with_prefixed_id(u, MANGA_PREFIX, mangakatana.SOURCE) for u in updates]
        if mapped:
            self.aggregate_cache.set(HOT_UPDATES_KEY, mapped)
        return mapped

    async def _enrich_spotlight(self, media: list[dict]) -> None:
        enriched = []
        for item in media:
            title = media_title(item)
            candidates = await self.unified_search(title) if title else []
            enriched.append(with_latest_chapter(item, best_match(match_target(item), candidates)))
        if self.aggregate_cache.get_stale(SPOTLIGHT_KEY) is not media:
            log.info("Spotlight changed during enrichment, discarding enriched copy")
            return
        self.aggregate_cache.set(SPOTLIGHT_KEY, enriched)
        matched = sum(1 for item in enriched if "scraperId" in item)
        log.info(f"Spotlight enriched: {matched}/{len(enriched)} matched")

    async def get_enriched_spotlight(self) -> list[dict]:
        """Trending manga, later annotated with scraped latest chapters.

        The plain trending list is cached and returned straight away; the
        enriched copy replaces it once the background pass finishes. With no
        trending data the spotlight is built from hot updates instead.
        """
        cached = self.aggregate_cache.get(SPOTLIGHT_KEY)
        if cached is not None:
            return cached

        try:
            trending = await self.metadata.get_trending_manga(1, SPOTLIGHT_SIZE)
        except ScraperError as e:
            log.error(f"Trending manga failed [{e.kind}]: {e}")
            trending = {}
        except Exception as e:
            log.error(f"Unexpected error fetching trending manga: {e}", exc_info=True)
            trending = {}
        media = trending.get("media") or []
        if media:
            self.aggregate_cache.set(SPOTLIGHT_KEY, media)
            self.schedule(self._enrich_spotlight(media), "spotlight enrichment")
            return media

        log.warning("No trending manga from AniList, using hot updates for spotlight")
        spotlight = [spotlight_from_hot_update(u) for u in await self.get_hot_updates()]
        if spotlight:
            self.aggregate_cache.set(SPOTLIGHT_KEY, spotlight)
            return spotlight
        return self.aggregate_cache.get_stale(SPOTLIGHT_KEY) or []

    async def warm_spotlight_cache(self) -> None:
        try:
            spotlight = await self.get_enriched_spotlight()
            log.info(f"Spotlight cache warmed with {len(spotlight)} entries")
        except Exception as e:
            log.error(f"Spotlight warm-up failed: {e}", exc_info=True)
