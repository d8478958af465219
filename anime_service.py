"""
Anime resolution & caching service.

Wraps the AnimePahe scraper (search, episodes, streams), maps AniList titles
onto AnimePahe sessions, and builds the anime spotlight from HiAnime's slider.
Every public call resolves to an empty/default value when a source fails.
"""

import logging
import time
from typing import Callable

import anilist
import hianime
from animepahe import AnimePaheScraper
from cache import TTL_AGGREGATE, TTL_LISTING, TTL_PAGES, TTL_SEARCH, SWEEP_THRESHOLD, TTLCache
from errors import ScraperError
from manga_service import search_key
from mappers import SESSION_PREFIX, anime_from_anilist, strip_prefix
from matching import best_match, normalize_title

log = logging.getLogger("yorumi.anime")

SPOTLIGHT_KEY = "spotlight"
TITLES_KEY = "spotlight_titles"


def empty_episodes() -> dict:
    return {"episodes": [], "lastPage": 1}


class AnimeService:
    def __init__(
        self,
        scraper: AnimePaheScraper,
        catalog=hianime,
        metadata=anilist,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.scraper = scraper
        self.catalog = catalog
        self.metadata = metadata

        self.search_cache = TTLCache(TTL_SEARCH, max_entries=SWEEP_THRESHOLD, clock=clock, name="anime-search")
        self.episodes_cache = TTLCache(TTL_LISTING, max_entries=SWEEP_THRESHOLD, clock=clock, name="anime-episodes")
        self.streams_cache = TTLCache(TTL_PAGES, max_entries=SWEEP_THRESHOLD, clock=clock, name="anime-streams")
        self.aggregate_cache = TTLCache(TTL_AGGREGATE, clock=clock, name="anime-aggregate")

        # (normalized title, year, type) -> AnimePahe session
        self._sessions: dict[tuple, str] = {}

    async def close(self) -> None:
        await self.scraper.close()

    async def search(self, query: str) -> list[dict]:
        key = search_key(query)
        if not key:
            return []
        cached = self.search_cache.get(key)
        if cached is not None:
            return cached

        try:
            results = await self.scraper.search(query.strip())
        except ScraperError as e:
            log.error(f"Anime search failed for '{key}' [{e.kind}]: {e}")
            return self.search_cache.get_stale(key) or []
        except Exception as e:
            log.error(f"Unexpected error searching anime '{key}': {e}", exc_info=True)
            return self.search_cache.get_stale(key) or []

        self.search_cache.set(key, results)
        log.info(f"Anime search '{key}': {len(results)} results")
        return results

    async def get_episodes(self, session: str, page: int = 1) -> dict:
        anime_session = strip_prefix(session, SESSION_PREFIX)
        key = (anime_session, page)
        cached = self.episodes_cache.get(key)
        if cached is not None:
            return cached

        try:
            episodes = await self.scraper.get_episodes(anime_session, page)
        except ScraperError as e:
            log.error(f"Episodes failed for {anime_session} page {page} [{e.kind}]: {e}")
            return self.episodes_cache.get_stale(key) or empty_episodes()
        except Exception as e:
            log.error(f"Unexpected error fetching episodes {anime_session}: {e}", exc_info=True)
            return self.episodes_cache.get_stale(key) or empty_episodes()

        if episodes["episodes"]:
            self.episodes_cache.set(key, episodes)
        return episodes

    async def get_streams(self, anime_session: str, episode_session: str) -> list[dict]:
        anime_session = strip_prefix(anime_session, SESSION_PREFIX)
        key = f"{anime_session}:{episode_session}"
        cached = self.streams_cache.get(key)
        if cached is not None:
            return cached

        try:
            links = await self.scraper.get_stream_links(anime_session, episode_session)
        except ScraperError as e:
            log.error(f"Streams failed for {key} [{e.kind}]: {e}")
            return []
        except Exception as e:
            log.error(f"Unexpected error fetching streams {key}: {e}", exc_info=True)
            return []

        if links:
            self.streams_cache.set(key, links)
        return links

    async def resolve_session(self, title: str, year: int | None = None, media_type: str | None = None) -> str | None:
        """AnimePahe session for an AniList title, or None when nothing fits."""
        key = (normalize_title(title), year, (media_type or "").lower())
        if key in self._sessions:
            return self._sessions[key]

        candidates = await self.search(title)
        match = best_match({"title": title, "year": year, "type": media_type}, candidates)
        if match is None:
            return None

        session = match["session"]
        self._sessions[key] = session
        log.info(f"Resolved '{title}' ({year}) -> '{match.get('title')}' [{session}]")
        return session

    async def get_spotlight_titles(self) -> list[str]:
        cached = self.aggregate_cache.get(TITLES_KEY)
        if cached is not None:
            return cached

        try:
            titles = await self.catalog.get_spotlight_titles()
        except ScraperError as e:
            log.error(f"HiAnime spotlight failed [{e.kind}]: {e}")
            return self.aggregate_cache.get_stale(TITLES_KEY) or []
        except Exception as e:
            log.error(f"Unexpected error fetching HiAnime spotlight: {e}", exc_info=True)
            return self.aggregate_cache.get_stale(TITLES_KEY) or []

        if titles:
            self.aggregate_cache.set(TITLES_KEY, titles)
        return titles

    async def get_spotlight(self) -> list[dict]:
        """HiAnime's promoted titles as AniList-backed anime cards."""
        cached = self.aggregate_cache.get(SPOTLIGHT_KEY)
        if cached is not None:
            return cached

        spotlight = []
        for title in await self.get_spotlight_titles():
            try:
                page = await self.metadata.search_anime(title, 1, 1)
            except ScraperError as e:
                log.error(f"AniList lookup failed for spotlight title '{title}' [{e.kind}]: {e}")
                continue
            except Exception as e:
                log.error(f"Unexpected error looking up spotlight title '{title}': {e}", exc_info=True)
                continue
            media = page.get("media") or []
            if not media:
                log.info(f"No AniList match for spotlight title '{title}'")
                continue
            spotlight.append(anime_from_anilist(media[0]))

        if spotlight:
            self.aggregate_cache.set(SPOTLIGHT_KEY, spotlight)
            return spotlight
        return self.aggregate_cache.get_stale(SPOTLIGHT_KEY) or []
