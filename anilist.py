"""
Async client for the AniList GraphQL API.

Fixed query templates sharing one MEDIA_FIELDS fragment, request spacing to
stay under AniList's rate limit, and per-class TTL caching of page queries.
AniList is the ground truth that scraped results get matched against.
"""

import asyncio
import json
import logging
import math
import time
from typing import Any

import httpx

import config
from cache import MINUTE, TTLCache
from errors import ParseError, ScraperError, TransportError

log = logging.getLogger("yorumi.anilist")

MEDIA_FIELDS = """
    id
    idMal
    title {
        romaji
        english
        native
    }
    synonyms
    description
    bannerImage
    coverImage {
        extraLarge
        large
    }
    format
    episodes
    chapters
    volumes
    duration
    status
    season
    seasonYear
    startDate {
        year
        month
        day
    }
    endDate {
        year
        month
        day
    }
    averageScore
    meanScore
    popularity
    genres
    studios(isMain: true) {
        nodes {
            name
        }
    }
    isAdult
    nextAiringEpisode {
        episode
        airingAt
    }
    streamingEpisodes {
        title
        thumbnail
        url
        site
    }
"""

PAGE_INFO = """
    pageInfo {
        total
        currentPage
        lastPage
        hasNextPage
    }
"""


def _page_query(media_args: str, variables: str = "$page: Int, $perPage: Int") -> str:
    return f"""
query ({variables}) {{
    Page(page: $page, perPage: $perPage) {{
        {PAGE_INFO}
        media({media_args}) {{
            {MEDIA_FIELDS}
        }}
    }}
}}
"""


TRENDING_MANGA_QUERY = _page_query("type: MANGA, sort: TRENDING_DESC")
SEARCH_ANIME_QUERY = _page_query(
    "search: $search, type: ANIME, sort: SEARCH_MATCH, isAdult: false",
    "$search: String, $page: Int, $perPage: Int",
)
SEARCH_MANGA_QUERY = _page_query(
    "search: $search, type: MANGA, sort: SEARCH_MATCH",
    "$search: String, $page: Int, $perPage: Int",
)

EMPTY_PAGE = {"media": [], "pageInfo": {}}

# Page query caches per class
_caches = {
    "trending": TTLCache(5 * MINUTE, max_entries=100, name="anilist-trending"),
}

_last_request = 0.0
_request_lock = asyncio.Lock()


def clear_caches() -> None:
    for cache in _caches.values():
        cache.clear()


async def _post(query: str, variables: dict) -> Any:
    async with httpx.AsyncClient(timeout=config.HTTP_TIMEOUT) as client:
        resp = await client.post(
            config.ANILIST_URL,
            json={"query": query, "variables": variables},
            headers={"Accept": "application/json"},
        )
        if resp.status_code == 429:
            log.warning(f"AniList rate limit hit, waiting {config.ANILIST_RETRY_DELAY:.0f}s...")
            await asyncio.sleep(config.ANILIST_RETRY_DELAY)
            resp = await client.post(
                config.ANILIST_URL,
                json={"query": query, "variables": variables},
                headers={"Accept": "application/json"},
            )
        resp.raise_for_status()
        return resp.json()


async def request(query: str, variables: dict) -> dict:
    """POST a query, keeping at least ANILIST_MIN_INTERVAL between requests.

    Returns the ``data`` object. Transport failures raise TransportError; a
    body that is not a JSON object (challenge pages, null) raises ParseError.
    """
    global _last_request
    async with _request_lock:
        wait = config.ANILIST_MIN_INTERVAL - (time.monotonic() - _last_request)
        if wait > 0:
            await asyncio.sleep(wait)
        _last_request = time.monotonic()

    try:
        body = await _post(query, variables)
    except httpx.HTTPError as e:
        raise TransportError(f"AniList request failed: {e!r}", url=config.ANILIST_URL) from e
    except ValueError as e:
        raise ParseError(f"AniList body is not JSON: {e}", url=config.ANILIST_URL) from e

    if not isinstance(body, dict):
        raise ParseError(f"Unexpected AniList body: {type(body).__name__}", url=config.ANILIST_URL)
    data = body.get("data") or {}
    if not isinstance(data, dict):
        raise ParseError("AniList 'data' is not an object", url=config.ANILIST_URL)
    return data


def _page(data: dict) -> dict:
    page = data.get("Page")
    return page if isinstance(page, dict) else dict(EMPTY_PAGE)


async def _cached_page(kind: str, name: str, query: str, variables: dict) -> dict:
    cache = _caches[kind]
    key = f"{name}:{json.dumps(variables, sort_keys=True)}"
    cached = cache.get(key)
    if cached is not None:
        return cached

    try:
        data = await request(query, variables)
    except ScraperError as e:
        log.error(f"Error fetching {name} [{e.kind}]: {e}")
        return dict(EMPTY_PAGE)

    page = _page(data)
    cache.set(key, page)
    return page


async def get_trending_manga(page: int = 1, per_page: int = 10) -> dict:
    return await _cached_page(
        "trending", "trending_manga", TRENDING_MANGA_QUERY, {"page": page, "perPage": per_page}
    )


def fix_page_info(page_data: dict, page: int, per_page: int) -> dict:
    """Recompute lastPage/hasNextPage from total so they honour perPage."""
    info = page_data.get("pageInfo") or {}
    total = info.get("total")
    if total:
        info["lastPage"] = math.ceil(total / per_page)
        info["hasNextPage"] = page < info["lastPage"]
    return page_data


async def _search(query: str, kind: str, search: str, page: int, per_page: int) -> dict:
    try:
        data = await request(query, {"search": search, "page": page, "perPage": per_page})
    except ScraperError as e:
        log.error(f"Error searching AniList {kind} for '{search}' [{e.kind}]: {e}")
        return dict(EMPTY_PAGE)
    return fix_page_info(_page(data), page, per_page)


async def search_anime(search: str, page: int = 1, per_page: int = 24) -> dict:
    return await _search(SEARCH_ANIME_QUERY, "anime", search, page, per_page)


async def search_manga(search: str, page: int = 1, per_page: int = 24) -> dict:
    return await _search(SEARCH_MANGA_QUERY, "manga", search, page, per_page)
