"""
MangaKatana extractor.

Search, details and chapter lists are plain HTML fetches parsed with
BeautifulSoup. Chapter pages try the raw HTML first and only fall back to a
headless browser when that yields nothing. Hot updates are browser-driven.

Parsing helpers take a document string and return records; they never do I/O.
"""

import asyncio
import logging
import re
from typing import Awaitable, Callable

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

import config
from browser import BrowserProvider
from errors import ParseError, ScraperError, TransportError
from fetch import get_html

log = logging.getLogger("yorumi.mangakatana")

BASE_URL = "https://mangakatana.com"
SOURCE = "mangakatana"

HOT_UPDATES_LIMIT = 15
NAVIGATION_TIMEOUT = 30_000  # ms
SELECTOR_TIMEOUT = 10_000  # ms

# Globals the reader script assigns the page image list to.
IMAGE_ARRAY_VARS = ("thzq", "ytaw", "htnc")
_IMAGE_ARRAY_RE = re.compile(
    r"var\s+(?:%s)\s*=\s*\[(.*?)\]" % "|".join(IMAGE_ARRAY_VARS), re.S
)
_STRING_LITERAL_RE = re.compile(r"""['"]([^'"]+)['"]""")


def normalize_url(url: str) -> str:
    """Rewrite protocol-relative URLs (//host/path) to https."""
    if url.startswith("//"):
        return "https:" + url
    return url


def _manga_id_from_url(url: str) -> str:
    """https://mangakatana.com/manga/one-piece.2040/ -> one-piece.2040"""
    if "/manga/" not in url:
        return ""
    return url.split("/manga/", 1)[1].rstrip("/")


def _chapter_id_from_url(url: str) -> str:
    return url.rstrip("/").split("/")[-1]


def _img_src(img) -> str:
    if img is None:
        return ""
    return img.get("data-src") or img.get("src") or ""


def _is_image_url(url: str) -> bool:
    return "http" in url or url.startswith("//")


# --- Parsers ---


def parse_search_results(html: str, final_url: str = "") -> list[dict]:
    """Parse the search listing.

    Single-hit searches redirect to the detail page; in that case the list is
    empty, so a one-item result is built from the heading and ``final_url``.
    """
    soup = BeautifulSoup(html, "html.parser")
    results = []

    for item in soup.select("#book_list > div.item"):
        link = item.select_one("div.text > h3 > a")
        if link is None:
            continue
        title = link.get_text(strip=True)
        url = link.get("href", "")
        if not title or not url:
            continue
        latest = item.select_one(".chapter a")
        results.append(
            {
                "id": _manga_id_from_url(url) or url.rstrip("/"),
                "title": title,
                "url": url,
                "thumbnail": _img_src(item.select_one("div.cover img")),
                "latestLabel": latest.get_text(strip=True) if latest else "",
                "author": None,
                "altNames": [],
                "source": SOURCE,
            }
        )

    if results:
        return results

    heading = soup.select_one(".info .heading")
    detail_title = heading.get_text(strip=True) if heading else ""
    if detail_title and "/manga/" in final_url:
        log.info(f"Search redirected to detail page: {final_url}")
        latest = soup.select_one("tr .chapter a")
        results.append(
            {
                "id": _manga_id_from_url(final_url),
                "title": detail_title,
                "url": final_url,
                "thumbnail": _img_src(soup.select_one("div.media div.cover img")),
                "latestLabel": latest.get_text(strip=True) if latest else "",
                "author": None,
                "altNames": [],
                "source": SOURCE,
            }
        )
    return results


def parse_details(html: str, manga_id: str, url: str) -> dict:
    soup = BeautifulSoup(html, "html.parser")

    def text(selector: str) -> str:
        el = soup.select_one(selector)
        return el.get_text(strip=True) if el else ""

    alt_names = [name.strip() for name in text(".alt_name").split(";") if name.strip()]
    synopsis = " ".join(p.get_text(strip=True) for p in soup.select(".summary > p"))

    return {
        "id": manga_id,
        "title": text("h1.heading"),
        "altNames": alt_names,
        "author": text(".author"),
        "status": text(".value.status"),
        "genres": [a.get_text(strip=True) for a in soup.select(".genres > a")],
        "synopsis": synopsis.strip(),
        "coverImage": _img_src(soup.select_one("div.media div.cover img")),
        "url": url,
        "source": SOURCE,
    }


def parse_chapter_list(html: str) -> list[dict]:
    """Chapters in document order (the site lists newest first)."""
    soup = BeautifulSoup(html, "html.parser")
    chapters = []

    for row in soup.select("tr"):
        if row.select_one(".chapter") is None:
            continue
        link = row.select_one("a")
        if link is None:
            continue
        title = link.get_text(strip=True)
        url = link.get("href", "")
        if not title or not url:
            continue
        date = row.select_one(".update_time")
        chapters.append(
            {
                "id": _chapter_id_from_url(url),
                "index": len(chapters),
                "title": title,
                "url": url,
                "uploadDate": date.get_text(strip=True) if date else "",
            }
        )
    return chapters


def image_urls_from_script_arrays(html: str) -> list[str]:
    """Tier 1a: URL literals assigned to one of the known image-array globals."""
    for match in _IMAGE_ARRAY_RE.finditer(html):
        urls = [u for u in _STRING_LITERAL_RE.findall(match.group(1)) if _is_image_url(u)]
        if urls:
            return [normalize_url(u) for u in urls]
    return []


def image_urls_from_img_tags(html: str) -> list[str]:
    """Tier 1b: lazy-loaded reader images already present in the markup."""
    soup = BeautifulSoup(html, "html.parser")
    urls = [_img_src(img) for img in soup.select("#imgs img")]
    return [normalize_url(u) for u in urls if u and _is_image_url(u)]


def to_pages(urls: list[str]) -> list[dict]:
    return [
        {"pageNumber": i + 1, "imageUrl": normalize_url(url)}
        for i, url in enumerate(urls)
    ]


def parse_hot_updates(html: str, limit: int = HOT_UPDATES_LIMIT) -> list[dict]:
    soup = BeautifulSoup(html, "html.parser")
    container = soup.select_one("#hot_update")
    if container is None:
        container = soup.select_one(".widget-hot-update")
    if container is None:
        return []

    updates = []
    for item in container.select(".item"):
        link = item.select_one(".title a")
        if link is None:
            continue
        title = link.get_text(strip=True)
        url = link.get("href", "")
        if not title or not url:
            continue
        chapter = item.select_one(".chapter a")
        updates.append(
            {
                "id": _manga_id_from_url(url),
                "title": title,
                "chapter": chapter.get_text(strip=True) if chapter else "",
                "url": url,
                "thumbnail": normalize_url(_img_src(item.select_one(".wrap_img img"))),
                "source": SOURCE,
            }
        )
        if len(updates) >= limit:
            break
    return updates


# --- In-page extraction ---

# Runs inside the chapter page once its scripts have executed. Order: known
# globals, hydrated reader images, then any inline `var x = ['http...']`
# assignment evaluated in place.
PAGE_IMAGES_SCRIPT = """
() => {
    for (const name of %s) {
        const value = window[name];
        if (Array.isArray(value) && value.length > 0) return value;
    }
    const imgs = Array.from(document.querySelectorAll('#imgs img'))
        .map(img => img.getAttribute('data-src') || img.getAttribute('src'))
        .filter(src => src && (src.includes('http') || src.startsWith('//')));
    if (imgs.length > 0) return imgs;
    for (const script of Array.from(document.querySelectorAll('script'))) {
        const match = (script.textContent || '').match(/var\\s+\\w+\\s*=\\s*\\[(['"].*?['"])\\]/);
        if (!match) continue;
        try {
            const urls = eval('[' + match[1] + ']');
            if (Array.isArray(urls) && urls.length > 0
                    && typeof urls[0] === 'string' && urls[0].includes('http')) {
                return urls;
            }
        } catch (e) {}
    }
    return [];
}
""" % list(IMAGE_ARRAY_VARS)


# --- Strategy driver ---

PageStrategy = Callable[[str], Awaitable[list[str]]]


async def first_non_empty(strategies: list[tuple[str, PageStrategy]], url: str) -> list[str]:
    """Try each strategy in order and return the first non-empty result.

    A ScraperError from one strategy moves on to the next. If every strategy
    came up empty the result is []; if the last attempt raised, that error
    is re-raised.
    """
    last_error: ScraperError | None = None
    for name, strategy in strategies:
        try:
            urls = await strategy(url)
        except ScraperError as e:
            log.warning(f"Page strategy '{name}' failed for {url}: [{e.kind}] {e}")
            last_error = e
            continue
        last_error = None
        if urls:
            log.info(f"Found {len(urls)} pages via {name}")
            return urls
        log.info(f"Page strategy '{name}' found nothing for {url}")
    if last_error is not None:
        raise last_error
    return []


# --- Operations ---


async def search(query: str) -> list[dict]:
    html, final_url = await get_html(
        BASE_URL + "/",
        params={"search": query, "search_by": "book_name"},
        referer=BASE_URL,
    )
    return parse_search_results(html, final_url)


async def get_details(manga_id: str) -> dict:
    url = f"{BASE_URL}/manga/{manga_id}"
    html, _ = await get_html(url, referer=BASE_URL)
    details = parse_details(html, manga_id, url)
    if not details["title"]:
        raise ParseError("Detail heading not found", url=url)
    return details


async def get_chapter_list(manga_id: str) -> list[dict]:
    url = f"{BASE_URL}/manga/{manga_id}"
    html, _ = await get_html(url, referer=BASE_URL)
    return parse_chapter_list(html)


async def _pages_from_html(chapter_url: str) -> list[str]:
    html, _ = await get_html(chapter_url, referer=BASE_URL)
    return image_urls_from_script_arrays(html) or image_urls_from_img_tags(html)


async def _pages_from_browser(chapter_url: str, provider: BrowserProvider) -> list[str]:
    async with provider.session() as handle:
        async with handle.page(block_resources=True) as page:
            try:
                await page.goto(chapter_url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT)
            except PlaywrightError as e:
                raise TransportError(f"Navigation failed: {e}", url=chapter_url) from e
            await asyncio.sleep(config.BROWSER_SETTLE_DELAY)
            urls = await handle.evaluate_in_page(page, PAGE_IMAGES_SCRIPT)
    return [normalize_url(u) for u in (urls or []) if isinstance(u, str)]


async def get_chapter_pages(chapter_url: str, provider: BrowserProvider) -> list[dict]:
    """Ordered page images for a chapter: HTML scan first, browser second."""

    async def browser_tier(url: str) -> list[str]:
        return await _pages_from_browser(url, provider)

    urls = await first_non_empty(
        [("html", _pages_from_html), ("browser", browser_tier)],
        chapter_url,
    )
    return to_pages(urls)


async def _wait_for_hot_updates(page) -> None:
    try:
        await page.wait_for_selector("#hot_update", timeout=SELECTOR_TIMEOUT)
    except PlaywrightTimeoutError:
        log.info("#hot_update not found, waiting for .widget-hot-update")
        try:
            await page.wait_for_selector(".widget-hot-update", timeout=SELECTOR_TIMEOUT // 2)
        except PlaywrightTimeoutError:
            log.warning("No hot update container rendered; parsing whatever loaded")


async def get_hot_updates(provider: BrowserProvider) -> list[dict]:
    async with provider.session() as handle:
        async with handle.page(block_resources=True) as page:
            try:
                await page.goto(BASE_URL, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT)
                await _wait_for_hot_updates(page)
                html = await page.content()
            except PlaywrightError as e:
                raise TransportError(f"Hot updates page failed: {e}", url=BASE_URL) from e
    return parse_hot_updates(html)
