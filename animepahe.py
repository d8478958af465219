"""
AnimePahe extractor.

The JSON API sits behind DDoS-Guard, so every call goes through a real
browser page: navigate, wait until the body text looks like JSON, parse it.
Stream links come from the play page's resolution menu; each Kwik embed is
then opened separately to recover the direct video source.
"""

import json
import logging
import re
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from browser import BrowserHandle, SharedBrowser
from errors import BotMitigationTimeout, ParseError, ScraperError, TransportError

log = logging.getLogger("yorumi.animepahe")

BASE_URL = "https://animepahe.si"
API_URL = f"{BASE_URL}/api"
SOURCE = "animepahe"

KWIK_HEADERS = {"referer": "https://kwik.cx/", "origin": "https://kwik.cx"}

NAVIGATION_TIMEOUT = 15_000  # ms
JSON_WAIT_TIMEOUT = 8_000  # ms, DDoS-Guard usually clears well within this
MENU_TIMEOUT = 10_000  # ms

JSON_READY_PREDICATE = "() => document.body && document.body.innerText.trim().startsWith('{')"

_PACKED_RE = re.compile(r"eval\(function\(p,a,c,k,e,d\)\{.*\}\(.*\)\)")
_SOURCE_RE = re.compile(r"""source=['"](.*?)['"]""")

# Value left behind by Kwik's player bootstrap, if it already ran.
PLAYER_SOURCE_SCRIPT = """
() => {
    if (typeof window.source === 'string' && window.source) return window.source;
    const el = document.querySelector('source');
    return el ? el.src : null;
}
"""

# Re-run the packed script with eval swapped out so its unpacked body is
# captured instead of (only) executed.
UNPACK_SCRIPT = """
(packed) => {
    let result = '';
    const originalEval = window.eval;
    try {
        window.eval = (s) => { result = s; return originalEval(s); };
        originalEval(packed);
    } catch (e) {
    } finally {
        window.eval = originalEval;
    }
    return result;
}
"""


# --- Parsers ---


def parse_search_payload(payload: dict) -> list[dict]:
    results = []
    for item in payload.get("data") or []:
        session = item.get("session")
        if not session:
            continue
        results.append(
            {
                "id": str(item.get("id", "")),
                "session": session,
                "title": item.get("title", ""),
                "url": f"/anime/{session}",
                "thumbnail": item.get("poster", ""),
                "latestLabel": f"{item['episodes']} episodes" if item.get("episodes") else "",
                "status": item.get("status"),
                "type": item.get("type"),
                "episodes": item.get("episodes"),
                "year": item.get("year"),
                "score": item.get("score"),
                "source": SOURCE,
            }
        )
    return results


def parse_episodes_payload(payload: dict, anime_session: str) -> dict:
    episodes = []
    for item in payload.get("data") or []:
        session = item.get("session")
        if not session:
            continue
        episodes.append(
            {
                "id": str(item.get("id", "")),
                "session": session,
                "index": len(episodes),
                "episodeNumber": item.get("episode"),
                "url": f"/play/{anime_session}/{session}",
                "title": item.get("title"),
                "duration": item.get("duration"),
                "snapshot": item.get("snapshot"),
            }
        )
    return {"episodes": episodes, "lastPage": payload.get("last_page") or 1}


def parse_json_body(text: str, url: str) -> dict:
    try:
        payload = json.loads(text)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Body is not JSON: {(text or '')[:120]!r}", url=url) from e
    if not isinstance(payload, dict):
        raise ParseError("Unexpected JSON shape", url=url)
    return payload


def find_packed_script(html: str) -> str | None:
    match = _PACKED_RE.search(html)
    return match.group(0) if match else None


def source_from_unpacked(unpacked: str) -> str | None:
    match = _SOURCE_RE.search(unpacked or "")
    return match.group(1) if match else None


# --- Browser helpers ---


async def _read_json_page(handle: BrowserHandle, url: str) -> dict:
    """Navigate to a JSON endpoint behind DDoS-Guard and parse its body.

    A timeout on the JSON predicate is not fatal: the guard sometimes serves
    the payload without ever satisfying it, so parsing is attempted anyway.
    """
    async with handle.page() as page:
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT)
        except PlaywrightError as e:
            raise TransportError(f"Navigation failed: {e}", url=url) from e

        try:
            await page.wait_for_function(JSON_READY_PREDICATE, timeout=JSON_WAIT_TIMEOUT)
        except PlaywrightTimeoutError:
            timeout = BotMitigationTimeout("JSON body did not appear in time", url=url)
            log.warning(f"[{timeout.kind}] {timeout}, parsing anyway")

        text = await handle.evaluate_in_page(page, "() => document.body.innerText")
    return parse_json_body(text, url)


class AnimePaheScraper:
    """AnimePahe operations over a shared, lazily launched browser."""

    def __init__(self, browser: SharedBrowser):
        self.browser = browser

    async def close(self) -> None:
        await self.browser.close()

    async def search(self, query: str) -> list[dict]:
        handle = await self.browser.get()
        url = f"{API_URL}?m=search&q={quote(query)}"
        log.info(f"Searching: {url}")
        payload = await _read_json_page(handle, url)
        return parse_search_payload(payload)

    async def get_episodes(self, anime_session: str, page: int = 1) -> dict:
        handle = await self.browser.get()
        url = f"{API_URL}?m=release&id={anime_session}&sort=episode_asc&page={page}"
        log.info(f"Fetching episodes: {url}")
        payload = await _read_json_page(handle, url)
        return parse_episodes_payload(payload, anime_session)

    async def get_stream_links(self, anime_session: str, episode_session: str) -> list[dict]:
        handle = await self.browser.get()
        play_url = f"{BASE_URL}/play/{anime_session}/{episode_session}"

        async with handle.page() as page:
            try:
                await page.goto(play_url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT)
            except PlaywrightError as e:
                raise TransportError(f"Navigation failed: {e}", url=play_url) from e
            try:
                await page.wait_for_selector("#resolutionMenu button", timeout=MENU_TIMEOUT)
            except PlaywrightTimeoutError:
                log.warning(f"Resolution menu never rendered: {play_url}")
                return []
            options = await handle.evaluate_in_page(
                page,
                """
                () => Array.from(document.querySelectorAll('#resolutionMenu button')).map(btn => ({
                    embed: btn.getAttribute('data-src'),
                    quality: btn.getAttribute('data-resolution') || '',
                    audio: btn.getAttribute('data-audio') || '',
                }))
                """,
            )

        links = []
        for option in options or []:
            embed = option.get("embed")
            if not embed:
                continue
            direct = await self.resolve_embed(handle, embed)
            links.append(
                {
                    "quality": option.get("quality", ""),
                    "audio": option.get("audio", ""),
                    "url": embed,
                    "directUrl": direct,
                    "isDirectPlayable": direct is not None,
                }
            )
        log.info(
            f"Resolved {sum(1 for link in links if link['directUrl'])}/{len(links)} "
            f"stream candidates for {play_url}"
        )
        return links

    async def resolve_embed(self, handle: BrowserHandle, embed_url: str) -> str | None:
        """Recover the direct source behind a Kwik embed.

        Best effort: any failure is logged and returns None so the other
        qualities still resolve.
        """
        try:
            async with handle.page(extra_headers=KWIK_HEADERS) as page:
                try:
                    await page.goto(embed_url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT)
                except PlaywrightError as e:
                    raise TransportError(f"Embed navigation failed: {e}", url=embed_url) from e

                direct = await handle.evaluate_in_page(page, PLAYER_SOURCE_SCRIPT)
                if direct:
                    return direct

                packed = find_packed_script(await page.content())
                if packed is None:
                    log.warning(f"No packed player script on embed (markup changed?): {embed_url}")
                    return None

                unpacked = await handle.evaluate_in_page(page, UNPACK_SCRIPT, packed)
                direct = source_from_unpacked(unpacked)
                if direct is None:
                    log.warning(
                        f"Unpacked player script has no source (obfuscation changed?): {embed_url}"
                    )
                return direct
        except ScraperError as e:
            log.warning(f"Embed resolution failed [{e.kind}]: {e}")
            return None
        except PlaywrightError as e:
            log.warning(f"Embed resolution failed [browser]: {e} ({embed_url})")
            return None
