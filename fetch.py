"""
Plain HTTP fetches for sites that serve usable HTML without a browser.
"""

import httpx

import config
from errors import TransportError

DEFAULT_HEADERS = {
    "User-Agent": config.USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


async def get_html(
    url: str,
    params: dict | None = None,
    referer: str | None = None,
) -> tuple[str, str]:
    """GET ``url`` following redirects. Returns (body, final_url).

    Any httpx failure (connect, timeout, non-2xx) is raised as TransportError.
    """
    headers = dict(DEFAULT_HEADERS)
    if referer:
        headers["Referer"] = referer

    try:
        async with httpx.AsyncClient(
            headers=headers, timeout=config.HTTP_TIMEOUT, follow_redirects=True
        ) as client:
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            return resp.text, str(resp.url)
    except httpx.HTTPError as e:
        raise TransportError(f"GET failed: {e!r}", url=url) from e
