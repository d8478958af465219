"""
HiAnime home page scraper: the promoted spotlight slider.
"""

import logging

from bs4 import BeautifulSoup

from fetch import get_html

log = logging.getLogger("yorumi.hianime")

BASE_URL = "https://hianime.to"


def _poster(el) -> str | None:
    if el is None:
        return None
    return el.get("data-src") or el.get("src")


def _count(el) -> int:
    text = el.get_text(strip=True) if el else ""
    try:
        return int(text)
    except ValueError:
        return 0


def parse_spotlight(html: str) -> list[dict]:
    soup = BeautifulSoup(html, "html.parser")
    spotlight = []

    for item in soup.select("#slider .swiper-slide .deslide-item"):
        head = item.select_one(".desi-head-title")
        title = head.get_text(strip=True) if head else ""
        if not title:
            continue

        link_el = item.select_one(".desi-buttons a")
        link = link_el.get("href", "") if link_el else ""
        description = item.select_one(".desi-description")
        quality = item.select_one(".tick-quality")

        spotlight.append(
            {
                # link format: /watch/title-slug-1234
                "id": link.rsplit("-", 1)[-1] if link else None,
                "title": title,
                "description": description.get_text(strip=True) if description else "",
                "poster": _poster(item.select_one(".film-poster-img")),
                "banner": _poster(item.select_one(".deslide-cover .film-poster-img")),
                "link": BASE_URL + link,
                "quality": quality.get_text(strip=True) if quality else "",
                "sub": _count(item.select_one(".tick-sub")),
                "dub": _count(item.select_one(".tick-dub")),
            }
        )
    return spotlight


async def get_spotlight_anime() -> list[dict]:
    html, _ = await get_html(f"{BASE_URL}/home", referer=BASE_URL)
    spotlight = parse_spotlight(html)
    log.info(f"Found {len(spotlight)} spotlight entries")
    return spotlight


async def get_spotlight_titles() -> list[str]:
    return [item["title"] for item in await get_spotlight_anime()]
