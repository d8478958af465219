"""
Response builders.
Pure mapping functions: no I/O, no API calls.
Namespaces scraper ids and reshapes scraped/AniList records for the frontend.
"""

import re

MANGA_PREFIX = "mk:"
SESSION_PREFIX = "s:"

_TAG_RE = re.compile(r"<[^>]*>")
_NUMBER_RE = re.compile(r"(\d+(?:\.\d+)?)")


def strip_prefix(item_id: str, prefix: str) -> str:
    """'mk:one-piece.2040' -> 'one-piece.2040'. Unprefixed ids pass through."""
    if item_id.startswith(prefix):
        return item_id[len(prefix):]
    return item_id


def apply_prefix(prefix: str, item_id: str) -> str:
    if item_id.startswith(prefix):
        return item_id
    return f"{prefix}{item_id}"


def with_prefixed_id(record: dict, prefix: str, source: str | None = None) -> dict:
    """Copy of ``record`` with a namespaced id (and source tag if given)."""
    mapped = dict(record)
    mapped["id"] = apply_prefix(prefix, str(record.get("id", "")))
    if source:
        mapped["source"] = source
    return mapped


def label_number(label: str | None) -> int | float | None:
    """'Chapter 1123' -> 1123, 'Ch. 45.5' -> 45.5, '' -> None."""
    match = _NUMBER_RE.search(label or "")
    if not match:
        return None
    number = float(match.group(1))
    return int(number) if number.is_integer() else number


def media_title(media: dict) -> str:
    title = media.get("title") or {}
    return title.get("english") or title.get("romaji") or title.get("native") or ""


def match_target(media: dict) -> dict:
    """AniList media -> the {title, year, type} shape the matcher scores."""
    start = media.get("startDate") or {}
    return {
        "title": media_title(media),
        "year": start.get("year") or media.get("seasonYear"),
        "type": media.get("format"),
    }


def with_latest_chapter(media: dict, match: dict | None) -> dict:
    """Copy of an AniList manga with the scraped latest chapter number."""
    enriched = dict(media)
    if match is None:
        return enriched
    latest = label_number(match.get("latestLabel"))
    if latest is not None:
        enriched["latestChapter"] = latest
    enriched["scraperId"] = match.get("id")
    return enriched


def spotlight_from_hot_update(update: dict) -> dict:
    """Hot update -> spotlight entry shaped like an AniList media record."""
    chapter_label = update.get("chapter") or ""
    latest = label_number(chapter_label)
    thumbnail = update.get("thumbnail") or ""

    return {
        "id": update.get("id"),
        "title": {"romaji": update.get("title"), "english": update.get("title"), "native": None},
        "description": f"Latest: {chapter_label}" if chapter_label else "",
        "coverImage": {"large": thumbnail, "extraLarge": thumbnail},
        "bannerImage": None,
        "chapters": latest,
        "latestChapter": latest,
        "format": "MANGA",
        "genres": [],
        "averageScore": None,
        "status": "RELEASING",
        "source": update.get("source", "mangakatana"),
        "url": update.get("url"),
    }


def anime_from_anilist(media: dict) -> dict:
    """AniList anime -> the card/spotlight shape used by the anime pages."""
    cover = media.get("coverImage") or {}
    next_airing = media.get("nextAiringEpisode") or {}
    duration = media.get("duration")
    score = media.get("averageScore")

    return {
        "mal_id": media.get("idMal") or media.get("id"),
        "anilist_id": media.get("id"),
        "title": media_title(media),
        "images": {
            "jpg": {
                "image_url": cover.get("large"),
                "large_image_url": cover.get("extraLarge"),
            }
        },
        "synopsis": _TAG_RE.sub("", media.get("description") or ""),
        "type": media.get("format"),
        "episodes": media.get("episodes"),
        "score": score / 10 if score else 0,
        "status": media.get("status"),
        "duration": f"{duration} min" if duration else "Unknown",
        "genres": [{"name": g, "mal_id": 0} for g in media.get("genres") or []],
        "anilist_banner_image": media.get("bannerImage"),
        "anilist_cover_image": cover.get("extraLarge") or cover.get("large"),
        "latestEpisode": next_airing["episode"] - 1 if next_airing.get("episode") else None,
    }
