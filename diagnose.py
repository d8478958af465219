"""
MangaKatana markup diagnostics: headless Chrome via Playwright.
Loads the home page and a chapter, then reports which hot-update containers
exist and every `var name = [...]` array with how many URLs it holds.
Useful when the extractor suddenly comes back empty.

Run: python diagnose.py [chapter_url]
"""

import re
import sys

from bs4 import BeautifulSoup
from playwright.sync_api import sync_playwright

from mangakatana import BASE_URL

DEFAULT_CHAPTER = "https://mangakatana.com/manga/one-piece.2040/c1123"

HOT_UPDATE_SELECTORS = [
    "#hot_update",
    "#hot_update .item",
    ".widget-hot-update",
    ".widget-hot-update .item",
]

_ARRAY_VAR_RE = re.compile(r"var\s+(\w+)\s*=\s*\[(.*?)\]", re.S)
_URL_LITERAL_RE = re.compile(r"""['"]((?:https?:)?//[^'"]+)['"]""")


def scan_array_variables(html: str) -> list[dict]:
    """Every inline `var x = [...]` in document order, with its URL count."""
    found = []
    for match in _ARRAY_VAR_RE.finditer(html):
        urls = _URL_LITERAL_RE.findall(match.group(2))
        found.append({"name": match.group(1), "urls": len(urls), "sample": urls[0] if urls else None})
    return found


def count_hot_update_selectors(html: str) -> dict[str, int]:
    soup = BeautifulSoup(html, "html.parser")
    return {selector: len(soup.select(selector)) for selector in HOT_UPDATE_SELECTORS}


def diagnose(chapter_url: str):
    with sync_playwright() as p:
        browser = p.chromium.launch(headless=True)
        page = browser.new_page()

        print(f"=== Loading {BASE_URL} ===")
        page.goto(BASE_URL, wait_until="domcontentloaded", timeout=30000)
        page.wait_for_timeout(3000)
        print(f"Page title: {page.title()}")

        print("\n=== HOT UPDATE SELECTORS ===")
        for selector, count in count_hot_update_selectors(page.content()).items():
            print(f"  {selector:30s} {count}")

        print(f"\n=== Loading chapter: {chapter_url} ===")
        page.goto(chapter_url, wait_until="domcontentloaded", timeout=30000)
        page.wait_for_timeout(3000)

        arrays = scan_array_variables(page.content())
        print(f"\n=== ARRAY VARIABLES ({len(arrays)} found) ===")
        for var in arrays:
            print(f"  var {var['name']:12s} {var['urls']:4d} urls  {var['sample'] or ''}")

        reader_imgs = page.eval_on_selector_all("#imgs img", "els => els.length")
        print(f"\n#imgs img elements: {reader_imgs}")

        browser.close()


if __name__ == "__main__":
    diagnose(sys.argv[1] if len(sys.argv) > 1 else DEFAULT_CHAPTER)
