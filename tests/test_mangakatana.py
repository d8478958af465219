"""Tests for the MangaKatana parsers and the chapter page tiering."""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

import config
import mangakatana
from browser import BrowserHandle, BrowserProvider
from conftest import make_browser, make_page
from errors import ParseError, TransportError

SEARCH_HTML = """
<div id="book_list">
  <div class="item">
    <div class="media"><div class="cover"><img src="https://i3.mangakatana.com/op.jpg"></div></div>
    <div class="cover"><img data-src="https://i3.mangakatana.com/op.jpg"></div>
    <div class="text">
      <h3><a href="https://mangakatana.com/manga/one-piece.2040">One Piece</a></h3>
      <div class="chapter"><a href="https://mangakatana.com/manga/one-piece.2040/c1123">Chapter 1123</a></div>
    </div>
  </div>
  <div class="item">
    <div class="text">
      <h3><a href="https://mangakatana.com/manga/one-piece-party.19034">One Piece Party</a></h3>
    </div>
  </div>
  <div class="item"><div class="text"><h3></h3></div></div>
</div>
"""

DETAIL_HTML = """
<div class="info">
  <h1 class="heading">Chainsaw Man</h1>
  <div class="alt_name">Chensomen; チェンソーマン</div>
  <a class="author">Fujimoto Tatsuki</a>
  <div class="value status">Ongoing</div>
  <div class="genres"><a>Action</a><a>Horror</a></div>
</div>
<div class="media"><div class="cover"><img src="https://i3.mangakatana.com/csm.jpg"></div></div>
<div class="summary"><p>Denji is a teenage boy</p><p>living with a Chainsaw Devil.</p></div>
<table>
  <tr><th>Chapter</th><th>Date</th></tr>
  <tr>
    <td><div class="chapter"><a href="https://mangakatana.com/manga/chainsaw-man.21890/c190">Chapter 190</a></div></td>
    <td><div class="update_time">Jan-08-2025</div></td>
  </tr>
  <tr>
    <td><div class="chapter"><a href="https://mangakatana.com/manga/chainsaw-man.21890/c189.5">Chapter 189.5</a></div></td>
    <td><div class="update_time">Jan-01-2025</div></td>
  </tr>
</table>
"""

HOT_UPDATES_HTML = """
<div id="hot_update">
  <div class="item">
    <div class="wrap_img"><img src="//i3.mangakatana.com/kagurabachi.jpg"></div>
    <div class="title"><a href="https://mangakatana.com/manga/kagurabachi.27136">Kagurabachi</a></div>
    <div class="chapter"><a href="https://mangakatana.com/manga/kagurabachi.27136/c62">Chapter 62</a></div>
  </div>
  <div class="item">
    <div class="wrap_img"><img data-src="https://i3.mangakatana.com/sakamoto.jpg"></div>
    <div class="title"><a href="https://mangakatana.com/manga/sakamoto-days.22817">Sakamoto Days</a></div>
    <div class="chapter"><a href="https://mangakatana.com/manga/sakamoto-days.22817/c190">Chapter 190</a></div>
  </div>
</div>
"""


class TestNormalizeUrl:
    def test_protocol_relative_gets_https(self):
        assert mangakatana.normalize_url("//i1.mangakatana.com/a.jpg") == "https://i1.mangakatana.com/a.jpg"

    def test_absolute_unchanged(self):
        assert mangakatana.normalize_url("http://x/a.jpg") == "http://x/a.jpg"


class TestParseSearchResults:
    def test_listing(self):
        results = mangakatana.parse_search_results(SEARCH_HTML)

        assert [r["title"] for r in results] == ["One Piece", "One Piece Party"]
        first = results[0]
        assert first["id"] == "one-piece.2040"
        assert first["url"] == "https://mangakatana.com/manga/one-piece.2040"
        assert first["thumbnail"] == "https://i3.mangakatana.com/op.jpg"
        assert first["latestLabel"] == "Chapter 1123"
        assert first["source"] == "mangakatana"
        assert results[1]["latestLabel"] == ""

    def test_redirect_to_detail_page(self):
        results = mangakatana.parse_search_results(
            DETAIL_HTML, "https://mangakatana.com/manga/chainsaw-man.21890"
        )

        assert len(results) == 1
        assert results[0]["id"] == "chainsaw-man.21890"
        assert results[0]["title"] == "Chainsaw Man"
        assert results[0]["latestLabel"] == "Chapter 190"
        assert results[0]["thumbnail"] == "https://i3.mangakatana.com/csm.jpg"

    def test_no_results(self):
        assert mangakatana.parse_search_results("<div id='book_list'></div>", "https://mangakatana.com/") == []


class TestParseDetails:
    def test_fields(self):
        url = "https://mangakatana.com/manga/chainsaw-man.21890"
        details = mangakatana.parse_details(DETAIL_HTML, "chainsaw-man.21890", url)

        assert details["title"] == "Chainsaw Man"
        assert details["altNames"] == ["Chensomen", "チェンソーマン"]
        assert details["author"] == "Fujimoto Tatsuki"
        assert details["status"] == "Ongoing"
        assert details["genres"] == ["Action", "Horror"]
        assert details["synopsis"] == "Denji is a teenage boy living with a Chainsaw Devil."
        assert details["coverImage"] == "https://i3.mangakatana.com/csm.jpg"
        assert details["url"] == url

    @pytest.mark.asyncio
    async def test_missing_heading_is_parse_error(self):
        with patch("mangakatana.get_html", AsyncMock(return_value=("<html></html>", "u"))):
            with pytest.raises(ParseError):
                await mangakatana.get_details("gone.1")


class TestParseChapterList:
    def test_rows_in_document_order(self):
        chapters = mangakatana.parse_chapter_list(DETAIL_HTML)

        assert [c["id"] for c in chapters] == ["c190", "c189.5"]
        assert [c["index"] for c in chapters] == [0, 1]
        assert chapters[0]["title"] == "Chapter 190"
        assert chapters[0]["uploadDate"] == "Jan-08-2025"
        assert chapters[1]["url"] == "https://mangakatana.com/manga/chainsaw-man.21890/c189.5"


class TestPageImageScans:
    def test_known_script_array(self):
        html = """
        <script>var other = ['https://ads.example/x.jpg'];</script>
        <script>var ytaw = ['//i1.mangakatana.com/1.jpg','https://i1.mangakatana.com/2.jpg',];</script>
        """
        assert mangakatana.image_urls_from_script_arrays(html) == [
            "https://i1.mangakatana.com/1.jpg",
            "https://i1.mangakatana.com/2.jpg",
        ]

    def test_unknown_array_ignored(self):
        html = "<script>var other = ['https://ads.example/x.jpg'];</script>"
        assert mangakatana.image_urls_from_script_arrays(html) == []

    def test_img_tags(self):
        html = """
        <div id="imgs">
          <img data-src="//i1.mangakatana.com/1.jpg" src="about:blank">
          <img src="https://i1.mangakatana.com/2.jpg">
          <img src="about:blank">
        </div>
        <img src="https://logo.example/logo.png">
        """
        assert mangakatana.image_urls_from_img_tags(html) == [
            "https://i1.mangakatana.com/1.jpg",
            "https://i1.mangakatana.com/2.jpg",
        ]

    def test_to_pages_numbers_from_one(self):
        pages = mangakatana.to_pages(["//a/1.jpg", "https://a/2.jpg"])
        assert pages == [
            {"pageNumber": 1, "imageUrl": "https://a/1.jpg"},
            {"pageNumber": 2, "imageUrl": "https://a/2.jpg"},
        ]


class TestParseHotUpdates:
    def test_items(self):
        updates = mangakatana.parse_hot_updates(HOT_UPDATES_HTML)

        assert [u["id"] for u in updates] == ["kagurabachi.27136", "sakamoto-days.22817"]
        assert updates[0]["chapter"] == "Chapter 62"
        assert updates[0]["thumbnail"] == "https://i3.mangakatana.com/kagurabachi.jpg"
        assert updates[1]["thumbnail"] == "https://i3.mangakatana.com/sakamoto.jpg"

    def test_limit(self):
        assert len(mangakatana.parse_hot_updates(HOT_UPDATES_HTML, limit=1)) == 1

    def test_widget_fallback(self):
        html = HOT_UPDATES_HTML.replace('id="hot_update"', 'class="widget-hot-update"')
        assert len(mangakatana.parse_hot_updates(html)) == 2

    def test_no_container(self):
        assert mangakatana.parse_hot_updates("<div></div>") == []


CHAPTER_URL = "https://mangakatana.com/manga/one-piece.2040/c1123"


class TestChapterPageTiering:
    @pytest.mark.asyncio
    async def test_html_hit_skips_browser(self):
        html_tier = AsyncMock(return_value=["https://i1/1.jpg"])
        browser_tier = AsyncMock(return_value=["https://i1/unused.jpg"])

        with patch("mangakatana._pages_from_html", html_tier), patch("mangakatana._pages_from_browser", browser_tier):
            pages = await mangakatana.get_chapter_pages(CHAPTER_URL, Mock())

        assert pages == [{"pageNumber": 1, "imageUrl": "https://i1/1.jpg"}]
        browser_tier.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_html_invokes_browser_exactly_once(self):
        provider = Mock()
        html_tier = AsyncMock(return_value=[])
        browser_tier = AsyncMock(return_value=["https://i1/1.jpg", "https://i1/2.jpg"])

        with patch("mangakatana._pages_from_html", html_tier), patch("mangakatana._pages_from_browser", browser_tier):
            pages = await mangakatana.get_chapter_pages(CHAPTER_URL, provider)

        assert len(pages) == 2
        browser_tier.assert_awaited_once_with(CHAPTER_URL, provider)

    @pytest.mark.asyncio
    async def test_html_transport_error_falls_through(self):
        html_tier = AsyncMock(side_effect=TransportError("timeout", url=CHAPTER_URL))
        browser_tier = AsyncMock(return_value=["https://i1/1.jpg"])

        with patch("mangakatana._pages_from_html", html_tier), patch("mangakatana._pages_from_browser", browser_tier):
            pages = await mangakatana.get_chapter_pages(CHAPTER_URL, Mock())

        assert len(pages) == 1

    @pytest.mark.asyncio
    async def test_both_empty(self):
        with patch("mangakatana._pages_from_html", AsyncMock(return_value=[])), patch(
            "mangakatana._pages_from_browser", AsyncMock(return_value=[])
        ):
            assert await mangakatana.get_chapter_pages(CHAPTER_URL, Mock()) == []

    @pytest.mark.asyncio
    async def test_browser_error_is_raised(self):
        with patch("mangakatana._pages_from_html", AsyncMock(return_value=[])), patch(
            "mangakatana._pages_from_browser", AsyncMock(side_effect=ParseError("eval failed"))
        ):
            with pytest.raises(ParseError):
                await mangakatana.get_chapter_pages(CHAPTER_URL, Mock())


class TestPagesFromHtml:
    @pytest.mark.asyncio
    async def test_script_array_preferred_over_img_tags(self):
        html = """
        <script>var thzq = ['https://i1/a.jpg'];</script>
        <div id="imgs"><img src="https://i1/b.jpg"></div>
        """
        with patch("mangakatana.get_html", AsyncMock(return_value=(html, CHAPTER_URL))):
            assert await mangakatana._pages_from_html(CHAPTER_URL) == ["https://i1/a.jpg"]


@pytest.fixture
def browser_page() -> Mock:
    return make_page(CHAPTER_URL)


@pytest.fixture
def handle(browser_page) -> BrowserHandle:
    return BrowserHandle(make_browser(browser_page))


@pytest.fixture
def provider(handle, monkeypatch) -> BrowserProvider:
    """A local provider whose launches hand out ``handle``."""
    monkeypatch.setattr(config, "BROWSER_SETTLE_DELAY", 0)
    provider = BrowserProvider(production=False)
    provider.acquire = AsyncMock(return_value=handle)
    provider.release = AsyncMock()
    return provider


class TestPagesFromBrowser:
    @pytest.mark.asyncio
    async def test_urls_normalized(self, provider, handle, browser_page):
        browser_page.evaluate.return_value = ["//i1.mangakatana.com/1.jpg", "https://i1.mangakatana.com/2.jpg", 7]

        urls = await mangakatana._pages_from_browser(CHAPTER_URL, provider)

        assert urls == ["https://i1.mangakatana.com/1.jpg", "https://i1.mangakatana.com/2.jpg"]
        browser_page.goto.assert_awaited_once()
        assert browser_page.goto.await_args.args == (CHAPTER_URL,)
        handle.browser.context.route.assert_awaited_once()
        provider.release.assert_awaited_once_with(handle)
        assert handle.open_pages == 0

    @pytest.mark.asyncio
    async def test_nothing_evaluated(self, provider, browser_page):
        browser_page.evaluate.return_value = None
        assert await mangakatana._pages_from_browser(CHAPTER_URL, provider) == []

    @pytest.mark.asyncio
    async def test_navigation_failure_is_transport_error(self, provider, handle, browser_page):
        browser_page.goto.side_effect = PlaywrightError("net::ERR_CONNECTION_RESET")

        with pytest.raises(TransportError) as exc:
            await mangakatana._pages_from_browser(CHAPTER_URL, provider)

        assert exc.value.url == CHAPTER_URL
        browser_page.evaluate.assert_not_awaited()
        provider.release.assert_awaited_once_with(handle)
        assert handle.open_pages == 0
        handle.browser.context.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_script_failure_is_parse_error(self, provider, handle, browser_page):
        browser_page.evaluate.side_effect = PlaywrightError("Execution context was destroyed")

        with pytest.raises(ParseError):
            await mangakatana._pages_from_browser(CHAPTER_URL, provider)

        provider.release.assert_awaited_once_with(handle)
        assert handle.open_pages == 0


class TestWaitForHotUpdates:
    @pytest.mark.asyncio
    async def test_primary_container(self, browser_page):
        await mangakatana._wait_for_hot_updates(browser_page)

        browser_page.wait_for_selector.assert_awaited_once_with("#hot_update", timeout=mangakatana.SELECTOR_TIMEOUT)

    @pytest.mark.asyncio
    async def test_falls_back_to_widget(self, browser_page):
        browser_page.wait_for_selector.side_effect = [PlaywrightTimeoutError("Timeout 10000ms exceeded"), None]

        await mangakatana._wait_for_hot_updates(browser_page)

        selectors = [c.args[0] for c in browser_page.wait_for_selector.await_args_list]
        assert selectors == ["#hot_update", ".widget-hot-update"]
        assert browser_page.wait_for_selector.await_args.kwargs["timeout"] == mangakatana.SELECTOR_TIMEOUT // 2

    @pytest.mark.asyncio
    async def test_neither_container_is_not_an_error(self, browser_page):
        browser_page.wait_for_selector.side_effect = PlaywrightTimeoutError("Timeout exceeded")

        await mangakatana._wait_for_hot_updates(browser_page)

        assert browser_page.wait_for_selector.await_count == 2


class TestGetHotUpdates:
    @pytest.mark.asyncio
    async def test_parses_rendered_page(self, provider, handle, browser_page):
        browser_page.content.return_value = HOT_UPDATES_HTML

        updates = await mangakatana.get_hot_updates(provider)

        assert [u["id"] for u in updates] == ["kagurabachi.27136", "sakamoto-days.22817"]
        assert browser_page.goto.await_args.args == (mangakatana.BASE_URL,)
        provider.release.assert_awaited_once_with(handle)
        assert handle.open_pages == 0

    @pytest.mark.asyncio
    async def test_widget_only_page(self, provider, browser_page):
        browser_page.wait_for_selector.side_effect = [PlaywrightTimeoutError("Timeout exceeded"), None]
        browser_page.content.return_value = HOT_UPDATES_HTML.replace('id="hot_update"', 'class="widget-hot-update"')

        assert len(await mangakatana.get_hot_updates(provider)) == 2

    @pytest.mark.asyncio
    async def test_navigation_timeout_is_transport_error(self, provider, handle, browser_page):
        browser_page.goto.side_effect = PlaywrightTimeoutError("Timeout 30000ms exceeded")

        with pytest.raises(TransportError) as exc:
            await mangakatana.get_hot_updates(provider)

        assert exc.value.url == mangakatana.BASE_URL
        browser_page.content.assert_not_awaited()
        provider.release.assert_awaited_once_with(handle)
        assert handle.open_pages == 0
