"""
Headless browser sessions (Playwright Chromium).

Production launches the serverless-compatible Chromium binary named by
CHROMIUM_EXECUTABLE_PATH; development launches Playwright's bundled build.
Exactly one of the two is used per deployment, a launch failure is final.

Every page lives in its own browser context and is closed on every exit path.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from playwright.async_api import Browser, Error as PlaywrightError, Page, async_playwright

import config
from errors import BrowserLaunchError, ParseError

log = logging.getLogger("yorumi.browser")

BLOCKED_RESOURCE_TYPES = {"image", "stylesheet", "font", "media"}

# Flags for the serverless Chromium build (no GPU, no zygote, /tmp only).
SERVERLESS_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-zygote",
    "--single-process",
    "--headless=new",
]
LOCAL_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]


async def _block_heavy_resources(route) -> None:
    """Abort images/styles/fonts/media; let documents and scripts through."""
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class BrowserHandle:
    """A launched browser plus the Playwright driver that owns it."""

    def __init__(self, browser: Browser, playwright: Any = None):
        self.browser = browser
        self._playwright = playwright
        self.open_pages = 0

    def is_connected(self) -> bool:
        return self.browser.is_connected()

    @asynccontextmanager
    async def page(
        self,
        user_agent: str = config.USER_AGENT,
        extra_headers: dict[str, str] | None = None,
        block_resources: bool = False,
    ) -> AsyncIterator[Page]:
        """Open a page scoped to one operation; its context is always closed."""
        context = await self.browser.new_context(
            user_agent=user_agent,
            extra_http_headers=extra_headers,
        )
        self.open_pages += 1
        try:
            if block_resources:
                await context.route("**/*", _block_heavy_resources)
            page = await context.new_page()
            yield page
        finally:
            self.open_pages -= 1
            try:
                await context.close()
            except PlaywrightError as e:
                log.warning(f"Failed to close browser context: {e}")

    async def evaluate_in_page(self, page: Page, script: str, arg: Any = None) -> Any:
        """Run ``script`` in the page and return its value.

        Any script failure is reported as a ParseError so callers can treat it
        like a missing selector.
        """
        try:
            if arg is None:
                return await page.evaluate(script)
            return await page.evaluate(script, arg)
        except PlaywrightError as e:
            raise ParseError(f"In-page evaluation failed: {e}", url=page.url) from e

    async def close(self) -> None:
        try:
            await self.browser.close()
        finally:
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None


class BrowserProvider:
    """Launches browsers for the current environment.

    ``production`` and ``executable_path`` default to the values in config.
    """

    def __init__(self, production: bool | None = None, executable_path: str | None = None):
        self.production = config.IS_PRODUCTION if production is None else production
        self.executable_path = (
            config.CHROMIUM_EXECUTABLE_PATH if executable_path is None else executable_path
        )

    def _launch_options(self) -> dict:
        if self.production:
            if not self.executable_path or not os.path.exists(self.executable_path):
                raise BrowserLaunchError(
                    f"Serverless Chromium not found at {self.executable_path!r}"
                )
            return {
                "headless": True,
                "executable_path": self.executable_path,
                "args": SERVERLESS_ARGS,
            }
        return {"headless": True, "args": LOCAL_ARGS}

    async def acquire(self) -> BrowserHandle:
        options = self._launch_options()
        label = "serverless Chromium" if self.production else "local Chromium"
        log.info(f"Launching {label}...")

        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(**options)
        except PlaywrightError as e:
            await playwright.stop()
            raise BrowserLaunchError(f"Failed to launch {label}: {e}") from e
        return BrowserHandle(browser, playwright)

    async def release(self, handle: BrowserHandle) -> None:
        try:
            await handle.close()
        except PlaywrightError as e:
            log.warning(f"Error while closing browser: {e}")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[BrowserHandle]:
        """Launch a browser for one flow and close it however the flow ends."""
        handle = await self.acquire()
        try:
            yield handle
        finally:
            await self.release(handle)


class SharedBrowser:
    """One browser reused across many calls; re-launched if it died."""

    def __init__(self, provider: BrowserProvider):
        self.provider = provider
        self._handle: BrowserHandle | None = None
        self._lock = asyncio.Lock()

    async def get(self) -> BrowserHandle:
        async with self._lock:
            if self._handle is None or not self._handle.is_connected():
                self._handle = await self.provider.acquire()
            return self._handle

    async def close(self) -> None:
        async with self._lock:
            if self._handle is not None:
                await self.provider.release(self._handle)
                self._handle = None
