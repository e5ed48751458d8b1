"""Screenshot freshness gate and bounded-concurrency Playwright capturer."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

from playwright.async_api import Browser, Error as PlaywrightError, Playwright, async_playwright

from showcase.core.config import Settings
from showcase.core.errors import CaptureError

LOGGER = logging.getLogger(__name__)

SCREENSHOT_EXTENSION = ".jpeg"
SCREENSHOT_PUBLIC_PREFIX = "screenshots"
SCREENSHOT_QUALITY = 80
VIEWPORT = {"width": 1280, "height": 800}
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/58.0.3029.110 Safari/537.3"
)
HIDE_SCROLLBARS_CSS = "html, body { overflow: hidden !important; }"


def is_fresh(path: Path, max_age_seconds: float, now: float | None = None) -> bool:
    """True when the file exists and was modified less than max_age_seconds ago."""
    try:
        modified = path.stat().st_mtime
    except FileNotFoundError:
        return False
    current = time.time() if now is None else now
    return current - modified < max_age_seconds


def screenshot_filename(identifier: str) -> str:
    return f"{identifier}{SCREENSHOT_EXTENSION}"


def public_screenshot_path(identifier: str) -> str:
    return f"{SCREENSHOT_PUBLIC_PREFIX}/{screenshot_filename(identifier)}"


class ScreenshotCapturer:
    """Render project links to JPEG files, sharing one limiter across the run."""

    def __init__(self, settings: Settings, limiter: asyncio.Semaphore) -> None:
        self.output_dir = Path(settings.screenshot_dir)
        self.max_age_seconds = settings.screenshot_max_age_seconds
        self.timeout_seconds = settings.capture_timeout_seconds
        self.delay_seconds = settings.capture_delay_seconds
        self._limiter = limiter
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._browser_lock = asyncio.Lock()

    def destination(self, identifier: str) -> Path:
        return self.output_dir / screenshot_filename(identifier)

    async def _get_browser(self) -> Browser:
        async with self._browser_lock:
            if self._browser is None:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=True)
            return self._browser

    async def aclose(self) -> None:
        async with self._browser_lock:
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None

    async def _render(self, url: str, path: Path) -> None:
        try:
            browser = await self._get_browser()
            context = await browser.new_context(user_agent=USER_AGENT, viewport=VIEWPORT)
        except PlaywrightError as exc:
            raise CaptureError(f"Browser unavailable for {url}: {exc}") from exc
        try:
            page = await context.new_page()
            await page.goto(url, wait_until="load", timeout=self.timeout_seconds * 1000)
            await page.add_style_tag(content=HIDE_SCROLLBARS_CSS)
            if self.delay_seconds:
                await page.wait_for_timeout(self.delay_seconds * 1000)
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(
                path=str(path),
                type="jpeg",
                quality=SCREENSHOT_QUALITY,
                animations="disabled",
                timeout=self.timeout_seconds * 1000,
            )
        except PlaywrightError as exc:
            raise CaptureError(f"Failed to capture {url}: {exc}") from exc
        finally:
            await context.close()

    async def capture(self, url: str, identifier: str) -> str | None:
        """Return the public screenshot path, or None when rendering failed."""
        path = self.destination(identifier)
        if is_fresh(path, self.max_age_seconds):
            LOGGER.debug("Reusing recent screenshot for %s", identifier)
            return public_screenshot_path(identifier)

        async with self._limiter:
            try:
                # Budget covers navigation, the settle delay and the screenshot itself.
                await asyncio.wait_for(
                    self._render(url, path),
                    timeout=self.timeout_seconds * 2 + self.delay_seconds,
                )
            except (CaptureError, asyncio.TimeoutError) as exc:
                LOGGER.warning("Screenshot failed for %s (%s): %s", identifier, url, str(exc) or "timeout")
                return None
        return public_screenshot_path(identifier)
