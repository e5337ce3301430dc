"""Playwright implementation of the browser engine used by the capture pipeline."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from .config import DEFAULT_LAUNCH_RETRIES, DEFAULT_PAGE_TIMEOUT_MS, DEFAULT_RETRY_BASE_MS, DEFAULT_USER_AGENT, Viewport
from .errors import BrowserLaunchError, CaptureError
from .logging import jlog

CHROMIUM_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-setuid-sandbox",
    "--disable-gpu",
    "--hide-scrollbars",
    "--disable-blink-features=AutomationControlled",
]

WEBDRIVER_INIT_SCRIPT = "Object.defineProperty(navigator, 'webdriver', { get: () => undefined });"


@dataclass(frozen=True)
class BrowserProfile:
    """Fixed identity every capture context presents to publisher sites."""

    user_agent: str = DEFAULT_USER_AGENT
    locale: str = "ko-KR"
    extra_headers: dict[str, str] = field(
        default_factory=lambda: {"Accept-Language": "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7"}
    )
    init_script: str | None = WEBDRIVER_INIT_SCRIPT


class PlaywrightPageHandle:
    """A page in its own browser context; closing the handle closes both."""

    def __init__(self, page: Page, context: BrowserContext) -> None:
        self._page = page
        self._context = context

    async def goto(self, url: str, *, wait_until: str = "load", timeout_ms: int = DEFAULT_PAGE_TIMEOUT_MS) -> None:
        await self._page.goto(url, wait_until=wait_until, timeout=timeout_ms)  # type: ignore[arg-type]

    async def screenshot(self, *, full_page: bool = False, type: str = "png") -> bytes:
        return await self._page.screenshot(full_page=full_page, type=type)  # type: ignore[arg-type]

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._page.evaluate(script, arg)

    async def wait(self, ms: int) -> None:
        await self._page.wait_for_timeout(ms)

    def url(self) -> str:
        return self._page.url

    async def content(self) -> str:
        return await self._page.content()

    async def close(self) -> None:
        await cleanup_playwright(self._context, None)


class PlaywrightEngine:
    """Chromium via Playwright's async API, launched once and shared by many pages."""

    def __init__(
        self,
        *,
        viewport: Viewport | None = None,
        profile: BrowserProfile | None = None,
        headless: bool = True,
        launch_retries: int = DEFAULT_LAUNCH_RETRIES,
        retry_base_ms: int = DEFAULT_RETRY_BASE_MS,
        page_timeout_ms: int = DEFAULT_PAGE_TIMEOUT_MS,
    ) -> None:
        self.viewport = viewport or Viewport()
        self.profile = profile or BrowserProfile()
        self.headless = headless
        self.launch_retries = max(1, launch_retries)
        self.retry_base_ms = retry_base_ms
        self.page_timeout_ms = page_timeout_ms
        self._pw: Playwright | None = None
        self._browser: Browser | None = None

    @property
    def launched(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def launch(self) -> None:
        if self.launched:
            return
        last_error: Exception | None = None
        for attempt in range(self.launch_retries):
            try:
                if self._pw is None:
                    self._pw = await async_playwright().start()
                self._browser = await self._pw.chromium.launch(headless=self.headless, args=CHROMIUM_LAUNCH_ARGS)
                jlog("info", event="browser_launched", attempt=attempt + 1)
                return
            except PlaywrightError as exc:
                last_error = exc
                if attempt + 1 >= self.launch_retries:
                    break
                delay = (self.retry_base_ms / 1000.0) * (2**attempt)
                jlog("warning", event="browser_launch_retry", attempt=attempt + 1, delay_s=round(delay, 3), error=str(exc))
                await asyncio.sleep(delay)
        await self.close()
        raise BrowserLaunchError(f"chromium failed to launch after {self.launch_retries} attempts: {last_error}")

    async def new_page(self) -> PlaywrightPageHandle:
        if self._browser is None:
            raise CaptureError("browser not launched; call launch() first")
        vp = self.viewport
        context = await self._browser.new_context(
            viewport={"width": vp.width, "height": vp.height},
            device_scale_factor=vp.device_scale_factor,
            is_mobile=vp.is_mobile,
            user_agent=self.profile.user_agent,
            locale=self.profile.locale,
            extra_http_headers=dict(self.profile.extra_headers),
            bypass_csp=True,
            ignore_https_errors=True,
        )
        context.set_default_timeout(self.page_timeout_ms)
        if self.profile.init_script:
            await context.add_init_script(self.profile.init_script)
        try:
            page = await context.new_page()
        except PlaywrightError:
            await cleanup_playwright(context, None)
            raise
        return PlaywrightPageHandle(page, context)

    async def close(self) -> None:
        await cleanup_playwright(None, self._browser)
        self._browser = None
        if self._pw is not None:
            try:
                await self._pw.stop()
            except Exception:
                pass
            self._pw = None


async def cleanup_playwright(context: BrowserContext | None, browser: Browser | None) -> None:
    """Close the browser resources, ignoring anything already gone."""

    try:
        if context:
            await context.close()
    except Exception:
        pass
    try:
        if browser:
            await browser.close()
    except Exception:
        pass


__all__ = [
    "BrowserProfile",
    "CHROMIUM_LAUNCH_ARGS",
    "PlaywrightEngine",
    "PlaywrightPageHandle",
    "cleanup_playwright",
]
