"""Shared Playwright browser for all sessions.

One Chromium process is started per service and every session gets its
own isolated BrowserContext on top of it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from chat_browser.config import DESKTOP_USER_AGENT, MOBILE_USER_AGENT, BrowserSettings
from chat_browser.errors import SessionError

logger = logging.getLogger("chat_browser.engine")

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
    "--disable-sync",
    "--disable-translate",
    "--metrics-recording-only",
    "--no-first-run",
    "--mute-audio",
]


def context_options(settings: BrowserSettings, mobile: bool) -> dict[str, Any]:
    """Playwright ``new_context`` keyword arguments for a mode."""
    viewport = settings.viewport_for(mobile)
    return {
        "viewport": viewport.to_dict(),
        "user_agent": MOBILE_USER_AGENT if mobile else DESKTOP_USER_AGENT,
        "is_mobile": mobile,
        "has_touch": mobile,
        "accept_downloads": False,
    }


class BrowserEngine:
    """Scoped owner of the Playwright driver and the shared browser."""

    def __init__(self, settings: BrowserSettings):
        self.settings = settings
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def start(self) -> None:
        async with self._lock:
            if self._browser is not None:
                return
            logger.info("Starting shared Playwright instance...")
            self._playwright = await async_playwright().start()
            try:
                self._browser = await self._playwright.chromium.launch(
                    headless=self.settings.headless,
                    args=LAUNCH_ARGS,
                    chromium_sandbox=False,
                )
            except Exception:
                await self._playwright.stop()
                self._playwright = None
                raise
            logger.info("Browser started (headless=%s)", self.settings.headless)

    async def stop(self) -> None:
        async with self._lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except Exception as e:
                    logger.debug(f"Browser close error: {e}")
                self._browser = None
            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as e:
                    logger.debug(f"Playwright stop error: {e}")
                self._playwright = None
            logger.info("Browser stopped")

    async def new_context(self, mobile: bool) -> BrowserContext:
        """Create an isolated context emulating desktop or mobile."""
        if self._browser is None:
            raise SessionError("Browser engine is not running.")
        return await self._browser.new_context(**context_options(self.settings, mobile))

    async def __aenter__(self) -> BrowserEngine:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
