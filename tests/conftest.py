"""Shared pytest fixtures for chat browser tests.

Playwright is replaced by small in-memory fakes: pages record what was
done to them and answer the extraction scripts from canned data, so no
browser or network is needed.
"""
import asyncio
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from chat_browser.config import BrowserSettings
from chat_browser.engine import context_options
from chat_browser.extract import LINKS_SCRIPT, MEDIA_SCRIPT, ZOOM_SCRIPT
from chat_browser.service import BrowserService
from chat_browser.session import SessionRegistry
from chat_browser.url_safety import UrlValidator


# ============================================================================
# Playwright Fakes
# ============================================================================

class FakeElement:
    """Input element returned by ``query_selector``."""

    def __init__(self):
        self.click = AsyncMock()
        self.fill = AsyncMock()
        self.type = AsyncMock()


class FakePage:
    """Stand-in for a Playwright Page."""

    def __init__(self, url: str = "about:blank", title: str = ""):
        self.url = url
        self.page_title = title
        self.links: list[dict[str, Any]] = []
        self.media: list[dict[str, Any]] = []
        self.elements: dict[str, FakeElement] = {}
        self.zoom: float | None = None
        self.closed = False
        self.visited: list[str] = []
        self.goto_error: Exception | None = None
        self.screenshot_error: Exception | None = None
        self.script_error: Exception | None = None
        self.goto_delay = 0.0

        self.mouse = MagicMock(move=AsyncMock(), click=AsyncMock(), wheel=AsyncMock())
        self.keyboard = MagicMock(press=AsyncMock(), type=AsyncMock())
        self.reload = AsyncMock()
        self.go_back = AsyncMock()
        self.go_forward = AsyncMock()
        self.wait_for_load_state = AsyncMock()
        self.wait_for_timeout = AsyncMock()

    async def goto(self, url: str, **kwargs):
        self.visited.append(url)
        if self.goto_delay:
            await asyncio.sleep(self.goto_delay)
        if self.goto_error is not None:
            raise self.goto_error
        self.url = url

    async def title(self) -> str:
        return self.page_title

    async def screenshot(self, **kwargs) -> bytes:
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return b"\x89PNG-fake"

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if script == ZOOM_SCRIPT:
            self.zoom = arg
            return None
        if self.script_error is not None:
            raise self.script_error
        if script == LINKS_SCRIPT:
            return [dict(link) for link in self.links]
        if script == MEDIA_SCRIPT:
            return [dict(item) for item in self.media]
        raise AssertionError(f"Unexpected script: {script[:40]!r}")

    async def query_selector(self, selector: str) -> FakeElement | None:
        return self.elements.get(selector)

    async def close(self):
        self.closed = True


class FakeContext:
    """Stand-in for a Playwright BrowserContext."""

    def __init__(self, options: dict[str, Any], goto_error: Exception | None = None, goto_delay: float = 0.0):
        self.options = options
        self.pages: list[FakePage] = []
        self.closed = False
        self.goto_error = goto_error
        self.goto_delay = goto_delay

    async def new_page(self) -> FakePage:
        page = FakePage()
        page.goto_error = self.goto_error
        page.goto_delay = self.goto_delay
        self.pages.append(page)
        return page

    async def close(self):
        self.closed = True


class FakeEngine:
    """Stand-in for BrowserEngine that hands out FakeContexts."""

    def __init__(self, settings: BrowserSettings):
        self.settings = settings
        self.contexts: list[FakeContext] = []
        self.is_running = False
        self.goto_error: Exception | None = None
        self.goto_delay = 0.0
        self.context_delay = 0.0

    async def start(self):
        self.is_running = True

    async def stop(self):
        self.is_running = False

    async def new_context(self, mobile: bool) -> FakeContext:
        if self.context_delay:
            await asyncio.sleep(self.context_delay)
        context = FakeContext(
            context_options(self.settings, mobile),
            goto_error=self.goto_error,
            goto_delay=self.goto_delay,
        )
        self.contexts.append(context)
        return context


class RecordingDelivery:
    """Delivery that records everything the service sends."""

    def __init__(self):
        self.sent: list[Any] = []
        self.edits: list[tuple[Any, Any]] = []
        self.texts: list[tuple[str, Any]] = []
        self.media: list[dict[str, Any]] = []
        self.statuses: list[Any] = []
        self.fail_edit = False

    async def send(self, update):
        self.sent.append(update)
        self.statuses.append(update)
        return len(self.sent)

    async def edit(self, ref, update):
        if self.fail_edit:
            raise RuntimeError("message to edit not found")
        self.edits.append((ref, update))
        self.statuses.append(update)

    async def send_text(self, text, buttons=None):
        self.texts.append((text, buttons))

    async def send_media(self, path, kind, caption, as_document=False):
        self.media.append({
            "path": Path(path),
            "kind": kind,
            "caption": caption,
            "as_document": as_document,
            "data": Path(path).read_bytes(),
        })

    @property
    def last_text(self) -> str:
        return self.texts[-1][0]

    @property
    def last_status(self) -> Any:
        return self.statuses[-1]


async def public_resolver(hostname: str) -> list[str]:
    """Resolve every host to a public documentation-range address."""
    return ["93.184.216.34"]


# ============================================================================
# Component Fixtures
# ============================================================================

@pytest.fixture
def settings(tmp_path: Path) -> BrowserSettings:
    """Default settings with a per-test temp directory."""
    return BrowserSettings(temp_dir=tmp_path / "media", reaper_interval=3600.0)


@pytest.fixture
def fake_page():
    """Factory for FakePage instances."""
    return FakePage


@pytest.fixture
def fake_element():
    """Factory for FakeElement instances."""
    return FakeElement


@pytest.fixture
def engine(settings: BrowserSettings) -> FakeEngine:
    return FakeEngine(settings)


@pytest.fixture
def registry(engine: FakeEngine, settings: BrowserSettings) -> SessionRegistry:
    return SessionRegistry(engine, settings)


@pytest.fixture
def validator(settings: BrowserSettings) -> UrlValidator:
    """Validator whose DNS always answers with a public address."""
    return UrlValidator(settings, resolver=public_resolver)


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def service(settings: BrowserSettings, engine: FakeEngine, validator: UrlValidator) -> BrowserService:
    """Service wired to the fake engine and the public resolver."""
    return BrowserService(settings, engine=engine, validator=validator)
