"""Per-user browser sessions and their tabs.

Each remote user (chat key) owns one isolated BrowserContext with an
ordered, never-empty list of tabs. The registry creates sessions lazily,
serializes commands per session, and evicts sessions that sit idle.

Usage:
    registry = SessionRegistry(engine, settings)

    async with registry.session_scope("chat-42") as session:
        await registry.new_tab(session)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from chat_browser.config import DESKTOP_VIEWPORT, BrowserSettings, Viewport
from chat_browser.engine import BrowserEngine
from chat_browser.errors import BoundsError, SessionError
from chat_browser.extract import ExtractedLink, ExtractedMedia, apply_zoom
from chat_browser.policy import step

logger = logging.getLogger("chat_browser.session")

MIN_ZOOM = 0.5
MAX_ZOOM = 2.5
MIN_ZOOM_PERCENT = 50
MAX_ZOOM_PERCENT = 250
ZOOM_STEP = 0.1


async def goto(page: Any, url: str, settings: BrowserSettings) -> Any:
    """Navigate ``page`` and wait for DOMContentLoaded."""
    return await page.goto(url, wait_until="domcontentloaded", timeout=settings.nav_timeout * 1000)


async def read_url(page: Any) -> str:
    return page.url or ""


@dataclass
class Session:
    """Browser state for one remote user."""

    key: str
    context: Any
    tabs: list[Any]
    active: int = 0
    zoom: float = 1.0
    mobile: bool = False
    viewport: Viewport = DESKTOP_VIEWPORT
    links: list[ExtractedLink] = field(default_factory=list)
    media: list[ExtractedMedia] = field(default_factory=list)
    last_render_ref: Any = None
    created_at: float = field(default_factory=time.monotonic)
    last_used_at: float = field(default_factory=time.monotonic)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    pending: int = 0

    @property
    def active_page(self) -> Any:
        return self.tabs[self.active]

    @property
    def busy(self) -> bool:
        return self.pending > 0 or self.lock.locked()

    def touch(self) -> None:
        self.last_used_at = time.monotonic()

    def idle_for(self, now: float | None = None) -> float:
        return (time.monotonic() if now is None else now) - self.last_used_at


@dataclass
class _Creation:
    """A session being created, shared by everyone waiting for it."""

    task: asyncio.Task
    waiters: int = 0


class SessionRegistry:
    """Owns every live session, keyed by remote user."""

    def __init__(self, engine: BrowserEngine, settings: BrowserSettings):
        self.engine = engine
        self.settings = settings
        self._sessions: dict[str, Session] = {}
        self._creating: dict[str, _Creation] = {}
        # Called with the key of every session that gets closed
        self.on_close: list[Callable[[str], None]] = []

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: object) -> bool:
        return key in self._sessions

    def keys(self) -> list[str]:
        return list(self._sessions)

    def get(self, key: str) -> Session | None:
        return self._sessions.get(key)

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def get_or_create(self, key: str) -> Session:
        """Return the session for ``key``, creating it on first use.

        Concurrent callers for the same key share one creation. Different
        keys are created in parallel. When every caller waiting on a
        creation gives up, the creation is cancelled and whatever it had
        built is closed.
        """
        session = self._sessions.get(key)
        if session is not None:
            return session

        creation = self._creating.get(key)
        if creation is None:
            if len(self._sessions) + len(self._creating) >= self.settings.max_sessions:
                raise SessionError("Too many active sessions. Try again later.")
            creation = _Creation(asyncio.create_task(self._create(key)))
            self._creating[key] = creation

        creation.waiters += 1
        try:
            return await asyncio.shield(creation.task)
        finally:
            creation.waiters -= 1
            if creation.waiters == 0 and not creation.task.done():
                creation.task.cancel()
                await asyncio.wait([creation.task], timeout=self.settings.nav_timeout)
            if creation.task.done() and self._creating.get(key) is creation:
                del self._creating[key]

    async def _create(self, key: str) -> Session:
        context = await step("new_context", self.engine.new_context(False))
        registered = False
        try:
            page = await step("new_page", context.new_page())
            await step("open_home", goto(page, self.settings.home_url, self.settings))

            session = Session(
                key=key,
                context=context,
                tabs=[page],
                viewport=self.settings.desktop_viewport,
            )
            await self.apply_zoom_all(session)
            self._sessions[key] = session
            registered = True
        finally:
            if not registered:
                await step("close_context", context.close())
        logger.info(f"Created session {key} ({len(self._sessions)} active)")
        return session

    async def close(self, key: str) -> bool:
        """Close a session and its context. Returns False if none existed."""
        session = self._sessions.pop(key, None)
        if session is None:
            return False
        await step("close_context", session.context.close())
        logger.info(f"Closed session {key} after {time.monotonic() - session.created_at:.0f}s")
        for callback in self.on_close:
            try:
                callback(key)
            except Exception:
                logger.exception(f"on_close callback failed for session {key}")
        return True

    async def close_all(self) -> None:
        tasks = [creation.task for creation in self._creating.values()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks, timeout=self.settings.nav_timeout)
        self._creating.clear()
        for key in list(self._sessions):
            await self.close(key)

    async def evict_idle(self, now: float | None = None) -> list[str]:
        """Close sessions idle past ``session_idle_timeout`` that are not busy."""
        evicted = []
        for key, session in list(self._sessions.items()):
            if session.busy:
                continue
            if session.idle_for(now) > self.settings.session_idle_timeout:
                await self.close(key)
                evicted.append(key)
        if evicted:
            logger.info(f"Evicted {len(evicted)} idle session(s)")
        return evicted

    @asynccontextmanager
    async def session_scope(self, key: str, create: bool = True) -> AsyncIterator[Session]:
        """Hold the session's lock for the duration of one command.

        At most ``max_pending_commands`` commands (running or waiting) are
        accepted per session; further ones fail fast with SessionError.
        """
        session = await self.get_or_create(key) if create else self._sessions.get(key)
        if session is None:
            raise SessionError("No active session.")
        if session.pending >= self.settings.max_pending_commands:
            raise SessionError("Still working on your previous commands. Try again in a moment.")

        session.pending += 1
        try:
            async with session.lock:
                if self._sessions.get(key) is not session:
                    raise SessionError("Session was closed.")
                session.touch()
                yield session
        finally:
            session.pending -= 1
            session.touch()

    # =========================================================================
    # Tabs
    # =========================================================================

    async def new_tab(self, session: Session) -> Any:
        if len(session.tabs) >= self.settings.max_tabs:
            raise SessionError(f"Tab limit reached ({self.settings.max_tabs}). Close a tab first.")
        page = await step("new_page", session.context.new_page())
        added = False
        try:
            await step("open_home", goto(page, self.settings.home_url, self.settings))
            session.tabs.append(page)
            added = True
        finally:
            if not added:
                await step("close_page", page.close())
        session.active = len(session.tabs) - 1
        await step("zoom", apply_zoom(page, session.zoom))
        return page

    def switch_tab(self, session: Session, n: int) -> None:
        """Make 1-based tab ``n`` active."""
        if not 1 <= n <= len(session.tabs):
            raise BoundsError(f"Invalid tab. Choose 1..{len(session.tabs)}")
        session.active = n - 1

    async def close_tab(self, session: Session) -> None:
        if len(session.tabs) == 1:
            raise SessionError("Can't close the last tab. Use /close to end session.")
        old = session.active
        page = session.tabs.pop(old)
        session.active = max(0, old - 1)
        await step("close_page", page.close())

    # =========================================================================
    # Mode and zoom
    # =========================================================================

    async def set_mode(self, session: Session, mobile: bool) -> bool:
        """Switch desktop/mobile emulation by rebuilding the context.

        Every tab is reopened at its current URL in the new context. Returns
        False when the session is already in the requested mode.
        """
        if session.mobile == mobile:
            return False

        urls = []
        for page in session.tabs:
            url = await step("read_url", read_url(page), default="")
            urls.append(url if url and url != "about:blank" else self.settings.home_url)

        context = await step("new_context", self.engine.new_context(mobile))
        tabs = []
        swapped = False
        try:
            for url in urls:
                page = await step("new_page", context.new_page())
                await step("restore_url", goto(page, url, self.settings))
                tabs.append(page)
            old_context = session.context
            session.context = context
            session.tabs = tabs
            session.active = min(session.active, len(tabs) - 1)
            session.mobile = mobile
            session.viewport = self.settings.viewport_for(mobile)
            session.links = []
            session.media = []
            swapped = True
        finally:
            if not swapped:
                await step("close_context", context.close())

        await step("close_context", old_context.close())
        await self.apply_zoom_all(session)

        logger.info(f"Session {session.key} switched to {'mobile' if mobile else 'desktop'} ({len(tabs)} tabs)")
        return True

    async def set_zoom(self, session: Session, percent: float) -> None:
        if not MIN_ZOOM_PERCENT <= percent <= MAX_ZOOM_PERCENT:
            raise BoundsError(f"Zoom must be between {MIN_ZOOM_PERCENT} and {MAX_ZOOM_PERCENT}.")
        session.zoom = round(percent) / 100
        await self.apply_zoom_all(session)

    async def step_zoom(self, session: Session, direction: int) -> None:
        """Nudge zoom by one 10% step in ``direction`` (+1 or -1)."""
        zoom = round(session.zoom + ZOOM_STEP * direction, 1)
        session.zoom = min(MAX_ZOOM, max(MIN_ZOOM, zoom))
        await self.apply_zoom_all(session)

    async def apply_zoom_all(self, session: Session) -> None:
        for page in session.tabs:
            await step("zoom", apply_zoom(page, session.zoom))
