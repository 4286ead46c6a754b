"""Chat browser service: the single command dispatcher.

Usage:
    async with BrowserService(settings) as service:
        command = service.parse(text="/go example.com")
        await service.handle("chat-42", command, delivery)

Each command is resolved to its session, run under the session lock as one
bounded composite operation, and answered through the delivery: usually a
fresh status update, sometimes plain text or a media file. Failures reach
the user as a single "❌ ..." text message.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from chat_browser.commands import (
    COMMAND_TYPES,
    HELP_TEXT,
    Back,
    ClickLink,
    CloseSession,
    CloseTab,
    Command,
    DownloadMedia,
    Forward,
    GridTap,
    Help,
    Home,
    ListMedia,
    ListTabs,
    Navigate,
    NewTab,
    Noop,
    PlayMedia,
    Reload,
    Scroll,
    SetMode,
    SetZoom,
    ShowGrid,
    Submit,
    SwitchTab,
    Tap,
    TypeText,
    ZoomStep,
    grid_keyboard,
    parse_callback,
    parse_command,
)
from chat_browser.config import BrowserSettings
from chat_browser.engine import BrowserEngine
from chat_browser.errors import BoundsError, BrowserError, NavigationError, NonHttpSource, UsageError
from chat_browser.extract import apply_zoom
from chat_browser.grid import cell_to_center, column_letter
from chat_browser.media import MediaDownloader
from chat_browser.policy import run_composite, step
from chat_browser.render import Delivery, RenderPipeline
from chat_browser.session import Session, SessionRegistry, goto, read_url
from chat_browser.url_safety import UrlValidator, search_or_url

logger = logging.getLogger("chat_browser.service")

# Tried in order by /type
INPUT_SELECTORS = [
    'input[type="search"]',
    'input[name="q"]',
    'input[aria-label*="search" i]',
    'input[placeholder*="search" i]',
    "input",
    "textarea",
]

# Post-action settle delays (ms)
SETTLE_NAVIGATE = 600
SETTLE_CLICK = 450
SETTLE_TAP = 350
SETTLE_GRID_TAP = 300
SETTLE_SCROLL = 120
SETTLE_RELOAD = 350
SETTLE_HISTORY = 300
SETTLE_HOME = 400
SETTLE_SUBMIT = 600

TAP_LOAD_TIMEOUT_MS = 4000
MEDIA_URL_PREVIEW = 100


class SessionUse(Enum):
    NONE = "none"  # runs without a session
    CREATE = "create"  # session created on first use


@dataclass
class CommandContext:
    """Everything a handler needs for one command."""

    key: str
    delivery: Delivery
    session: Session | None = None
    url: str | None = None  # pre-validated navigation target


Handler = Callable[[CommandContext, Any], Awaitable[None]]


def _fmt_coord(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


class BrowserService:
    """Owns the engine, the session registry and the command handlers."""

    def __init__(
        self,
        settings: BrowserSettings | None = None,
        engine: BrowserEngine | None = None,
        validator: UrlValidator | None = None,
        downloader: MediaDownloader | None = None,
    ):
        self.settings = settings or BrowserSettings.from_env()
        self.engine = engine or BrowserEngine(self.settings)
        self.validator = validator or UrlValidator(self.settings)
        self.downloader = downloader or MediaDownloader(self.settings, validator=self.validator)
        self.registry = SessionRegistry(self.engine, self.settings)
        self.renderer = RenderPipeline(self.settings)
        self._reaper: asyncio.Task | None = None

        self._handlers: dict[type, tuple[Handler, SessionUse]] = {
            Navigate: (self._navigate, SessionUse.CREATE),
            ClickLink: (self._click_link, SessionUse.CREATE),
            Tap: (self._tap, SessionUse.CREATE),
            GridTap: (self._grid_tap, SessionUse.CREATE),
            ShowGrid: (self._show_grid, SessionUse.CREATE),
            SetZoom: (self._set_zoom, SessionUse.CREATE),
            ZoomStep: (self._zoom_step, SessionUse.CREATE),
            SetMode: (self._set_mode, SessionUse.CREATE),
            NewTab: (self._new_tab, SessionUse.CREATE),
            SwitchTab: (self._switch_tab, SessionUse.CREATE),
            CloseTab: (self._close_tab, SessionUse.CREATE),
            Reload: (self._reload, SessionUse.CREATE),
            Back: (self._back, SessionUse.CREATE),
            Forward: (self._forward, SessionUse.CREATE),
            Home: (self._home, SessionUse.CREATE),
            Scroll: (self._scroll, SessionUse.CREATE),
            TypeText: (self._type_text, SessionUse.CREATE),
            Submit: (self._submit, SessionUse.CREATE),
            ListMedia: (self._list_media, SessionUse.CREATE),
            PlayMedia: (self._play_media, SessionUse.CREATE),
            DownloadMedia: (self._download_media, SessionUse.CREATE),
            ListTabs: (self._list_tabs, SessionUse.CREATE),
            CloseSession: (self._close_session, SessionUse.NONE),
            Help: (self._help, SessionUse.NONE),
            Noop: (self._noop, SessionUse.NONE),
        }
        missing = set(COMMAND_TYPES) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for commands: {sorted(t.__name__ for t in missing)}")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        self.settings.temp_dir.mkdir(parents=True, exist_ok=True)
        await self.engine.start()
        if self._reaper is None:
            self._reaper = asyncio.create_task(self._reap_idle_sessions())
        logger.info("Browser service started")

    async def stop(self) -> None:
        if self._reaper is not None:
            self._reaper.cancel()
            try:
                await self._reaper
            except asyncio.CancelledError:
                pass
            self._reaper = None
        try:
            await self.registry.close_all()
            await self.downloader.aclose()
        finally:
            await self.engine.stop()
        logger.info("Browser service stopped")

    async def __aenter__(self) -> BrowserService:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _reap_idle_sessions(self) -> None:
        while True:
            await asyncio.sleep(self.settings.reaper_interval)
            try:
                await self.registry.evict_idle()
            except Exception:
                logger.exception("Idle session sweep failed")

    def health(self) -> dict[str, Any]:
        return {
            "status": "ok" if self.engine.is_running else "starting",
            "browser": self.engine.is_running,
            "sessions": len(self.registry),
        }

    # =========================================================================
    # Dispatch
    # =========================================================================

    def parse(self, text: str | None = None, callback: str | None = None) -> Command:
        """Parse either a slash command or button callback data."""
        cols, rows = self.settings.grid_cols, self.settings.grid_rows
        if callback is not None:
            return parse_callback(callback, cols, rows)
        if text is not None:
            return parse_command(text, cols, rows)
        raise UsageError("Send a command or a button callback.")

    async def handle(self, key: str, command: Command, delivery: Delivery) -> None:
        """Execute one command and report any failure as a text message."""
        try:
            await self._dispatch(key, command, delivery)
        except BrowserError as e:
            logger.info(f"{type(command).__name__} for {key} failed: [{e.code}] {e}")
            await delivery.send_text(f"❌ {e}")
        except Exception:
            logger.exception(f"Unexpected error handling {type(command).__name__} for {key}")
            await delivery.send_text("❌ Action failed.")

    async def _dispatch(self, key: str, command: Command, delivery: Delivery) -> None:
        handler, use = self._handlers[type(command)]
        ctx = CommandContext(key=key, delivery=delivery)

        if isinstance(command, Navigate):
            ctx.url = await self.validator.validate(search_or_url(command.target, self.settings.search_url))

        if use is SessionUse.NONE:
            await handler(ctx, command)
            return

        timeout = self.settings.total_timeout
        if isinstance(command, (PlayMedia, DownloadMedia)):
            timeout = self.settings.media_timeout + self.settings.total_timeout

        async def run_in_session() -> None:
            async with self.registry.session_scope(key) as session:
                ctx.session = session
                await handler(ctx, command)

        # Session creation and waiting for the session lock share the deadline
        await run_composite(run_in_session(), timeout)

    # =========================================================================
    # Shared steps
    # =========================================================================

    async def _settle(self, session: Session, page: Any, ms: int) -> None:
        await step("settle", page.wait_for_timeout(ms))
        await step("zoom", apply_zoom(page, session.zoom))

    async def _render(self, ctx: CommandContext, note: str = "") -> None:
        await self.renderer.render(ctx.session, ctx.delivery, note)

    async def _open(self, ctx: CommandContext, url: str, settle_ms: int) -> None:
        page = ctx.session.active_page
        await step("goto", goto(page, url, self.settings))
        await self._settle(ctx.session, page, settle_ms)
        await self._render(ctx)

    async def _tap_at(self, session: Session, x: float, y: float, delay: int, settle_ms: int) -> None:
        page = session.active_page
        await step("input", page.mouse.move(x, y))
        await step("input", page.mouse.click(x, y, delay=delay))
        await step("load_state", page.wait_for_load_state("domcontentloaded", timeout=TAP_LOAD_TIMEOUT_MS))
        await self._settle(session, page, settle_ms)

    def _media_item(self, session: Session, number: int):
        if not 1 <= number <= len(session.media):
            raise BoundsError(f"No media #{number}. Use /media to list.")
        item = session.media[number - 1]
        if not item.is_http:
            raise NonHttpSource()
        return item

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _navigate(self, ctx: CommandContext, command: Navigate) -> None:
        await self._open(ctx, ctx.url, SETTLE_NAVIGATE)

    async def _click_link(self, ctx: CommandContext, command: ClickLink) -> None:
        links = ctx.session.links
        if not 1 <= command.number <= len(links):
            raise BoundsError(f"No link #{command.number}.")
        url = await self.validator.validate(links[command.number - 1].href)
        await self._open(ctx, url, SETTLE_CLICK)

    async def _tap(self, ctx: CommandContext, command: Tap) -> None:
        viewport = ctx.session.viewport
        if not viewport.contains(command.x, command.y):
            raise BoundsError(f"Out of bounds. x:0-{viewport.width - 1}, y:0-{viewport.height - 1}")
        await self._tap_at(ctx.session, command.x, command.y, delay=30, settle_ms=SETTLE_TAP)
        await self._render(ctx, f"🖱️ tapped: ({_fmt_coord(command.x)}, {_fmt_coord(command.y)})")

    async def _grid_tap(self, ctx: CommandContext, command: GridTap) -> None:
        x, y = cell_to_center(command.cell, ctx.session.viewport, self.settings.grid_cols, self.settings.grid_rows)
        await self._tap_at(ctx.session, x, y, delay=25, settle_ms=SETTLE_GRID_TAP)
        await self._render(ctx, f"🧊 grid tap {command.cell} → ({x}, {y})")

    async def _show_grid(self, ctx: CommandContext, command: ShowGrid) -> None:
        viewport = ctx.session.viewport
        cols, rows = self.settings.grid_cols, self.settings.grid_rows
        await ctx.delivery.send_text(
            f"🧊 Grid Tap is ON\nViewport: {viewport.width}×{viewport.height}\n"
            f"Tap a cell (A1..{column_letter(cols - 1)}{rows}).",
            grid_keyboard(cols, rows),
        )

    async def _set_zoom(self, ctx: CommandContext, command: SetZoom) -> None:
        await self.registry.set_zoom(ctx.session, command.percent)
        await self._render(ctx, f"🔍 zoom set to {round(ctx.session.zoom * 100)}%")

    async def _zoom_step(self, ctx: CommandContext, command: ZoomStep) -> None:
        await self.registry.step_zoom(ctx.session, command.direction)
        await self._render(ctx, f"🔍 zoom: {round(ctx.session.zoom * 100)}%")

    async def _set_mode(self, ctx: CommandContext, command: SetMode) -> None:
        name = "mobile" if command.mobile else "desktop"
        if ctx.session.mobile == command.mobile:
            await ctx.delivery.send_text(f"Already in {name} mode.")
            return
        await ctx.delivery.send_text(f"Switching to {'📱 mobile' if command.mobile else '🖥️ desktop'} mode...")
        await self.registry.set_mode(ctx.session, command.mobile)
        await self._render(ctx, f"✅ mode: {'📱 Mobile' if command.mobile else '🖥️ Desktop'}")

    async def _new_tab(self, ctx: CommandContext, command: NewTab) -> None:
        await self.registry.new_tab(ctx.session)
        await self._render(ctx, "➕ opened new tab")

    async def _switch_tab(self, ctx: CommandContext, command: SwitchTab) -> None:
        self.registry.switch_tab(ctx.session, command.number)
        await self._render(ctx, f"🧩 switched to tab {command.number}")

    async def _close_tab(self, ctx: CommandContext, command: CloseTab) -> None:
        await self.registry.close_tab(ctx.session)
        await self._render(ctx, "🧹 closed tab")

    async def _reload(self, ctx: CommandContext, command: Reload) -> None:
        page = ctx.session.active_page
        await step("reload", page.reload(wait_until="domcontentloaded", timeout=self.settings.nav_timeout * 1000))
        await self._settle(ctx.session, page, SETTLE_RELOAD)
        await self._render(ctx)

    async def _back(self, ctx: CommandContext, command: Back) -> None:
        page = ctx.session.active_page
        await step("history", page.go_back(wait_until="domcontentloaded", timeout=self.settings.nav_timeout * 1000))
        await self._settle(ctx.session, page, SETTLE_HISTORY)
        await self._render(ctx)

    async def _forward(self, ctx: CommandContext, command: Forward) -> None:
        page = ctx.session.active_page
        await step("history", page.go_forward(wait_until="domcontentloaded", timeout=self.settings.nav_timeout * 1000))
        await self._settle(ctx.session, page, SETTLE_HISTORY)
        await self._render(ctx)

    async def _home(self, ctx: CommandContext, command: Home) -> None:
        await self._open(ctx, self.settings.home_url, SETTLE_HOME)

    async def _scroll(self, ctx: CommandContext, command: Scroll) -> None:
        page = ctx.session.active_page
        await step("input", page.mouse.wheel(0, command.direction * self.settings.scroll_px))
        await self._settle(ctx.session, page, SETTLE_SCROLL)
        await self._render(ctx)

    async def _type_text(self, ctx: CommandContext, command: TypeText) -> None:
        page = ctx.session.active_page
        for selector in INPUT_SELECTORS:
            element = await step("input", page.query_selector(selector))
            if element is None:
                continue
            await step("fill", element.click(timeout=2000))
            await step("fill", element.fill(""))
            await step("fill", element.type(command.text, delay=12))
            break
        else:
            raise NavigationError("No input box found on this page.")
        await self._render(ctx, f"⌨️ typed: {command.text}")

    async def _submit(self, ctx: CommandContext, command: Submit) -> None:
        page = ctx.session.active_page
        await step("input", page.keyboard.press("Enter"))
        await step(
            "load_state",
            page.wait_for_load_state("domcontentloaded", timeout=self.settings.nav_timeout * 1000),
        )
        await self._settle(ctx.session, page, SETTLE_SUBMIT)
        await self._render(ctx, "⏎ submitted")

    async def _list_media(self, ctx: CommandContext, command: ListMedia) -> None:
        media = ctx.session.media
        if not media:
            await ctx.delivery.send_text("No media detected on this page.")
            return
        lines = []
        for i, item in enumerate(media, start=1):
            url = item.url if len(item.url) <= MEDIA_URL_PREVIEW else item.url[: MEDIA_URL_PREVIEW - 3] + "..."
            lines.append(f"{i}) {item.label} ({item.kind})\n{url}")
        await ctx.delivery.send_text(
            "🎬 Media found:\n\n" + "\n\n".join(lines) + "\n\nUse /video <n> to play or /download <n> to download."
        )

    async def _play_media(self, ctx: CommandContext, command: PlayMedia) -> None:
        item = self._media_item(ctx.session, command.number)
        async with self.downloader.fetch(item.url, item.kind) as media:
            await ctx.delivery.send_media(str(media.path), item.kind, item.label, as_document=False)

    async def _download_media(self, ctx: CommandContext, command: DownloadMedia) -> None:
        item = self._media_item(ctx.session, command.number)
        async with self.downloader.fetch(item.url, item.kind) as media:
            await ctx.delivery.send_media(str(media.path), item.kind, item.label, as_document=True)

    async def _list_tabs(self, ctx: CommandContext, command: ListTabs) -> None:
        session = ctx.session
        lines = []
        for i, page in enumerate(session.tabs):
            title = await step("read_title", page.title(), default="")
            url = await step("read_url", read_url(page), default="")
            marker = "✅" if i == session.active else "  "
            lines.append(f"{marker} {i + 1}) {title or 'Untitled'}\n   {url}")
        await ctx.delivery.send_text("\n\n".join(lines) or "No tabs.")

    async def _close_session(self, ctx: CommandContext, command: CloseSession) -> None:
        if ctx.key not in self.registry:
            await ctx.delivery.send_text("No active session.")
            return
        async with self.registry.session_scope(ctx.key, create=False):
            await self.registry.close(ctx.key)
        await ctx.delivery.send_text("✅ Closed your browser session.")

    async def _help(self, ctx: CommandContext, command: Help) -> None:
        await ctx.delivery.send_text(HELP_TEXT)

    async def _noop(self, ctx: CommandContext, command: Noop) -> None:
        if command.ack:
            await ctx.delivery.send_text(command.ack)
