"""Turns the active tab into a status update and delivers it.

Only the screenshot is load-bearing: title, URL, links and media are
best-effort and degrade to empty values. A previously delivered update is
edited in place when possible, otherwise a new one is sent.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from chat_browser.commands import Button, status_keyboard
from chat_browser.config import BrowserSettings
from chat_browser.extract import ExtractedLink, ExtractedMedia, collect_links, collect_media
from chat_browser.policy import step
from chat_browser.session import Session, read_url

logger = logging.getLogger("chat_browser.render")


class Delivery(Protocol):
    """Outbound side of the chat transport."""

    async def send(self, update: StatusUpdate) -> Any: ...

    async def edit(self, ref: Any, update: StatusUpdate) -> None: ...

    async def send_text(self, text: str, buttons: list[list[Button]] | None = None) -> Any: ...

    async def send_media(self, path: str, kind: str, caption: str, as_document: bool = False) -> Any: ...


@dataclass
class StatusUpdate:
    """One rendered view of a session."""

    title: str
    url: str
    tab_index: int  # 1-based
    tab_count: int
    mobile: bool
    zoom_percent: int
    screenshot: bytes = b""
    links: list[ExtractedLink] = field(default_factory=list)
    media: list[ExtractedMedia] = field(default_factory=list)
    note: str = ""
    buttons: list[list[Button]] = field(default_factory=list)

    @property
    def mode_label(self) -> str:
        return "📱 Mobile" if self.mobile else "🖥️ Desktop"

    def caption(self) -> str:
        lines = [
            f"🌐 {self.title or 'Page'}",
            f"🔗 {self.url or '(no url)'}",
            f"🧩 Tab: {self.tab_index}/{self.tab_count}  |  {self.mode_label}  |  🔍 {self.zoom_percent}%",
            "🖱️ Tap: /tap x y  |  Grid: /grid",
        ]
        text = "\n".join(lines)
        if self.links:
            text += f"\n\nLinks: tap buttons or /click 1..{len(self.links)}"
        else:
            text += "\n\nNo visible links detected."
        if self.media:
            text += f"\nMedia: /media or /video 1..{len(self.media)}"
        if self.note:
            text += f"\n\n{self.note}"
        return text

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe dictionary."""
        return {
            "type": "status",
            "title": self.title,
            "url": self.url,
            "tab": {"index": self.tab_index, "count": self.tab_count},
            "mobile": self.mobile,
            "zoom": self.zoom_percent,
            "caption": self.caption(),
            "links": [{"text": link.text, "href": link.href} for link in self.links],
            "media": [{"url": item.url, "kind": item.kind, "label": item.label} for item in self.media],
            "buttons": [[button.to_dict() for button in row] for row in self.buttons],
            "screenshot": base64.b64encode(self.screenshot).decode("ascii"),
        }


class RenderPipeline:
    def __init__(self, settings: BrowserSettings):
        self.settings = settings

    async def capture(self, session: Session, note: str = "") -> StatusUpdate:
        """Screenshot and read the active tab, refreshing the session caches."""
        page = session.active_page
        screenshot = await step("screenshot", page.screenshot(full_page=False))
        url = await step("read_url", read_url(page), default="")
        title = await step("read_title", page.title(), default="")
        links = await step("extract_links", collect_links(page, self.settings.max_links), default=[])
        media = await step("extract_media", collect_media(page, self.settings.max_media_items), default=[])

        session.links = links[: self.settings.max_links]
        session.media = media[: self.settings.max_media_items]

        return StatusUpdate(
            title=title or "",
            url=url or "",
            tab_index=session.active + 1,
            tab_count=len(session.tabs),
            mobile=session.mobile,
            zoom_percent=round(session.zoom * 100),
            screenshot=screenshot or b"",
            links=list(session.links),
            media=list(session.media),
            note=note,
            buttons=status_keyboard(session),
        )

    async def render(self, session: Session, delivery: Delivery, note: str = "") -> StatusUpdate:
        update = await self.capture(session, note)

        if session.last_render_ref is not None:
            try:
                await delivery.edit(session.last_render_ref, update)
                return update
            except Exception as e:
                logger.debug(f"Edit of previous status failed, sending new one: {e}")

        session.last_render_ref = await delivery.send(update)
        return update
