"""Centralized configuration for the chat browser service.

Reads from environment variables with sensible defaults. Settings are
read once at startup and are immutable afterwards.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class Viewport:
    """Browser viewport size in CSS pixels."""

    width: int
    height: int

    def contains(self, x: float, y: float) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def to_dict(self) -> dict[str, int]:
        return {"width": self.width, "height": self.height}


DESKTOP_VIEWPORT = Viewport(1280, 720)
MOBILE_VIEWPORT = Viewport(390, 844)  # iPhone-like

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)
MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)

HOME_URL = "https://duckduckgo.com"
SEARCH_URL = "https://duckduckgo.com/?q="

MAX_URL_LENGTH = 2048
MAX_LINKS = 8
MAX_MEDIA_ITEMS = 6
MAX_MEDIA_BYTES = 45 * 1024 * 1024

GRID_COLS = 6  # A..F
GRID_ROWS = 4  # 1..4


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("true", "1", "yes", "on")


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


def parse_domain_list(raw: str) -> tuple[str, ...]:
    """Parse a comma-separated allow-list into normalized suffixes."""
    domains = []
    for item in raw.split(","):
        domain = item.strip().lower().strip(".")
        if domain:
            domains.append(domain)
    return tuple(domains)


@dataclass(frozen=True)
class BrowserSettings:
    """Immutable service settings."""

    home_url: str = HOME_URL
    search_url: str = SEARCH_URL
    allowed_domains: tuple[str, ...] = ()

    max_url_length: int = MAX_URL_LENGTH
    max_links: int = MAX_LINKS
    max_media_items: int = MAX_MEDIA_ITEMS
    max_media_bytes: int = MAX_MEDIA_BYTES

    # Timeouts in seconds
    nav_timeout: float = 15.0
    total_timeout: float = 25.0
    media_timeout: float = 90.0
    dns_timeout: float = 3.0

    grid_cols: int = GRID_COLS
    grid_rows: int = GRID_ROWS
    scroll_px: int = 650

    desktop_viewport: Viewport = DESKTOP_VIEWPORT
    mobile_viewport: Viewport = MOBILE_VIEWPORT

    max_tabs: int = 8
    max_sessions: int = 32
    max_pending_commands: int = 3
    session_idle_timeout: float = 1800.0
    reaper_interval: float = 60.0

    headless: bool = True
    temp_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "chat-browser")

    def viewport_for(self, mobile: bool) -> Viewport:
        return self.mobile_viewport if mobile else self.desktop_viewport

    @classmethod
    def from_env(cls) -> BrowserSettings:
        """Build settings from ``CHAT_BROWSER_*`` environment variables."""
        temp_raw = os.environ.get("CHAT_BROWSER_TEMP_DIR")
        return cls(
            home_url=os.environ.get("CHAT_BROWSER_HOME_URL", HOME_URL),
            search_url=os.environ.get("CHAT_BROWSER_SEARCH_URL", SEARCH_URL),
            allowed_domains=parse_domain_list(os.environ.get("CHAT_BROWSER_ALLOWED_DOMAINS", "")),
            max_url_length=_env_int("CHAT_BROWSER_MAX_URL_LENGTH", MAX_URL_LENGTH),
            max_links=_env_int("CHAT_BROWSER_MAX_LINKS", MAX_LINKS),
            max_media_items=_env_int("CHAT_BROWSER_MAX_MEDIA_ITEMS", MAX_MEDIA_ITEMS),
            max_media_bytes=_env_int("CHAT_BROWSER_MAX_MEDIA_BYTES", MAX_MEDIA_BYTES),
            nav_timeout=_env_float("CHAT_BROWSER_NAV_TIMEOUT", 15.0),
            total_timeout=_env_float("CHAT_BROWSER_TOTAL_TIMEOUT", 25.0),
            media_timeout=_env_float("CHAT_BROWSER_MEDIA_TIMEOUT", 90.0),
            dns_timeout=_env_float("CHAT_BROWSER_DNS_TIMEOUT", 3.0),
            grid_cols=_env_int("CHAT_BROWSER_GRID_COLS", GRID_COLS),
            grid_rows=_env_int("CHAT_BROWSER_GRID_ROWS", GRID_ROWS),
            scroll_px=_env_int("CHAT_BROWSER_SCROLL_PX", 650),
            max_tabs=_env_int("CHAT_BROWSER_MAX_TABS", 8),
            max_sessions=_env_int("CHAT_BROWSER_MAX_SESSIONS", 32),
            max_pending_commands=_env_int("CHAT_BROWSER_MAX_PENDING_COMMANDS", 3),
            session_idle_timeout=_env_float("CHAT_BROWSER_SESSION_IDLE_TIMEOUT", 1800.0),
            reaper_interval=_env_float("CHAT_BROWSER_REAPER_INTERVAL", 60.0),
            headless=_env_bool("CHAT_BROWSER_HEADLESS", True),
            temp_dir=Path(temp_raw).expanduser() if temp_raw else Path(tempfile.gettempdir()) / "chat-browser",
        )


# API authentication for the HTTP transport (empty = open)
API_TOKEN: str = os.environ.get("CHAT_BROWSER_TOKEN", "")
