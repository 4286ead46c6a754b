"""Command model.

Every inbound message, whether a slash command (``/go example.com``) or
button callback data (``nav:down``), is parsed exactly once into one of
the frozen variants below. Bad arguments raise UsageError before any
session or browser work happens.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from chat_browser.config import GRID_COLS, GRID_ROWS
from chat_browser.errors import UsageError
from chat_browser.grid import column_letter, grid_cells, is_valid_cell

if TYPE_CHECKING:
    from chat_browser.session import Session


# =============================================================================
# Variants
# =============================================================================


@dataclass(frozen=True)
class Navigate:
    target: str  # URL or free-text search


@dataclass(frozen=True)
class ClickLink:
    number: int  # 1-based


@dataclass(frozen=True)
class Tap:
    x: float
    y: float


@dataclass(frozen=True)
class GridTap:
    cell: str


@dataclass(frozen=True)
class ShowGrid:
    pass


@dataclass(frozen=True)
class SetZoom:
    percent: float


@dataclass(frozen=True)
class ZoomStep:
    direction: int  # +1 in, -1 out


@dataclass(frozen=True)
class SetMode:
    mobile: bool


@dataclass(frozen=True)
class NewTab:
    pass


@dataclass(frozen=True)
class SwitchTab:
    number: int  # 1-based


@dataclass(frozen=True)
class CloseTab:
    pass


@dataclass(frozen=True)
class Reload:
    pass


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class Forward:
    pass


@dataclass(frozen=True)
class Home:
    pass


@dataclass(frozen=True)
class Scroll:
    direction: int  # +1 down, -1 up


@dataclass(frozen=True)
class TypeText:
    text: str


@dataclass(frozen=True)
class Submit:
    pass


@dataclass(frozen=True)
class ListMedia:
    pass


@dataclass(frozen=True)
class PlayMedia:
    number: int  # 1-based


@dataclass(frozen=True)
class DownloadMedia:
    number: int  # 1-based


@dataclass(frozen=True)
class ListTabs:
    pass


@dataclass(frozen=True)
class CloseSession:
    pass


@dataclass(frozen=True)
class Help:
    pass


@dataclass(frozen=True)
class Noop:
    ack: str = ""


Command = Union[
    Navigate,
    ClickLink,
    Tap,
    GridTap,
    ShowGrid,
    SetZoom,
    ZoomStep,
    SetMode,
    NewTab,
    SwitchTab,
    CloseTab,
    Reload,
    Back,
    Forward,
    Home,
    Scroll,
    TypeText,
    Submit,
    ListMedia,
    PlayMedia,
    DownloadMedia,
    ListTabs,
    CloseSession,
    Help,
    Noop,
]

COMMAND_TYPES: tuple[type, ...] = Command.__args__  # type: ignore[attr-defined]

HELP_TEXT = """🧭 Remote Browser (Grid + Zoom + Mobile)

Open / Navigate:
• /go <url or search text>
• /click <n>
• /back  /forward  /reload  /home

Scroll / Type:
• /up  /down
• /type <text>  then /enter

Tap:
• /tap <x> <y>
• /grid            (tap a cell like A1..F4)

Zoom:
• /zoom 50..250
• /zin  /zout

Mobile:
• /mobile on|off

Tabs:
• /tabs
• /tab new
• /tab <n>
• /tab close

Media:
• /media
• /video <n>  /download <n>

• /close  (end your session)"""


# =============================================================================
# Parsing
# =============================================================================


def _positive_int(arg: str, usage: str) -> int:
    try:
        value = int(arg.strip())
    except ValueError:
        raise UsageError(usage) from None
    if value < 1:
        raise UsageError(usage)
    return value


def _number(arg: str, usage: str) -> float:
    try:
        value = float(arg.strip())
    except ValueError:
        raise UsageError(usage) from None
    if not math.isfinite(value):
        raise UsageError(usage)
    return value


def _grid_cell(cell: str, cols: int, rows: int) -> str:
    cell = cell.strip().upper()
    if not is_valid_cell(cell, cols, rows):
        raise UsageError(f"Invalid grid cell. Use A1..{column_letter(cols - 1)}{rows}.")
    return cell


def parse_command(text: str, cols: int = GRID_COLS, rows: int = GRID_ROWS) -> Command:
    """Parse a slash command such as ``/tap 640 360``."""
    text = (text or "").strip()
    if not text.startswith("/"):
        raise UsageError("Unknown command. Send /help for the list.")

    head, _, arg = text.partition(" ")
    name = head[1:].split("@", 1)[0].lower()
    arg = arg.strip()

    if name == "go":
        if not arg:
            raise UsageError("Usage: /go <url or search text>")
        return Navigate(arg)
    if name == "click":
        return ClickLink(_positive_int(arg, "Usage: /click <number>"))
    if name == "tap":
        usage = "Usage: /tap <x> <y>   e.g. /tap 640 360"
        parts = arg.split()
        if len(parts) < 2:
            raise UsageError(usage)
        return Tap(_number(parts[0], "x and y must be numbers."), _number(parts[1], "x and y must be numbers."))
    if name == "grid":
        return GridTap(_grid_cell(arg, cols, rows)) if arg else ShowGrid()
    if name == "zoom":
        return SetZoom(_number(arg, "Usage: /zoom <50..250>  (example: /zoom 120)"))
    if name == "zin":
        return ZoomStep(1)
    if name == "zout":
        return ZoomStep(-1)
    if name == "mobile":
        value = arg.lower()
        if value not in ("on", "off"):
            raise UsageError("Usage: /mobile on | /mobile off")
        return SetMode(value == "on")
    if name == "tab":
        value = arg.lower()
        usage = "Usage: /tab new | /tab <n> | /tab close"
        if value == "new":
            return NewTab()
        if value == "close":
            return CloseTab()
        try:
            return SwitchTab(int(value))
        except ValueError:
            raise UsageError(usage) from None
    if name == "tabs":
        return ListTabs()
    if name == "back":
        return Back()
    if name in ("forward", "fwd"):
        return Forward()
    if name == "reload":
        return Reload()
    if name == "home":
        return Home()
    if name == "up":
        return Scroll(-1)
    if name == "down":
        return Scroll(1)
    if name == "type":
        if not arg:
            raise UsageError("Usage: /type <text>")
        return TypeText(arg)
    if name == "enter":
        return Submit()
    if name == "media":
        return ListMedia()
    if name == "video":
        return PlayMedia(_positive_int(arg, "Usage: /video <number>"))
    if name == "download":
        return DownloadMedia(_positive_int(arg, "Usage: /download <number>"))
    if name == "close":
        return CloseSession()
    if name in ("start", "help"):
        return Help()
    raise UsageError("Unknown command. Send /help for the list.")


_NAV_CALLBACKS: dict[str, Command] = {
    "up": Scroll(-1),
    "down": Scroll(1),
    "reload": Reload(),
    "back": Back(),
    "fwd": Forward(),
    "home": Home(),
}


def parse_callback(data: str, cols: int = GRID_COLS, rows: int = GRID_ROWS) -> Command:
    """Parse button callback data such as ``grid:cell:B3``."""
    data = (data or "").strip()
    if data == "noop":
        return Noop()
    if data == "tab:new":
        return NewTab()
    if data == "grid:show":
        return ShowGrid()
    if data == "grid:close":
        return Noop("Grid closed.")
    if data.startswith("grid:cell:"):
        return GridTap(_grid_cell(data[len("grid:cell:"):], cols, rows))
    if data == "zoom:in":
        return ZoomStep(1)
    if data == "zoom:out":
        return ZoomStep(-1)
    if data.startswith("nav:"):
        command = _NAV_CALLBACKS.get(data[len("nav:"):])
        if command is not None:
            return command
    if data.startswith("link:"):
        try:
            index = int(data[len("link:"):])
        except ValueError:
            raise UsageError("Link not available") from None
        if index < 0:
            raise UsageError("Link not available")
        return ClickLink(index + 1)
    raise UsageError("Unknown action.")


# =============================================================================
# Keyboards
# =============================================================================


@dataclass(frozen=True)
class Button:
    label: str
    data: str

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "data": self.data}


def status_keyboard(session: Session) -> list[list[Button]]:
    """Navigation, tab, grid and zoom controls plus one button per link."""
    mode = "📱" if session.mobile else "🖥️"
    zoom = f"{round(session.zoom * 100)}%"
    rows = [
        [
            Button("⬆️", "nav:up"),
            Button("⬇️", "nav:down"),
            Button("🔄", "nav:reload"),
            Button(f"Tab {session.active + 1}/{len(session.tabs)}", "noop"),
        ],
        [
            Button("⬅️", "nav:back"),
            Button("➡️", "nav:fwd"),
            Button("🏠", "nav:home"),
            Button("➕Tab", "tab:new"),
        ],
        [
            Button("🧊 Grid", "grid:show"),
            Button("🔍➖", "zoom:out"),
            Button("🔍➕", "zoom:in"),
            Button(f"{mode} {zoom}", "noop"),
        ],
    ]
    link_buttons = [Button(f"{i + 1}) {link.text}", f"link:{i}") for i, link in enumerate(session.links)]
    for i in range(0, len(link_buttons), 2):
        rows.append(link_buttons[i : i + 2])
    return rows


def grid_keyboard(cols: int = GRID_COLS, rows: int = GRID_ROWS) -> list[list[Button]]:
    keyboard = [[Button(cell, f"grid:cell:{cell}") for cell in row] for row in grid_cells(cols, rows)]
    keyboard.append([Button("❌ Close Grid", "grid:close")])
    return keyboard
