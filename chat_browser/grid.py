"""Grid tap mapping.

The viewport is split into ``cols`` lettered columns (A..) and ``rows``
numbered rows (1..). A cell such as ``B3`` maps to the pixel centre of
that rectangle.
"""

from __future__ import annotations

import math
import re

from chat_browser.config import GRID_COLS, GRID_ROWS, Viewport

_CELL_RE = re.compile(r"^([A-Za-z])(\d+)$")


def column_letter(index: int) -> str:
    return chr(ord("A") + index)


def parse_cell(cell: str) -> tuple[int, int]:
    """Return the 0-based (column, row) of a cell id like ``"B3"``."""
    match = _CELL_RE.match(cell.strip())
    if not match:
        raise ValueError(f"Invalid grid cell: {cell!r}")
    col = ord(match.group(1).upper()) - ord("A")
    row = int(match.group(2)) - 1
    return col, row


def is_valid_cell(cell: str, cols: int = GRID_COLS, rows: int = GRID_ROWS) -> bool:
    try:
        col, row = parse_cell(cell)
    except ValueError:
        return False
    return 0 <= col < cols and 0 <= row < rows


def grid_cells(cols: int = GRID_COLS, rows: int = GRID_ROWS) -> list[list[str]]:
    """Cell ids row by row, e.g. ``[["A1", "B1", ...], ...]``."""
    return [[f"{column_letter(c)}{r + 1}" for c in range(cols)] for r in range(rows)]


def cell_to_center(
    cell: str,
    viewport: Viewport,
    cols: int = GRID_COLS,
    rows: int = GRID_ROWS,
) -> tuple[int, int]:
    """Pixel centre of ``cell`` within ``viewport``.

    Range checking is the caller's job.
    """
    col, row = parse_cell(cell)
    cell_w = viewport.width / cols
    cell_h = viewport.height / rows
    x = math.floor(col * cell_w + cell_w / 2)
    y = math.floor(row * cell_h + cell_h / 2)
    return x, y
