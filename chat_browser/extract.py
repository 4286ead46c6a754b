"""In-page extraction of links and playable media, plus visual zoom.

Scripts run through ``page.evaluate``. Results are re-checked on the
Python side so the caps and the media de-duplication hold even if a page
tampers with the DOM APIs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

LABEL_MAX_CHARS = 60

LINKS_SCRIPT = """
({ maxLinks }) => {
  const isVisible = (el) => {
    const r = el.getBoundingClientRect();
    if (!r || r.width < 40 || r.height < 10) return false;
    if (r.bottom < 0 || r.top > window.innerHeight) return false;
    const style = window.getComputedStyle(el);
    if (style.visibility === "hidden" || style.display === "none") return false;
    return true;
  };
  return Array.from(document.querySelectorAll("a[href]"))
    .filter(isVisible)
    .slice(0, maxLinks)
    .map(a => ({ text: a.innerText || a.textContent || "", href: a.href }));
}
"""

MEDIA_SCRIPT = """
({ maxItems }) => {
  const items = [];
  const seen = new Set();
  const push = (url, kind, label) => {
    if (!url || seen.has(url) || items.length >= maxItems) return;
    seen.add(url);
    items.push({ url, kind, label: label || "" });
  };
  const attr = (el, names) => {
    for (const n of names) {
      const v = el.getAttribute(n);
      if (v) return v;
    }
    return "";
  };
  for (const kind of ["video", "audio"]) {
    const name = kind === "video" ? "Video" : "Audio";
    for (const el of Array.from(document.querySelectorAll(kind))) {
      push(el.currentSrc || el.src, kind, attr(el, ["title", "aria-label"]) || name);
      for (const source of Array.from(el.querySelectorAll("source"))) {
        push(source.src, kind, attr(source, ["title", "label"]) || name + " source");
      }
    }
  }
  return items;
}
"""

ZOOM_SCRIPT = "(z) => { document.documentElement.style.zoom = String(z); }"

_WS_RE = re.compile(r"\s+")


def clean_label(text: Any, default: str) -> str:
    """Trim, collapse whitespace and truncate a display label."""
    cleaned = _WS_RE.sub(" ", str(text or "")).strip()[:LABEL_MAX_CHARS]
    return cleaned or default


@dataclass(frozen=True)
class ExtractedLink:
    text: str
    href: str


@dataclass(frozen=True)
class ExtractedMedia:
    url: str
    kind: str  # "video" | "audio"
    label: str

    @property
    def is_http(self) -> bool:
        return self.url.lower().startswith(("http://", "https://"))


async def collect_links(page: Any, max_links: int) -> list[ExtractedLink]:
    raw = await page.evaluate(LINKS_SCRIPT, {"maxLinks": max_links})
    links = []
    for item in raw or []:
        href = str(item.get("href") or "")
        if not href:
            continue
        links.append(ExtractedLink(text=clean_label(item.get("text"), "Link"), href=href))
        if len(links) >= max_links:
            break
    return links


async def collect_media(page: Any, max_items: int) -> list[ExtractedMedia]:
    raw = await page.evaluate(MEDIA_SCRIPT, {"maxItems": max_items})
    media: list[ExtractedMedia] = []
    seen: set[str] = set()
    for item in raw or []:
        url = str(item.get("url") or "")
        if not url or url in seen:
            continue
        kind = "audio" if item.get("kind") == "audio" else "video"
        seen.add(url)
        media.append(ExtractedMedia(url=url, kind=kind, label=clean_label(item.get("label"), kind.upper())))
        if len(media) >= max_items:
            break
    return media


async def apply_zoom(page: Any, zoom: float) -> None:
    """Scale the page visually; navigation resets it, so callers reapply."""
    await page.evaluate(ZOOM_SCRIPT, zoom)
