"""Bounded media downloads.

Media found on a page is fetched directly over HTTP (not through the
browser), size-checked against ``max_media_bytes`` both from the declared
Content-Length and while streaming, and written to a temp file that the
caller must delete.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urljoin

import httpx

from chat_browser.config import BrowserSettings
from chat_browser.errors import HttpError, MediaError, NonHttpSource, TooLarge
from chat_browser.url_safety import UrlValidator

logger = logging.getLogger("chat_browser.media")

MAX_REDIRECTS = 5
CHUNK_SIZE = 64 * 1024


def media_suffix(kind: str) -> str:
    return ".mp3" if kind == "audio" else ".mp4"


@dataclass
class DownloadedMedia:
    """A downloaded media file on local disk."""

    path: Path
    kind: str
    size: int

    def cleanup(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.debug(f"Could not remove {self.path}: {e}")


class MediaDownloader:
    """Downloads media URLs into the service temp directory.

    Args:
        settings: Service settings (size cap, timeout, temp dir)
        client: Optional shared httpx client; one is created lazily otherwise
        validator: When set, every request hop is re-validated so redirects
            cannot reach internal hosts
    """

    def __init__(
        self,
        settings: BrowserSettings,
        client: httpx.AsyncClient | None = None,
        validator: UrlValidator | None = None,
    ):
        self.settings = settings
        self.validator = validator
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def download(self, url: str, kind: str) -> DownloadedMedia:
        if not url.lower().startswith(("http://", "https://")):
            raise NonHttpSource()
        client = await self._get_client()
        try:
            return await asyncio.wait_for(self._download(client, url, kind), timeout=self.settings.media_timeout)
        except asyncio.TimeoutError as e:
            raise MediaError("Media download timed out.") from e
        except httpx.HTTPError as e:
            logger.info(f"Media download failed for {url}: {e}")
            raise MediaError(f"Failed to download media: {e}") from e

    @asynccontextmanager
    async def fetch(self, url: str, kind: str) -> AsyncIterator[DownloadedMedia]:
        """Download and yield the file, deleting it on exit."""
        media = await self.download(url, kind)
        try:
            yield media
        finally:
            media.cleanup()

    async def _download(self, client: httpx.AsyncClient, url: str, kind: str) -> DownloadedMedia:
        current = url
        for _ in range(MAX_REDIRECTS + 1):
            if self.validator is not None:
                current = await self.validator.validate(current)
            async with client.stream("GET", current, follow_redirects=False) as response:
                if response.is_redirect:
                    location = response.headers.get("location", "")
                    current = urljoin(str(response.url), location)
                    if not current.lower().startswith(("http://", "https://")):
                        raise NonHttpSource()
                    continue
                if not response.is_success:
                    raise HttpError(response.status_code)

                declared = response.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > self.settings.max_media_bytes:
                    raise TooLarge()
                return await self._write(response, kind)
        raise MediaError("Too many redirects.")

    async def _write(self, response: httpx.Response, kind: str) -> DownloadedMedia:
        self.settings.temp_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="media-", suffix=media_suffix(kind), dir=self.settings.temp_dir)
        path = Path(name)
        size = 0
        done = False
        try:
            with os.fdopen(fd, "wb") as fh:
                async for chunk in response.aiter_bytes(CHUNK_SIZE):
                    size += len(chunk)
                    if size > self.settings.max_media_bytes:
                        raise TooLarge()
                    fh.write(chunk)
            done = True
        finally:
            if not done:
                path.unlink(missing_ok=True)
        logger.debug(f"Downloaded {size} bytes to {path}")
        return DownloadedMedia(path=path, kind=kind, size=size)
