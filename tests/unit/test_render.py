"""Tests for the render pipeline and status captions."""

import base64

import pytest

from chat_browser.errors import NavigationError
from chat_browser.extract import ExtractedLink, ExtractedMedia
from chat_browser.render import RenderPipeline, StatusUpdate


@pytest.fixture
def pipeline(settings):
    return RenderPipeline(settings)


async def session_on(registry, url="https://example.com/", title="Example Domain"):
    session = await registry.get_or_create("chat-1")
    page = session.active_page
    page.url = url
    page.page_title = title
    return session, page


@pytest.mark.unit
class TestRender:
    @pytest.mark.asyncio
    async def test_first_render_sends(self, registry, pipeline, delivery):
        session, page = await session_on(registry)
        page.links = [{"text": "More information...", "href": "https://www.iana.org/domains/example"}]

        update = await pipeline.render(session, delivery)

        assert delivery.sent == [update]
        assert session.last_render_ref == 1
        assert update.title == "Example Domain"
        assert update.url == "https://example.com/"
        assert update.screenshot == b"\x89PNG-fake"
        assert session.links == [ExtractedLink("More information...", "https://www.iana.org/domains/example")]
        assert update.buttons[-1][0].data == "link:0"

    @pytest.mark.asyncio
    async def test_later_renders_edit_in_place(self, registry, pipeline, delivery):
        session, _ = await session_on(registry)
        await pipeline.render(session, delivery)

        update = await pipeline.render(session, delivery, note="🔍 zoom: 110%")

        assert len(delivery.sent) == 1
        assert delivery.edits == [(1, update)]

    @pytest.mark.asyncio
    async def test_failed_edit_falls_back_to_send(self, registry, pipeline, delivery):
        session, _ = await session_on(registry)
        await pipeline.render(session, delivery)
        delivery.fail_edit = True

        await pipeline.render(session, delivery)

        assert len(delivery.sent) == 2
        assert session.last_render_ref == 2

    @pytest.mark.asyncio
    async def test_screenshot_failure_propagates(self, registry, pipeline, delivery):
        session, page = await session_on(registry)
        page.screenshot_error = RuntimeError("Target closed")

        with pytest.raises(NavigationError):
            await pipeline.render(session, delivery)
        assert delivery.sent == []

    @pytest.mark.asyncio
    async def test_extraction_failures_degrade_to_empty(self, registry, pipeline, delivery):
        session, page = await session_on(registry)
        session.links = [ExtractedLink("stale", "https://stale.test/")]
        page.script_error = RuntimeError("Execution context was destroyed")

        update = await pipeline.render(session, delivery)

        assert update.links == []
        assert update.media == []
        assert session.links == []
        assert len(update.buttons) == 3

    @pytest.mark.asyncio
    async def test_caches_are_capped(self, registry, pipeline, delivery, settings):
        session, page = await session_on(registry)
        page.links = [{"text": str(i), "href": f"https://a.test/{i}"} for i in range(20)]
        page.media = [{"url": f"https://a.test/{i}.mp4", "kind": "video", "label": ""} for i in range(20)]

        await pipeline.render(session, delivery)

        assert len(session.links) == settings.max_links
        assert len(session.media) == settings.max_media_items


@pytest.mark.unit
class TestStatusUpdate:
    def make(self, **overrides):
        values = dict(
            title="Example Domain",
            url="https://example.com/",
            tab_index=2,
            tab_count=3,
            mobile=False,
            zoom_percent=110,
        )
        values.update(overrides)
        return StatusUpdate(**values)

    def test_caption_basics(self):
        caption = self.make().caption()
        lines = caption.splitlines()
        assert lines[0] == "🌐 Example Domain"
        assert lines[1] == "🔗 https://example.com/"
        assert lines[2] == "🧩 Tab: 2/3  |  🖥️ Desktop  |  🔍 110%"
        assert "No visible links detected." in caption

    def test_caption_fallbacks_and_hints(self):
        update = self.make(
            title="",
            url="",
            mobile=True,
            links=[ExtractedLink("a", "https://a.test/")] * 3,
            media=[ExtractedMedia("https://a.test/v.mp4", "video", "Video")],
            note="➕ opened new tab",
        )
        caption = update.caption()
        assert caption.startswith("🌐 Page\n🔗 (no url)")
        assert "📱 Mobile" in caption
        assert "Links: tap buttons or /click 1..3" in caption
        assert "Media: /media or /video 1..1" in caption
        assert caption.endswith("\n\n➕ opened new tab")

    def test_to_dict(self):
        data = self.make(screenshot=b"png").to_dict()
        assert data["type"] == "status"
        assert data["tab"] == {"index": 2, "count": 3}
        assert base64.b64decode(data["screenshot"]) == b"png"
        assert data["caption"].startswith("🌐 Example Domain")
