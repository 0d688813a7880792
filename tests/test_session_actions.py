"""Tests for BrowserSession actions: navigation, tabs, element actions and state.

The session runs on the Playwright fakes from conftest, so every assertion
is about what the session asked Playwright to do and which events it
reported.
"""

import base64

import pytest

from conftest import drain
from tabwarden.browser.events import (
    AgentFocusChangedEvent,
    NavigationCompleteEvent,
    NavigationStartedEvent,
    TabClosedEvent,
)
from tabwarden.browser.views import (
    BrowserActionError,
    ElementNotFoundError,
    TabNotFoundError,
)


class TestNavigation:
    """Tests for NavigateToUrlEvent handling."""

    async def test_navigate_reports_started_and_complete(self, session):
        events: list[tuple[str, str, int | None]] = []
        session.event_bus.subscribe(NavigationStartedEvent, lambda e: events.append(("started", e.url, None)))
        session.event_bus.subscribe(NavigationCompleteEvent, lambda e: events.append(("complete", e.url, e.status)))

        await session.navigate_to("https://example.com")

        assert events == [
            ("started", "https://example.com", None),
            ("complete", "https://example.com", 200),
        ]
        assert await session.get_current_page_url() == "https://example.com"

    async def test_status_comes_from_response(self, session):
        session.get_current_page().status = 404
        complete = []
        session.event_bus.subscribe(NavigationCompleteEvent, complete.append)

        await session.navigate_to("https://example.com/missing")

        assert complete[0].status == 404

    async def test_status_defaults_to_200_without_response(self, session):
        session.get_current_page().no_response = True
        complete = []
        session.event_bus.subscribe(NavigationCompleteEvent, complete.append)

        await session.navigate_to("https://example.com/#anchor")

        assert complete[0].status == 200

    async def test_failed_navigation_reports_error_and_raises(self, session):
        page = session.get_current_page()
        page.fail_urls.add("https://unreachable.invalid")
        complete = []
        session.event_bus.subscribe(NavigationCompleteEvent, complete.append)

        with pytest.raises(BrowserActionError):
            await session.navigate_to("https://unreachable.invalid")

        assert complete[0].status is None
        assert "ERR_NAME_NOT_RESOLVED" in complete[0].error_message
        assert session.is_running

    async def test_new_tab_opens_and_focuses(self, session):
        first = session.current_target_id
        focus = []
        session.event_bus.subscribe(AgentFocusChangedEvent, lambda e: focus.append(e.target_id))

        await session.navigate_to("https://example.com", new_tab=True)

        assert len(session.target_ids) == 2
        assert session.current_target_id != first
        assert focus == [session.current_target_id]
        assert session.get_page(first).url == "about:blank"


class TestTabs:
    """Tests for switching and closing tabs."""

    async def test_switch_tab_by_id(self, session):
        first = session.current_target_id
        await session.navigate_to("https://example.com", new_tab=True)

        result = await session.switch_tab(first)

        assert result == first
        assert session.current_target_id == first
        assert session.get_page(first).brought_to_front == 1

    async def test_switch_tab_without_id_picks_most_recent(self, session):
        await session.navigate_to("https://example.com", new_tab=True)
        latest = session.target_ids[-1]
        await session.switch_tab(session.target_ids[0])

        assert await session.switch_tab() == latest

    async def test_switch_to_unknown_tab_raises(self, session):
        with pytest.raises(TabNotFoundError):
            await session.switch_tab("NOPE")

    async def test_close_focused_tab_moves_focus(self, session):
        first = session.current_target_id
        await session.navigate_to("https://example.com", new_tab=True)
        second = session.current_target_id
        closed = []
        session.event_bus.subscribe(TabClosedEvent, lambda e: closed.append(e.target_id))

        await session.close_tab(second)

        assert closed == [second]
        assert session.target_ids == [first]
        assert session.current_target_id == first

    async def test_close_unknown_tab_raises(self, session):
        with pytest.raises(TabNotFoundError):
            await session.close_tab("NOPE")

    async def test_get_tabs_lists_in_creation_order(self, session):
        session.get_current_page().title_text = "Blank"
        await session.navigate_to("https://example.com", new_tab=True)

        tabs = await session.get_tabs()

        assert [t.url for t in tabs] == ["about:blank", "https://example.com"]
        assert tabs[0].title == "Blank"
        assert [t.target_id for t in tabs] == session.target_ids


class TestElementActions:
    """Tests for click/type/scroll/keys/upload."""

    async def test_click_by_selector(self, session):
        page = session.get_current_page()
        page.selectors["#submit"] = 1

        await session.click_element(selector="#submit", modifiers=["Shift"], click_count=2)

        name, selector, kwargs = page.actions[-1]
        assert (name, selector) == ("click", "#submit")
        assert kwargs["modifiers"] == ["Shift"]
        assert kwargs["click_count"] == 2

    async def test_click_by_index_uses_selector_map(self, session):
        page = session.get_current_page()
        page.selectors["a.login"] = 1
        session.update_cached_selector_map({7: "a.login"})

        await session.click_element(index=7)

        assert page.actions[-1][:2] == ("click", "a.login")

    async def test_unknown_index_fails_loudly(self, session):
        """No silent fallback to whatever element has focus."""
        with pytest.raises(ElementNotFoundError):
            await session.click_element(index=99)

    async def test_selector_without_match_fails(self, session):
        with pytest.raises(ElementNotFoundError):
            await session.type_text("hello", selector="#missing")

    async def test_type_clears_or_appends(self, session):
        page = session.get_current_page()
        page.selectors["input[name=q]"] = 1

        await session.type_text("first", selector="input[name=q]")
        await session.type_text(" more", selector="input[name=q]", clear=False)

        assert [a[0] for a in page.actions] == ["fill", "press_sequentially"]

    async def test_scroll_and_send_keys(self, session):
        page = session.get_current_page()

        await session.scroll("up", 300)
        await session.send_keys("Control+a")

        assert page.actions == [("wheel", None, (0, -300)), ("press", None, "Control+a")]

    async def test_upload_requires_existing_file(self, session, tmp_path):
        page = session.get_current_page()
        page.selectors["input[type=file]"] = 1

        with pytest.raises(BrowserActionError):
            await session.upload_file(tmp_path / "missing.txt", selector="input[type=file]")

        upload = tmp_path / "cv.pdf"
        upload.write_bytes(b"%PDF")
        await session.upload_file(upload, selector="input[type=file]")

        assert page.actions[-1] == ("set_input_files", "input[type=file]", str(upload))


class TestState:
    """Tests for screenshots and the browser state summary."""

    async def test_take_screenshot_returns_bytes(self, session):
        data = await session.take_screenshot()

        assert data == session.get_current_page().screenshot_data

    async def test_browser_state_summary(self, session):
        await session.navigate_to("https://example.com")
        page = session.get_current_page()
        page.title_text = "Example"
        session.update_cached_selector_map({1: "#a"})
        session.add_closed_popup_message("[alert] hi")

        summary = await session.get_browser_state_summary()

        assert summary.url == "https://example.com"
        assert summary.title == "Example"
        assert base64.b64decode(summary.screenshot) == page.screenshot_data
        assert summary.current_target_id == session.current_target_id
        assert summary.page_info.viewport_width == 1280
        assert summary.page_info.pixels_below == 2000 - 720 - 100
        assert summary.selector_map == {1: "#a"}
        assert summary.closed_popup_messages == ["[alert] hi"]
        assert len(summary.tabs) == 1

    async def test_summary_without_screenshot(self, session):
        summary = await session.get_browser_state_summary(include_screenshot=False)

        assert summary.screenshot is None
        assert session.get_current_page().screenshot_calls == []

    async def test_downloaded_files_is_a_copy(self, session):
        files = session.downloaded_files
        files.append("/tmp/x")
        await drain(session)

        assert session.downloaded_files == []
