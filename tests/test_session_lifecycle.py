"""Tests for BrowserSession start/stop and tab topology.

Covers the lifecycle state machine (stopped -> starting -> running ->
stopping -> stopped), the notifications it emits, watchdog attachment,
launch failures and the tracking of tabs opened or closed by pages
themselves.
"""

import pytest

from conftest import FakeBrowser, drain
from tabwarden.browser.events import (
    BrowserConnectedEvent,
    BrowserErrorEvent,
    BrowserLaunchEvent,
    BrowserLaunchResult,
    BrowserStoppedEvent,
    NavigateToUrlEvent,
    TabClosedEvent,
    TabCreatedEvent,
)
from tabwarden.browser.profile import BrowserProfile
from tabwarden.browser.session import BrowserSession, SessionState
from tabwarden.browser.views import BrowserStartError, SessionNotStartedError
from tabwarden.browser.watchdogs import SecurityWatchdog


class TestStartStop:
    """Tests for the session lifecycle."""

    async def test_start_creates_initial_tab_and_announces_it(self, fake_browser):
        session = BrowserSession(browser=fake_browser, watchdog_classes=[])
        seen: list[str] = []
        session.event_bus.subscribe(TabCreatedEvent, lambda e: seen.append(f"tab:{e.url}"))
        session.event_bus.subscribe(BrowserConnectedEvent, lambda e: seen.append("connected"))

        await session.start()
        try:
            assert session.state is SessionState.RUNNING
            assert session.is_running
            assert len(session.target_ids) == 1
            assert session.current_target_id == session.target_ids[0]
            assert seen == ["tab:about:blank", "connected"]
        finally:
            await session.stop()

    async def test_context_gets_profile_options(self, fake_browser):
        profile = BrowserProfile(viewport_width=800, viewport_height=600, navigation_timeout_ms=1234)
        session = BrowserSession(browser_profile=profile, browser=fake_browser, watchdog_classes=[])

        await session.start()
        try:
            context = session.browser_context
            assert context.options["viewport"] == {"width": 800, "height": 600}
            assert context.default_navigation_timeout == 1234
        finally:
            await session.stop()

    async def test_start_twice_is_a_noop(self, session):
        tabs_before = session.target_ids
        await session.start()

        assert session.target_ids == tabs_before

    async def test_stop_closes_tabs_and_emits_stopped(self, fake_browser):
        session = BrowserSession(browser=fake_browser, watchdog_classes=[])
        await session.start()
        context = session.browser_context
        closed: list[str] = []
        stopped: list[str | None] = []
        session.event_bus.subscribe(TabClosedEvent, lambda e: closed.append(e.target_id))
        session.event_bus.subscribe(BrowserStoppedEvent, lambda e: stopped.append(e.reason))
        target_id = session.current_target_id

        await session.stop()

        assert session.state is SessionState.STOPPED
        assert closed == [target_id]
        assert len(stopped) == 1
        assert context.closed
        assert session.target_ids == []
        # Injected browsers are left open
        assert not fake_browser.closed

    async def test_stop_when_stopped_is_a_noop(self):
        session = BrowserSession(watchdog_classes=[])
        await session.stop()
        assert session.state is SessionState.STOPPED

    async def test_session_can_restart(self, fake_browser):
        session = BrowserSession(browser=fake_browser, watchdog_classes=[])
        await session.start()
        await session.stop()
        await session.start()
        try:
            assert session.is_running
            assert len(fake_browser.contexts) == 2
        finally:
            await session.stop()

    async def test_actions_require_running_session(self):
        session = BrowserSession(watchdog_classes=[])

        with pytest.raises(SessionNotStartedError):
            await session.navigate_to("https://example.com")
        with pytest.raises(SessionNotStartedError):
            session.get_current_page()

    async def test_intent_dispatched_directly_while_stopped_fails(self):
        """Owners re-check the state even when the public wrapper is bypassed."""
        session = BrowserSession(watchdog_classes=[])
        event = session.event_bus.dispatch(NavigateToUrlEvent(url="https://example.com"))
        await event

        with pytest.raises(SessionNotStartedError):
            await event.event_result(raise_if_any=True, raise_if_none=False)


class TestStartFailure:
    """Tests for fatal launch failures."""

    async def test_context_failure_leaves_session_stopped(self, fake_browser):
        fake_browser.new_context_error = RuntimeError("boom")
        session = BrowserSession(browser=fake_browser, watchdog_classes=[SecurityWatchdog])
        errors: list[str] = []
        session.event_bus.subscribe(BrowserErrorEvent, lambda e: errors.append(e.error_type))

        with pytest.raises(BrowserStartError):
            await session.start()

        assert session.state is SessionState.STOPPED
        assert errors == ["BrowserStartError"]
        assert session.watchdogs == []

    async def test_launch_failure_from_owner_propagates(self):
        session = BrowserSession(watchdog_classes=[])

        async def failing_launch(event):
            raise OSError("executable not found")

        session.event_bus.own(BrowserLaunchEvent, failing_launch)

        with pytest.raises(BrowserStartError):
            await session.start()
        assert session.state is SessionState.STOPPED

    async def test_launched_browser_is_used_and_killed(self):
        """A browser returned by the BrowserLaunchEvent owner is used and closed through BrowserKillEvent."""
        from tabwarden.browser.events import BrowserKillEvent

        launched = FakeBrowser()
        killed: list[bool] = []
        session = BrowserSession(watchdog_classes=[])
        session.event_bus.own(BrowserLaunchEvent, lambda e: BrowserLaunchResult(browser=launched))
        session.event_bus.own(BrowserKillEvent, lambda e: killed.append(True))

        await session.start()
        assert session.playwright_browser is launched
        await session.stop()

        assert killed == [True]
        assert session.playwright_browser is None


class TestWatchdogAttachment:
    """Tests for attaching and detaching watchdogs with the lifecycle."""

    async def test_default_watchdogs_attached_while_running(self, session):
        names = {type(w).__name__ for w in session.watchdogs}

        assert {
            "LocalBrowserWatchdog",
            "SecurityWatchdog",
            "DownloadsWatchdog",
            "PopupsWatchdog",
            "CrashWatchdog",
            "AboutBlankWatchdog",
            "ScreenshotWatchdog",
            "StorageStateWatchdog",
            "PermissionsWatchdog",
        } <= names
        assert session.get_watchdog(SecurityWatchdog) is not None

    async def test_watchdogs_detached_after_stop(self, fake_browser):
        session = BrowserSession(browser=fake_browser, watchdog_classes=[SecurityWatchdog])
        await session.start()
        watchdog = session.get_watchdog(SecurityWatchdog)
        assert watchdog.is_attached

        await session.stop()

        assert not watchdog.is_attached
        assert session.watchdogs == []


class TestPageInitiatedTabs:
    """Tests for tabs opened or closed by the page itself."""

    async def test_popup_is_registered_and_announced(self, fake_browser):
        session = BrowserSession(browser=fake_browser, watchdog_classes=[])
        await session.start()
        try:
            created: list[str] = []
            session.event_bus.subscribe(TabCreatedEvent, lambda e: created.append(e.url))

            session.browser_context.open_popup("https://example.com/popup")
            await drain(session)

            assert created == ["https://example.com/popup"]
            assert len(session.target_ids) == 2
        finally:
            await session.stop()

    async def test_externally_closed_page_is_unregistered(self, fake_browser):
        session = BrowserSession(browser=fake_browser, watchdog_classes=[])
        await session.start()
        try:
            popup = session.browser_context.open_popup("https://example.com/popup")
            await drain(session)
            closed: list[str] = []
            session.event_bus.subscribe(TabClosedEvent, lambda e: closed.append(e.target_id))
            popup_id = session.find_target_id(popup)

            await popup.close()
            await drain(session)

            assert closed == [popup_id]
            assert popup_id not in session.target_ids
            assert len(session.target_ids) == 1
        finally:
            await session.stop()
