"""Tests for the session event bus.

This module covers the coordination rules SessionEventBus adds on top of
bubus:

    - observers registered after an event was dispatched never see it
    - intents have a single owner; a second owner is refused
    - ``before`` hooks run ahead of the owner and can veto by raising
    - ``expect`` resolves on the first matching event and times out otherwise
"""

import asyncio
import time

import pytest

from tabwarden.browser.bus import SessionEventBus
from tabwarden.browser.events import NavigateToUrlEvent, NavigationCompleteEvent, ScreenshotEvent, TabCreatedEvent
from tabwarden.browser.views import HandlerConflictError, NavigationBlockedError


async def _dispatch(bus: SessionEventBus, event):
    dispatched = bus.dispatch(event)
    await dispatched
    return await dispatched.event_result(raise_if_any=True, raise_if_none=False)


class TestSubscribe:
    """Tests for notification observers."""

    async def test_observer_receives_events_in_registration_order(self):
        """Same-kind observers run in the order they were registered."""
        bus = SessionEventBus()
        seen: list[str] = []

        bus.subscribe(TabCreatedEvent, lambda e: seen.append(f"first:{e.target_id}"))
        bus.subscribe(TabCreatedEvent, lambda e: seen.append(f"second:{e.target_id}"))

        await bus.dispatch(TabCreatedEvent(target_id="T1", url="about:blank"))

        assert seen == ["first:T1", "second:T1"]

    async def test_late_observer_does_not_see_earlier_event(self):
        """An observer registered after dispatch does not get the queued event replayed."""
        bus = SessionEventBus()
        seen: list[str] = []

        pending = bus.dispatch(TabCreatedEvent(target_id="OLD", url="about:blank"))
        bus.subscribe(TabCreatedEvent, lambda e: seen.append(e.target_id))
        await pending
        await bus.dispatch(TabCreatedEvent(target_id="NEW", url="about:blank"))

        assert seen == ["NEW"]

    async def test_unsubscribe_with_original_handler(self):
        """unsubscribe accepts the handler that was passed to subscribe."""
        bus = SessionEventBus()
        seen: list[str] = []

        def handler(event):
            seen.append(event.target_id)

        bus.subscribe(TabCreatedEvent, handler)
        bus.unsubscribe(TabCreatedEvent, handler)
        await bus.dispatch(TabCreatedEvent(target_id="T1", url="about:blank"))

        assert seen == []

    async def test_unsubscribe_unknown_handler_is_ignored(self):
        bus = SessionEventBus()
        bus.unsubscribe(TabCreatedEvent, lambda e: None)

    async def test_generation_increases_per_dispatch(self):
        bus = SessionEventBus()
        first = bus.dispatch(TabCreatedEvent(target_id="A", url="about:blank"))
        second = bus.dispatch(TabCreatedEvent(target_id="B", url="about:blank"))
        await second

        assert bus.generation_of(second) == bus.generation_of(first) + 1
        assert bus.generation == bus.generation_of(second)


class TestOwnership:
    """Tests for intent owners and veto hooks."""

    async def test_owner_result_is_returned(self):
        bus = SessionEventBus()

        async def owner(event):
            return f"{event.format}-data"

        bus.own(ScreenshotEvent, owner)
        result = await _dispatch(bus, ScreenshotEvent(format="jpeg"))

        assert result == "jpeg-data"
        assert bus.owner_of(ScreenshotEvent) is owner

    async def test_second_owner_is_refused(self):
        bus = SessionEventBus()
        bus.own(NavigateToUrlEvent, lambda e: None)

        with pytest.raises(HandlerConflictError):
            bus.own(NavigateToUrlEvent, lambda e: None)

    async def test_disown_allows_new_owner(self):
        bus = SessionEventBus()
        bus.own(ScreenshotEvent, lambda e: "old")
        bus.disown(ScreenshotEvent)
        bus.own(ScreenshotEvent, lambda e: "new")

        assert await _dispatch(bus, ScreenshotEvent()) == "new"

    async def test_hooks_run_before_owner(self):
        bus = SessionEventBus()
        calls: list[str] = []

        bus.own(NavigateToUrlEvent, lambda e: calls.append("owner"))
        bus.before(NavigateToUrlEvent, lambda e: calls.append("hook-1"))
        bus.before(NavigateToUrlEvent, lambda e: calls.append("hook-2"))

        await _dispatch(bus, NavigateToUrlEvent(url="https://example.com"))

        assert calls == ["hook-1", "hook-2", "owner"]

    async def test_raising_hook_vetoes_owner(self):
        """A hook that raises aborts the intent and the owner never runs."""
        bus = SessionEventBus()
        calls: list[str] = []

        async def veto(event):
            raise NavigationBlockedError(f"blocked {event.url}")

        bus.own(NavigateToUrlEvent, lambda e: calls.append("owner"))
        bus.before(NavigateToUrlEvent, veto)

        with pytest.raises(NavigationBlockedError):
            await _dispatch(bus, NavigateToUrlEvent(url="https://evil.com"))
        assert calls == []

    async def test_removed_hook_no_longer_runs(self):
        bus = SessionEventBus()
        calls: list[str] = []

        def hook(event):
            calls.append("hook")

        bus.own(NavigateToUrlEvent, lambda e: None)
        bus.before(NavigateToUrlEvent, hook)
        bus.remove_hook(NavigateToUrlEvent, hook)
        await _dispatch(bus, NavigateToUrlEvent(url="https://example.com"))

        assert calls == []


class TestExpect:
    """Tests for SessionEventBus.expect()."""

    async def test_resolves_with_first_matching_event(self):
        bus = SessionEventBus()

        waiter = asyncio.create_task(
            bus.expect(NavigationCompleteEvent, lambda e: e.url == "https://b.com", timeout=2)
        )
        await asyncio.sleep(0)
        await bus.dispatch(NavigationCompleteEvent(target_id="T", url="https://a.com", status=200))
        await bus.dispatch(NavigationCompleteEvent(target_id="T", url="https://b.com", status=201))

        event = await waiter
        assert event.url == "https://b.com"
        assert event.status == 201

    async def test_times_out_when_nothing_matches(self):
        """expect() fails after roughly the timeout instead of hanging."""
        bus = SessionEventBus()
        await bus.dispatch(NavigationCompleteEvent(target_id="T", url="https://a.com", status=200))

        started = time.monotonic()
        with pytest.raises(TimeoutError):
            await bus.expect(NavigationCompleteEvent, lambda e: e.url == "https://never.com", timeout=0.3)
        elapsed = time.monotonic() - started

        assert 0.25 <= elapsed < 2.0

    async def test_temporary_handler_is_removed(self):
        bus = SessionEventBus()
        before = len(bus.handlers.get("NavigationCompleteEvent", []))

        with pytest.raises(TimeoutError):
            await bus.expect(NavigationCompleteEvent, timeout=0.05)

        assert len(bus.handlers.get("NavigationCompleteEvent", [])) == before

    async def test_concurrent_expects_are_independent(self):
        bus = SessionEventBus()

        wait_a = asyncio.create_task(bus.expect(TabCreatedEvent, lambda e: e.target_id == "A", timeout=2))
        wait_b = asyncio.create_task(bus.expect(TabCreatedEvent, lambda e: e.target_id == "B", timeout=2))
        await asyncio.sleep(0)
        await bus.dispatch(TabCreatedEvent(target_id="B", url="about:blank"))
        await bus.dispatch(TabCreatedEvent(target_id="A", url="about:blank"))

        assert (await wait_a).target_id == "A"
        assert (await wait_b).target_id == "B"
