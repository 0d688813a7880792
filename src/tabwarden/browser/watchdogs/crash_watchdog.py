"""Crash watchdog for renderer crashes, stalled requests and unresponsive browsers."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, ClassVar

from bubus import BaseEvent
from pydantic import PrivateAttr

from tabwarden.browser.events import (
    BrowserConnectedEvent,
    BrowserErrorEvent,
    BrowserStoppedEvent,
    TabClosedEvent,
    TabCreatedEvent,
    TargetCrashedEvent,
)
from tabwarden.browser.views import TargetID
from tabwarden.browser.watchdogs.base import BaseWatchdog

logger = logging.getLogger(__name__)


@dataclass
class NetworkRequestTracker:
    """One in-flight network request."""

    request_id: str
    start_time: float
    url: str
    method: str
    resource_type: str | None = None
    target_id: TargetID | None = None


class CrashWatchdog(BaseWatchdog):
    """Monitors tabs for crashes and the browser for stalls.

    Listens to:
        BrowserConnectedEvent: Starts the periodic monitor.
        BrowserStoppedEvent: Stops the monitor and clears tracking.
        TabCreatedEvent: Hooks crash and request events of the tab.
        TabClosedEvent: Drops the tab's tracked requests.

    Emits:
        TargetCrashedEvent: When a tab's renderer crashes.
        BrowserErrorEvent: TargetCrash, NetworkTimeout, BrowserUnresponsive
            or BrowserDisconnected.

    Configuration (in BrowserProfile):
        network_timeout_seconds: Age at which an unfinished request is reported.
        health_check_interval_seconds: Period of the monitor loop.
    """

    LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = [
        BrowserConnectedEvent,
        BrowserStoppedEvent,
        TabCreatedEvent,
        TabClosedEvent,
    ]

    EMITS: ClassVar[list[type[BaseEvent[Any]]]] = [
        TargetCrashedEvent,
        BrowserErrorEvent,
    ]

    _active_requests: dict[str, NetworkRequestTracker] = PrivateAttr(default_factory=dict)
    _watched_targets: set[TargetID] = PrivateAttr(default_factory=set)
    _monitor_task: asyncio.Task | None = PrivateAttr(default=None)
    _event_tasks: set[asyncio.Task] = PrivateAttr(default_factory=set)
    _crash_count: int = PrivateAttr(default=0)

    async def on_BrowserConnectedEvent(self, event: BrowserConnectedEvent) -> None:
        self.logger.debug('[CrashWatchdog] Browser connected, beginning monitoring')
        self._start_monitoring()

    async def on_BrowserStoppedEvent(self, event: BrowserStoppedEvent) -> None:
        self.logger.debug('[CrashWatchdog] Browser stopped, ending monitoring')
        await self._stop_monitoring()
        for task in list(self._event_tasks):
            task.cancel()
        self._event_tasks.clear()
        self._active_requests.clear()
        self._watched_targets.clear()

    async def on_TabCreatedEvent(self, event: TabCreatedEvent) -> None:
        """Hook crash and network request events of the new tab."""
        target_id = event.target_id
        if target_id in self._watched_targets:
            return
        try:
            page = self.browser_session.get_page(target_id)
        except Exception as e:
            self.logger.warning(f'[CrashWatchdog] Failed to attach to tab {target_id}: {e}')
            return

        page.on('crash', lambda _page: self._spawn(self.handle_target_crash(target_id)))
        page.on(
            'request',
            lambda request: self.track_request(
                str(id(request)), request.url, request.method, request.resource_type, target_id
            ),
        )
        page.on('requestfinished', lambda request: self.complete_request(str(id(request))))
        page.on('requestfailed', lambda request: self.complete_request(str(id(request))))
        self._watched_targets.add(target_id)
        self.logger.debug(f'[CrashWatchdog] Watching tab #{target_id[-4:]}')

    async def on_TabClosedEvent(self, event: TabClosedEvent) -> None:
        self._watched_targets.discard(event.target_id)
        for request_id, tracker in list(self._active_requests.items()):
            if tracker.target_id == event.target_id:
                del self._active_requests[request_id]

    async def handle_target_crash(self, target_id: TargetID) -> None:
        """Announce a crashed tab."""
        self._crash_count += 1
        self.logger.error(f'[CrashWatchdog] Tab #{target_id[-4:]} crashed')
        await self.event_bus.dispatch(TargetCrashedEvent(target_id=target_id, error='Target crashed'))
        await self.event_bus.dispatch(
            BrowserErrorEvent(
                error_type='TargetCrash',
                message=f'Tab {target_id} crashed',
                details={'target_id': target_id},
            )
        )

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    # region - ========== Request tracking ==========

    def track_request(
        self,
        request_id: str,
        url: str,
        method: str,
        resource_type: str | None = None,
        target_id: TargetID | None = None,
    ) -> None:
        self._active_requests[request_id] = NetworkRequestTracker(
            request_id=request_id,
            start_time=time.monotonic(),
            url=url,
            method=method,
            resource_type=resource_type,
            target_id=target_id,
        )

    def complete_request(self, request_id: str) -> None:
        tracker = self._active_requests.pop(request_id, None)
        if tracker is not None:
            elapsed = time.monotonic() - tracker.start_time
            self.logger.debug(f'[CrashWatchdog] Request completed in {elapsed:.2f}s: {tracker.url[:50]}')

    # endregion

    # region - ========== Monitoring ==========

    def _start_monitoring(self) -> None:
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        self._monitor_task = asyncio.create_task(self._monitoring_loop())

    async def _stop_monitoring(self) -> None:
        task, self._monitor_task = self._monitor_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _monitoring_loop(self) -> None:
        interval = self.browser_session.browser_profile.health_check_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.check_network_timeouts()
                await self.check_browser_health()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f'[CrashWatchdog] Monitoring tick failed: {type(e).__name__}: {e}')

    async def check_network_timeouts(self) -> None:
        """Report and forget requests older than the network timeout."""
        timeout_s = self.browser_session.browser_profile.network_timeout_seconds
        now = time.monotonic()
        timed_out = [t for t in self._active_requests.values() if now - t.start_time >= timeout_s]

        for tracker in timed_out:
            self._active_requests.pop(tracker.request_id, None)
            elapsed = now - tracker.start_time
            self.logger.warning(
                f'[CrashWatchdog] Network request timeout after {timeout_s}s: {tracker.method} {tracker.url[:100]}'
            )
            await self.event_bus.dispatch(
                BrowserErrorEvent(
                    error_type='NetworkTimeout',
                    message=f'Network request timed out after {timeout_s}s',
                    details={
                        'url': tracker.url,
                        'method': tracker.method,
                        'resource_type': tracker.resource_type,
                        'target_id': tracker.target_id,
                        'elapsed_seconds': round(elapsed, 2),
                    },
                )
            )

    async def check_browser_health(self) -> bool:
        """Probe the browser and the focused tab.

        Returns:
            True if healthy (or not running), False if an error was reported.
        """
        if not self.browser_session.is_running:
            return True

        browser = self.browser_session.playwright_browser
        if browser is not None and not browser.is_connected():
            self.logger.error('[CrashWatchdog] Browser disconnected')
            await self.event_bus.dispatch(
                BrowserErrorEvent(
                    error_type='BrowserDisconnected',
                    message='Browser connection was lost',
                    details={'session_id': self.browser_session.id},
                )
            )
            return False

        if self.browser_session.current_target_id is None:
            return True

        timeout_s = self.browser_session.browser_profile.network_timeout_seconds
        try:
            page = self.browser_session.get_current_page()
            await asyncio.wait_for(page.evaluate('1 + 1'), timeout=timeout_s)
        except Exception as e:
            self.logger.warning(f'[CrashWatchdog] Browser health check failed: {type(e).__name__}: {e}')
            await self.event_bus.dispatch(
                BrowserErrorEvent(
                    error_type='BrowserUnresponsive',
                    message=f'Browser health check failed: {type(e).__name__}: {e}',
                    details={'target_id': self.browser_session.current_target_id},
                )
            )
            return False
        return True

    # endregion

    def get_stats(self) -> dict[str, Any]:
        return {
            'active_requests': len(self._active_requests),
            'tracked_targets': len(self._watched_targets),
            'crashes': self._crash_count,
            'is_monitoring': self._monitor_task is not None and not self._monitor_task.done(),
        }
