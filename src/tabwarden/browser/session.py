"""Event-driven browser session on top of Playwright.

This module provides ``BrowserSession``, the single owner of the browser, its
context and its tabs. Callers issue intents (navigate, click, type, screenshot,
switch/close tab, ...) as events on a ``SessionEventBus``; the session executes
them against Playwright and reports what happened with notification events.
Cross-cutting behaviour (security policy, downloads, dialogs, crash recovery,
blank-tab handling, screenshots) lives in watchdogs attached at startup.

Key Components:
    SessionState: Lifecycle states of a session.
    BrowserSession: Lifecycle, tab topology and action execution.

Example:
    >>> session = BrowserSession(browser_profile=BrowserProfile(headless=True))
    >>> await session.start()
    >>> await session.navigate_to('https://example.com')
    >>> tabs = await session.get_tabs()
    >>> await session.stop()
"""

import base64
import logging
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

from bubus import BaseEvent
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from tabwarden.browser.bus import SessionEventBus
from tabwarden.browser.events import (
    AgentFocusChangedEvent,
    BrowserConnectedEvent,
    BrowserErrorEvent,
    BrowserKillEvent,
    BrowserLaunchEvent,
    BrowserLaunchResult,
    BrowserStartEvent,
    BrowserStopEvent,
    BrowserStoppedEvent,
    ClickElementEvent,
    CloseTabEvent,
    FileDownloadedEvent,
    LoadStorageStateEvent,
    NavigateToUrlEvent,
    NavigationCompleteEvent,
    NavigationStartedEvent,
    SaveStorageStateEvent,
    ScreenshotEvent,
    ScrollEvent,
    SendKeysEvent,
    SwitchTabEvent,
    TabClosedEvent,
    TabCreatedEvent,
    TypeTextEvent,
    UploadFileEvent,
)
from tabwarden.browser.profile import BrowserProfile
from tabwarden.browser.views import (
    BrowserActionError,
    BrowserStartError,
    BrowserStateSummary,
    ElementNotFoundError,
    PageInfo,
    SessionNotStartedError,
    TabInfo,
    TabNotFoundError,
    TargetID,
)

logger = logging.getLogger(__name__)

HIGHLIGHT_ATTRIBUTE = 'data-tabwarden-highlight'

_REMOVE_HIGHLIGHTS_JS = f"""() => {{
    for (const el of document.querySelectorAll('[{HIGHLIGHT_ATTRIBUTE}]')) {{ el.remove(); }}
}}"""

_PAGE_METRICS_JS = """() => ({
    viewport_width: window.innerWidth,
    viewport_height: window.innerHeight,
    page_width: Math.max(document.documentElement.scrollWidth, document.body ? document.body.scrollWidth : 0),
    page_height: Math.max(document.documentElement.scrollHeight, document.body ? document.body.scrollHeight : 0),
    scroll_x: Math.round(window.scrollX),
    scroll_y: Math.round(window.scrollY),
})"""

_SCROLL_DELTAS = {
    'up': (0, -1),
    'down': (0, 1),
    'left': (-1, 0),
    'right': (1, 0),
}


class SessionState(str, Enum):
    """Lifecycle states: stopped -> starting -> running -> stopping -> stopped."""

    STOPPED = 'stopped'
    STARTING = 'starting'
    RUNNING = 'running'
    STOPPING = 'stopping'


def _default_watchdog_classes() -> list[type]:
    from tabwarden.browser.watchdogs.aboutblank_watchdog import AboutBlankWatchdog
    from tabwarden.browser.watchdogs.crash_watchdog import CrashWatchdog
    from tabwarden.browser.watchdogs.downloads_watchdog import DownloadsWatchdog
    from tabwarden.browser.watchdogs.local_browser_watchdog import LocalBrowserWatchdog
    from tabwarden.browser.watchdogs.permissions_watchdog import PermissionsWatchdog
    from tabwarden.browser.watchdogs.popups_watchdog import PopupsWatchdog
    from tabwarden.browser.watchdogs.screenshot_watchdog import ScreenshotWatchdog
    from tabwarden.browser.watchdogs.security_watchdog import SecurityWatchdog
    from tabwarden.browser.watchdogs.storage_state_watchdog import StorageStateWatchdog

    # LocalBrowserWatchdog first, it owns BrowserLaunchEvent
    return [
        LocalBrowserWatchdog,
        SecurityWatchdog,
        DownloadsWatchdog,
        PopupsWatchdog,
        CrashWatchdog,
        AboutBlankWatchdog,
        ScreenshotWatchdog,
        StorageStateWatchdog,
        PermissionsWatchdog,
    ]


class BrowserSession(BaseModel):
    """Event-driven browser session.

    Owns the Playwright browser and context, the mapping of target ids to open
    pages and the currently focused target. Only the session writes that
    topology; watchdogs that need to open or close tabs go through its public
    operations.

    Attributes:
        id: Opaque session identifier.
        browser_profile: Launch, context and policy configuration.
        event_bus: Bus shared by the session and its watchdogs.
        browser: Optional pre-launched Playwright browser. When given, launch
            is skipped and the browser is left open on stop.
        watchdog_classes: Watchdogs to attach at startup. None means the
            default set.

    Example:
        >>> session = BrowserSession(browser_profile=BrowserProfile(allowed_domains=['*.example.com']))
        >>> await session.start()
        >>> await session.navigate_to('https://www.example.com', new_tab=True)
        >>> png = await session.take_screenshot()
        >>> await session.stop()
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        validate_assignment=True,
        extra='forbid',
        revalidate_instances='never',
    )

    id: str = Field(default_factory=lambda: uuid4().hex)
    browser_profile: BrowserProfile = Field(default_factory=BrowserProfile)
    event_bus: SessionEventBus = Field(default_factory=SessionEventBus)
    browser: Any | None = Field(default=None, description='Pre-launched Playwright Browser to use instead of launching one')
    watchdog_classes: list[Any] | None = Field(default=None, description='Watchdog classes to attach, None for the defaults')

    # Mutable private state
    _state: SessionState = PrivateAttr(default=SessionState.STOPPED)
    _logger: logging.Logger | None = PrivateAttr(default=None)
    _playwright: Any = PrivateAttr(default=None)
    _browser: Any = PrivateAttr(default=None)
    _owns_browser: bool = PrivateAttr(default=False)
    _context: Any = PrivateAttr(default=None)
    _tabs: dict[TargetID, Any] = PrivateAttr(default_factory=dict)
    _tab_order: list[TargetID] = PrivateAttr(default_factory=list)
    _current_target_id: TargetID | None = PrivateAttr(default=None)
    _page_creation_depth: int = PrivateAttr(default=0)
    _pending_pages: list[Any] = PrivateAttr(default_factory=list)
    _watchdogs: list[Any] = PrivateAttr(default_factory=list)
    _downloaded_files: list[str] = PrivateAttr(default_factory=list)
    _closed_popup_messages: list[str] = PrivateAttr(default_factory=list)
    _cached_selector_map: dict[int, str] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context) -> None:
        """Register the session as owner of its intents.

        Args:
            __context: Pydantic model context (unused).
        """
        self.event_bus.own(BrowserStartEvent, self.on_BrowserStartEvent)
        self.event_bus.own(BrowserStopEvent, self.on_BrowserStopEvent)
        self.event_bus.own(NavigateToUrlEvent, self.on_NavigateToUrlEvent)
        self.event_bus.own(ClickElementEvent, self.on_ClickElementEvent)
        self.event_bus.own(TypeTextEvent, self.on_TypeTextEvent)
        self.event_bus.own(SwitchTabEvent, self.on_SwitchTabEvent)
        self.event_bus.own(CloseTabEvent, self.on_CloseTabEvent)
        self.event_bus.own(ScrollEvent, self.on_ScrollEvent)
        self.event_bus.own(SendKeysEvent, self.on_SendKeysEvent)
        self.event_bus.own(UploadFileEvent, self.on_UploadFileEvent)
        self.event_bus.subscribe(FileDownloadedEvent, self.on_FileDownloadedEvent)

    # region - ========== Properties ==========

    @property
    def logger(self) -> logging.Logger:
        """Get instance-specific logger for this session."""
        if self._logger is None:
            self._logger = logging.getLogger(f'tabwarden.session.{self.id[-4:]}')
        return self._logger

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SessionState.RUNNING

    @property
    def browser_context(self) -> Any:
        """The Playwright BrowserContext, or None while stopped."""
        return self._context

    @property
    def playwright_browser(self) -> Any:
        """The Playwright Browser in use (launched or injected), or None while stopped."""
        return self._browser

    @property
    def current_target_id(self) -> TargetID | None:
        return self._current_target_id

    @property
    def target_ids(self) -> list[TargetID]:
        """Open target ids in creation order."""
        return list(self._tab_order)

    @property
    def downloaded_files(self) -> list[str]:
        """Copy of the paths of files downloaded during this session."""
        return self._downloaded_files.copy()

    @property
    def closed_popup_messages(self) -> list[str]:
        return self._closed_popup_messages.copy()

    @property
    def watchdogs(self) -> list[Any]:
        return list(self._watchdogs)

    def get_watchdog(self, watchdog_cls: type) -> Any | None:
        """Return the attached watchdog instance of the given class, if any."""
        for watchdog in self._watchdogs:
            if isinstance(watchdog, watchdog_cls):
                return watchdog
        return None

    # endregion

    # region - ========== Lifecycle ==========

    async def start(self) -> None:
        """Start the browser session.

        Attaches watchdogs, launches (or adopts) the browser, creates the
        context and the initial tab, then emits ``BrowserConnectedEvent``.
        A no-op while already starting or running.

        Raises:
            BrowserStartError: If the browser could not be launched. The
                session is left stopped.
        """
        if self._state in (SessionState.RUNNING, SessionState.STARTING):
            self.logger.debug(f'start() ignored, session is {self._state.value}')
            return
        await self._dispatch_and_wait(BrowserStartEvent())

    async def stop(self) -> None:
        """Stop the browser session.

        Closes every tab, releases the context and browser, emits
        ``BrowserStoppedEvent`` and detaches watchdogs. A no-op while already
        stopping or stopped. The session can be started again afterwards.
        """
        if self._state in (SessionState.STOPPED, SessionState.STOPPING):
            self.logger.debug(f'stop() ignored, session is {self._state.value}')
            return
        await self._dispatch_and_wait(BrowserStopEvent())

    async def on_BrowserStartEvent(self, event: BrowserStartEvent) -> None:
        """Handle browser start request.

        Watchdogs are attached before anything is created so that the
        initial tab's ``TabCreatedEvent`` reaches them and so that
        LocalBrowserWatchdog can answer ``BrowserLaunchEvent``.

        Args:
            event: BrowserStartEvent.

        Raises:
            BrowserStartError: If launching or creating the context fails.
        """
        if self._state is not SessionState.STOPPED:
            return

        self._state = SessionState.STARTING
        self.attach_all_watchdogs()

        try:
            if self.browser is None:
                launch_event = self.event_bus.dispatch(BrowserLaunchEvent())
                await launch_event
                launch_result: BrowserLaunchResult = await launch_event.event_result(
                    raise_if_any=True, raise_if_none=True
                )
                self._browser = launch_result.browser
                self._playwright = launch_result.playwright
                self._owns_browser = True
            else:
                self._browser = self.browser
                self._owns_browser = False

            self._context = await self._browser.new_context(**self.browser_profile.get_context_options())
            self._context.set_default_timeout(self.browser_profile.action_timeout_ms)
            self._context.set_default_navigation_timeout(self.browser_profile.navigation_timeout_ms)
            self._context.on('page', self._on_context_page)

            target_id, page = await self._create_page()
        except Exception as e:
            self.logger.error(f'Failed to start browser: {type(e).__name__}: {e}')
            await self._release_handles()
            self._state = SessionState.STOPPED
            await self.event_bus.dispatch(
                BrowserErrorEvent(
                    error_type='BrowserStartError',
                    message=f'Failed to start browser: {type(e).__name__} {e}',
                    details={'session_id': self.id},
                )
            )
            self.detach_all_watchdogs()
            raise BrowserStartError(f'Failed to start browser: {type(e).__name__}: {e}', event=event) from e

        self._state = SessionState.RUNNING
        self.logger.info(f'Browser session started with initial tab #{target_id[-4:]}')
        await self.event_bus.dispatch(TabCreatedEvent(target_id=target_id, url=page.url))
        await self.event_bus.dispatch(BrowserConnectedEvent(session_id=self.id))

    async def on_BrowserStopEvent(self, event: BrowserStopEvent) -> None:
        """Handle browser stop request.

        Closes all tabs (announcing each with ``TabClosedEvent``), releases
        the context and browser, then emits ``BrowserStoppedEvent``.
        Watchdogs are detached last so they can drop their state on
        ``BrowserStoppedEvent``.

        Args:
            event: BrowserStopEvent.
        """
        if self._state is not SessionState.RUNNING:
            return

        self._state = SessionState.STOPPING
        try:
            for target_id in list(self._tab_order):
                page = self._forget_tab(target_id)
                try:
                    await page.close()
                except Exception as e:
                    self.logger.debug(f'Tab #{target_id[-4:]} was already closed: {type(e).__name__}: {e}')
                await self.event_bus.dispatch(TabClosedEvent(target_id=target_id))
        finally:
            await self._release_handles()
            self._state = SessionState.STOPPED
            self.logger.info('Browser session stopped')
            await self.event_bus.dispatch(BrowserStoppedEvent(reason='Stopped by request'))
            self.detach_all_watchdogs()

    async def _release_handles(self) -> None:
        """Close the context (and the browser if we launched it) and forget all tabs."""
        self._tabs.clear()
        self._tab_order.clear()
        self._pending_pages.clear()
        self._current_target_id = None
        self._cached_selector_map = {}

        if self._context is not None:
            try:
                await self._context.close()
            except Exception as e:
                self.logger.warning(f'Failed to close browser context: {type(e).__name__}: {e}')

        if self._owns_browser:
            kill_event = self.event_bus.dispatch(BrowserKillEvent())
            await kill_event
            try:
                await kill_event.event_result(raise_if_any=True, raise_if_none=False)
            except Exception as e:
                self.logger.warning(f'Failed to close browser: {type(e).__name__}: {e}')

        self._context = None
        self._browser = None
        self._playwright = None
        self._owns_browser = False

    def attach_all_watchdogs(self) -> None:
        """Attach all configured watchdogs to the browser session.

        Called automatically during session start. Prevents duplicate
        attachment if called multiple times.
        """
        if self._watchdogs:
            self.logger.debug('Watchdogs already attached, skipping duplicate attachment')
            return

        classes = self.watchdog_classes if self.watchdog_classes is not None else _default_watchdog_classes()
        for watchdog_cls in classes:
            watchdog_cls.model_rebuild()
            watchdog = watchdog_cls(event_bus=self.event_bus, browser_session=self)
            watchdog.attach_to_session()
            self._watchdogs.append(watchdog)

        self.logger.debug(f'Attached watchdogs: {[type(w).__name__ for w in self._watchdogs]}')

    def detach_all_watchdogs(self) -> None:
        """Detach watchdogs in reverse attachment order."""
        for watchdog in reversed(self._watchdogs):
            watchdog.detach_from_session()
        self._watchdogs.clear()

    # endregion

    # region - ========== Tab topology ==========

    def _require_running(self, event: BaseEvent[Any] | None = None) -> None:
        if self._state is not SessionState.RUNNING:
            action = event.event_type if event is not None else 'action'
            raise SessionNotStartedError(
                f'Cannot perform {action}: browser session is {self._state.value}',
                event=event,
            )

    def _register_page(self, page: Any) -> TargetID:
        """Give a page a target id and track it. Idempotent per page object."""
        for target_id, known_page in self._tabs.items():
            if known_page is page:
                return target_id

        target_id = uuid4().hex.upper()
        self._tabs[target_id] = page
        self._tab_order.append(target_id)
        page.on('close', lambda _page: self._on_page_closed(target_id))
        if self._current_target_id is None:
            self._current_target_id = target_id
        return target_id

    def _forget_tab(self, target_id: TargetID) -> Any:
        """Stop tracking a tab and move focus off it if needed. Returns the page."""
        page = self._tabs.pop(target_id)
        self._tab_order.remove(target_id)
        if self._current_target_id == target_id:
            self._current_target_id = self._tab_order[-1] if self._tab_order else None
        return page

    async def _create_page(self) -> tuple[TargetID, Any]:
        """Open a new page in the context and register it (not announced yet)."""
        self._page_creation_depth += 1
        try:
            page = await self._context.new_page()
        finally:
            self._page_creation_depth -= 1

        target_id = self._register_page(page)

        # Pages opened by other tabs while we were waiting are adopted now
        pending = [p for p in self._pending_pages if p is not page]
        self._pending_pages.clear()
        for other in pending:
            self._adopt_page(other)

        return target_id, page

    def _on_context_page(self, page: Any) -> None:
        """Playwright callback for every page opened in the context."""
        if self._page_creation_depth > 0:
            self._pending_pages.append(page)
            return
        self._adopt_page(page)

    def _adopt_page(self, page: Any) -> None:
        """Register a page opened by the page itself (window.open, target=_blank)."""
        if any(known is page for known in self._tabs.values()):
            return
        if self._state is not SessionState.RUNNING:
            return
        target_id = self._register_page(page)
        self.logger.debug(f'Adopted page-initiated tab #{target_id[-4:]}: {page.url}')
        self.event_bus.dispatch(TabCreatedEvent(target_id=target_id, url=page.url))

    def _on_page_closed(self, target_id: TargetID) -> None:
        """Playwright callback when a page closes; only pages closed outside close_tab are still tracked."""
        if target_id not in self._tabs:
            return
        self._forget_tab(target_id)
        self.logger.debug(f'Tab #{target_id[-4:]} closed by the page')
        self.event_bus.dispatch(TabClosedEvent(target_id=target_id))

    async def _set_focus(self, target_id: TargetID) -> None:
        self._current_target_id = target_id
        await self.event_bus.dispatch(AgentFocusChangedEvent(target_id=target_id, url=self._tabs[target_id].url))

    def get_page(self, target_id: TargetID) -> Any:
        """Return the Playwright page for a target id.

        Raises:
            TabNotFoundError: If the target id is not an open tab.
        """
        page = self._tabs.get(target_id)
        if page is None:
            raise TabNotFoundError(f'Tab {target_id} not found', details={'target_id': target_id})
        return page

    def get_current_page(self) -> Any:
        """Return the focused Playwright page.

        Raises:
            SessionNotStartedError: If the session is not running.
            TabNotFoundError: If no tab is open.
        """
        self._require_running()
        if self._current_target_id is None:
            raise TabNotFoundError('No tab is currently focused')
        return self._tabs[self._current_target_id]

    def find_target_id(self, page: Any) -> TargetID | None:
        for target_id, known_page in self._tabs.items():
            if known_page is page:
                return target_id
        return None

    # endregion

    # region - ========== Intent handlers ==========

    async def on_NavigateToUrlEvent(self, event: NavigateToUrlEvent) -> None:
        """Handle navigation requests.

        Opens and focuses a new tab first when ``new_tab`` is set (or when no
        tab exists), then navigates the focused tab. Emits
        ``NavigationStartedEvent`` and ``NavigationCompleteEvent``; on failure
        the complete event carries ``status=None`` and the error message.

        Args:
            event: NavigateToUrlEvent with url, new_tab, wait_until and timeout_ms.

        Raises:
            SessionNotStartedError: If the session is not running.
            BrowserActionError: If the navigation itself fails.
        """
        self._require_running(event)
        self.logger.debug(f'[on_NavigateToUrlEvent] url={event.url}, new_tab={event.new_tab}')

        if event.new_tab or self._current_target_id is None:
            target_id, page = await self._create_page()
            await self.event_bus.dispatch(TabCreatedEvent(target_id=target_id, url=page.url))
            await self._set_focus(target_id)
        else:
            target_id = self._current_target_id
            page = self._tabs[target_id]

        await self.event_bus.dispatch(NavigationStartedEvent(target_id=target_id, url=event.url))

        timeout = event.timeout_ms if event.timeout_ms is not None else self.browser_profile.navigation_timeout_ms
        try:
            response = await page.goto(event.url, wait_until=event.wait_until, timeout=timeout)
        except Exception as e:
            self.logger.warning(f'[on_NavigateToUrlEvent] Navigation to {event.url} failed: {type(e).__name__}: {e}')
            await self.event_bus.dispatch(
                NavigationCompleteEvent(
                    target_id=target_id,
                    url=event.url,
                    status=None,
                    error_message=str(e),
                )
            )
            raise BrowserActionError(
                f'Navigation to {event.url} failed: {e}',
                details={'url': event.url, 'target_id': target_id},
                event=event,
            ) from e

        status = response.status if response is not None else 200
        await self.event_bus.dispatch(
            NavigationCompleteEvent(
                target_id=target_id,
                url=page.url or event.url,
                status=status,
            )
        )

    async def on_ClickElementEvent(self, event: ClickElementEvent) -> None:
        """Click an element on the focused page.

        Raises:
            ElementNotFoundError: If the element description does not resolve.
            BrowserActionError: If Playwright fails to click.
        """
        self._require_running(event)
        page = self.get_current_page()
        locator = await self._resolve_element(page, event.index, event.selector, event)
        timeout = event.timeout_ms if event.timeout_ms is not None else self.browser_profile.action_timeout_ms
        try:
            await locator.click(
                button=event.button,
                modifiers=list(event.modifiers),
                click_count=event.click_count,
                timeout=timeout,
            )
        except Exception as e:
            raise BrowserActionError(
                f'Failed to click element: {type(e).__name__}: {e}',
                details={'index': event.index, 'selector': event.selector},
                event=event,
            ) from e

    async def on_TypeTextEvent(self, event: TypeTextEvent) -> None:
        """Type into an element; ``clear`` replaces the current value, otherwise keys are appended."""
        self._require_running(event)
        page = self.get_current_page()
        locator = await self._resolve_element(page, event.index, event.selector, event)
        timeout = event.timeout_ms if event.timeout_ms is not None else self.browser_profile.action_timeout_ms
        try:
            if event.clear:
                await locator.fill(event.text, timeout=timeout)
            else:
                await locator.press_sequentially(event.text, timeout=timeout)
        except Exception as e:
            raise BrowserActionError(
                f'Failed to type into element: {type(e).__name__}: {e}',
                details={'index': event.index, 'selector': event.selector},
                event=event,
            ) from e

    async def on_ScrollEvent(self, event: ScrollEvent) -> None:
        self._require_running(event)
        page = self.get_current_page()
        dx, dy = _SCROLL_DELTAS[event.direction]
        try:
            await page.mouse.wheel(dx * event.amount, dy * event.amount)
        except Exception as e:
            raise BrowserActionError(f'Failed to scroll {event.direction}: {e}', event=event) from e

    async def on_SendKeysEvent(self, event: SendKeysEvent) -> None:
        self._require_running(event)
        page = self.get_current_page()
        try:
            await page.keyboard.press(event.keys)
        except Exception as e:
            raise BrowserActionError(f'Failed to send keys {event.keys!r}: {e}', event=event) from e

    async def on_UploadFileEvent(self, event: UploadFileEvent) -> None:
        """Attach a local file to a file input.

        Raises:
            BrowserActionError: If the file does not exist or the upload fails.
        """
        self._require_running(event)
        file_path = Path(event.file_path).expanduser()
        if not file_path.is_file():
            raise BrowserActionError(f'File to upload does not exist: {file_path}', event=event)

        page = self.get_current_page()
        locator = await self._resolve_element(page, event.index, event.selector, event)
        try:
            await locator.set_input_files(str(file_path))
        except Exception as e:
            raise BrowserActionError(f'Failed to upload {file_path.name}: {e}', event=event) from e

    async def on_SwitchTabEvent(self, event: SwitchTabEvent) -> TargetID:
        """Handle tab switching requests.

        Args:
            event: SwitchTabEvent with optional target_id. If None,
                switches to the most recently opened tab.

        Returns:
            The target_id of the newly focused tab.

        Raises:
            TabNotFoundError: If the target does not exist or no tabs are open.
        """
        self._require_running(event)
        target_id = event.target_id
        if target_id is None:
            if not self._tab_order:
                raise TabNotFoundError('No tabs available to switch to', event=event)
            target_id = self._tab_order[-1]
        elif target_id not in self._tabs:
            raise TabNotFoundError(f'Tab {target_id} not found', details={'target_id': target_id}, event=event)

        try:
            await self._tabs[target_id].bring_to_front()
        except Exception as e:
            self.logger.debug(f'Failed to bring tab #{target_id[-4:]} to front: {e}')

        await self._set_focus(target_id)
        return target_id

    async def on_CloseTabEvent(self, event: CloseTabEvent) -> None:
        """Handle tab close requests.

        Removes the tab, closes the page and emits ``TabClosedEvent``. If it
        was focused, focus moves to the most recent remaining tab (or None).

        Raises:
            TabNotFoundError: If the target does not exist.
        """
        self._require_running(event)
        if event.target_id not in self._tabs:
            raise TabNotFoundError(
                f'Tab {event.target_id} not found', details={'target_id': event.target_id}, event=event
            )

        was_focused = self._current_target_id == event.target_id
        page = self._forget_tab(event.target_id)
        new_focus = self._current_target_id
        try:
            await page.close()
        except Exception as e:
            self.logger.debug(f'Tab #{event.target_id[-4:]} was already closed: {type(e).__name__}: {e}')

        await self.event_bus.dispatch(TabClosedEvent(target_id=event.target_id))

        # Observers of TabClosedEvent may already have moved focus (e.g. to a recreated blank tab)
        if was_focused and new_focus is not None and self._current_target_id == new_focus:
            await self._set_focus(new_focus)

    async def on_FileDownloadedEvent(self, event: FileDownloadedEvent) -> None:
        """Track downloaded files during this session."""
        if event.path and event.path not in self._downloaded_files:
            self._downloaded_files.append(event.path)
            self.logger.info(f'Tracked download: {event.filename} ({len(self._downloaded_files)} total downloads in session)')

    async def _resolve_element(
        self,
        page: Any,
        index: int | None,
        selector: str | None,
        event: BaseEvent[Any],
    ) -> Any:
        """Resolve a selector or selector-map index to a Playwright locator.

        Raises:
            ElementNotFoundError: If nothing is described or nothing matches.
        """
        if selector is None and index is not None:
            selector = self._cached_selector_map.get(index)
            if selector is None:
                raise ElementNotFoundError(
                    f'Element with index {index} is not in the selector map',
                    details={'index': index, 'known_indices': len(self._cached_selector_map)},
                    event=event,
                )
        if not selector:
            raise ElementNotFoundError('No element selector or index given', event=event)

        locator = page.locator(selector)
        if await locator.count() == 0:
            raise ElementNotFoundError(
                f'No element matches {selector!r}', details={'selector': selector, 'index': index}, event=event
            )
        return locator.first

    # endregion

    # region - ========== Public operations ==========

    async def _dispatch_and_wait(self, event: BaseEvent[Any]) -> Any:
        dispatched = self.event_bus.dispatch(event)
        await dispatched
        return await dispatched.event_result(raise_if_any=True, raise_if_none=False)

    async def navigate_to(
        self,
        url: str,
        new_tab: bool = False,
        wait_until: str = 'load',
        timeout_ms: int | None = None,
    ) -> None:
        """Navigate to a URL using the standard event system.

        Raises:
            SessionNotStartedError: If the session is not running.
            NavigationBlockedError: If the security policy vetoes the URL.
            BrowserActionError: If navigation fails.

        Example:
            >>> await session.navigate_to('https://example.com')
            >>> await session.navigate_to('https://other.com', new_tab=True)
        """
        self._require_running()
        await self._dispatch_and_wait(
            NavigateToUrlEvent(url=url, new_tab=new_tab, wait_until=wait_until, timeout_ms=timeout_ms)
        )

    async def click_element(
        self,
        index: int | None = None,
        selector: str | None = None,
        button: str = 'left',
        modifiers: list[str] | None = None,
        click_count: int = 1,
    ) -> None:
        self._require_running()
        await self._dispatch_and_wait(
            ClickElementEvent(
                index=index,
                selector=selector,
                button=button,
                modifiers=modifiers or [],
                click_count=click_count,
            )
        )

    async def type_text(
        self,
        text: str,
        index: int | None = None,
        selector: str | None = None,
        clear: bool = True,
    ) -> None:
        self._require_running()
        await self._dispatch_and_wait(TypeTextEvent(index=index, selector=selector, text=text, clear=clear))

    async def scroll(self, direction: str = 'down', amount: int = 500) -> None:
        self._require_running()
        await self._dispatch_and_wait(ScrollEvent(direction=direction, amount=amount))

    async def send_keys(self, keys: str) -> None:
        self._require_running()
        await self._dispatch_and_wait(SendKeysEvent(keys=keys))

    async def upload_file(self, file_path: str | Path, index: int | None = None, selector: str | None = None) -> None:
        self._require_running()
        await self._dispatch_and_wait(UploadFileEvent(index=index, selector=selector, file_path=str(file_path)))

    async def take_screenshot(
        self,
        full_page: bool = False,
        clip: dict[str, float] | None = None,
        format: str = 'png',
        quality: int | None = None,
    ) -> bytes:
        """Capture the focused tab.

        Returns:
            Encoded image bytes (PNG unless ``format='jpeg'``).
        """
        self._require_running()
        data = await self._dispatch_and_wait(
            ScreenshotEvent(full_page=full_page, clip=clip, format=format, quality=quality)
        )
        if not data:
            raise BrowserActionError('Screenshot returned no data')
        return base64.b64decode(data)

    async def switch_tab(self, target_id: TargetID | None = None) -> TargetID:
        """Focus a tab, or the most recently created one when no id is given."""
        self._require_running()
        return await self._dispatch_and_wait(SwitchTabEvent(target_id=target_id))

    async def close_tab(self, target_id: TargetID) -> None:
        self._require_running()
        await self._dispatch_and_wait(CloseTabEvent(target_id=target_id))

    async def save_storage_state(self, path: str | Path | None = None) -> None:
        self._require_running()
        await self._dispatch_and_wait(SaveStorageStateEvent(path=str(path) if path else None))

    async def load_storage_state(self, path: str | Path | None = None) -> None:
        self._require_running()
        await self._dispatch_and_wait(LoadStorageStateEvent(path=str(path) if path else None))

    async def get_tabs(self) -> list[TabInfo]:
        """Get information about all open tabs in creation order."""
        tabs = []
        for target_id in list(self._tab_order):
            page = self._tabs.get(target_id)
            if page is None:
                continue
            tabs.append(TabInfo(url=page.url, title=await self._safe_title(page), target_id=target_id))
        return tabs

    async def get_current_page_url(self) -> str:
        if self._current_target_id is None:
            return 'about:blank'
        return self._tabs[self._current_target_id].url

    async def get_current_page_title(self) -> str:
        if self._current_target_id is None:
            return ''
        return await self._safe_title(self._tabs[self._current_target_id])

    async def _safe_title(self, page: Any) -> str:
        try:
            return await page.title()
        except Exception as e:
            self.logger.debug(f'Failed to read page title: {type(e).__name__}: {e}')
            return ''

    async def _get_page_info(self, page: Any) -> PageInfo:
        try:
            metrics = await page.evaluate(_PAGE_METRICS_JS)
            return PageInfo(**metrics)
        except Exception as e:
            self.logger.debug(f'Failed to read page metrics, using profile viewport: {type(e).__name__}: {e}')
            viewport = self.browser_profile.viewport
            return PageInfo(
                viewport_width=viewport.width,
                viewport_height=viewport.height,
                page_width=viewport.width,
                page_height=viewport.height,
            )

    async def get_browser_state_summary(self, include_screenshot: bool = True) -> BrowserStateSummary:
        """Build the snapshot consumed by the agent loop.

        Args:
            include_screenshot: Capture a base64 screenshot of the focused tab.

        Raises:
            SessionNotStartedError: If the session is not running.
        """
        page = self.get_current_page()
        screenshot = None
        if include_screenshot:
            screenshot = await self._dispatch_and_wait(ScreenshotEvent())

        return BrowserStateSummary(
            url=page.url,
            title=await self._safe_title(page),
            screenshot=screenshot,
            tabs=await self.get_tabs(),
            current_target_id=self._current_target_id,
            page_info=await self._get_page_info(page),
            selector_map=dict(self._cached_selector_map),
            closed_popup_messages=self.closed_popup_messages,
        )

    def update_cached_selector_map(self, selector_map: dict[int, str]) -> None:
        """Replace the index -> selector map produced by the DOM extraction layer."""
        self._cached_selector_map = dict(selector_map)

    def add_closed_popup_message(self, message: str) -> None:
        self._closed_popup_messages.append(message)

    async def remove_highlights(self) -> None:
        """Remove highlight overlays from the focused page. Never raises."""
        if self._current_target_id is None:
            return
        page = self._tabs.get(self._current_target_id)
        if page is None:
            return
        try:
            await page.evaluate(_REMOVE_HIGHLIGHTS_JS)
        except Exception as e:
            self.logger.debug(f'Failed to remove highlights: {type(e).__name__}: {e}')

    # endregion
