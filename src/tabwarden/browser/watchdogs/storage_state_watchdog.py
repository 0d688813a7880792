"""Storage state watchdog for managing browser cookies and storage persistence.

This module provides the StorageStateWatchdog which persists cookies and
localStorage to a JSON file, enabling session persistence across browser
restarts.

Classes:
    StorageStateWatchdog: Monitors and persists browser storage state.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, ClassVar

from bubus import BaseEvent
from pydantic import Field, PrivateAttr

from tabwarden.browser.events import (
    BrowserConnectedEvent,
    BrowserStopEvent,
    BrowserStoppedEvent,
    LoadStorageStateEvent,
    SaveStorageStateEvent,
    StorageStateLoadedEvent,
    StorageStateSavedEvent,
)
from tabwarden.browser.views import BrowserActionError
from tabwarden.browser.watchdogs.base import BaseWatchdog

logger = logging.getLogger(__name__)


def _cookie_key(cookie: dict[str, Any]) -> tuple[Any, Any, Any]:
    return cookie.get('name'), cookie.get('domain'), cookie.get('path')


class StorageStateWatchdog(BaseWatchdog):
    """Monitors and persists browser storage state including cookies and localStorage.

    Loads cookies from ``storage_state`` when the browser connects and saves
    the merged state right before the session stops. While running, cookies
    are polled and saved when they change.

    Listens to:
        BrowserConnectedEvent: Loads storage state and starts monitoring.
        BrowserStoppedEvent: Stops monitoring.

    Observes before:
        BrowserStopEvent: Saves final state while the context is still open.

    Owns:
        SaveStorageStateEvent: Manual save trigger.
        LoadStorageStateEvent: Manual load trigger.

    Emits:
        StorageStateSavedEvent: After successful save.
        StorageStateLoadedEvent: After successful load.

    Configuration (in BrowserProfile):
        storage_state: Path to storage state JSON file.

    Attributes:
        auto_save_interval: Seconds between cookie change checks (default: 30).
        save_on_change: Save when cookies changed since the last save (default: True).

    Example:
        >>> profile = BrowserProfile(
        ...     storage_state='./auth_state.json'
        ... )
    """

    LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = [
        BrowserConnectedEvent,
        BrowserStoppedEvent,
    ]

    VETOES: ClassVar[list[type[BaseEvent[Any]]]] = [
        BrowserStopEvent,
    ]

    EMITS: ClassVar[list[type[BaseEvent[Any]]]] = [
        StorageStateSavedEvent,
        StorageStateLoadedEvent,
    ]

    # Configuration
    auto_save_interval: float = Field(default=30.0)
    save_on_change: bool = Field(default=True)

    # Private state
    _monitoring_task: asyncio.Task | None = PrivateAttr(default=None)
    _last_cookie_state: list[dict] = PrivateAttr(default_factory=list)
    _save_lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)

    def attach_to_session(self) -> None:
        """Register lifecycle handlers and take ownership of the save/load intents."""
        super().attach_to_session()
        self.event_bus.own(SaveStorageStateEvent, self.on_SaveStorageStateEvent)
        self.event_bus.own(LoadStorageStateEvent, self.on_LoadStorageStateEvent)

    def detach_from_session(self) -> None:
        self.event_bus.disown(SaveStorageStateEvent)
        self.event_bus.disown(LoadStorageStateEvent)
        super().detach_from_session()

    @property
    def _configured_path(self) -> str | None:
        storage_state = self.browser_session.browser_profile.storage_state
        return str(storage_state) if storage_state else None

    async def on_BrowserConnectedEvent(self, event: BrowserConnectedEvent) -> None:
        """Load existing storage state and start monitoring.

        Args:
            event: BrowserConnectedEvent from session.
        """
        if not self._configured_path:
            return

        self.logger.debug('[StorageStateWatchdog] Initializing cookie sync with storage state file')
        try:
            await self._load_storage_state(self._configured_path)
        except Exception as e:
            self.logger.error(f'[StorageStateWatchdog] Failed to load storage state: {e}')
        if self.save_on_change:
            self._start_monitoring()

    async def before_BrowserStopEvent(self, event: BrowserStopEvent) -> None:
        """Save the final state before tabs and context are closed. Never vetoes the stop."""
        await self._stop_monitoring()
        if not self._configured_path or not self.browser_session.is_running:
            return
        try:
            await self._save_storage_state(self._configured_path)
        except Exception as e:
            self.logger.error(f'[StorageStateWatchdog] Failed to save storage state on stop: {e}')

    async def on_BrowserStoppedEvent(self, event: BrowserStoppedEvent) -> None:
        await self._stop_monitoring()
        self._last_cookie_state = []

    async def on_SaveStorageStateEvent(self, event: SaveStorageStateEvent) -> None:
        """Handle storage state save request.

        Args:
            event: SaveStorageStateEvent with optional path override.

        Raises:
            BrowserActionError: If no path is known or the save fails.
        """
        self.browser_session._require_running(event)
        path = event.path or self._configured_path
        if not path:
            raise BrowserActionError('No storage state path given and none configured', event=event)
        try:
            await self._save_storage_state(path)
        except Exception as e:
            raise BrowserActionError(f'Failed to save storage state: {type(e).__name__}: {e}', event=event) from e

    async def on_LoadStorageStateEvent(self, event: LoadStorageStateEvent) -> None:
        """Handle storage state load request.

        Args:
            event: LoadStorageStateEvent with optional path override.

        Raises:
            BrowserActionError: If no path is known or the file cannot be applied.
        """
        self.browser_session._require_running(event)
        path = event.path or self._configured_path
        if not path:
            raise BrowserActionError('No storage state path given and none configured', event=event)
        try:
            await self._load_storage_state(path)
        except Exception as e:
            raise BrowserActionError(f'Failed to load storage state: {type(e).__name__}: {e}', event=event) from e

    def _start_monitoring(self) -> None:
        if self._monitoring_task and not self._monitoring_task.done():
            return
        self._monitoring_task = asyncio.create_task(self._monitor_storage_changes())

    async def _stop_monitoring(self) -> None:
        task, self._monitoring_task = self._monitoring_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _monitor_storage_changes(self) -> None:
        """Periodically check for cookie changes and auto-save."""
        while True:
            await asyncio.sleep(self.auto_save_interval)
            try:
                if await self._have_cookies_changed():
                    self.logger.debug('[StorageStateWatchdog] Detected cookie changes to sync with storage state file')
                    await self._save_storage_state(self._configured_path)
            except Exception as e:
                self.logger.error(f'[StorageStateWatchdog] Error in monitoring loop: {e}')

    async def _have_cookies_changed(self) -> bool:
        """Check if cookies have changed since last save or load."""
        context = self.browser_session.browser_context
        if context is None:
            return False

        current_cookies = await context.cookies()
        current = {_cookie_key(c): c.get('value', '') for c in current_cookies}
        last = {_cookie_key(c): c.get('value', '') for c in self._last_cookie_state}
        return current != last

    async def _save_storage_state(self, path: str | None) -> StorageStateSavedEvent | None:
        """Write the context's storage state, merged with the file's current content."""
        if not path:
            return None
        context = self.browser_session.browser_context
        if context is None:
            raise BrowserActionError('No browser context to read storage state from')

        async with self._save_lock:
            storage_state = await context.storage_state()
            self._last_cookie_state = list(storage_state.get('cookies', []))

            json_path = Path(path).expanduser().resolve()
            json_path.parent.mkdir(parents=True, exist_ok=True)

            # Merge with existing state if file exists
            merged_state = dict(storage_state)
            if json_path.exists():
                try:
                    existing_state = json.loads(json_path.read_text())
                    merged_state = self._merge_storage_states(existing_state, merged_state)
                except (OSError, ValueError) as e:
                    self.logger.error(f'[StorageStateWatchdog] Failed to merge with existing state: {e}')

            # Write atomically, keeping the previous file as a backup
            temp_path = json_path.with_suffix('.json.tmp')
            temp_path.write_text(json.dumps(merged_state, indent=4))
            if json_path.exists():
                json_path.replace(json_path.with_suffix('.json.bak'))
            temp_path.replace(json_path)

        saved = StorageStateSavedEvent(
            path=str(json_path),
            cookies_count=len(merged_state.get('cookies', [])),
            origins_count=len(merged_state.get('origins', [])),
        )
        self.logger.debug(
            f'[StorageStateWatchdog] Saved storage state to {json_path} '
            f'({saved.cookies_count} cookies, {saved.origins_count} origins)'
        )
        await self.event_bus.dispatch(saved)
        return saved

    async def _load_storage_state(self, path: str | None) -> StorageStateLoadedEvent | None:
        """Apply the cookies of a storage state file to the running context. Missing files are skipped."""
        if not path:
            return None
        load_path = Path(path).expanduser()
        if not load_path.exists():
            self.logger.debug(f'[StorageStateWatchdog] No storage state file at {load_path}, nothing to load')
            return None

        context = self.browser_session.browser_context
        if context is None:
            raise BrowserActionError('No browser context to load storage state into')

        storage = json.loads(load_path.read_text())
        cookies = storage.get('cookies') or []
        if cookies:
            await context.add_cookies(cookies)
            self._last_cookie_state = list(cookies)

        loaded = StorageStateLoadedEvent(
            path=str(load_path),
            cookies_count=len(cookies),
            origins_count=len(storage.get('origins', [])),
        )
        self.logger.debug(f'[StorageStateWatchdog] Loaded {loaded.cookies_count} cookies from {load_path}')
        await self.event_bus.dispatch(loaded)
        return loaded

    def _merge_storage_states(self, existing: dict, new: dict) -> dict:
        """Merge existing storage state with new state.

        Cookies are keyed by (name, domain, path) and origins by origin; entries
        of ``new`` win.

        Args:
            existing: Existing storage state
            new: New storage state

        Returns:
            Merged storage state
        """
        merged = existing.copy()

        existing_cookies = {_cookie_key(c): c for c in existing.get('cookies', [])}
        existing_cookies.update({_cookie_key(c): c for c in new.get('cookies', [])})
        merged['cookies'] = list(existing_cookies.values())

        existing_origins = {o.get('origin'): o for o in existing.get('origins', [])}
        existing_origins.update({o.get('origin'): o for o in new.get('origins', [])})
        merged['origins'] = list(existing_origins.values())

        return merged
