"""Watchdog for handling JavaScript dialogs (alert, confirm, prompt) automatically.

This module provides the PopupsWatchdog which answers native dialogs without
user interaction. A dialog nobody answers blocks every further script on its
tab, so handling failures are logged and never propagated.

Classes:
    PopupsWatchdog: Automatically accepts/dismisses JavaScript dialogs.
"""

import asyncio
import logging
from typing import Any, ClassVar

from bubus import BaseEvent
from pydantic import PrivateAttr

from tabwarden.browser.events import BrowserStoppedEvent, DialogOpenedEvent, TabClosedEvent, TabCreatedEvent
from tabwarden.browser.views import DialogHandlingError, TargetID
from tabwarden.browser.watchdogs.base import BaseWatchdog

logger = logging.getLogger(__name__)


class PopupsWatchdog(BaseWatchdog):
    """Handles JavaScript dialogs after a short humanizing delay.

    Registers one Playwright ``dialog`` listener per tab and responds:
    - auto_accept_dialogs=True: accept (prompts get their default value)
    - auto_accept_dialogs=False: dismiss

    Dialog messages are stored on the session via
    ``add_closed_popup_message`` for inclusion in the browser state.

    Listens to:
        TabCreatedEvent: Registers the dialog handler for new tabs.
        TabClosedEvent: Forgets the tab's registration.
        BrowserStoppedEvent: Cancels pending dialog tasks.

    Emits:
        DialogOpenedEvent: Before the dialog is answered.

    Example:
        >>> # Dialogs are handled automatically
        >>> await browser.navigate_to('https://example.com')
        >>> # Any alert() calls are accepted after dialog_delay_ms
    """

    LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = [
        TabCreatedEvent,
        TabClosedEvent,
        BrowserStoppedEvent,
    ]

    EMITS: ClassVar[list[type[BaseEvent[Any]]]] = [
        DialogOpenedEvent,
    ]

    # Track which targets have dialog handlers registered
    _dialog_listeners_registered: set[TargetID] = PrivateAttr(default_factory=set)
    _dialog_tasks: set[asyncio.Task] = PrivateAttr(default_factory=set)
    _handled_count: int = PrivateAttr(default=0)

    async def on_TabCreatedEvent(self, event: TabCreatedEvent) -> None:
        """Set up JavaScript dialog handling when a new tab is created.

        Skips targets that already have a handler.

        Args:
            event: TabCreatedEvent with target_id.
        """
        target_id = event.target_id
        if target_id in self._dialog_listeners_registered:
            self.logger.debug(f'[PopupsWatchdog] Already registered dialog handler for tab #{target_id[-4:]}')
            return

        try:
            page = self.browser_session.get_page(target_id)
        except Exception as e:
            self.logger.warning(f'[PopupsWatchdog] Failed to set up popup handling for tab {target_id}: {e}')
            return

        def on_dialog(dialog: Any) -> None:
            task = asyncio.create_task(self.handle_dialog(dialog, target_id))
            self._dialog_tasks.add(task)
            task.add_done_callback(self._dialog_tasks.discard)

        page.on('dialog', on_dialog)
        self._dialog_listeners_registered.add(target_id)
        self.logger.debug(f'[PopupsWatchdog] Set up JavaScript dialog handling for tab #{target_id[-4:]}')

    async def on_TabClosedEvent(self, event: TabClosedEvent) -> None:
        self._dialog_listeners_registered.discard(event.target_id)

    async def on_BrowserStoppedEvent(self, event: BrowserStoppedEvent) -> None:
        for task in list(self._dialog_tasks):
            task.cancel()
        self._dialog_tasks.clear()
        self._dialog_listeners_registered.clear()

    async def handle_dialog(self, dialog: Any, target_id: TargetID | None = None) -> None:
        """Announce, record and answer one dialog. Never raises."""
        try:
            dialog_type = dialog.type
            message = dialog.message or ''
            url = self._page_url(dialog)

            await self.event_bus.dispatch(
                DialogOpenedEvent(dialog_type=dialog_type, message=message, url=url, target_id=target_id)
            )

            # Store the popup message in browser session for inclusion in browser state
            if message:
                formatted_message = f'[{dialog_type}] {message}'
                self.browser_session.add_closed_popup_message(formatted_message)
                self.logger.debug(f'[PopupsWatchdog] Stored popup message: {formatted_message[:100]}')

            should_accept = self.browser_session.browser_profile.auto_accept_dialogs
            action_str = 'accepting (OK)' if should_accept else 'dismissing (Cancel)'
            self.logger.info(f"[PopupsWatchdog] JavaScript {dialog_type} dialog: '{message[:100]}' - {action_str}...")

            delay_ms = self.browser_session.browser_profile.dialog_delay_ms
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)

            await self._resolve(dialog, dialog_type, should_accept)
            self._handled_count += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = DialogHandlingError(
                f'Failed to handle {getattr(dialog, "type", "unknown")} dialog: {type(e).__name__}: {e}',
                details={'target_id': target_id},
            )
            self.logger.error(f'[PopupsWatchdog] {error}')

    @staticmethod
    async def _resolve(dialog: Any, dialog_type: str, should_accept: bool) -> None:
        if not should_accept:
            await dialog.dismiss()
        elif dialog_type == 'prompt':
            await dialog.accept(dialog.default_value or '')
        else:
            await dialog.accept()

    @staticmethod
    def _page_url(dialog: Any) -> str:
        page = getattr(dialog, 'page', None)
        return getattr(page, 'url', '') or ''

    def get_stats(self) -> dict[str, Any]:
        return {
            'tabs_watched': len(self._dialog_listeners_registered),
            'dialogs_handled': self._handled_count,
            'pending': len(self._dialog_tasks),
        }
