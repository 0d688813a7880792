"""Permissions watchdog for granting browser permissions on connection."""

import logging
from typing import Any, ClassVar

from bubus import BaseEvent

from tabwarden.browser.events import BrowserConnectedEvent
from tabwarden.browser.watchdogs.base import BaseWatchdog

logger = logging.getLogger(__name__)


class PermissionsWatchdog(BaseWatchdog):
    """Grants browser permissions when browser connects."""

    LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = [
        BrowserConnectedEvent,
    ]

    EMITS: ClassVar[list[type[BaseEvent[Any]]]] = []

    async def on_BrowserConnectedEvent(self, event: BrowserConnectedEvent) -> None:
        """Grant permissions when browser connects."""
        permissions = self.browser_session.browser_profile.permissions

        if not permissions:
            self.logger.debug('[PermissionsWatchdog] No permissions to grant')
            return

        context = self.browser_session.browser_context
        if context is None:
            return

        self.logger.debug(f'[PermissionsWatchdog] Granting browser permissions: {permissions}')
        try:
            # No origin means the grant applies to every origin in the context
            await context.grant_permissions(list(permissions))
            self.logger.debug(f'[PermissionsWatchdog] Successfully granted permissions: {permissions}')
        except Exception as e:
            # Permissions are not critical to browser operation
            self.logger.error(f'[PermissionsWatchdog] Failed to grant permissions: {str(e)}')
