"""Local browser watchdog for managing the Playwright browser lifecycle.

This module provides the LocalBrowserWatchdog which starts the Playwright
driver, launches a local browser for the session and shuts both down again.

Classes:
    LocalBrowserWatchdog: Manages local browser launch and teardown.
"""

import logging
from typing import Any, ClassVar

from bubus import BaseEvent
from playwright.async_api import async_playwright
from pydantic import PrivateAttr

from tabwarden.browser.events import BrowserKillEvent, BrowserLaunchEvent, BrowserLaunchResult
from tabwarden.browser.watchdogs.base import BaseWatchdog

logger = logging.getLogger(__name__)


class LocalBrowserWatchdog(BaseWatchdog):
    """Manages the local browser launched through Playwright.

    Owns:
        BrowserLaunchEvent: Starts Playwright and launches the browser type
            named in the profile.
        BrowserKillEvent: Closes the browser and stops Playwright.

    Example:
        >>> watchdog = LocalBrowserWatchdog(
        ...     event_bus=bus,
        ...     browser_session=session
        ... )
        >>> event = bus.dispatch(BrowserLaunchEvent())
        >>> await event
        >>> result = await event.event_result()
        >>> result.browser.is_connected()
        True
    """

    EMITS: ClassVar[list[type[BaseEvent[Any]]]] = []

    _playwright: Any = PrivateAttr(default=None)
    _browser: Any = PrivateAttr(default=None)

    def attach_to_session(self) -> None:
        """Register as the owner of the launch and kill intents."""
        super().attach_to_session()
        self.event_bus.own(BrowserLaunchEvent, self.on_BrowserLaunchEvent)
        self.event_bus.own(BrowserKillEvent, self.on_BrowserKillEvent)

    def detach_from_session(self) -> None:
        self.event_bus.disown(BrowserLaunchEvent)
        self.event_bus.disown(BrowserKillEvent)
        super().detach_from_session()

    @property
    def is_attached(self) -> bool:
        return self.event_bus.owner_of(BrowserLaunchEvent) == self.on_BrowserLaunchEvent

    async def on_BrowserLaunchEvent(self, event: BrowserLaunchEvent) -> BrowserLaunchResult:
        """Launch a local browser.

        Args:
            event: BrowserLaunchEvent triggering the launch.

        Returns:
            BrowserLaunchResult with the Playwright browser and driver handles.

        Raises:
            Exception: If the driver or browser fails to start.
        """
        try:
            self.logger.debug('[LocalBrowserWatchdog] Received BrowserLaunchEvent, launching local browser...')
            playwright, browser = await self._launch_browser()
            self._playwright = playwright
            self._browser = browser
            return BrowserLaunchResult(browser=browser, playwright=playwright)
        except Exception as e:
            self.logger.error(f'[LocalBrowserWatchdog] Exception in on_BrowserLaunchEvent: {e}', exc_info=True)
            raise

    async def on_BrowserKillEvent(self, event: BrowserKillEvent) -> None:
        """Close the browser and stop the Playwright driver.

        Args:
            event: BrowserKillEvent triggering the kill.
        """
        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None

        if browser is None and playwright is None:
            self.logger.warning('[LocalBrowserWatchdog] No browser to kill')
            return

        if browser is not None:
            self.logger.info('[LocalBrowserWatchdog] Closing local browser')
            try:
                await browser.close()
            except Exception as e:
                self.logger.warning(f'[LocalBrowserWatchdog] Error during browser close: {e}')

        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                self.logger.debug(f'[LocalBrowserWatchdog] Error during Playwright shutdown: {e}')

    async def _launch_browser(self) -> tuple[Any, Any]:
        """Start Playwright and launch the browser configured in the profile.

        Returns:
            Tuple of (Playwright driver, Browser).
        """
        profile = self.browser_session.browser_profile
        options = profile.get_launch_options()
        self.logger.info(
            f'[LocalBrowserWatchdog] Starting {profile.browser_type} (headless={profile.headless})'
        )

        playwright = await async_playwright().start()
        try:
            browser_type = getattr(playwright, profile.browser_type)
            browser = await browser_type.launch(**options)
        except Exception:
            await playwright.stop()
            raise
        return playwright, browser
