"""AboutBlank watchdog keeping at least one tab alive and marking idle blank tabs."""

import logging
from typing import Any, ClassVar

from bubus import BaseEvent
from pydantic import PrivateAttr

from tabwarden.browser.events import (
    AboutBlankScreensaverShownEvent,
    BrowserStopEvent,
    BrowserStoppedEvent,
    TabClosedEvent,
    TabCreatedEvent,
)
from tabwarden.browser.views import TargetID
from tabwarden.browser.watchdogs.base import BaseWatchdog

logger = logging.getLogger(__name__)

SCREENSAVER_ELEMENT_ID = 'tabwarden-idle-screensaver'

# Full-window overlay with a slowly bouncing session label; removed by any navigation
_SCREENSAVER_JS = """(label) => {
    if (document.getElementById('%(id)s')) { return; }
    const root = document.createElement('div');
    root.id = '%(id)s';
    root.style.cssText = 'position:fixed;inset:0;background:#000;z-index:2147483647;overflow:hidden;';
    const badge = document.createElement('div');
    badge.textContent = 'tabwarden ' + label;
    badge.style.cssText = 'position:absolute;font:600 20px sans-serif;color:#8ab4f8;padding:8px 14px;border:2px solid #8ab4f8;border-radius:8px;';
    root.appendChild(badge);
    (document.body || document.documentElement).appendChild(root);
    let x = 40, y = 40, dx = 2, dy = 2;
    const step = () => {
        if (!root.isConnected) { return; }
        const maxX = window.innerWidth - badge.offsetWidth;
        const maxY = window.innerHeight - badge.offsetHeight;
        if (x <= 0 || x >= maxX) { dx = -dx; }
        if (y <= 0 || y >= maxY) { dy = -dy; }
        x = Math.min(Math.max(x + dx, 0), maxX);
        y = Math.min(Math.max(y + dy, 0), maxY);
        badge.style.transform = `translate(${x}px, ${y}px)`;
        requestAnimationFrame(step);
    };
    requestAnimationFrame(step);
}""" % {'id': SCREENSAVER_ELEMENT_ID}


class AboutBlankWatchdog(BaseWatchdog):
    """Handles about:blank tabs.

    When the last tab closes while the session is running, a fresh
    ``about:blank`` tab is opened through the session so that exactly one tab
    exists afterwards. With ``show_blank_screensaver`` enabled, blank tabs get
    an idle indicator.

    Listens to:
        BrowserStoppedEvent: Reset for a later restart.
        TabCreatedEvent: Show the screensaver on blank tabs.
        TabClosedEvent: Recreate a blank tab when none remain.

    Observes before:
        BrowserStopEvent: Stop recreating tabs once shutdown begins.

    Emits:
        AboutBlankScreensaverShownEvent: After the screensaver is drawn.
    """

    LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = [
        BrowserStoppedEvent,
        TabCreatedEvent,
        TabClosedEvent,
    ]

    # Observed before the session starts tearing tabs down, never vetoed
    VETOES: ClassVar[list[type[BaseEvent[Any]]]] = [
        BrowserStopEvent,
    ]

    EMITS: ClassVar[list[type[BaseEvent[Any]]]] = [
        AboutBlankScreensaverShownEvent,
    ]

    _stopping: bool = PrivateAttr(default=False)

    async def before_BrowserStopEvent(self, event: BrowserStopEvent) -> None:
        self._stopping = True

    async def on_BrowserStoppedEvent(self, event: BrowserStoppedEvent) -> None:
        self._stopping = False

    async def on_TabCreatedEvent(self, event: TabCreatedEvent) -> None:
        if event.url == 'about:blank' and self.browser_session.browser_profile.show_blank_screensaver:
            await self.show_screensaver(event.target_id)

    async def on_TabClosedEvent(self, event: TabClosedEvent) -> None:
        """Open a blank tab if the closed one was the last."""
        if self._stopping or not self.browser_session.is_running:
            return
        if self.browser_session.target_ids:
            return

        self.logger.debug('[AboutBlankWatchdog] Last tab closed, opening about:blank to keep the session alive')
        try:
            await self.browser_session.navigate_to('about:blank', new_tab=True)
        except Exception as e:
            self.logger.error(f'[AboutBlankWatchdog] Failed to recreate about:blank tab: {type(e).__name__}: {e}')

    async def show_screensaver(self, target_id: TargetID) -> bool:
        """Draw the idle indicator on a blank tab. Returns True if it was shown."""
        try:
            page = self.browser_session.get_page(target_id)
            if page.url != 'about:blank':
                return False
            await page.evaluate(_SCREENSAVER_JS, self.browser_session.id[-4:])
        except Exception as e:
            self.logger.debug(f'[AboutBlankWatchdog] Failed to show screensaver on #{target_id[-4:]}: {e}')
            return False

        await self.event_bus.dispatch(AboutBlankScreensaverShownEvent(target_id=target_id))
        return True
