"""Screenshot watchdog for handling screenshot requests with Playwright."""

import base64
import logging
from typing import Any, ClassVar

from bubus import BaseEvent

from tabwarden.browser.events import ScreenshotEvent
from tabwarden.browser.views import BrowserActionError
from tabwarden.browser.watchdogs.base import BaseWatchdog

logger = logging.getLogger(__name__)


class ScreenshotWatchdog(BaseWatchdog):
    """Owns ScreenshotEvent and answers it with base64 image data.

    Highlight overlays are removed after every capture, including failed ones.
    """

    EMITS: ClassVar[list[type[BaseEvent[Any]]]] = []

    def attach_to_session(self) -> None:
        """Register as the owner of ScreenshotEvent."""
        super().attach_to_session()
        self.event_bus.own(ScreenshotEvent, self.on_ScreenshotEvent)

    def detach_from_session(self) -> None:
        self.event_bus.disown(ScreenshotEvent)
        super().detach_from_session()

    @property
    def is_attached(self) -> bool:
        return self.event_bus.owner_of(ScreenshotEvent) == self.on_ScreenshotEvent

    async def on_ScreenshotEvent(self, event: ScreenshotEvent) -> str:
        """Handle screenshot request.

        Args:
            event: ScreenshotEvent with screenshot parameters

        Returns:
            Base64-encoded screenshot data

        Raises:
            SessionNotStartedError: If the session is not running.
            BrowserActionError: If the capture fails.
        """
        self.logger.debug('[ScreenshotWatchdog] Handler START - on_ScreenshotEvent called')
        page = self.browser_session.get_current_page()

        params: dict[str, Any] = {
            'type': event.format,
            'full_page': event.full_page,
        }
        if event.format == 'jpeg' and event.quality is not None:
            params['quality'] = event.quality
        if event.clip:
            params['clip'] = {
                'x': event.clip['x'],
                'y': event.clip['y'],
                'width': event.clip['width'],
                'height': event.clip['height'],
            }

        try:
            self.logger.debug(f'[ScreenshotWatchdog] Taking screenshot with params: {params}')
            data = await page.screenshot(**params)
            if not data:
                raise RuntimeError('screenshot returned no data')
            self.logger.debug('[ScreenshotWatchdog] Screenshot captured successfully')
            return base64.b64encode(data).decode('ascii')
        except Exception as e:
            self.logger.error(f'[ScreenshotWatchdog] Screenshot failed: {e}')
            raise BrowserActionError(f'Screenshot failed: {type(e).__name__}: {e}', event=event) from e
        finally:
            await self.browser_session.remove_highlights()
