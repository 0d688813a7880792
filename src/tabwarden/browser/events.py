"""Event definitions for browser session communication.

Every event is a bubus ``BaseEvent`` subclass; its kind tag is the bubus
``event_type`` (the class name), fixed at construction. Intents are requests
handled by exactly one owner; notifications report something that happened
and may be observed by any number of watchdogs.
"""

import os
from typing import Any, Literal

from bubus import BaseEvent
from pydantic import BaseModel, ConfigDict, Field

from tabwarden.browser.views import TargetID


def _get_timeout(env_var: str, default: float) -> float | None:
    """Safely parse environment variable timeout values.

    Args:
        env_var: Environment variable name (e.g. 'TIMEOUT_NavigateToUrlEvent')
        default: Default timeout value as float (e.g. 15.0)

    Returns:
        Parsed float value or the default if parsing fails
    """
    env_value = os.getenv(env_var)
    if env_value:
        try:
            parsed = float(env_value)
            if parsed < 0:
                return default
            return parsed
        except (ValueError, TypeError):
            pass

    return default


# ============================================================================
# Browser Lifecycle Events
# ============================================================================


class BrowserStartEvent(BaseEvent[None]):
    """Start the browser, its context and the initial tab."""

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserStartEvent', 60.0)


class BrowserStopEvent(BaseEvent[None]):
    """Close every tab and release the context and browser."""

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserStopEvent', 45.0)


class BrowserLaunchResult(BaseModel):
    """Substrate handles produced by launching a local browser."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    browser: Any
    playwright: Any = None


class BrowserLaunchEvent(BaseEvent[BrowserLaunchResult]):
    """Launch a local browser process."""

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserLaunchEvent', 30.0)


class BrowserKillEvent(BaseEvent[None]):
    """Close the launched browser and shut the driver down."""

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserKillEvent', 30.0)


class BrowserConnectedEvent(BaseEvent[None]):
    """Browser is running and the initial tab exists."""

    session_id: str

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserConnectedEvent', 30.0)


class BrowserStoppedEvent(BaseEvent[None]):
    """Browser has stopped."""

    reason: str | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserStoppedEvent', 30.0)


# ============================================================================
# Navigation Events
# ============================================================================


class NavigateToUrlEvent(BaseEvent[None]):
    """Navigate to a specific URL."""

    url: str
    wait_until: Literal['load', 'domcontentloaded', 'networkidle', 'commit'] = 'load'
    timeout_ms: int | None = None
    new_tab: bool = Field(default=False, description='Set True to open URL in a new tab')

    event_timeout: float | None = _get_timeout('TIMEOUT_NavigateToUrlEvent', 45.0)


class NavigationStartedEvent(BaseEvent[None]):
    """Navigation started."""

    target_id: TargetID
    url: str

    event_timeout: float | None = _get_timeout('TIMEOUT_NavigationStartedEvent', 30.0)


class NavigationCompleteEvent(BaseEvent[None]):
    """Navigation finished, successfully (status set) or not (error_message set)."""

    target_id: TargetID
    url: str
    status: int | None = None
    error_message: str | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_NavigationCompleteEvent', 30.0)


# ============================================================================
# Tab Management Events
# ============================================================================


class TabCreatedEvent(BaseEvent[None]):
    """A new tab was created."""

    target_id: TargetID
    url: str

    event_timeout: float | None = _get_timeout('TIMEOUT_TabCreatedEvent', 30.0)


class TabClosedEvent(BaseEvent[None]):
    """A tab was closed."""

    target_id: TargetID

    event_timeout: float | None = _get_timeout('TIMEOUT_TabClosedEvent', 30.0)


class SwitchTabEvent(BaseEvent[TargetID]):
    """Switch to a different tab."""

    target_id: TargetID | None = Field(default=None, description='None means switch to the most recently opened tab')

    event_timeout: float | None = _get_timeout('TIMEOUT_SwitchTabEvent', 10.0)


class CloseTabEvent(BaseEvent[None]):
    """Close a tab."""

    target_id: TargetID

    event_timeout: float | None = _get_timeout('TIMEOUT_CloseTabEvent', 30.0)


class AgentFocusChangedEvent(BaseEvent[None]):
    """Focus moved to a different tab."""

    target_id: TargetID
    url: str

    event_timeout: float | None = _get_timeout('TIMEOUT_AgentFocusChangedEvent', 10.0)


# ============================================================================
# Browser Action Events
# ============================================================================


class ClickElementEvent(BaseEvent[None]):
    """Click an element by selector or by index in the cached selector map."""

    index: int | None = None
    selector: str | None = None
    button: Literal['left', 'right', 'middle'] = 'left'
    modifiers: list[Literal['Alt', 'Control', 'ControlOrMeta', 'Meta', 'Shift']] = Field(default_factory=list)
    click_count: int = 1
    timeout_ms: int | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_ClickElementEvent', 15.0)


class TypeTextEvent(BaseEvent[None]):
    """Type text into an element by selector or index."""

    index: int | None = None
    selector: str | None = None
    text: str
    clear: bool = True
    timeout_ms: int | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_TypeTextEvent', 15.0)


class ScrollEvent(BaseEvent[None]):
    """Scroll the focused page with the mouse wheel."""

    direction: Literal['up', 'down', 'left', 'right'] = 'down'
    amount: int = Field(default=500, ge=0, description='Pixels to scroll')

    event_timeout: float | None = _get_timeout('TIMEOUT_ScrollEvent', 8.0)


class SendKeysEvent(BaseEvent[None]):
    """Press a key or key combination on the focused page."""

    keys: str  # e.g. "Enter", "Escape", "Control+a"

    event_timeout: float | None = _get_timeout('TIMEOUT_SendKeysEvent', 15.0)


class UploadFileEvent(BaseEvent[None]):
    """Set the files of a file input element."""

    index: int | None = None
    selector: str | None = None
    file_path: str

    event_timeout: float | None = _get_timeout('TIMEOUT_UploadFileEvent', 30.0)


# ============================================================================
# Browser State Events
# ============================================================================


class ScreenshotEvent(BaseEvent[str]):
    """Request to take a screenshot, answered with base64 data."""

    full_page: bool = False
    clip: dict[str, float] | None = None  # {x, y, width, height}
    format: Literal['png', 'jpeg'] = 'png'
    quality: int | None = Field(default=None, ge=0, le=100, description='JPEG quality, ignored for png')

    event_timeout: float | None = _get_timeout('TIMEOUT_ScreenshotEvent', 15.0)


class AboutBlankScreensaverShownEvent(BaseEvent[None]):
    """The idle screensaver was drawn on a blank tab."""

    target_id: TargetID

    event_timeout: float | None = _get_timeout('TIMEOUT_AboutBlankScreensaverShownEvent', 10.0)


# ============================================================================
# Dialog and Crash Events
# ============================================================================


class DialogOpenedEvent(BaseEvent[None]):
    """A native dialog (alert, confirm, prompt, beforeunload) appeared."""

    dialog_type: str
    message: str
    url: str
    target_id: TargetID | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_DialogOpenedEvent', 10.0)


class TargetCrashedEvent(BaseEvent[None]):
    """A tab's renderer crashed."""

    target_id: TargetID
    error: str = 'Target crashed'

    event_timeout: float | None = _get_timeout('TIMEOUT_TargetCrashedEvent', 10.0)


# ============================================================================
# File Download Events
# ============================================================================


class FileDownloadedEvent(BaseEvent[None]):
    """A file has been downloaded and confirmed on disk."""

    url: str
    path: str
    filename: str
    size_bytes: int
    elapsed_ms: int
    mime_type: str | None = None  # e.g., 'application/pdf'
    target_id: TargetID | None = None

    event_timeout: float | None = _get_timeout('TIMEOUT_FileDownloadedEvent', 30.0)


# ============================================================================
# Storage State Events
# ============================================================================


class SaveStorageStateEvent(BaseEvent[None]):
    """Save browser storage state (cookies, localStorage) to file."""

    path: str | None = Field(default=None, description='Optional path to save to (overrides profile setting)')

    event_timeout: float | None = _get_timeout('TIMEOUT_SaveStorageStateEvent', 30.0)


class LoadStorageStateEvent(BaseEvent[None]):
    """Load browser storage state (cookies) from file."""

    path: str | None = Field(default=None, description='Optional path to load from (overrides profile setting)')

    event_timeout: float | None = _get_timeout('TIMEOUT_LoadStorageStateEvent', 30.0)


class StorageStateSavedEvent(BaseEvent[None]):
    """Storage state has been saved."""

    path: str
    cookies_count: int = 0
    origins_count: int = 0

    event_timeout: float | None = _get_timeout('TIMEOUT_StorageStateSavedEvent', 10.0)


class StorageStateLoadedEvent(BaseEvent[None]):
    """Storage state has been loaded."""

    path: str
    cookies_count: int = 0
    origins_count: int = 0

    event_timeout: float | None = _get_timeout('TIMEOUT_StorageStateLoadedEvent', 10.0)


# ============================================================================
# Error Events
# ============================================================================


class BrowserErrorEvent(BaseEvent[None]):
    """An error occurred in the browser layer."""

    error_type: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)

    event_timeout: float | None = _get_timeout('TIMEOUT_BrowserErrorEvent', 30.0)
