"""Event-driven browser session, its events and watchdogs."""

from tabwarden.browser.bus import SessionEventBus
from tabwarden.browser.profile import BrowserProfile, ProxySettings, ViewportSize
from tabwarden.browser.session import BrowserSession, SessionState
from tabwarden.browser.views import (
    BrowserActionError,
    BrowserError,
    BrowserStartError,
    BrowserStateSummary,
    DialogHandlingError,
    DownloadVerificationError,
    ElementNotFoundError,
    HandlerConflictError,
    NavigationBlockedError,
    PageInfo,
    SessionNotStartedError,
    TabInfo,
    TabNotFoundError,
    URLNotAllowedError,
)

__all__ = [
    "SessionEventBus",
    "BrowserProfile",
    "ProxySettings",
    "ViewportSize",
    "BrowserSession",
    "SessionState",
    "BrowserActionError",
    "BrowserError",
    "BrowserStartError",
    "BrowserStateSummary",
    "DialogHandlingError",
    "DownloadVerificationError",
    "ElementNotFoundError",
    "HandlerConflictError",
    "NavigationBlockedError",
    "PageInfo",
    "SessionNotStartedError",
    "TabInfo",
    "TabNotFoundError",
    "URLNotAllowedError",
]
