"""tabwarden - an event-driven browser session core built on Playwright and bubus."""

__version__ = "0.1.0"

from tabwarden.browser.bus import SessionEventBus
from tabwarden.browser.profile import BrowserProfile
from tabwarden.browser.session import BrowserSession
from tabwarden.logging_config import setup_logging

# Browser alias for cleaner API
Browser = BrowserSession

__all__ = [
    "Browser",
    "BrowserProfile",
    "BrowserSession",
    "SessionEventBus",
    "setup_logging",
]
