"""Browser watchdogs for event-driven browser monitoring."""

from tabwarden.browser.watchdogs.base import BaseWatchdog
from tabwarden.browser.watchdogs.aboutblank_watchdog import AboutBlankWatchdog
from tabwarden.browser.watchdogs.crash_watchdog import CrashWatchdog
from tabwarden.browser.watchdogs.downloads_watchdog import DownloadsWatchdog
from tabwarden.browser.watchdogs.local_browser_watchdog import LocalBrowserWatchdog
from tabwarden.browser.watchdogs.permissions_watchdog import PermissionsWatchdog
from tabwarden.browser.watchdogs.popups_watchdog import PopupsWatchdog
from tabwarden.browser.watchdogs.screenshot_watchdog import ScreenshotWatchdog
from tabwarden.browser.watchdogs.security_watchdog import SecurityWatchdog
from tabwarden.browser.watchdogs.storage_state_watchdog import StorageStateWatchdog

__all__ = [
    "BaseWatchdog",
    "AboutBlankWatchdog",
    "CrashWatchdog",
    "DownloadsWatchdog",
    "LocalBrowserWatchdog",
    "PermissionsWatchdog",
    "PopupsWatchdog",
    "ScreenshotWatchdog",
    "SecurityWatchdog",
    "StorageStateWatchdog",
]
