"""Security watchdog for enforcing the navigation allowlist.

This module provides the SecurityWatchdog which vetoes navigation to URLs
outside ``BrowserProfile.allowed_domains`` and closes tabs that end up on
such URLs anyway (redirects, ``window.open``).

Matching always works on the parsed URL components, never on the raw
string, so URLs that smuggle an allowed domain in as credentials
(``https://example.com:pw@evil.com``) are judged by their real host.

Classes:
    SecurityWatchdog: Monitors and enforces URL access policies.
"""

import fnmatch
import logging
from typing import Any, ClassVar
from urllib.parse import SplitResult, urlsplit

from bubus import BaseEvent
from pydantic import PrivateAttr

from tabwarden.browser.events import BrowserErrorEvent, NavigateToUrlEvent, NavigationCompleteEvent, TabCreatedEvent
from tabwarden.browser.views import NavigationBlockedError
from tabwarden.browser.watchdogs.base import BaseWatchdog

logger = logging.getLogger(__name__)

# Browser-internal pages that are always reachable, compared literally
INTERNAL_URLS = frozenset(
    {
        'about:blank',
        'chrome://new-tab-page/',
        'chrome://new-tab-page',
        'chrome://newtab/',
    }
)

WEB_SCHEMES = frozenset({'http', 'https'})


class SecurityWatchdog(BaseWatchdog):
    """Monitors and enforces security policies for URL access.

    Pattern forms, tried in order (first match allows):

    - ``*.example.com``: the host or any subdomain, http/https only.
    - ``brave://*`` (ends with ``/*``): any URL starting with the part before ``*``.
    - other patterns containing ``*``: glob on the host.
    - ``https://wiki.org``: same scheme, host and port, path prefix if given.
    - ``example.com``: exact host, http/https only.

    Listens to:
        NavigationCompleteEvent: Catches redirects to blocked domains.
        TabCreatedEvent: Checks tabs opened by pages.

    Vetoes:
        NavigateToUrlEvent: Checks URL before navigation.

    Emits:
        BrowserErrorEvent: When navigation is blocked or a tab is closed.

    Example:
        >>> profile = BrowserProfile(
        ...     allowed_domains=['*.google.com', 'https://wiki.org', 'brave://*']
        ... )
    """

    LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = [
        NavigationCompleteEvent,
        TabCreatedEvent,
    ]

    VETOES: ClassVar[list[type[BaseEvent[Any]]]] = [
        NavigateToUrlEvent,
    ]

    EMITS: ClassVar[list[type[BaseEvent[Any]]]] = [
        BrowserErrorEvent,
    ]

    _glob_warning_shown: bool = PrivateAttr(default=False)

    async def before_NavigateToUrlEvent(self, event: NavigateToUrlEvent) -> None:
        """Check if navigation URL is allowed before navigation starts.

        Raises:
            NavigationBlockedError: If the URL is not allowed.
        """
        if self.is_url_allowed(event.url):
            return

        self.logger.warning(f'[SecurityWatchdog] Blocking navigation to disallowed URL: {event.url}')
        await self.event_bus.dispatch(
            BrowserErrorEvent(
                error_type='NavigationBlocked',
                message=f'Navigation blocked to disallowed URL: {event.url}',
                details={'url': event.url, 'reason': 'not_in_allowed_domains'},
            )
        )
        raise NavigationBlockedError(
            f'Navigation to {event.url} blocked by security policy',
            details={'url': event.url},
            event=event,
        )

    async def on_NavigationCompleteEvent(self, event: NavigationCompleteEvent) -> None:
        """Close the tab if navigation ended on a disallowed URL (e.g. after a redirect)."""
        if self.is_url_allowed(event.url):
            return

        self.logger.warning(f'[SecurityWatchdog] Navigation to non-allowed URL detected: {event.url}')
        await self.event_bus.dispatch(
            BrowserErrorEvent(
                error_type='NavigationBlocked',
                message=f'Navigation landed on non-allowed URL: {event.url}, closing tab',
                details={'url': event.url, 'target_id': event.target_id},
            )
        )
        await self._close_offending_tab(event.target_id, event.url)

    async def on_TabCreatedEvent(self, event: TabCreatedEvent) -> None:
        """Close tabs created with disallowed URLs (e.g. popup ads)."""
        if self.is_url_allowed(event.url):
            return

        self.logger.warning(f'[SecurityWatchdog] New tab created with disallowed URL: {event.url}')
        await self.event_bus.dispatch(
            BrowserErrorEvent(
                error_type='TabCreationBlocked',
                message=f'Tab created with non-allowed URL: {event.url}',
                details={'url': event.url, 'target_id': event.target_id},
            )
        )
        await self._close_offending_tab(event.target_id, event.url)

    async def _close_offending_tab(self, target_id: str, url: str) -> None:
        if target_id not in self.browser_session.target_ids or not self.browser_session.is_running:
            return
        try:
            await self.browser_session.close_tab(target_id)
            self.logger.info(f'[SecurityWatchdog] Closed tab with non-allowed URL: {url}')
        except Exception as e:
            self.logger.error(f'[SecurityWatchdog] Failed to close tab with non-allowed URL: {type(e).__name__} {e}')

    def is_url_allowed(self, url: str) -> bool:
        """Check if a URL is allowed by the configured patterns.

        Args:
            url: URL to check.

        Returns:
            True if URL is allowed, False otherwise. Unparsable URLs and
            URLs without a host are denied whenever a policy is active.
        """
        allowed_domains = self.browser_session.browser_profile.allowed_domains
        if not allowed_domains:
            return True

        if url in INTERNAL_URLS:
            return True

        try:
            parsed = urlsplit(url)
            host = parsed.hostname
            # Accessing .port validates it; a malformed port raises ValueError
            parsed.port
        except ValueError:
            return False

        if not host:
            return False

        for pattern in allowed_domains:
            if self._matches_pattern(pattern.strip(), url, parsed, host):
                return True
        return False

    def _matches_pattern(self, pattern: str, url: str, parsed: SplitResult, host: str) -> bool:
        """Check one allowlist pattern against an already parsed URL."""
        if not pattern:
            return False

        scheme = parsed.scheme.lower()

        if pattern.startswith('*.'):
            base_domain = pattern[2:].lower()
            return scheme in WEB_SCHEMES and (host == base_domain or host.endswith('.' + base_domain))

        if pattern.endswith('/*'):
            return url.startswith(pattern[:-1])

        if '*' in pattern:
            self._warn_glob_pattern(pattern)
            if '://' in pattern:
                pattern_scheme, _, host_glob = pattern.partition('://')
                return scheme == pattern_scheme.lower() and fnmatch.fnmatchcase(host, host_glob.rstrip('/').lower())
            return scheme in WEB_SCHEMES and fnmatch.fnmatchcase(host, pattern.lower())

        if '://' in pattern:
            return self._matches_url_pattern(pattern, parsed, host)

        return scheme in WEB_SCHEMES and host == pattern.lower()

    @staticmethod
    def _matches_url_pattern(pattern: str, parsed: SplitResult, host: str) -> bool:
        """Match a full-URL pattern by component: scheme, host, port and path prefix."""
        try:
            expected = urlsplit(pattern)
            expected_port = expected.port
            actual_port = parsed.port
        except ValueError:
            return False

        if expected.scheme.lower() != parsed.scheme.lower():
            return False
        if (expected.hostname or '') != host:
            return False
        if expected_port is not None and expected_port != actual_port:
            return False
        expected_path = expected.path.rstrip('/')
        return not expected_path or parsed.path == expected_path or parsed.path.startswith(expected_path + '/')

    def _warn_glob_pattern(self, pattern: str) -> None:
        if self._glob_warning_shown:
            return
        self._glob_warning_shown = True
        self.logger.warning(
            f'[SecurityWatchdog] Allowed domain pattern {pattern!r} uses a glob; '
            f'prefer exact hosts or "*.domain" patterns, globs can match more hosts than intended'
        )

    def update_allowed_domains(self, allowed_domains: list[str]) -> None:
        """Replace the allowlist at runtime."""
        self.browser_session.browser_profile.allowed_domains = list(allowed_domains)
        self._glob_warning_shown = False
        self.logger.info(f'[SecurityWatchdog] Allowed domains updated: {allowed_domains}')

    def get_security_config(self) -> dict[str, Any]:
        allowed_domains = list(self.browser_session.browser_profile.allowed_domains)
        return {
            'allowed_domains': allowed_domains,
            'policy_enabled': bool(allowed_domains),
            'internal_urls': sorted(INTERNAL_URLS),
        }
