"""Pytest configuration and fixtures for the tabwarden test suite.

This module provides shared configuration and fixtures used across the entire
test suite. It sets up the Python path to allow importing from tabwarden and
defines in-memory stand-ins for the Playwright objects the session drives, so
no real browser is needed.

Configuration:
    - Adds src/ directory to Python path for test imports
    - pytest-asyncio runs in auto mode (see pyproject.toml)

Fakes:
    FakeBrowser, FakeContext, FakePage, FakeLocator, FakeDialog and
    FakeDownload mirror the subset of the Playwright async API used by
    BrowserSession and its watchdogs. They record calls for assertions and
    expose knobs (``fail_urls``, ``status``, ``connected``...) to simulate
    failures.

Path Setup:
    The src directory is added to sys.path to enable imports like:
    ``from tabwarden.browser.session import BrowserSession``
"""

import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest

# Add the src directory to the path so tests can import tabwarden without installing it
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from tabwarden.browser.profile import BrowserProfile  # noqa: E402
from tabwarden.browser.session import BrowserSession  # noqa: E402


# ---------------------------------------------------------------------------
# Playwright stand-ins
# ---------------------------------------------------------------------------


class _EventEmitter:
    """Minimal ``.on()`` / ``.emit()`` like Playwright's event emitter."""

    def __init__(self):
        self._listeners: dict[str, list] = {}

    def on(self, event: str, callback) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def emit(self, event: str, *args) -> None:
        for callback in list(self._listeners.get(event, [])):
            callback(*args)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))


class FakeResponse:
    def __init__(self, status: int = 200):
        self.status = status


class FakeLocator:
    """Locator over a fixed number of matches."""

    def __init__(self, page: "FakePage", selector: str, matches: int):
        self.page = page
        self.selector = selector
        self.matches = matches
        self.calls: list[tuple[str, Any]] = []
        self.error: Exception | None = None

    @property
    def first(self) -> "FakeLocator":
        return self

    async def count(self) -> int:
        return self.matches

    async def _record(self, name: str, payload: Any) -> None:
        if self.error is not None:
            raise self.error
        self.calls.append((name, payload))
        self.page.actions.append((name, self.selector, payload))

    async def click(self, **kwargs) -> None:
        await self._record("click", kwargs)

    async def fill(self, text: str, timeout: float | None = None) -> None:
        await self._record("fill", text)

    async def press_sequentially(self, text: str, timeout: float | None = None) -> None:
        await self._record("press_sequentially", text)

    async def set_input_files(self, files) -> None:
        await self._record("set_input_files", files)


class FakeMouse:
    def __init__(self, page: "FakePage"):
        self.page = page

    async def wheel(self, delta_x: float, delta_y: float) -> None:
        self.page.actions.append(("wheel", None, (delta_x, delta_y)))


class FakeKeyboard:
    def __init__(self, page: "FakePage"):
        self.page = page

    async def press(self, keys: str) -> None:
        self.page.actions.append(("press", None, keys))


class FakePage(_EventEmitter):
    """Stand-in for ``playwright.async_api.Page``."""

    def __init__(self, context: "FakeContext", url: str = "about:blank"):
        super().__init__()
        self.context = context
        self.url = url
        self.title_text = ""
        self.closed = False
        self.status = 200
        self.no_response = False
        self.fail_urls: set[str] = set()
        self.selectors: dict[str, int] = {}
        self.actions: list[tuple[str, str | None, Any]] = []
        self.evaluated: list[tuple[str, Any]] = []
        self.evaluate_error: Exception | None = None
        self.screenshot_calls: list[dict[str, Any]] = []
        self.screenshot_error: Exception | None = None
        self.screenshot_data = b"\x89PNG\r\n\x1a\nfake"
        self.brought_to_front = 0
        self.mouse = FakeMouse(self)
        self.keyboard = FakeKeyboard(self)

    async def goto(self, url: str, wait_until: str | None = None, timeout: float | None = None):
        if url in self.fail_urls:
            raise RuntimeError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        self.url = url
        return None if self.no_response else FakeResponse(self.status)

    async def title(self) -> str:
        return self.title_text

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        self.evaluated.append((expression, arg))
        if self.evaluate_error is not None:
            raise self.evaluate_error
        if "innerWidth" in expression:
            return {
                "viewport_width": 1280,
                "viewport_height": 720,
                "page_width": 1280,
                "page_height": 2000,
                "scroll_x": 0,
                "scroll_y": 100,
            }
        if expression == "1 + 1":
            return 2
        return None

    async def screenshot(self, **kwargs) -> bytes:
        self.screenshot_calls.append(kwargs)
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return self.screenshot_data

    async def bring_to_front(self) -> None:
        self.brought_to_front += 1

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector, self.selectors.get(selector, 0))

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self in self.context.pages:
            self.context.pages.remove(self)
        self.emit("close", self)


class FakeContext(_EventEmitter):
    """Stand-in for ``playwright.async_api.BrowserContext``."""

    def __init__(self, browser: "FakeBrowser", options: dict[str, Any]):
        super().__init__()
        self.browser = browser
        self.options = options
        self.pages: list[FakePage] = []
        self.closed = False
        self.default_timeout: float | None = None
        self.default_navigation_timeout: float | None = None
        self.cookie_jar: list[dict[str, Any]] = []
        self.origins: list[dict[str, Any]] = []
        self.granted_permissions: list[str] = []
        self.grant_error: Exception | None = None

    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout: float) -> None:
        self.default_navigation_timeout = timeout

    async def new_page(self) -> FakePage:
        page = FakePage(self)
        self.pages.append(page)
        self.emit("page", page)
        return page

    def open_popup(self, url: str) -> FakePage:
        """Simulate a page opening another tab (window.open, target=_blank)."""
        page = FakePage(self, url=url)
        self.pages.append(page)
        self.emit("page", page)
        return page

    async def close(self) -> None:
        self.closed = True

    async def storage_state(self) -> dict[str, Any]:
        return {"cookies": list(self.cookie_jar), "origins": list(self.origins)}

    async def cookies(self) -> list[dict[str, Any]]:
        return list(self.cookie_jar)

    async def add_cookies(self, cookies: list[dict[str, Any]]) -> None:
        self.cookie_jar.extend(cookies)

    async def grant_permissions(self, permissions: list[str], origin: str | None = None) -> None:
        if self.grant_error is not None:
            raise self.grant_error
        self.granted_permissions.extend(permissions)


class FakeBrowser:
    """Stand-in for ``playwright.async_api.Browser``."""

    def __init__(self):
        self.contexts: list[FakeContext] = []
        self.connected = True
        self.closed = False
        self.new_context_error: Exception | None = None

    async def new_context(self, **options) -> FakeContext:
        if self.new_context_error is not None:
            raise self.new_context_error
        context = FakeContext(self, options)
        self.contexts.append(context)
        return context

    def is_connected(self) -> bool:
        return self.connected

    async def close(self) -> None:
        self.closed = True
        self.connected = False


class FakeDialog:
    """Stand-in for ``playwright.async_api.Dialog``."""

    def __init__(self, type: str = "alert", message: str = "", default_value: str = "", page: FakePage | None = None):
        self.type = type
        self.message = message
        self.default_value = default_value
        self.page = page
        self.accepted_with: str | None = None
        self.accepted = False
        self.dismissed = False
        self.error: Exception | None = None

    async def accept(self, prompt_text: str | None = None) -> None:
        if self.error is not None:
            raise self.error
        self.accepted = True
        self.accepted_with = prompt_text

    async def dismiss(self) -> None:
        if self.error is not None:
            raise self.error
        self.dismissed = True


class FakeDownload:
    """Stand-in for ``playwright.async_api.Download``."""

    def __init__(
        self,
        url: str = "https://example.com/report.pdf",
        suggested_filename: str = "report.pdf",
        content: bytes = b"%PDF-1.4 fake",
        failure: str | None = None,
        write_file: bool = True,
    ):
        self.url = url
        self.suggested_filename = suggested_filename
        self.content = content
        self._failure = failure
        self.write_file = write_file
        self.saved_to: str | None = None
        self.cancelled = False

    async def save_as(self, path: str) -> None:
        self.saved_to = path
        if self.write_file:
            Path(path).write_bytes(self.content)

    async def path(self) -> str | None:
        return self.saved_to

    async def failure(self) -> str | None:
        return self._failure

    async def cancel(self) -> None:
        self.cancelled = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


async def drain(session: BrowserSession) -> None:
    """Let fire-and-forget dispatches and watchdog tasks settle."""
    for _ in range(3):
        await session.event_bus.wait_until_idle()
        await asyncio.sleep(0)


@pytest.fixture
def fake_browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
def profile(tmp_path) -> BrowserProfile:
    """Profile tuned for tests: no dialog delay, no background ticks."""
    return BrowserProfile(
        dialog_delay_ms=0,
        downloads_path=tmp_path / "downloads",
        health_check_interval_seconds=3600,
    )


@pytest.fixture
async def session(fake_browser, profile):
    """A running BrowserSession on top of FakeBrowser."""
    browser_session = BrowserSession(browser_profile=profile, browser=fake_browser)
    await browser_session.start()
    yield browser_session
    await browser_session.stop()


@pytest.fixture
def context(session) -> FakeContext:
    return session.browser_context
