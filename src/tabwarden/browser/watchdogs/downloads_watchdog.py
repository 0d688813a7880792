"""Downloads watchdog for monitoring and verifying file downloads.

This module provides the DownloadsWatchdog which follows Playwright
``download`` events on every tab, keeps an in-memory table of in-flight
downloads and emits FileDownloadedEvent only after the file has been
confirmed on disk.

Classes:
    DownloadsWatchdog: Tracks downloads and emits completion events.
"""

import asyncio
import logging
import mimetypes
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar
from uuid import uuid4

from bubus import BaseEvent
from pydantic import PrivateAttr

from tabwarden.browser.events import BrowserStoppedEvent, FileDownloadedEvent, TabClosedEvent, TabCreatedEvent
from tabwarden.browser.views import DownloadVerificationError, TargetID
from tabwarden.browser.watchdogs.base import BaseWatchdog

logger = logging.getLogger(__name__)


@dataclass
class DownloadInfo:
    """One in-flight download."""

    url: str
    filename: str
    target_id: TargetID | None
    start_time: float
    received_bytes: int = 0
    expected_bytes: int | None = None


class DownloadsWatchdog(BaseWatchdog):
    """Monitors downloads and handles file download events.

    Lifecycle of a table entry: created by ``handle_download_will_begin``,
    updated by ``handle_download_progress``, removed by
    ``handle_download_completed`` or by the timeout fallback. Entries of a
    closed tab are dropped; the whole table is cleared when the browser stops.

    Listens to:
        TabCreatedEvent: Hooks the tab's download events.
        TabClosedEvent: Drops downloads attributed to the tab.
        BrowserStoppedEvent: Cancels pending tasks and clears the table.

    Emits:
        FileDownloadedEvent: When a download is confirmed on disk.

    Configuration (in BrowserProfile):
        downloads_path: Directory downloads are saved to.
        auto_accept_downloads: Cancel downloads when False.
        max_download_timeout_ms: Age after which an unfinished entry is dropped.
    """

    LISTENS_TO: ClassVar[list[type[BaseEvent[Any]]]] = [
        TabCreatedEvent,
        TabClosedEvent,
        BrowserStoppedEvent,
    ]

    EMITS: ClassVar[list[type[BaseEvent[Any]]]] = [
        FileDownloadedEvent,
    ]

    # Private state
    _active_downloads: dict[str, DownloadInfo] = PrivateAttr(default_factory=dict)
    _timeout_tasks: dict[str, asyncio.Task] = PrivateAttr(default_factory=dict)
    _download_tasks: set[asyncio.Task] = PrivateAttr(default_factory=set)
    _hooked_pages: set[int] = PrivateAttr(default_factory=set)
    _completed_count: int = PrivateAttr(default=0)
    _failed_count: int = PrivateAttr(default=0)

    @property
    def active_downloads(self) -> dict[str, DownloadInfo]:
        return dict(self._active_downloads)

    async def on_TabCreatedEvent(self, event: TabCreatedEvent) -> None:
        """Hook Playwright download events for a new tab."""
        try:
            page = self.browser_session.get_page(event.target_id)
        except Exception as e:
            self.logger.debug(f'[DownloadsWatchdog] Tab {event.target_id} vanished before hooking downloads: {e}')
            return

        if id(page) in self._hooked_pages:
            return
        self._hooked_pages.add(id(page))

        target_id = event.target_id

        def on_download(download: Any) -> None:
            task = asyncio.create_task(self._handle_playwright_download(download, target_id))
            self._download_tasks.add(task)
            task.add_done_callback(self._download_tasks.discard)

        page.on('download', on_download)
        self.logger.debug(f'[DownloadsWatchdog] Watching downloads for tab #{target_id[-4:]}')

    async def on_TabClosedEvent(self, event: TabClosedEvent) -> None:
        """Drop in-flight downloads attributed to the closed tab."""
        stale = [guid for guid, info in self._active_downloads.items() if info.target_id == event.target_id]
        for guid in stale:
            self._discard(guid)
        if stale:
            self.logger.debug(f'[DownloadsWatchdog] Dropped {len(stale)} downloads of closed tab #{event.target_id[-4:]}')

    async def on_BrowserStoppedEvent(self, event: BrowserStoppedEvent) -> None:
        """Clean up when browser stops."""
        for task in list(self._download_tasks):
            if not task.done():
                task.cancel()
        if self._download_tasks:
            await asyncio.gather(*self._download_tasks, return_exceptions=True)
        self._download_tasks.clear()
        self.cancel_all_downloads()
        self._hooked_pages.clear()

    async def _handle_playwright_download(self, download: Any, target_id: TargetID) -> None:
        """Drive one Playwright Download object through the table."""
        guid = uuid4().hex
        filename = download.suggested_filename or 'download'
        self.handle_download_will_begin(guid, url=download.url, filename=filename, target_id=target_id)

        if not self.browser_session.browser_profile.auto_accept_downloads:
            self.logger.info(f'[DownloadsWatchdog] Cancelling download {filename}, auto_accept_downloads is off')
            self._discard(guid)
            try:
                await download.cancel()
            except Exception as e:
                self.logger.debug(f'[DownloadsWatchdog] Failed to cancel download {filename}: {e}')
            return

        try:
            downloads_path = self.browser_session.browser_profile.downloads_path
            if downloads_path:
                target_dir = Path(downloads_path).expanduser().resolve()
                target_dir.mkdir(parents=True, exist_ok=True)
                file_path = target_dir / filename
                await download.save_as(str(file_path))
            else:
                saved = await download.path()
                file_path = Path(saved) if saved else None

            failure = await download.failure()
            if failure or file_path is None:
                self.logger.warning(f'[DownloadsWatchdog] Download of {filename} failed: {failure}')
                self._failed_count += 1
                self._discard(guid)
                return
        except asyncio.CancelledError:
            self._discard(guid)
            raise
        except Exception as e:
            self.logger.warning(f'[DownloadsWatchdog] Download of {filename} failed: {type(e).__name__}: {e}')
            self._failed_count += 1
            self._discard(guid)
            return

        await self.handle_download_completed(guid, str(file_path))

    def handle_download_will_begin(
        self,
        guid: str,
        url: str,
        filename: str,
        target_id: TargetID | None = None,
        expected_bytes: int | None = None,
    ) -> None:
        """Record a starting download and schedule its timeout fallback."""
        self._active_downloads[guid] = DownloadInfo(
            url=url,
            filename=filename,
            target_id=target_id,
            start_time=time.monotonic(),
            expected_bytes=expected_bytes,
        )
        self._timeout_tasks[guid] = asyncio.create_task(self._expire_download(guid))
        self.logger.debug(f'[DownloadsWatchdog] Download will begin: {filename} from {url}')

    def handle_download_progress(self, guid: str, received_bytes: int, expected_bytes: int | None = None) -> None:
        """Update byte counts of an in-flight download. Unknown ids are ignored."""
        info = self._active_downloads.get(guid)
        if info is None:
            return
        info.received_bytes = received_bytes
        if expected_bytes is not None:
            info.expected_bytes = expected_bytes

    async def handle_download_completed(self, guid: str, file_path: str) -> FileDownloadedEvent | None:
        """Verify a finished download on disk and announce it.

        The table entry is removed whatever the outcome.

        Returns:
            The dispatched FileDownloadedEvent, or None if the file could not
            be verified (or the download is unknown).
        """
        info = self._active_downloads.get(guid)
        if info is None:
            self.logger.debug(f'[DownloadsWatchdog] Completion for unknown download {guid}, ignoring')
            return None

        try:
            size_bytes = self._verify_file(file_path)
        except DownloadVerificationError as e:
            self.logger.warning(f'[DownloadsWatchdog] {e}')
            self._failed_count += 1
            return None
        else:
            path = Path(file_path)
            elapsed_ms = int((time.monotonic() - info.start_time) * 1000)
            mime_type, _ = mimetypes.guess_type(path.name)
            event = FileDownloadedEvent(
                url=info.url,
                path=str(path),
                filename=path.name,
                size_bytes=size_bytes,
                elapsed_ms=elapsed_ms,
                mime_type=mime_type,
                target_id=info.target_id,
            )
            self._completed_count += 1
            self.logger.info(f'[DownloadsWatchdog] Download complete: {path.name} ({size_bytes} bytes, {elapsed_ms}ms)')
            await self.event_bus.dispatch(event)
            return event
        finally:
            self._discard(guid)

    @staticmethod
    def _verify_file(file_path: str) -> int:
        """Return the size of a downloaded file.

        Raises:
            DownloadVerificationError: If the file is missing or unreadable.
        """
        path = Path(file_path)
        try:
            stat = path.stat()
        except OSError as e:
            raise DownloadVerificationError(
                f'Downloaded file could not be verified: {file_path} ({type(e).__name__})',
                details={'path': file_path},
            ) from e
        if not path.is_file() or stat.st_size < 0:
            raise DownloadVerificationError(f'Downloaded path is not a regular file: {file_path}', details={'path': file_path})
        return stat.st_size

    async def _expire_download(self, guid: str) -> None:
        timeout_s = self.browser_session.browser_profile.max_download_timeout_ms / 1000
        await asyncio.sleep(timeout_s)
        info = self._active_downloads.get(guid)
        if info is None:
            return
        self.logger.warning(
            f'[DownloadsWatchdog] Download {info.filename} did not complete within {timeout_s:.0f}s, dropping it'
        )
        self._timeout_tasks.pop(guid, None)
        self._active_downloads.pop(guid, None)

    def _discard(self, guid: str) -> None:
        self._active_downloads.pop(guid, None)
        task = self._timeout_tasks.pop(guid, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def cancel_all_downloads(self) -> None:
        """Forget every in-flight download and cancel their timeout tasks."""
        for guid in list(self._active_downloads):
            self._discard(guid)
        for task in self._timeout_tasks.values():
            task.cancel()
        self._timeout_tasks.clear()

    def get_download_stats(self) -> dict[str, Any]:
        now = time.monotonic()
        return {
            'active': len(self._active_downloads),
            'completed': self._completed_count,
            'failed': self._failed_count,
            'downloads': [
                {
                    'url': info.url,
                    'filename': info.filename,
                    'target_id': info.target_id,
                    'received_bytes': info.received_bytes,
                    'expected_bytes': info.expected_bytes,
                    'elapsed_ms': int((now - info.start_time) * 1000),
                }
                for info in self._active_downloads.values()
            ],
        }
