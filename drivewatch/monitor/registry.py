"""
Watch channel registry for Drive Watch.

Tracks the active push channels: any number of single-file channels (one
per document) and at most one folder channel, which also carries the
Changes API cursor for that folder.
"""

import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from ..errors import MonitorError

logger = logging.getLogger(__name__)


class ChannelKind(str, Enum):
    FILE = "file"
    FOLDER = "folder"


@dataclass(frozen=True)
class ChannelHandle:
    """One registered push channel."""
    kind: ChannelKind
    target_id: str
    channel_id: str
    resource_id: str
    expiration: Optional[int] = None  # epoch ms
    created_at: int = 0  # epoch ms

    @property
    def expiration_datetime(self) -> Optional[datetime]:
        if self.expiration is None:
            return None
        return datetime.fromtimestamp(self.expiration / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class FolderWatch:
    """The single monitored folder and its change cursor."""
    handle: ChannelHandle
    cursor: str

    @property
    def folder_id(self) -> str:
        return self.handle.target_id


class WatchRegistry:
    """
    Registers, renews and stops watch channels with the remote store.

    State changes happen under one lock; remote calls happen outside it.
    Only one folder can be monitored: registering another folder replaces
    the current one and discards its cursor.
    """

    def __init__(
        self,
        client,
        callback_address: str,
        channel_ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.callback_address = callback_address
        self.channel_ttl_seconds = channel_ttl_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._files: dict[str, ChannelHandle] = {}
        self._folder: Optional[FolderWatch] = None

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _expiration_ms(self, now_ms: int) -> int:
        return now_ms + self.channel_ttl_seconds * 1000

    def _stop_quietly(self, handle: ChannelHandle):
        """Stop a channel we no longer track; failure only leaves it to expire."""
        try:
            self.client.stop_channel(handle.channel_id, handle.resource_id)
        except MonitorError as e:
            logger.warning("Could not stop channel %s for %s: %s", handle.channel_id, handle.target_id, e)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def _open_file_channel(self, document_id: str) -> ChannelHandle:
        now = self._now_ms()
        channel = self.client.watch_file(
            document_id, f"watch-{document_id}-{now}", self.callback_address, self._expiration_ms(now)
        )
        return ChannelHandle(
            kind=ChannelKind.FILE,
            target_id=document_id,
            channel_id=channel.id,
            resource_id=channel.resource_id,
            expiration=channel.expiration,
            created_at=now,
        )

    def register_file_watch(self, document_id: str) -> ChannelHandle:
        """
        Open a channel for one document, replacing any previous one.

        Raises:
            RegistrationError: if the remote store rejects the request
        """
        handle = self._open_file_channel(document_id)
        with self._lock:
            previous = self._files.get(document_id)
            self._files[document_id] = handle
        if previous is not None:
            self._stop_quietly(previous)
        logger.info("Watching file %s (channel %s)", document_id, handle.channel_id)
        return handle

    def register_folder_watch(self, folder_id: str, initial_scan: Callable[[str], None]) -> tuple[ChannelHandle, str]:
        """
        Establish a cursor, scan the folder, then open the changes channel.

        The cursor is taken before the scan so anything modified while
        scanning shows up in the first change listing.
        """
        cursor = self.client.get_changes_start_token()
        initial_scan(folder_id)

        now = self._now_ms()
        channel = self.client.watch_changes(
            cursor, f"watch-changes-{now}", self.callback_address, self._expiration_ms(now)
        )
        handle = ChannelHandle(
            kind=ChannelKind.FOLDER,
            target_id=folder_id,
            channel_id=channel.id,
            resource_id=channel.resource_id,
            expiration=channel.expiration,
            created_at=now,
        )

        with self._lock:
            previous = self._folder
            self._folder = FolderWatch(handle, cursor)
        if previous is not None:
            if previous.folder_id != folder_id:
                logger.warning(
                    "Only one folder can be monitored: replacing %s with %s",
                    previous.folder_id, folder_id,
                )
            self._stop_quietly(previous.handle)
        logger.info("Watching folder %s from cursor %s (channel %s)", folder_id, cursor, handle.channel_id)
        return handle, cursor

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def file_watch(self, document_id: str) -> Optional[ChannelHandle]:
        with self._lock:
            return self._files.get(document_id)

    def file_watches(self) -> list[ChannelHandle]:
        with self._lock:
            return list(self._files.values())

    def folder_watch(self) -> Optional[FolderWatch]:
        with self._lock:
            return self._folder

    def is_active(self, handle: ChannelHandle) -> bool:
        """True if handle is still the registered channel for its target."""
        with self._lock:
            return self._current(handle) == handle

    def _current(self, handle: ChannelHandle) -> Optional[ChannelHandle]:
        if handle.kind == ChannelKind.FILE:
            return self._files.get(handle.target_id)
        if self._folder is not None and self._folder.folder_id == handle.target_id:
            return self._folder.handle
        return None

    def expiring(self, within_seconds: int) -> list[ChannelHandle]:
        """Channels whose expiration falls within the next within_seconds."""
        deadline = self._now_ms() + within_seconds * 1000
        with self._lock:
            handles = list(self._files.values())
            if self._folder is not None:
                handles.append(self._folder.handle)
        return [h for h in handles if h.expiration is not None and h.expiration <= deadline]

    # ------------------------------------------------------------------
    # Cursor
    # ------------------------------------------------------------------

    def advance_cursor(self, folder_id: str, from_cursor: str, new_cursor: str) -> bool:
        """
        Replace the folder cursor, but only if it is still from_cursor.

        Returns False (and leaves the cursor alone) if the folder watch was
        stopped, replaced, or already advanced by someone else.
        """
        if not new_cursor:
            return False
        with self._lock:
            watch = self._folder
            if watch is None or watch.folder_id != folder_id or watch.cursor != from_cursor:
                return False
            self._folder = replace(watch, cursor=new_cursor)
            return True

    # ------------------------------------------------------------------
    # Renewal and stop
    # ------------------------------------------------------------------

    def renew(self, handle: ChannelHandle) -> Optional[ChannelHandle]:
        """
        Open a fresh channel for handle's target and retire the old one.

        Returns None without touching anything if handle is no longer the
        registered channel (e.g. the watch was stopped meanwhile).
        """
        if not self.is_active(handle):
            return None

        if handle.kind == ChannelKind.FILE:
            fresh = self._open_file_channel(handle.target_id)
        else:
            watch = self.folder_watch()
            if watch is None:
                return None
            now = self._now_ms()
            channel = self.client.watch_changes(
                watch.cursor, f"watch-changes-{now}", self.callback_address, self._expiration_ms(now)
            )
            fresh = ChannelHandle(
                kind=ChannelKind.FOLDER,
                target_id=handle.target_id,
                channel_id=channel.id,
                resource_id=channel.resource_id,
                expiration=channel.expiration,
                created_at=now,
            )

        with self._lock:
            still_current = self._current(handle) == handle
            if still_current:
                if handle.kind == ChannelKind.FILE:
                    self._files[handle.target_id] = fresh
                else:
                    self._folder = replace(self._folder, handle=fresh)

        if not still_current:
            # Stopped or replaced while we were talking to the store
            self._stop_quietly(fresh)
            return None

        self._stop_quietly(handle)
        logger.info("Renewed %s channel for %s until %s", handle.kind.value, handle.target_id, fresh.expiration_datetime)
        return fresh

    def stop(self, handle: ChannelHandle) -> bool:
        """
        Forget a channel and cancel it with the remote store.

        The registry entry goes first so notifications arriving from now on
        are ignored even if the remote cancel fails.
        """
        with self._lock:
            if self._current(handle) != handle:
                return False
            if handle.kind == ChannelKind.FILE:
                del self._files[handle.target_id]
            else:
                self._folder = None
        self._stop_quietly(handle)
        logger.info("Stopped %s watch for %s", handle.kind.value, handle.target_id)
        return True
