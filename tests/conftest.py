"""Pytest configuration and fixtures."""

import threading
from types import SimpleNamespace

import pytest

from drivewatch.drive.client import ChangeBatch, Channel, DocumentMetadata
from drivewatch.errors import CursorInvalidated, FetchError, RegistrationError
from drivewatch.monitor import (
    ChangeReconciler,
    ContentNormalizer,
    ModificationLedger,
    NotificationDispatcher,
    SubscriberHub,
    WatchRegistry,
)

CSV = "text/csv"
FOLDER = "application/vnd.google-apps.folder"


class FakeDriveClient:
    """
    In-memory stand-in for DriveClient.

    Files are plain dicts; change listings are ChangeBatch objects keyed by
    the cursor they are listed from.
    """

    def __init__(self):
        self.files: dict[str, dict] = {}
        self.content: dict[str, bytes] = {}
        self.documents: dict[str, dict] = {}
        self.sheets: dict[str, dict[str, bytes | None]] = {}
        self.changes: dict[str, ChangeBatch] = {}
        self.start_tokens = ["start-1", "start-2", "start-3"]
        self.failing_metadata: set[str] = set()
        self.failing_content: set[str] = set()
        self.invalid_cursors: set[str] = set()
        self.reject_watch = False
        self.calls: list[tuple] = []
        self.stopped: list[str] = []
        self._lock = threading.Lock()
        self._channel_seq = 0

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def calls_to(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    # Test setup helpers

    def add_file(self, file_id, name, modified, parents=("folder-1",), mime_type=CSV, text=None):
        self.files[file_id] = {
            "id": file_id,
            "name": name,
            "mimeType": mime_type,
            "modifiedTime": modified,
            "parents": list(parents),
        }
        self.content[file_id] = (text if text is not None else f"{name},{modified}").encode()

    def touch(self, file_id, modified, text=None):
        self.files[file_id]["modifiedTime"] = modified
        if text is not None:
            self.content[file_id] = text.encode()

    # DriveClient interface

    def _channel(self, channel_id, expiration_ms):
        with self._lock:
            self._channel_seq += 1
            return Channel(id=channel_id, resource_id=f"res-{self._channel_seq}", expiration=expiration_ms)

    def watch_file(self, file_id, channel_id, address, expiration_ms):
        self._record("watch_file", file_id)
        if self.reject_watch:
            raise RegistrationError(f"Watch request {channel_id} rejected")
        return self._channel(channel_id, expiration_ms)

    def watch_changes(self, page_token, channel_id, address, expiration_ms):
        self._record("watch_changes", page_token)
        if self.reject_watch:
            raise RegistrationError(f"Watch request {channel_id} rejected")
        return self._channel(channel_id, expiration_ms)

    def stop_channel(self, channel_id, resource_id):
        self._record("stop_channel", resource_id)
        self.stopped.append(resource_id)

    def get_file_metadata(self, file_id):
        self._record("get_file_metadata", file_id)
        if file_id in self.failing_metadata:
            raise FetchError(f"metadata for {file_id} failed", status_code=500)
        if file_id not in self.files:
            raise FetchError(f"{file_id} not found", status_code=404)
        return DocumentMetadata.from_api(self.files[file_id])

    def list_folder(self, folder_id):
        self._record("list_folder", folder_id)
        for f in list(self.files.values()):
            if folder_id in f["parents"] and not f.get("trashed"):
                yield DocumentMetadata.from_api(f)

    def get_changes_start_token(self):
        self._record("get_changes_start_token")
        return self.start_tokens.pop(0)

    def get_changes(self, page_token):
        self._record("get_changes", page_token)
        if page_token in self.invalid_cursors:
            raise CursorInvalidated(page_token, status_code=410)
        if page_token not in self.changes:
            return ChangeBatch(changes=[], new_start_page_token=page_token)
        return self.changes[page_token]

    def download(self, file_id):
        self._record("download", file_id)
        if file_id in self.failing_content:
            raise FetchError(f"download of {file_id} failed", status_code=500)
        return self.content[file_id]

    def get_document(self, document_id):
        self._record("get_document", document_id)
        return self.documents[document_id]

    def get_sheet_titles(self, spreadsheet_id):
        self._record("get_sheet_titles", spreadsheet_id)
        return list(self.sheets[spreadsheet_id])

    def export_sheet_csv(self, spreadsheet_id, sheet_title):
        self._record("export_sheet_csv", spreadsheet_id, sheet_title)
        data = self.sheets[spreadsheet_id][sheet_title]
        if data is None:
            raise FetchError(f"export of {sheet_title} failed", status_code=500)
        return data


class RecordingSubscriber:
    """Subscriber that keeps every message it is sent."""

    def __init__(self):
        self.messages: list[dict] = []

    def send(self, message: dict):
        self.messages.append(message)

    @property
    def events(self) -> list[dict]:
        return [m["data"] for m in self.messages if m["event"] == "file-updated"]


@pytest.fixture
def drive():
    return FakeDriveClient()


@pytest.fixture
def monitor(drive):
    """A fully wired reconciler over the fake client, with one subscriber."""
    hub = SubscriberHub()
    subscriber = RecordingSubscriber()
    hub.subscribe(subscriber)
    ledger = ModificationLedger()
    registry = WatchRegistry(drive, "https://example.test/api/monitor/notifications", 3600, clock=lambda: 1000.0)
    dispatcher = NotificationDispatcher(hub)
    reconciler = ChangeReconciler(
        drive, registry, ledger, ContentNormalizer(drive), dispatcher, max_workers=4
    )
    return SimpleNamespace(
        drive=drive,
        hub=hub,
        subscriber=subscriber,
        ledger=ledger,
        registry=registry,
        dispatcher=dispatcher,
        reconciler=reconciler,
    )
