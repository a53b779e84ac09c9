"""
Change reconciliation for Drive Watch.

Push notifications only say "something changed". ChangeReconciler works
out what actually changed, using file metadata for single-file watches and
the Changes API cursor for the monitored folder, and publishes content only
for documents whose modification marker moved.

It owns the ledger and the registry: nothing else writes to them.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..drive.client import Change, DocumentMetadata
from ..drive.utils import CHANGES_RESOURCE, FILE_RESOURCE, parse_resource_uri
from ..errors import AuthError, CursorInvalidated, FetchError, MonitorError
from .dispatcher import BROADCAST, NotificationDispatcher, Scope
from .ledger import ModificationLedger, Observation
from .locks import KeyedLocks
from .normalizer import ContentNormalizer
from .registry import ChannelHandle, WatchRegistry

logger = logging.getLogger(__name__)

# Drive sends this once when a channel is created; it carries no change
SYNC_STATE = "sync"


class TargetState(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"
    RECONCILING = "reconciling"


class Outcome(str, Enum):
    DISPATCHED = "dispatched"
    EMPTY = "empty"
    UNCHANGED = "unchanged"
    REMOVED = "removed"
    OUTSIDE = "outside"
    FAILED = "failed"


@dataclass
class CycleReport:
    """What one notification cycle did, per document."""
    kind: str
    outcomes: dict[str, Outcome] = field(default_factory=dict)
    cursor: Optional[str] = None
    rescanned: bool = False
    error: Optional[str] = None

    def ids(self, outcome: Outcome) -> list[str]:
        return [doc_id for doc_id, o in self.outcomes.items() if o == outcome]

    @property
    def dispatched(self) -> list[str]:
        return self.ids(Outcome.DISPATCHED)


def _folder_key(folder_id: str) -> str:
    return f"folder:{folder_id}"


class ChangeReconciler:
    """Turns watch setup requests and push notifications into published updates."""

    def __init__(
        self,
        client,
        registry: WatchRegistry,
        ledger: ModificationLedger,
        normalizer: ContentNormalizer,
        dispatcher: NotificationDispatcher,
        max_workers: int = 8,
    ):
        self.client = client
        self.registry = registry
        self.ledger = ledger
        self.normalizer = normalizer
        self.dispatcher = dispatcher
        self.max_workers = max_workers
        self._locks = KeyedLocks()
        self._in_flight_lock = threading.Lock()
        self._in_flight: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Target state
    # ------------------------------------------------------------------

    @contextmanager
    def _reconciling(self, key: str):
        """Serialize work on one target and mark it as reconciling meanwhile."""
        with self._locks.hold(key):
            with self._in_flight_lock:
                self._in_flight[key] = self._in_flight.get(key, 0) + 1
            try:
                yield
            finally:
                with self._in_flight_lock:
                    self._in_flight[key] -= 1
                    if not self._in_flight[key]:
                        del self._in_flight[key]

    def state(self, target_id: str) -> TargetState:
        """State of a document or folder target."""
        with self._in_flight_lock:
            if target_id in self._in_flight or _folder_key(target_id) in self._in_flight:
                return TargetState.RECONCILING
        watch = self.registry.folder_watch()
        if self.registry.file_watch(target_id) or (watch and watch.folder_id == target_id):
            return TargetState.WATCHING
        return TargetState.IDLE

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup_file_monitoring(self, document_id: str) -> ChannelHandle:
        """
        Watch a single document and send its current content to its room.

        Raises:
            AuthError, RegistrationError, FetchError: reported to the caller
            (a failed metadata fetch also stops the new channel)
        """
        handle = self.registry.register_file_watch(document_id)
        with self._reconciling(document_id):
            try:
                metadata = self.client.get_file_metadata(document_id)
            except MonitorError:
                # Nothing was seeded; do not leave a live channel behind
                self.registry.stop(handle)
                raise
            self.ledger.observe(document_id, metadata.name, metadata.modified_time)
            self._publish(metadata, Scope.document(document_id))
        return handle

    def setup_folder_monitoring(self, folder_id: str) -> tuple[ChannelHandle, str]:
        """
        Watch a folder: scan it, broadcast every document, then open the
        changes channel.
        """
        def initial_scan(target: str):
            with self._reconciling(_folder_key(target)):
                self._scan(target, publish_all=True)

        return self.registry.register_folder_watch(folder_id, initial_scan)

    def renew(self, handle: ChannelHandle) -> Optional[ChannelHandle]:
        return self.registry.renew(handle)

    def renew_file(self, document_id: str) -> Optional[ChannelHandle]:
        handle = self.registry.file_watch(document_id)
        if handle is None:
            return None
        return self.registry.renew(handle)

    def renew_expiring(self, within_seconds: int) -> list[ChannelHandle]:
        """Renew every channel expiring soon. Failures are logged and skipped."""
        renewed = []
        for handle in self.registry.expiring(within_seconds):
            try:
                fresh = self.registry.renew(handle)
            except MonitorError as e:
                logger.error("Could not renew channel for %s: %s", handle.target_id, e)
                continue
            if fresh is not None:
                renewed.append(fresh)
        return renewed

    def stop_file_monitoring(self, document_id: str) -> bool:
        handle = self.registry.file_watch(document_id)
        if handle is None or not self.registry.stop(handle):
            return False
        self.ledger.forget(document_id)
        return True

    def stop_folder_monitoring(self, folder_id: str) -> bool:
        watch = self.registry.folder_watch()
        if watch is None or watch.folder_id != folder_id:
            return False
        return self.registry.stop(watch.handle)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def handle_notification(self, resource_uri: str, resource_state: Optional[str] = None) -> CycleReport:
        """
        Reconcile one push notification. Never raises: failures end the
        cycle and the next notification starts over.
        """
        if resource_state == SYNC_STATE:
            logger.debug("Ignoring channel sync message for %s", resource_uri)
            return CycleReport(kind="sync")

        ref = parse_resource_uri(resource_uri)
        if ref is None:
            logger.info("Ignoring notification for unrecognized resource %r", resource_uri)
            return CycleReport(kind="ignored")

        report = CycleReport(kind=ref.kind)
        try:
            if ref.kind == FILE_RESOURCE:
                self._handle_file(ref.file_id, report)
            elif ref.kind == CHANGES_RESOURCE:
                self._handle_folder(report)
        except AuthError as e:
            logger.error("Skipping notification cycle, credential unusable: %s", e)
            report.error = str(e)
        except MonitorError as e:
            logger.error("Notification cycle for %s failed: %s", resource_uri, e)
            report.error = str(e)
        except Exception as e:
            logger.error("Notification cycle for %s crashed: %s", resource_uri, e, exc_info=True)
            report.error = str(e)
        return report

    def _handle_file(self, document_id: str, report: CycleReport):
        if self.registry.file_watch(document_id) is None:
            logger.info("No file watch registered for %s, dropping notification", document_id)
            return

        with self._reconciling(document_id):
            try:
                metadata = self.client.get_file_metadata(document_id)
            except FetchError as e:
                if e.status_code == 404:
                    self.ledger.forget(document_id)
                    report.outcomes[document_id] = Outcome.REMOVED
                    return
                logger.warning("Could not fetch metadata for %s: %s", document_id, e)
                report.outcomes[document_id] = Outcome.FAILED
                return

            if metadata.trashed:
                self.ledger.forget(document_id)
                report.outcomes[document_id] = Outcome.REMOVED
                return

            if self.ledger.observe(document_id, metadata.name, metadata.modified_time) == Observation.UNCHANGED:
                logger.info("No content change detected for %s", document_id)
                report.outcomes[document_id] = Outcome.UNCHANGED
                return

            report.outcomes[document_id] = self._publish(metadata, Scope.document(document_id))

    def _handle_folder(self, report: CycleReport):
        if self.registry.folder_watch() is None:
            logger.info("No folder watch registered, dropping changes notification")
            return

        watch = self.registry.folder_watch()
        with self._reconciling(_folder_key(watch.folder_id)):
            while True:
                # Re-read under the lock: a previous cycle may have advanced it
                watch = self.registry.folder_watch()
                if watch is None:
                    logger.info("Folder watch stopped, abandoning changes notification")
                    return

                try:
                    batch = self.client.get_changes(watch.cursor)
                except CursorInvalidated as e:
                    logger.warning("%s; rescanning folder %s", e, watch.folder_id)
                    self._rescan(watch.folder_id, watch.cursor, report)
                    return

                self._run_batch(
                    [(c.file_id, lambda c=c: self._apply_change(c, watch.folder_id)) for c in batch.changes],
                    report,
                )

                next_cursor = batch.next_cursor
                if not self.registry.advance_cursor(watch.folder_id, watch.cursor, next_cursor):
                    logger.info("Cursor for %s not advanced (watch stopped or replaced)", watch.folder_id)
                    return
                report.cursor = next_cursor

                if batch.new_start_page_token or not batch.next_page_token:
                    return

    def _apply_change(self, change: Change, folder_id: str) -> Outcome:
        if change.removed:
            self.ledger.forget(change.file_id)
            return Outcome.REMOVED

        with self._reconciling(change.file_id):
            try:
                metadata = self.client.get_file_metadata(change.file_id)
            except FetchError as e:
                if e.status_code == 404:
                    self.ledger.forget(change.file_id)
                    return Outcome.REMOVED
                logger.warning("Could not fetch metadata for %s: %s", change.file_id, e)
                return Outcome.FAILED

            if metadata.trashed:
                self.ledger.forget(change.file_id)
                return Outcome.REMOVED

            if folder_id not in metadata.parents:
                logger.info("Change for %s is outside monitored folder %s, skipping", change.file_id, folder_id)
                return Outcome.OUTSIDE

            if self.ledger.observe(change.file_id, metadata.name, metadata.modified_time) == Observation.UNCHANGED:
                logger.info("No content change detected for %s", change.file_id)
                return Outcome.UNCHANGED

            return self._publish(metadata, BROADCAST)

    # ------------------------------------------------------------------
    # Folder scans
    # ------------------------------------------------------------------

    def _scan(self, folder_id: str, publish_all: bool, report: Optional[CycleReport] = None) -> set[str]:
        """
        Observe every document in the folder and publish it.

        With publish_all, every document is published (initial state for
        new subscribers); otherwise only those whose marker changed.

        Returns:
            IDs of the documents found in the folder
        """
        items = list(self.client.list_folder(folder_id))
        logger.info("Scanned folder %s: %d documents", folder_id, len(items))

        def seed(metadata: DocumentMetadata) -> Outcome:
            with self._reconciling(metadata.id):
                observation = self.ledger.observe(metadata.id, metadata.name, metadata.modified_time)
                if observation == Observation.UNCHANGED and not publish_all:
                    return Outcome.UNCHANGED
                return self._publish(metadata, BROADCAST)

        self._run_batch([(m.id, lambda m=m: seed(m)) for m in items], report or CycleReport(kind="scan"))
        return {m.id for m in items}

    def _rescan(self, folder_id: str, stale_cursor: str, report: CycleReport):
        """Rebuild folder state after the store dropped our cursor."""
        cursor = self.client.get_changes_start_token()
        found = self._scan(folder_id, publish_all=False, report=report)

        kept = found | {h.target_id for h in self.registry.file_watches()}
        for document_id in self.ledger.document_ids() - kept:
            self.ledger.forget(document_id)
            report.outcomes[document_id] = Outcome.REMOVED

        report.rescanned = True
        if self.registry.advance_cursor(folder_id, stale_cursor, cursor):
            report.cursor = cursor

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run_batch(self, tasks: list, report: CycleReport):
        """Run (document_id, callable) tasks concurrently, isolating failures."""
        if not tasks:
            return
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(work): document_id for document_id, work in tasks}
            for future in as_completed(futures):
                document_id = futures[future]
                try:
                    report.outcomes[document_id] = future.result()
                except Exception as e:
                    logger.error("Processing %s failed: %s", document_id, e, exc_info=True)
                    report.outcomes[document_id] = Outcome.FAILED

    def _publish(self, metadata: DocumentMetadata, scope: Scope) -> Outcome:
        text = self.normalizer.normalize(metadata.id, metadata.mime_type)
        event = self.dispatcher.publish(metadata.id, metadata.name, text, scope)
        return Outcome.DISPATCHED if event else Outcome.EMPTY
