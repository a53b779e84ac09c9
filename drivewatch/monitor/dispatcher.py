"""
Notification fan-out for Drive Watch.

SubscriberHub keeps track of connected subscribers and the document rooms
they joined. NotificationDispatcher numbers each update and hands it to the
hub, either for everyone or for one document's room.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from ..constants import DEFAULT_FILE_NAME

logger = logging.getLogger(__name__)

FILE_UPDATED = "file-updated"


@dataclass(frozen=True)
class Scope:
    """Who receives an event: everyone (room None) or one document's room."""
    room: Optional[str] = None

    @property
    def is_broadcast(self) -> bool:
        return self.room is None

    @classmethod
    def document(cls, document_id: str) -> "Scope":
        return cls(room=document_id)


BROADCAST = Scope()


@dataclass(frozen=True)
class FileUpdateEvent:
    document_id: str
    document_name: str
    message: str
    sequence_number: int
    full_text: str

    def to_dict(self) -> dict:
        return {
            "documentId": self.document_id,
            "documentName": self.document_name,
            "message": self.message,
            "sequenceNumber": self.sequence_number,
            "fullText": self.full_text,
        }


class SubscriberHub:
    """
    Registry of subscribers and their rooms.

    A subscriber is any object with send(message: dict). A subscriber whose
    send raises is dropped.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._rooms: dict[object, set[str]] = {}

    def subscribe(self, subscriber):
        with self._lock:
            self._rooms.setdefault(subscriber, set())

    def unsubscribe(self, subscriber):
        with self._lock:
            self._rooms.pop(subscriber, None)

    def join(self, subscriber, room: str):
        with self._lock:
            self._rooms.setdefault(subscriber, set()).add(room)

    def leave(self, subscriber, room: str):
        with self._lock:
            rooms = self._rooms.get(subscriber)
            if rooms is not None:
                rooms.discard(room)

    def members(self, room: Optional[str] = None) -> list:
        """All subscribers, or only those in room."""
        with self._lock:
            if room is None:
                return list(self._rooms)
            return [s for s, rooms in self._rooms.items() if room in rooms]

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    def emit(self, event: str, payload: dict, room: Optional[str] = None) -> int:
        """Send to everyone (or room members). Returns the delivery count."""
        message = {"event": event, "data": payload}
        delivered = 0
        for subscriber in self.members(room):
            try:
                subscriber.send(message)
                delivered += 1
            except Exception as e:
                logger.warning("Dropping subscriber %r after failed send: %s", subscriber, e)
                self.unsubscribe(subscriber)
        return delivered


class NotificationDispatcher:
    """Publishes normalized document text with a process-wide sequence number."""

    def __init__(self, hub: SubscriberHub):
        self.hub = hub
        self._lock = threading.Lock()
        self._sequence = 0

    @property
    def sequence(self) -> int:
        """Number of events published so far."""
        with self._lock:
            return self._sequence

    def publish(self, document_id: str, name: str, text: Optional[str], scope: Scope = BROADCAST) -> Optional[FileUpdateEvent]:
        """
        Emit a file-updated event. Empty text is not an update and is not
        published (the sequence number does not move).
        """
        if not text:
            return None

        name = name or DEFAULT_FILE_NAME
        # Delivery stays under the lock so subscribers see numbers in order
        with self._lock:
            self._sequence += 1
            event = FileUpdateEvent(
                document_id=document_id,
                document_name=name,
                message=f'File "{name}" updated (Update #{self._sequence}).',
                sequence_number=self._sequence,
                full_text=text,
            )
            delivered = self.hub.emit(FILE_UPDATED, event.to_dict(), room=scope.room)

        logger.info(
            "Published %s (#%d) to %s (%d subscribers)",
            name, event.sequence_number, "all" if scope.is_broadcast else f"room {scope.room}", delivered,
        )
        return event
