"""
Modification ledger for Drive Watch.

Remembers the last modification marker seen for every observed document.
Markers are opaque version strings: two markers are the same version only
if they are equal. They are never parsed or ordered.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Observation(str, Enum):
    CHANGED = "changed"
    UNCHANGED = "unchanged"


@dataclass
class DocumentRecord:
    """Last observed state of one document."""
    document_id: str
    name: str
    modified_time: Optional[str]


class ModificationLedger:
    """In-memory map of document id -> last observed modification marker."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: dict[str, DocumentRecord] = {}

    def observe(self, document_id: str, name: str, modified_time: Optional[str]) -> Observation:
        """
        Compare modified_time with the stored marker and record it if new.

        A document seen for the first time is always CHANGED, so its
        content gets fetched once.
        """
        with self._lock:
            record = self._records.get(document_id)
            if record is not None and record.modified_time == modified_time:
                return Observation.UNCHANGED
            self._records[document_id] = DocumentRecord(document_id, name, modified_time)
            return Observation.CHANGED

    def forget(self, document_id: str) -> bool:
        """Drop a document's record. Returns True if one existed."""
        with self._lock:
            return self._records.pop(document_id, None) is not None

    def get(self, document_id: str) -> Optional[DocumentRecord]:
        with self._lock:
            return self._records.get(document_id)

    def document_ids(self) -> set[str]:
        with self._lock:
            return set(self._records)

    def __contains__(self, document_id: str) -> bool:
        with self._lock:
            return document_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
