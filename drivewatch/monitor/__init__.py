"""
Monitoring module.

Ledger, watch registry, content normalizer, dispatcher and the reconciler
that drives them.
"""

from .dispatcher import BROADCAST, FileUpdateEvent, NotificationDispatcher, Scope, SubscriberHub
from .ledger import DocumentRecord, ModificationLedger, Observation
from .normalizer import ContentNormalizer, extract_plain_text, workbook_to_text
from .reconciler import ChangeReconciler, CycleReport, Outcome, TargetState
from .registry import ChannelHandle, ChannelKind, FolderWatch, WatchRegistry

__all__ = [
    # Dispatch
    "BROADCAST",
    "FileUpdateEvent",
    "NotificationDispatcher",
    "Scope",
    "SubscriberHub",
    # Ledger
    "DocumentRecord",
    "ModificationLedger",
    "Observation",
    # Normalizer
    "ContentNormalizer",
    "extract_plain_text",
    "workbook_to_text",
    # Reconciler
    "ChangeReconciler",
    "CycleReport",
    "Outcome",
    "TargetState",
    # Registry
    "ChannelHandle",
    "ChannelKind",
    "FolderWatch",
    "WatchRegistry",
]
