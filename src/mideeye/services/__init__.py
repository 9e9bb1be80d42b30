"""Business logic services for the Mideeye application."""

from .clients import HttpRelationClient, LocalRelationClient, RelationClient
from .notifier import Notification, NotificationLevel, NotificationLog
from .realtime import ChangeEvent, ChangeType, RealtimeChannel
from .reconciler import OptimisticReconciler, ToggleOutcome, ToggleStatus
from .threads import ThreadNode, ThreadView, build_thread_tree
from .toggle import RemoteOperation, ToggleResolution, resolve_toggle

__all__ = [
    "HttpRelationClient", "LocalRelationClient", "RelationClient",
    "Notification", "NotificationLevel", "NotificationLog",
    "ChangeEvent", "ChangeType", "RealtimeChannel",
    "OptimisticReconciler", "ToggleOutcome", "ToggleStatus",
    "ThreadNode", "ThreadView", "build_thread_tree",
    "RemoteOperation", "ToggleResolution", "resolve_toggle",
]
