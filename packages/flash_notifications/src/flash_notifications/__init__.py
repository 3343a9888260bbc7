from .alarms import AlarmService, ArmResult, AsyncioAlarmService
from .config import NotificationSettings, notification_settings
from .events import Event, EventListener, EventManager, NotificationEvent
from .exceptions import (
    ExternalServiceFailure,
    InvalidSpecification,
    NotFound,
    NotificationError,
    Unsatisfiable,
)
from .manager import NotificationManager, OperationResult, OperationStatus
from .notification import Notification
from .presentation import MemoryPresentationService, PresentationService
from .schemas import (
    AlarmType,
    NotificationOptions,
    NotificationStatus,
    NotificationType,
    TriggerUnit,
)
from .stores import KeyValueStore, MemoryKeyValueStore, create_store

__all__ = [
    "AlarmService",
    "AlarmType",
    "ArmResult",
    "AsyncioAlarmService",
    "Event",
    "EventListener",
    "EventManager",
    "ExternalServiceFailure",
    "InvalidSpecification",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "MemoryPresentationService",
    "NotFound",
    "Notification",
    "NotificationError",
    "NotificationEvent",
    "NotificationManager",
    "NotificationOptions",
    "NotificationSettings",
    "NotificationStatus",
    "NotificationType",
    "OperationResult",
    "OperationStatus",
    "PresentationService",
    "TriggerUnit",
    "Unsatisfiable",
    "create_store",
    "notification_settings",
]
