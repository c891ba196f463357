from .sqlite_ledger import DEFAULT_COOLDOWN, SqliteNotificationLedger
from .sqlite_store import SqliteSensorStore
from .store import NotificationLedger, ReadingStore, SensorStateStore, SensorStore, ThresholdStore

__all__ = [
    "DEFAULT_COOLDOWN",
    "NotificationLedger",
    "ReadingStore",
    "SensorStateStore",
    "SensorStore",
    "SqliteNotificationLedger",
    "SqliteSensorStore",
    "ThresholdStore",
]
