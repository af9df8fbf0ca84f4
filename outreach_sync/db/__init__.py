# Database module
from .connection import get_db_pool, init_db, close_db
from .models import (
    ConnectionMetrics,
    PageResult,
    PriorityFilter,
    PriorityMode,
    SyncOutcome,
    SyncOutcomeStatus,
    SyncSchedule,
    SyncScheduleCreate,
    SyncStatusEvent,
    SyncStatusView,
    SyncStrategy,
    SyncTrigger,
    SyncType,
)
from .repository import (
    SyncHistoryRepository,
    SyncScheduleRepository,
    SyncStore,
    SyncedItemRepository,
)

__all__ = [
    "get_db_pool",
    "init_db",
    "close_db",
    "ConnectionMetrics",
    "PageResult",
    "PriorityFilter",
    "PriorityMode",
    "SyncOutcome",
    "SyncOutcomeStatus",
    "SyncSchedule",
    "SyncScheduleCreate",
    "SyncStatusEvent",
    "SyncStatusView",
    "SyncStrategy",
    "SyncTrigger",
    "SyncType",
    "SyncHistoryRepository",
    "SyncScheduleRepository",
    "SyncStore",
    "SyncedItemRepository",
]
