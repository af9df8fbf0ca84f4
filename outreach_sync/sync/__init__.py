# Sync engine
from .engine import SyncEngine
from .errors import ConfigurationError, PartialWriteError, RemoteUnavailable, SyncError
from .executor import CyclePlan, SyncExecutor
from .governor import PeakGovernor
from .phases import PhaseScheduler
from .strategy import build_priority_filter, select_strategy

__all__ = [
    "SyncEngine",
    "ConfigurationError",
    "PartialWriteError",
    "RemoteUnavailable",
    "SyncError",
    "CyclePlan",
    "SyncExecutor",
    "PeakGovernor",
    "PhaseScheduler",
    "build_priority_filter",
    "select_strategy",
]
