"""
Pydantic models for the Outreach Sync service.

These models define sync schedules, strategies, filters and cycle outcomes.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Enums
# ============================================================================

class PriorityMode(str, Enum):
    """Which slice of the remote dataset a strategy fetches first."""
    ALL = "all"
    RECENT = "recent"
    ENGAGED = "engaged"


class SyncType(str, Enum):
    """What a schedule synchronizes."""
    CONTACTS = "contacts"
    MESSAGES = "messages"
    BOTH = "both"


class SyncOutcomeStatus(str, Enum):
    """Result of one executed cycle."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SyncTrigger(str, Enum):
    """What started a cycle."""
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    PHASE = "phase"


# ============================================================================
# Strategy Models
# ============================================================================

class ConnectionMetrics(BaseModel):
    """Size/activity profile of a remote account. Never persisted."""
    total_items: int = Field(0, ge=0)
    active_items: int = Field(0, ge=0)  # activity in last 30 days
    recent_items: int = Field(0, ge=0)  # connected/active in last 7 days
    high_engagement_items: int = Field(0, ge=0)


class SyncStrategy(BaseModel):
    """Batch sizing and cadence chosen for a dataset size."""
    batch_size: int
    sync_interval_minutes: int
    max_items_per_cycle: int
    priority_mode: PriorityMode

    class Config:
        frozen = True


class PriorityFilter(BaseModel):
    """Advisory query constraints passed to the remote provider."""
    recent_activity_days: Optional[int] = None
    min_message_count: Optional[int] = None
    include_tags: list[str] = Field(default_factory=list)
    has_follow_up: Optional[bool] = None
    exclude_status: list[str] = Field(default_factory=list)
    unread_only: bool = False
    messages_per_item: Optional[int] = None

    class Config:
        frozen = True

    @property
    def is_empty(self) -> bool:
        return not self.to_params()

    def to_params(self) -> dict[str, Any]:
        """Render the set constraints as remote query parameters."""
        params: dict[str, Any] = {}
        if self.recent_activity_days is not None:
            params["recent_activity"] = self.recent_activity_days
        if self.min_message_count is not None:
            params["min_message_count"] = self.min_message_count
        if self.include_tags:
            params["include_tags"] = ",".join(self.include_tags)
        if self.has_follow_up is not None:
            params["has_follow_up"] = str(self.has_follow_up).lower()
        if self.exclude_status:
            params["exclude_status"] = ",".join(self.exclude_status)
        if self.unread_only:
            params["unread"] = "true"
        if self.messages_per_item is not None:
            params["messages_limit"] = self.messages_per_item
        return params


# ============================================================================
# Sync Schedule Models
# ============================================================================

class SyncScheduleCreate(BaseModel):
    """Schema for creating or replacing a sync schedule."""
    workspace_id: str = Field(..., max_length=255)
    account_id: str = Field(..., max_length=255)
    enabled: bool = True
    interval_minutes: int = Field(30, ge=1)
    sync_type: SyncType = SyncType.BOTH
    batch_size: int = Field(500, ge=1)
    max_items_per_cycle: int = Field(1000, ge=1)
    priority_mode: PriorityMode = PriorityMode.ALL
    next_sync_at: Optional[datetime] = None


class SyncSchedule(BaseModel):
    """Persisted sync state for one (workspace, account) pair."""
    workspace_id: str
    account_id: str
    enabled: bool = False
    interval_minutes: int = 30
    sync_type: SyncType = SyncType.BOTH
    batch_size: int = 500
    max_items_per_cycle: int = 1000
    priority_mode: PriorityMode = PriorityMode.ALL
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    last_cursor: Optional[str] = None
    total_items_synced: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Config:
        from_attributes = True

    @property
    def page_size(self) -> int:
        return min(self.batch_size, self.max_items_per_cycle)


# ============================================================================
# Sync Outcome Models
# ============================================================================

class SyncOutcome(BaseModel):
    """Result of one executed cycle. Append-only once recorded."""
    workspace_id: str
    account_id: str
    items_synced: int = 0
    next_cursor: Optional[str] = None
    status: SyncOutcomeStatus = SyncOutcomeStatus.SUCCESS
    duration_ms: int = 0
    errors: list[str] = Field(default_factory=list)
    trigger: SyncTrigger = SyncTrigger.SCHEDULED
    phase: Optional[str] = None
    rate_limited: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    class Config:
        from_attributes = True

    @property
    def caught_up(self) -> bool:
        return self.status != SyncOutcomeStatus.FAILED and self.next_cursor is None


class PageResult(BaseModel):
    """One page returned by the remote provider."""
    items: list[dict] = Field(default_factory=list)
    next_cursor: Optional[str] = None


# ============================================================================
# Status Models
# ============================================================================

class SyncStatusView(BaseModel):
    """Caller-facing sync status for one account."""
    workspace_id: str
    account_id: str
    is_enabled: bool
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    interval_minutes: int
    sync_type: SyncType
    total_items_synced: int = 0
    in_flight: bool = False
    recent_syncs: list[SyncOutcome] = Field(default_factory=list)


class SyncStatusEvent(BaseModel):
    """Notification emitted after every cycle and schedule change."""
    workspace_id: str
    account_id: str
    event: str  # 'enabled', 'disabled', 'deferred', 'cycle', 'settings', 'reset'
    is_enabled: bool
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    total_items_synced: int = 0
    outcome: Optional[SyncOutcome] = None
    emitted_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# API Request Models
# ============================================================================

class SyncEnableRequest(BaseModel):
    """Body of an enable request."""
    interval_minutes: Optional[int] = Field(None, ge=1)
    sync_type: SyncType = SyncType.BOTH


class SyncTriggerRequest(BaseModel):
    """Body of a manual trigger request."""
    sync_type: Optional[SyncType] = None


class SyncSettingsUpdate(BaseModel):
    """Body of a settings update. Unset fields are left unchanged."""
    interval_minutes: Optional[int] = Field(None, ge=1)
    sync_type: Optional[SyncType] = None
