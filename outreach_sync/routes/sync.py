"""
Sync control API routes.

Provides endpoints for:
- Enabling/disabling recurring sync per account
- Triggering a manual sync
- Updating interval and sync type
- Resetting the traversal cursor
- Viewing sync status and scheduled jobs
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, status

from ..db.models import (
    SyncEnableRequest,
    SyncOutcome,
    SyncSchedule,
    SyncSettingsUpdate,
    SyncStatusView,
    SyncTriggerRequest,
)
from ..sync.errors import ConfigurationError
from .deps import Engine

router = APIRouter(prefix="/sync", tags=["sync"])


def _not_found(e: ConfigurationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


# ============================================================================
# Schedule Control
# ============================================================================

@router.post("/{workspace_id}/{account_id}/enable", response_model=SyncSchedule)
async def enable_sync(
    workspace_id: str,
    account_id: str,
    engine: Engine,
    data: Optional[SyncEnableRequest] = None,
) -> SyncSchedule:
    """
    Enable recurring sync for an account.

    The first cycle is queued immediately; this call does not wait for it.
    """
    data = data or SyncEnableRequest()
    return await engine.enable(
        workspace_id,
        account_id,
        interval_minutes=data.interval_minutes,
        sync_type=data.sync_type,
    )


@router.post("/{workspace_id}/{account_id}/disable", response_model=SyncSchedule)
async def disable_sync(
    workspace_id: str,
    account_id: str,
    engine: Engine,
) -> SyncSchedule:
    """Disable recurring sync. Counters and cursor are kept."""
    try:
        return await engine.disable(workspace_id, account_id)
    except ConfigurationError as e:
        raise _not_found(e)


@router.patch("/{workspace_id}/{account_id}/settings", response_model=SyncSchedule)
async def update_sync_settings(
    workspace_id: str,
    account_id: str,
    data: SyncSettingsUpdate,
    engine: Engine,
) -> SyncSchedule:
    """Change interval and/or sync type."""
    try:
        return await engine.update_settings(
            workspace_id,
            account_id,
            interval_minutes=data.interval_minutes,
            sync_type=data.sync_type,
        )
    except ConfigurationError as e:
        raise _not_found(e)


@router.post("/{workspace_id}/{account_id}/reset", response_model=SyncSchedule)
async def reset_sync_cursor(
    workspace_id: str,
    account_id: str,
    engine: Engine,
) -> SyncSchedule:
    """Start the next sync from the first page."""
    try:
        return await engine.reset_cursor(workspace_id, account_id)
    except ConfigurationError as e:
        raise _not_found(e)


# ============================================================================
# Manual Trigger
# ============================================================================

@router.post("/{workspace_id}/{account_id}/trigger", response_model=SyncOutcome)
async def trigger_sync(
    workspace_id: str,
    account_id: str,
    engine: Engine,
    data: Optional[SyncTriggerRequest] = None,
) -> SyncOutcome:
    """Run a sync cycle now, ignoring peak hours. Waits for the result."""
    sync_type = data.sync_type if data else None
    try:
        return await engine.trigger_now(workspace_id, account_id, sync_type=sync_type)
    except ConfigurationError as e:
        raise _not_found(e)


# ============================================================================
# Status
# ============================================================================

@router.get("/{workspace_id}/{account_id}/status", response_model=SyncStatusView)
async def get_sync_status(
    workspace_id: str,
    account_id: str,
    engine: Engine,
) -> SyncStatusView:
    """Get sync status and the most recent sync outcomes."""
    try:
        return await engine.get_status(workspace_id, account_id)
    except ConfigurationError as e:
        raise _not_found(e)


@router.get("/jobs")
async def list_sync_jobs(engine: Engine) -> dict:
    """Get status of every scheduled sync job."""
    jobs = engine.list_jobs()
    return {
        "scheduler_running": engine.jobs.running,
        "job_count": len(jobs),
        "jobs": jobs,
    }
