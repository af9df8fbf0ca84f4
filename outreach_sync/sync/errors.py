"""
Error taxonomy for the sync engine.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for every sync engine error."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(SyncError):
    """No schedule (or otherwise unusable configuration) for an account."""

    def __init__(self, workspace_id: str, account_id: str, message: Optional[str] = None):
        self.workspace_id = workspace_id
        self.account_id = account_id
        super().__init__(
            message or f"No sync schedule configured for account {account_id} in workspace {workspace_id}"
        )


class RemoteUnavailable(SyncError):
    """Remote provider unreachable, rejecting credentials, or rate limiting."""

    def __init__(self, message: str, status_code: Optional[int] = None, rate_limited: bool = False):
        self.status_code = status_code
        self.rate_limited = rate_limited
        super().__init__(message)


class PartialWriteError(SyncError):
    """A single item failed to persist. Reported, never raised out of a cycle."""

    def __init__(self, remote_item_id: Optional[str], message: str):
        self.remote_item_id = remote_item_id
        super().__init__(f"{remote_item_id or '<missing id>'}: {message}")
