"""
Unipile API Client.

HTTP client for the Unipile LinkedIn automation API. Used by the sync engine
to page through an account's connections and chats and to read the account's
size/activity stats.

Usage:
    from outreach_sync.providers.unipile import UnipileClient

    client = UnipileClient()

    metrics = await client.fetch_account_metrics("acc_123")
    page = await client.fetch_page("acc_123", PriorityFilter(), None, 200, SyncType.BOTH)
"""

import logging
from typing import Any, Optional

import httpx

from ..core.config import get_settings
from ..db.models import ConnectionMetrics, PageResult, PriorityFilter, SyncType
from ..sync.errors import RemoteUnavailable

logger = logging.getLogger(__name__)

# Item kinds, used as the prefix of stable remote ids
CONTACT_KIND = "contact"
CHAT_KIND = "chat"

# Stages of a sync_type=both traversal, in order
CONTACTS_STAGE = "contacts"
MESSAGES_STAGE = "messages"


def split_cursor(cursor: Optional[str]) -> tuple[str, Optional[str]]:
    """
    Split a composite cursor into (stage, provider token).

    ``None`` starts at the contacts stage. ``"messages:"`` starts the
    messages stage from its first page. Unprefixed cursors are treated as
    contacts tokens.
    """
    if not cursor:
        return CONTACTS_STAGE, None
    stage, sep, token = cursor.partition(":")
    if sep and stage in (CONTACTS_STAGE, MESSAGES_STAGE):
        return stage, token or None
    return CONTACTS_STAGE, cursor


def join_cursor(stage: str, token: Optional[str]) -> str:
    return f"{stage}:{token or ''}"


class UnipileClient:
    """
    HTTP client for the Unipile API.

    Handles:
    - Account stats (metrics probe)
    - Paginated connections (contacts)
    - Paginated chats with recent messages
    - Composite cursors for contacts-then-messages traversal

    Every transport or HTTP failure surfaces as RemoteUnavailable; a 429
    is flagged with ``rate_limited=True``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Unipile API base URL (default: from settings)
            api_key: API key for authentication (default: from settings)
            timeout: Request timeout in seconds (default: from settings)
            transport: Optional httpx transport (used by tests)
        """
        settings = get_settings()
        self.base_url = (base_url or settings.unipile_api_url).rstrip('/')
        self.api_key = api_key if api_key is not None else settings.unipile_api_key
        self.timeout = timeout or settings.unipile_timeout_seconds
        self._transport = transport

        if not self.api_key:
            logger.warning("Unipile API key not configured")

    def _get_headers(self) -> dict:
        return {
            "X-API-KEY": self.api_key,
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
    ) -> Any:
        """
        Make an HTTP request to the Unipile API.

        Args:
            method: HTTP method
            path: API path (e.g., "/accounts/acc_123/stats")
            params: Query parameters

        Returns:
            Response JSON object

        Raises:
            RemoteUnavailable: On any transport or HTTP error, or a body that
                is not a JSON object
        """
        url = f"{self.base_url}{path}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._get_headers(),
                    params=params,
                )
        except httpx.TimeoutException:
            raise RemoteUnavailable(
                f"Unipile request timed out after {self.timeout}s",
                status_code=408,
            )
        except httpx.RequestError as e:
            raise RemoteUnavailable(f"Unipile connection error: {str(e)}", status_code=503)

        if response.status_code == 429:
            logger.warning(f"⚠ Unipile rate limit hit on {path}")
            raise RemoteUnavailable(
                "rate limit exceeded (HTTP 429)",
                status_code=429,
                rate_limited=True,
            )

        if response.status_code in (401, 403):
            raise RemoteUnavailable(
                f"Unipile rejected credentials (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            try:
                error_data = response.json()
                if isinstance(error_data, dict):
                    message = error_data.get("detail") or error_data.get("title") or str(error_data)
                else:
                    message = str(error_data)
            except ValueError:
                message = response.text or f"HTTP {response.status_code}"
            raise RemoteUnavailable(
                f"Unipile API error ({response.status_code}): {message}",
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            data = response.json()
        except ValueError:
            raise RemoteUnavailable(
                f"Unipile returned a non-JSON body (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        if not isinstance(data, dict):
            raise RemoteUnavailable(
                f"Unipile returned an unexpected {type(data).__name__} body (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        return data

    # =========================================================================
    # Metrics
    # =========================================================================

    async def fetch_account_metrics(self, account_id: str) -> ConnectionMetrics:
        """
        Get the size/activity profile of an account.

        Raises:
            RemoteUnavailable: If the stats endpoint cannot be read
        """
        data = await self._request("GET", f"/accounts/{account_id}/stats")
        try:
            return ConnectionMetrics(
                total_items=data.get("total_connections") or 0,
                active_items=data.get("active_connections") or 0,
                recent_items=data.get("recent_connections") or 0,
                high_engagement_items=data.get("high_engagement") or 0,
            )
        except ValueError as e:
            raise RemoteUnavailable(f"Unipile returned invalid account stats: {e}", status_code=502)

    # =========================================================================
    # Pages
    # =========================================================================

    async def fetch_page(
        self,
        account_id: str,
        priority_filter: PriorityFilter,
        cursor: Optional[str],
        limit: int,
        sync_type: SyncType = SyncType.BOTH,
    ) -> PageResult:
        """
        Fetch one page of items.

        Args:
            account_id: Unipile account ID
            priority_filter: Advisory query constraints
            cursor: Cursor returned by the previous page (None = first page)
            limit: Max items requested
            sync_type: contacts, messages or both

        Returns:
            PageResult with items tagged by ``kind`` and the next cursor
            (None when the traversal is complete)
        """
        if sync_type == SyncType.CONTACTS:
            return await self._fetch_stage(CONTACTS_STAGE, account_id, priority_filter, cursor, limit)
        if sync_type == SyncType.MESSAGES:
            return await self._fetch_stage(MESSAGES_STAGE, account_id, priority_filter, cursor, limit)

        stage, token = split_cursor(cursor)
        page = await self._fetch_stage(stage, account_id, priority_filter, token, limit)

        if page.next_cursor:
            next_cursor = join_cursor(stage, page.next_cursor)
        elif stage == CONTACTS_STAGE:
            next_cursor = join_cursor(MESSAGES_STAGE, None)
        else:
            next_cursor = None

        return PageResult(items=page.items, next_cursor=next_cursor)

    async def _fetch_stage(
        self,
        stage: str,
        account_id: str,
        priority_filter: PriorityFilter,
        token: Optional[str],
        limit: int,
    ) -> PageResult:
        params: dict[str, Any] = {"limit": limit, **priority_filter.to_params()}
        if token:
            params["cursor"] = token

        if stage == CONTACTS_STAGE:
            path, kind = f"/accounts/{account_id}/connections", CONTACT_KIND
        else:
            path, kind = f"/users/{account_id}/chats", CHAT_KIND

        data = await self._request("GET", path, params=params)
        raw_items = data.get("items") or []
        if not isinstance(raw_items, list):
            raise RemoteUnavailable(f"Unipile {stage} page has no item list", status_code=502)

        items = [
            {**item, "kind": kind}
            for item in raw_items
            if isinstance(item, dict)
        ]
        logger.debug(f"Fetched {len(items)} {stage} for {account_id} (cursor: {token})")
        next_token = data.get("cursor")
        return PageResult(items=items, next_cursor=str(next_token) if next_token else None)
