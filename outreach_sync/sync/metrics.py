"""
Metrics probe: size/activity profile of a remote account.
"""

import logging

from ..db.models import ConnectionMetrics
from .errors import RemoteUnavailable

logger = logging.getLogger(__name__)

# Used when the stats endpoint cannot be read; lands in the 1000+ tier
FALLBACK_METRICS = ConnectionMetrics(
    total_items=1000,
    active_items=500,
    recent_items=100,
    high_engagement_items=50,
)


async def probe_metrics(provider, account_id: str) -> ConnectionMetrics:
    """Ask the provider for account metrics, falling back to conservative defaults."""
    try:
        return await provider.fetch_account_metrics(account_id)
    except RemoteUnavailable as e:
        logger.warning(f"⚠ Metrics probe failed for {account_id}, using defaults: {e.message}")
        return FALLBACK_METRICS
