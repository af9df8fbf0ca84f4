"""
Strategy selection and priority filters.

Both functions are pure: same input, same output, no I/O.
"""

from ..db.models import PriorityFilter, PriorityMode, SyncStrategy

# Tiers ordered high to low; inclusive lower bound on total_items, first match wins
STRATEGY_TIERS: tuple[tuple[int, SyncStrategy], ...] = (
    (15000, SyncStrategy(batch_size=50, sync_interval_minutes=60, max_items_per_cycle=200,
                         priority_mode=PriorityMode.ENGAGED)),
    (5000, SyncStrategy(batch_size=100, sync_interval_minutes=45, max_items_per_cycle=500,
                        priority_mode=PriorityMode.RECENT)),
    (1000, SyncStrategy(batch_size=200, sync_interval_minutes=30, max_items_per_cycle=1000,
                        priority_mode=PriorityMode.ALL)),
)

SMALL_STRATEGY = SyncStrategy(
    batch_size=500,
    sync_interval_minutes=30,
    max_items_per_cycle=1000,
    priority_mode=PriorityMode.ALL,
)

VERY_LARGE_THRESHOLD = 15000
LARGE_THRESHOLD = 1000

# Engaged-mode filter constants
ENGAGED_RECENCY_DAYS = 7
ENGAGED_MIN_MESSAGES = 5
ENGAGED_TAGS = ("vip", "important", "client", "prospect")
EXCLUDED_STATUSES = ("archived", "muted", "spam")
RECENT_WINDOW_DAYS = 30


def select_strategy(total_items: int) -> SyncStrategy:
    """Pick batch sizing and cadence for a dataset of ``total_items``."""
    for threshold, strategy in STRATEGY_TIERS:
        if total_items >= threshold:
            return strategy
    return SMALL_STRATEGY


def build_priority_filter(mode: PriorityMode) -> PriorityFilter:
    """Translate a priority mode into advisory remote query constraints."""
    if mode == PriorityMode.ENGAGED:
        return PriorityFilter(
            recent_activity_days=ENGAGED_RECENCY_DAYS,
            min_message_count=ENGAGED_MIN_MESSAGES,
            include_tags=list(ENGAGED_TAGS),
            has_follow_up=True,
            exclude_status=list(EXCLUDED_STATUSES),
        )
    if mode == PriorityMode.RECENT:
        return PriorityFilter(recent_activity_days=RECENT_WINDOW_DAYS)
    return PriorityFilter()
