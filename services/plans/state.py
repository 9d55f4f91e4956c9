"""
Plan Item State

Status workflow for a single video slot in a plan:

    pending -> researching -> ready -> draft -> approved -> generating
            -> completed -> scheduled -> posted

``failed`` is reachable from every in-progress state. Script review runs on
a separate ``script_status`` (draft / approved / rejected). Transitions are
triggered by provider results (topic generated, script written, video
finished, post published) and observed by clients through polling.
"""

from enum import Enum
from typing import Iterable

from core.errors import InvalidTransitionError


class ItemStatus(str, Enum):
    """Lifecycle of a plan item."""
    PENDING = "pending"
    RESEARCHING = "researching"
    READY = "ready"
    DRAFT = "draft"
    APPROVED = "approved"
    GENERATING = "generating"
    COMPLETED = "completed"
    SCHEDULED = "scheduled"
    POSTED = "posted"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        """Work is running against a provider right now."""
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self == ItemStatus.POSTED


class ScriptStatus(str, Enum):
    """Review state of a generated script."""
    DRAFT = "draft"
    APPROVED = "approved"
    REJECTED = "rejected"


class VideoStatus(str, Enum):
    """Status of a row in the videos table."""
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class PostStatus(str, Enum):
    """Status of a scheduled social post."""
    PENDING = "pending"
    SCHEDULED = "scheduled"
    POSTED = "posted"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TriggerMode(str, Enum):
    """How a plan's daily work is kicked off."""
    DAILY = "daily"
    TIME_BASED = "time_based"
    MANUAL = "manual"


ACTIVE_STATUSES = frozenset({
    ItemStatus.RESEARCHING,
    ItemStatus.GENERATING,
    ItemStatus.SCHEDULED,
})

TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.PENDING: frozenset({ItemStatus.RESEARCHING, ItemStatus.READY, ItemStatus.FAILED}),
    ItemStatus.RESEARCHING: frozenset({ItemStatus.READY, ItemStatus.FAILED}),
    # auto-approve plans skip straight to approved
    ItemStatus.READY: frozenset({ItemStatus.DRAFT, ItemStatus.APPROVED, ItemStatus.FAILED}),
    # draft -> ready is a rejected script going back for a rewrite
    ItemStatus.DRAFT: frozenset({ItemStatus.APPROVED, ItemStatus.READY, ItemStatus.FAILED}),
    ItemStatus.APPROVED: frozenset({ItemStatus.GENERATING, ItemStatus.FAILED}),
    # generating -> approved releases the claim after a transient provider error
    ItemStatus.GENERATING: frozenset({ItemStatus.COMPLETED, ItemStatus.APPROVED, ItemStatus.FAILED}),
    ItemStatus.COMPLETED: frozenset({ItemStatus.SCHEDULED, ItemStatus.FAILED}),
    ItemStatus.SCHEDULED: frozenset({ItemStatus.POSTED, ItemStatus.FAILED}),
    ItemStatus.POSTED: frozenset(),
    ItemStatus.FAILED: frozenset({ItemStatus.PENDING, ItemStatus.READY}),
}

# Statuses the automation loop will pick up without user action
QUEUED_STATUSES = frozenset({
    ItemStatus.PENDING,
    ItemStatus.READY,
    ItemStatus.APPROVED,
    ItemStatus.COMPLETED,
})

# Client polling bounds (seconds)
FAST_POLL_INTERVAL = 10
QUEUED_POLL_INTERVAL = 30
IDLE_POLL_INTERVAL = 60


def can_transition(current: str, target: str) -> bool:
    """Whether an item in ``current`` may move to ``target``. Staying put is allowed."""
    current_status = ItemStatus(current)
    target_status = ItemStatus(target)
    if current_status == target_status:
        return True
    return target_status in TRANSITIONS[current_status]


def ensure_transition(current: str, target: str):
    """Raise InvalidTransitionError unless the move is allowed."""
    try:
        allowed = can_transition(current, target)
    except ValueError:
        raise InvalidTransitionError(current, target)
    if not allowed:
        raise InvalidTransitionError(current, target)


def recommended_poll_interval(statuses: Iterable[str]) -> int:
    """
    Polling interval a client should use for a set of items.

    FAST_POLL_INTERVAL while anything is in flight, QUEUED_POLL_INTERVAL while
    the automation loop still has work queued, IDLE_POLL_INTERVAL otherwise
    (drafts waiting on a human, posted or failed items).
    """
    interval = IDLE_POLL_INTERVAL
    for status in statuses:
        try:
            item_status = ItemStatus(status)
        except ValueError:
            continue
        if item_status.is_active:
            return FAST_POLL_INTERVAL
        if item_status in QUEUED_STATUSES:
            interval = QUEUED_POLL_INTERVAL
    return interval
