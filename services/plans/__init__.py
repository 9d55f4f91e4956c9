"""
Plan Services

Content plans lay out a number of video slots per day; each slot is a plan
item that moves through the status workflow in state.py.
"""

from .repository import PlanRepository
from .service import PlanService
from .state import (
    ItemStatus,
    PostStatus,
    ScriptStatus,
    TriggerMode,
    VideoStatus,
    can_transition,
    ensure_transition,
    recommended_poll_interval,
)

__all__ = [
    "PlanRepository",
    "PlanService",
    "ItemStatus",
    "PostStatus",
    "ScriptStatus",
    "TriggerMode",
    "VideoStatus",
    "can_transition",
    "ensure_transition",
    "recommended_poll_interval",
]
