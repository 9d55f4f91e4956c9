"""
Feature Flags for distribution timing.

Environment variable UPLOADPOST_SKIP_SCHEDULING controls who owns the
posting clock:
- unset / "true": DEFERRED. Posts are stored as pending and our worker sends
  them to Upload-Post when they fall due (default; avoids provider-side
  timezone drift)
- "false": PROVIDER. Upload-Post receives the scheduled_date and publishes
  on its own schedule

Usage:
    from core.feature_flags import should_defer_posting

    if should_defer_posting():
        # create pending scheduled_posts rows
    else:
        # call Upload-Post with scheduled_date
"""

import os
from enum import Enum
from typing import Optional


class DistributionMode(Enum):
    """Who is responsible for publishing at the scheduled time."""
    DEFERRED = "deferred"  # Local worker sends at scheduled time
    PROVIDER = "provider"  # Upload-Post schedules the post


def get_distribution_mode() -> DistributionMode:
    """Get the current distribution mode from environment."""
    value = os.getenv("UPLOADPOST_SKIP_SCHEDULING", "true").lower()
    if value == "false":
        return DistributionMode.PROVIDER
    return DistributionMode.DEFERRED


def should_defer_posting(override: Optional[str] = None) -> bool:
    """
    Determine if scheduled posts are held locally until due.

    Args:
        override: Optional explicit override ("deferred" or "provider")

    Returns:
        True if our worker sends posts at their scheduled time
    """
    if override:
        return override.lower() == DistributionMode.DEFERRED.value

    return get_distribution_mode() == DistributionMode.DEFERRED


def is_automation_enabled() -> bool:
    """Background automation can be switched off per deployment."""
    return os.getenv("AUTOMATION_ENABLED", "true").lower() != "false"


def get_feature_status() -> dict:
    """Get current feature flag status."""
    mode = get_distribution_mode()

    descriptions = {
        DistributionMode.DEFERRED: "Posts are queued locally and sent when due",
        DistributionMode.PROVIDER: "Upload-Post receives scheduled_date and publishes",
    }

    return {
        "distribution_mode": mode.value,
        "description": descriptions[mode],
        "env_var": "UPLOADPOST_SKIP_SCHEDULING",
        "automation_enabled": is_automation_enabled(),
    }
