"""
Video Generation Service

Sora 2 generation through Poyo:
- poyo_client: submit with model fallback, status lookup, polling
- job_tracker: ``videos`` rows and their plan items
- service: submit-then-refresh flow used by the automation jobs

All provider calls go through circuit breakers for resilience.
"""

from .job_tracker import VideoJobTracker
from .poyo_client import (
    PoyoClient,
    SoraRequest,
    TaskStatus,
    VideoGenerationError,
    VideoResult,
    get_poyo_client,
)
from .service import VideoService, build_video_prompt

__all__ = [
    "VideoJobTracker",
    "PoyoClient",
    "SoraRequest",
    "TaskStatus",
    "VideoGenerationError",
    "VideoResult",
    "get_poyo_client",
    "VideoService",
    "build_video_prompt",
]
