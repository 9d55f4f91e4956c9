"""
Publisher Services

Automated video distribution to Instagram, TikTok, YouTube and Facebook
through Upload-Post.
"""

from .accounts import SocialAccountService
from .distribution import DistributionService
from .posts import ScheduledPostRepository
from .uploadpost_client import (
    DistributionError,
    Platform,
    PlatformResult,
    UploadPostClient,
    UploadResponse,
    get_uploadpost_client,
)

__all__ = [
    # Upload-Post client
    "UploadPostClient",
    "DistributionError",
    "Platform",
    "PlatformResult",
    "UploadResponse",
    "get_uploadpost_client",
    # Distribution
    "DistributionService",
    "ScheduledPostRepository",
    "SocialAccountService",
]
