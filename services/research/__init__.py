"""
Research Service

Topic ideas and topic research via Perplexity (sonar-pro).
"""

from .perplexity_client import (
    PerplexityClient,
    ResearchError,
    ResearchResult,
    Topic,
    get_perplexity_client,
)

__all__ = [
    "PerplexityClient",
    "ResearchError",
    "ResearchResult",
    "Topic",
    "get_perplexity_client",
]
