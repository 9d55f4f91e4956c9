"""
Script Service

15-second short-form scripts via OpenAI, with per-category system prompts.
"""

from .openai_client import ScriptClient, ScriptGenerationError, ScriptRequest, ScriptResult
from .writer import ScriptWriter

__all__ = [
    "ScriptClient",
    "ScriptGenerationError",
    "ScriptRequest",
    "ScriptResult",
    "ScriptWriter",
]
