"""User workspace: preferences and saved video prompts."""

from .preferences import PreferencesService
from .prompts import PromptLibrary

__all__ = ["PreferencesService", "PromptLibrary"]
