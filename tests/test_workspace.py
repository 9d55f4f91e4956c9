"""
Workspace Tests - user preferences and saved prompts

Run with:
    python -m pytest tests/test_workspace.py -v
"""

import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


@pytest.fixture
def mock_db_pool():
    """Create a mock database pool."""
    pool = MagicMock()
    conn = AsyncMock()
    pool.acquire = MagicMock(return_value=AsyncMock(
        __aenter__=AsyncMock(return_value=conn),
        __aexit__=AsyncMock(return_value=None),
    ))
    return pool, conn


class TestPreferences:
    """Defaults, validation and partial upserts."""

    @pytest.mark.asyncio
    async def test_defaults_when_never_saved(self, mock_db_pool):
        from services.workspace.preferences import PreferencesService

        pool, conn = mock_db_pool
        conn.fetchrow.return_value = None

        prefs = await PreferencesService(pool).get_preferences("user-1")

        assert prefs == {
            "user_id": "user-1",
            "timezone": "UTC",
            "default_platforms": [],
            "notifications_enabled": True,
            "auto_research_default": True,
            "auto_approve_default": False,
        }

    @pytest.mark.asyncio
    async def test_partial_update_merges_stored_values(self, mock_db_pool):
        from services.workspace.preferences import PreferencesService

        pool, conn = mock_db_pool
        stored = {
            "user_id": "user-1",
            "timezone": "Europe/Warsaw",
            "default_platforms": ["tiktok"],
            "notifications_enabled": False,
            "auto_research_default": True,
            "auto_approve_default": True,
        }
        conn.fetchrow.side_effect = [stored, {**stored, "default_platforms": ["tiktok", "youtube"]}]

        saved = await PreferencesService(pool).update_preferences(
            "user-1", {"default_platforms": ["tiktok", "youtube"], "timezone": None}
        )

        assert saved["default_platforms"] == ["tiktok", "youtube"]
        params = conn.fetchrow.call_args.args[1:]
        assert params == ("user-1", "Europe/Warsaw", ["tiktok", "youtube"], False, True, True)

    @pytest.mark.asyncio
    async def test_unknown_platform_rejected(self, mock_db_pool):
        from core.errors import ValidationError
        from services.workspace.preferences import PreferencesService

        pool, conn = mock_db_pool

        with pytest.raises(ValidationError, match="Unsupported platforms"):
            await PreferencesService(pool).update_preferences("user-1", {"default_platforms": ["myspace"]})
        conn.fetchrow.assert_not_awaited()


class TestPrompts:
    """Saved prompt validation and ownership."""

    def test_clean_prompt(self):
        from services.workspace.prompts import clean_prompt

        values = clean_prompt({"name": "  Risk basics ", "topic": " Drawdown ", "category": "   ", "extra": "x"})

        assert values == {
            "name": "Risk basics",
            "topic": "Drawdown",
            "category": None,
            "description": None,
            "why_important": None,
            "useful_tips": None,
        }

    def test_name_required(self):
        from core.errors import ValidationError
        from services.workspace.prompts import clean_prompt

        with pytest.raises(ValidationError, match="Prompt name is required"):
            clean_prompt({"name": "   "})
        with pytest.raises(ValidationError):
            clean_prompt({"topic": "no name"})

    @pytest.mark.asyncio
    async def test_create_prompt(self, mock_db_pool):
        from services.workspace.prompts import PromptLibrary

        pool, conn = mock_db_pool
        conn.fetchrow.return_value = {"id": "prompt-1", "name": "Risk basics"}

        prompt = await PromptLibrary(pool).create_prompt("user-1", {"name": "Risk basics", "topic": "Drawdown"})

        assert prompt["id"] == "prompt-1"
        assert conn.fetchrow.call_args.args[1:] == ("user-1", "Risk basics", "Drawdown", None, None, None, None)

    @pytest.mark.asyncio
    async def test_get_missing_prompt(self, mock_db_pool):
        from core.errors import NotFoundError
        from services.workspace.prompts import PromptLibrary

        pool, conn = mock_db_pool
        conn.fetchrow.return_value = None

        with pytest.raises(NotFoundError, match="Prompt not found"):
            await PromptLibrary(pool).get_prompt("prompt-1", "user-1")

    @pytest.mark.asyncio
    async def test_delete_prompt(self, mock_db_pool):
        from core.errors import NotFoundError
        from services.workspace.prompts import PromptLibrary

        pool, conn = mock_db_pool
        library = PromptLibrary(pool)

        conn.execute.return_value = "DELETE 1"
        await library.delete_prompt("prompt-1", "user-1")

        conn.execute.return_value = "DELETE 0"
        with pytest.raises(NotFoundError):
            await library.delete_prompt("prompt-1", "user-1")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
