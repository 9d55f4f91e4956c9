"""
Configuration management for Content Autopilot.

Centralizes all configuration including:
- Provider API keys and endpoints
- Model selections
- Automation job intervals
- Distribution behaviour
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass
class APIConfig:
    """API configuration for the research, script, video and posting providers."""

    # Research (Perplexity)
    perplexity_api_key: str = field(default_factory=lambda: os.getenv("PERPLEXITY_API_KEY", ""))
    perplexity_api_url: str = "https://api.perplexity.ai/chat/completions"

    # Scripts (OpenAI)
    openai_api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    openai_api_base: str = field(
        default_factory=lambda: os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
    )

    # Video (Poyo / Sora 2)
    poyo_api_key: str = field(default_factory=lambda: os.getenv("POYO_API_KEY", ""))
    poyo_api_base: str = field(default_factory=lambda: os.getenv("POYO_API_URL", "https://api.poyo.ai"))
    poyo_callback_url: str = field(default_factory=lambda: os.getenv("POYO_CALLBACK_URL", ""))

    # Distribution (Upload-Post)
    uploadpost_key: str = field(default_factory=lambda: os.getenv("UPLOADPOST_KEY", ""))
    uploadpost_api_base: str = "https://api.upload-post.com/api"


@dataclass
class DatabaseConfig:
    """Database configuration."""
    url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    pool_min_size: int = 2
    pool_max_size: int = 10


@dataclass
class ModelConfig:
    """Model selection configuration."""

    research_model: str = "sonar-pro"
    research_temperature: float = 0.5

    script_model: str = "gpt-4o"
    script_temperature: float = 0.5
    script_max_tokens: int = 2048

    # Tried in order when a submission fails
    video_models: list[str] = field(default_factory=lambda: [
        "sora-2",
        "sora-2",
        "sora-2-stable",
        "sora-2-stable",
    ])
    video_poll_interval_seconds: float = 10.0
    video_poll_max_attempts: int = 120


@dataclass
class AutomationConfig:
    """Intervals (seconds) for the background automation jobs."""
    scheduled_plans_interval: int = 60
    script_generation_interval: int = 120
    video_generation_interval: int = 120
    distribution_interval: int = 60
    video_refresh_interval: int = 30
    trigger_window_minutes: int = 5
    batch_size: int = 10


@dataclass
class DistributionConfig:
    """Upload-Post posting behaviour."""
    max_posts_per_run: int = field(default_factory=lambda: _env_int("UPLOADPOST_MAX_POSTS_PER_RUN", 3))
    delay_between_batches_ms: int = field(default_factory=lambda: _env_int("UPLOADPOST_DELAY_MS", 2000))
    send_interval_minutes: int = field(default_factory=lambda: _env_int("UPLOADPOST_SEND_INTERVAL_MINUTES", 1))
    due_buffer_seconds: int = 30
    rate_limit_pause_seconds: float = 5.0
    retry_base_delay_ms: int = 2000
    max_retries: int = 3


@dataclass
class Config:
    """Main configuration class."""

    api: APIConfig = field(default_factory=APIConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    models: ModelConfig = field(default_factory=ModelConfig)
    automation: AutomationConfig = field(default_factory=AutomationConfig)
    distribution: DistributionConfig = field(default_factory=DistributionConfig)

    # Provider retry defaults
    max_retries: int = 3
    retry_base_delay_ms: int = 1000

    # HTTP server
    cors_origin: str = field(default_factory=lambda: os.getenv("CORS_ORIGIN", "http://localhost:5173"))

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.database.url:
            issues.append("DATABASE_URL not configured")

        if not self.api.perplexity_api_key:
            issues.append("PERPLEXITY_API_KEY not configured (needed for topic research)")

        if not self.api.openai_api_key:
            issues.append("OPENAI_API_KEY not configured (needed for script generation)")

        if not self.api.poyo_api_key:
            issues.append("POYO_API_KEY not configured (needed for video generation)")

        if not self.api.uploadpost_key:
            issues.append("UPLOADPOST_KEY not configured (needed for distribution)")

        if self.distribution.send_interval_minutes < 1:
            issues.append("UPLOADPOST_SEND_INTERVAL_MINUTES must be at least 1")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config
