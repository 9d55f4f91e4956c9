"""
Content Autopilot Core Components

Provides foundational infrastructure for the automation pipeline:
- Circuit breakers and retry with backoff for provider calls
- Configuration and feature flags
- Shared error types and the PostgreSQL pool
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerOpen, CircuitState
from .config import Config, get_config
from .errors import DomainError, InvalidTransitionError, NotFoundError, ProviderError, ValidationError

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerOpen",
    "CircuitState",
    "Config",
    "get_config",
    "DomainError",
    "InvalidTransitionError",
    "NotFoundError",
    "ProviderError",
    "ValidationError",
]
