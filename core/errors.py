"""
Error types shared across the automation pipeline.

Provider errors carry enough of the failed HTTP exchange (status code and
response headers) for the retry layer to decide whether to try again.
Domain errors describe requests that can never succeed as issued.
"""

from typing import Mapping, Optional


class ProviderError(Exception):
    """Raised when an external provider (Perplexity, OpenAI, Poyo, Upload-Post) fails."""

    def __init__(
        self,
        message: str,
        error_code: str = None,
        provider: str = None,
        status_code: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.error_code = error_code
        self.provider = provider
        self.status_code = status_code
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        super().__init__(message)

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429 or self.error_code == "RATE_LIMIT"

    @property
    def is_retryable(self) -> bool:
        """Transient failures that are worth another attempt later."""
        if self.status_code is not None:
            return self.status_code == 429 or 500 <= self.status_code < 600
        return self.error_code in ("RATE_LIMIT", "SERVER_ERROR", "TIMEOUT", "NETWORK_ERROR")


class DomainError(Exception):
    """Base class for request-level errors raised by services."""


class NotFoundError(DomainError):
    """Raised when an entity does not exist or is not owned by the caller."""


class ValidationError(DomainError):
    """Raised when input is missing or malformed."""


class InvalidTransitionError(DomainError):
    """Raised when a plan item is asked to move to a status it cannot reach."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move item from '{current}' to '{target}'")
