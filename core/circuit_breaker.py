"""
Circuit Breaker for provider APIs.

Each provider (Perplexity, OpenAI, Poyo, Upload-Post) has one shared breaker.
After enough consecutive outages the breaker opens and calls fail fast with
CircuitBreakerOpen until the recovery timeout has passed. Permanent request
errors (bad parameters, missing credits, auth) are the caller's problem and
are not counted.

States:
- CLOSED: calls pass through
- OPEN: calls are rejected
- HALF_OPEN: recovery timeout elapsed; successes close it, a failure reopens it
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


def counts_as_outage(error: BaseException) -> bool:
    """Timeouts, network failures, 429 and 5xx count; other provider errors do not."""
    if isinstance(error, ProviderError):
        return error.is_retryable
    return True


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5  # Consecutive outages before opening
    recovery_timeout: float = 30.0  # Seconds before a half-open trial call
    success_threshold: int = 2  # Half-open successes needed to close
    timeout: float = 60.0  # Per-call timeout in seconds
    is_failure: Callable[[BaseException], bool] = counts_as_outage


class CircuitBreakerOpen(Exception):
    """Raised when circuit breaker is open and request is rejected."""

    def __init__(self, service_name: str, retry_after: float):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker is OPEN for {service_name}. "
            f"Retry after {retry_after:.1f} seconds."
        )


class CircuitBreaker:
    """
    Per-provider circuit breaker.

    Usage:
        breaker = get_provider_breaker("poyo")
        task_id = await breaker.call(client.submit_once, payload)
    """

    # Global registry, keyed by provider name
    _instances: dict[str, "CircuitBreaker"] = {}

    def __init__(self, service_name: str, config: Optional[CircuitBreakerConfig] = None):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._lock = asyncio.Lock()
        self.reset(log=False)

        CircuitBreaker._instances[service_name] = self

    @classmethod
    def get_all_status(cls) -> dict[str, dict]:
        return {name: cb.get_status() for name, cb in cls._instances.items()}

    @property
    def state(self) -> CircuitState:
        return self._state

    def _set_state(self, state: CircuitState):
        logger.info(f"Circuit breaker [{self.service_name}]: {self._state.value} -> {state.value}")
        self._state = state
        self._opened_at = time.time() if state == CircuitState.OPEN else self._opened_at
        self._successes = 0

    async def _before_call(self):
        async with self._lock:
            self.total_calls += 1
            if self._state != CircuitState.OPEN:
                return
            waited = time.time() - self._opened_at
            if waited < self.config.recovery_timeout:
                raise CircuitBreakerOpen(self.service_name, self.config.recovery_timeout - waited)
            self._set_state(CircuitState.HALF_OPEN)

    async def _record(self, error: Optional[BaseException]):
        async with self._lock:
            if error is None:
                self.failure_count = 0
                if self._state == CircuitState.HALF_OPEN:
                    self._successes += 1
                    if self._successes >= self.config.success_threshold:
                        self._set_state(CircuitState.CLOSED)
                return

            self.failure_count += 1
            self.total_failures += 1
            logger.warning(
                f"Circuit breaker [{self.service_name}] failure: {error}. "
                f"Failure count: {self.failure_count}/{self.config.failure_threshold}"
            )
            if self._state == CircuitState.HALF_OPEN or self.failure_count >= self.config.failure_threshold:
                self._set_state(CircuitState.OPEN)

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """
        Execute an async function under breaker protection.

        Raises:
            CircuitBreakerOpen: If the circuit is open
            asyncio.TimeoutError: If the call exceeds config.timeout
        """
        await self._before_call()

        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.config.timeout)
        except Exception as e:
            if self.config.is_failure(e):
                await self._record(e)
            raise

        await self._record(None)
        return result

    def reset(self, log: bool = True):
        """Close the circuit and clear counters."""
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._successes = 0
        self.failure_count = 0
        self.total_calls = 0
        self.total_failures = 0
        if log:
            logger.info(f"Circuit breaker [{self.service_name}] manually reset")

    def get_status(self) -> dict:
        return {
            "service": self.service_name,
            "state": self._state.value,
            "failure_count": self.failure_count,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
        }


# Poyo status polling and Upload-Post uploads can take much longer than chat calls
PROVIDER_BREAKER_CONFIGS = {
    "perplexity": CircuitBreakerConfig(failure_threshold=5, recovery_timeout=60.0, timeout=120.0),
    "openai": CircuitBreakerConfig(failure_threshold=5, recovery_timeout=30.0, timeout=120.0),
    "poyo": CircuitBreakerConfig(failure_threshold=3, recovery_timeout=60.0, timeout=300.0),
    "uploadpost": CircuitBreakerConfig(failure_threshold=5, recovery_timeout=60.0, timeout=180.0),
}


def get_provider_breaker(provider: str) -> CircuitBreaker:
    """Shared breaker for 'perplexity', 'openai', 'poyo' or 'uploadpost', created on first use."""
    existing = CircuitBreaker._instances.get(provider)
    if existing is not None:
        return existing
    return CircuitBreaker(provider, PROVIDER_BREAKER_CONFIGS.get(provider, CircuitBreakerConfig()))
