"""
Core Tests - retry, circuit breaker, config and feature flags

Run with:
    python -m pytest tests/test_core.py -v
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from unittest.mock import AsyncMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


class TestRetryWithBackoff:
    """Retry only rate limits and server errors, honouring retry-after."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        from core.retry import retry_with_backoff

        operation = AsyncMock(return_value="ok")
        sleep = AsyncMock()

        assert await retry_with_backoff(operation, sleep=sleep) == "ok"
        operation.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_plain_lambda_is_awaited_and_retried(self):
        from core.errors import ProviderError
        from core.retry import retry_with_backoff

        calls = []

        async def fetch(value):
            calls.append(value)
            if len(calls) == 1:
                raise ProviderError("busy", status_code=503)
            return value

        sleep = AsyncMock()

        result = await retry_with_backoff(lambda: fetch("payload"), base_delay_ms=1, sleep=sleep)

        assert result == "payload"
        assert calls == ["payload", "payload"]
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_server_error_retried_with_exponential_delay(self):
        from core.errors import ProviderError
        from core.retry import retry_with_backoff

        operation = AsyncMock(side_effect=[
            ProviderError("boom", status_code=500),
            ProviderError("boom", status_code=503),
            "done",
        ])
        sleep = AsyncMock()

        result = await retry_with_backoff(operation, max_attempts=3, base_delay_ms=1000, sleep=sleep)

        assert result == "done"
        assert operation.await_count == 3
        delays = [call.args[0] for call in sleep.await_args_list]
        assert delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rate_limit_uses_retry_after_header(self):
        from core.errors import ProviderError
        from core.retry import retry_with_backoff

        operation = AsyncMock(side_effect=[
            ProviderError("slow down", status_code=429, headers={"Retry-After": "5"}),
            "done",
        ])
        sleep = AsyncMock()

        await retry_with_backoff(operation, base_delay_ms=1000, sleep=sleep)

        sleep.assert_awaited_once()
        assert sleep.await_args.args[0] == 5.0

    @pytest.mark.asyncio
    async def test_custom_retry_after_header_name(self):
        from core.errors import ProviderError
        from core.retry import retry_with_backoff

        operation = AsyncMock(side_effect=[
            ProviderError("slow down", status_code=429, headers={"x-ratelimit-reset": "2"}),
            "done",
        ])
        sleep = AsyncMock()

        await retry_with_backoff(
            operation,
            base_delay_ms=1000,
            retry_after_headers=("retry-after", "x-ratelimit-reset"),
            sleep=sleep,
        )

        assert sleep.await_args.args[0] == 2.0

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        from core.errors import ProviderError
        from core.retry import retry_with_backoff

        operation = AsyncMock(side_effect=ProviderError("bad request", status_code=400))
        sleep = AsyncMock()

        with pytest.raises(ProviderError):
            await retry_with_backoff(operation, sleep=sleep)

        operation.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_last_error_reraised_when_attempts_run_out(self):
        from core.errors import ProviderError
        from core.retry import retry_with_backoff

        errors = [ProviderError(f"fail {i}", status_code=502) for i in range(3)]
        operation = AsyncMock(side_effect=errors)
        sleep = AsyncMock()

        with pytest.raises(ProviderError) as exc_info:
            await retry_with_backoff(operation, max_attempts=3, sleep=sleep)

        assert exc_info.value is errors[-1]
        assert operation.await_count == 3
        assert sleep.await_count == 2


class TestRetryHelpers:
    """Status extraction and retry-after parsing."""

    def test_retryable_statuses(self):
        from core.retry import is_retryable_status

        assert is_retryable_status(429)
        assert is_retryable_status(500)
        assert is_retryable_status(599)
        assert not is_retryable_status(400)
        assert not is_retryable_status(404)
        assert not is_retryable_status(None)

    def test_parse_retry_after_seconds(self):
        from core.retry import parse_retry_after_ms

        assert parse_retry_after_ms("5") == 5000
        assert parse_retry_after_ms("1.5") == 1500
        assert parse_retry_after_ms(" 0 ") == 0

    def test_parse_retry_after_rejects_garbage(self):
        from core.retry import parse_retry_after_ms

        assert parse_retry_after_ms(None) is None
        assert parse_retry_after_ms("") is None
        assert parse_retry_after_ms("soon") is None
        assert parse_retry_after_ms("-3") is None

    def test_parse_retry_after_http_date(self):
        from core.retry import parse_retry_after_ms

        future = datetime.now(timezone.utc) + timedelta(seconds=120)
        delay = parse_retry_after_ms(format_datetime(future, usegmt=True))
        assert delay is not None
        assert 100_000 < delay <= 120_000

        past = datetime.now(timezone.utc) - timedelta(seconds=120)
        assert parse_retry_after_ms(format_datetime(past, usegmt=True)) is None

    def test_status_code_from_httpx_error(self):
        import httpx

        from core.retry import get_headers, get_status_code

        request = httpx.Request("GET", "https://example.test")
        response = httpx.Response(503, headers={"Retry-After": "3"}, request=request)
        error = httpx.HTTPStatusError("unavailable", request=request, response=response)

        assert get_status_code(error) == 503
        assert get_headers(error)["retry-after"] == "3"


class TestProviderError:
    """Provider error classification."""

    def test_rate_limited_by_status_or_code(self):
        from core.errors import ProviderError

        assert ProviderError("x", status_code=429).is_rate_limited
        assert ProviderError("x", error_code="RATE_LIMIT").is_rate_limited
        assert not ProviderError("x", status_code=500).is_rate_limited

    def test_retryable(self):
        from core.errors import ProviderError

        assert ProviderError("x", status_code=502).is_retryable
        assert ProviderError("x", error_code="TIMEOUT").is_retryable
        assert not ProviderError("x", status_code=401).is_retryable
        assert not ProviderError("x", error_code="CONTENT_POLICY").is_retryable

    def test_headers_lower_cased(self):
        from core.errors import ProviderError

        error = ProviderError("x", headers={"Retry-After": "1"})
        assert error.headers == {"retry-after": "1"}

    def test_invalid_transition_message(self):
        from core.errors import DomainError, InvalidTransitionError

        error = InvalidTransitionError("posted", "pending")
        assert isinstance(error, DomainError)
        assert "posted" in str(error) and "pending" in str(error)


class TestCircuitBreaker:
    """Open after repeated failures, reject while open."""

    def setup_method(self):
        from core.circuit_breaker import CircuitBreaker

        CircuitBreaker._instances.pop("test-service", None)

    def teardown_method(self):
        from core.circuit_breaker import CircuitBreaker

        CircuitBreaker._instances.pop("test-service", None)

    def _breaker(self, **overrides):
        from core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig

        settings = {"failure_threshold": 2, "recovery_timeout": 60.0, "timeout": 5.0}
        settings.update(overrides)
        return CircuitBreaker("test-service", CircuitBreakerConfig(**settings))

    @pytest.mark.asyncio
    async def test_passes_results_through(self):
        breaker = self._breaker()
        result = await breaker.call(AsyncMock(return_value=42))
        assert result == 42
        assert breaker.get_status()["state"] == "closed"

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        from core.circuit_breaker import CircuitBreakerOpen, CircuitState

        breaker = self._breaker()
        failing = AsyncMock(side_effect=RuntimeError("down"))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)

        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitBreakerOpen) as exc_info:
            await breaker.call(AsyncMock(return_value="never"))
        assert exc_info.value.service_name == "test-service"
        assert exc_info.value.retry_after > 0

    @pytest.mark.asyncio
    async def test_permanent_provider_errors_do_not_count(self):
        from core.circuit_breaker import CircuitState
        from core.errors import ProviderError

        breaker = self._breaker()
        rejected = AsyncMock(side_effect=ProviderError("bad prompt", error_code="INVALID_PARAMS", status_code=422))

        for _ in range(3):
            with pytest.raises(ProviderError):
                await breaker.call(rejected)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_status()["total_failures"] == 0

    @pytest.mark.asyncio
    async def test_server_errors_count(self):
        from core.circuit_breaker import CircuitState
        from core.errors import ProviderError

        breaker = self._breaker()
        down = AsyncMock(side_effect=ProviderError("upstream", error_code="SERVER_ERROR", status_code=503))

        for _ in range(2):
            with pytest.raises(ProviderError):
                await breaker.call(down)

        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_half_open_successes_close_circuit(self):
        from core.circuit_breaker import CircuitState

        breaker = self._breaker(recovery_timeout=0.0, success_threshold=1)
        failing = AsyncMock(side_effect=RuntimeError("down"))
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)

        assert await breaker.call(AsyncMock(return_value="back")) == "back"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_reset(self):
        from core.circuit_breaker import CircuitState

        breaker = self._breaker()
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(AsyncMock(side_effect=RuntimeError("down")))

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_status()["failure_count"] == 0

    def test_provider_breakers_are_shared(self):
        from core.circuit_breaker import CircuitBreaker, get_provider_breaker

        poyo = get_provider_breaker("poyo")
        assert get_provider_breaker("poyo") is poyo
        assert poyo.config.failure_threshold == 3
        assert "poyo" in CircuitBreaker.get_all_status()


class TestConfig:
    """Environment driven configuration."""

    ENV_VARS = [
        "DATABASE_URL",
        "PERPLEXITY_API_KEY",
        "OPENAI_API_KEY",
        "POYO_API_KEY",
        "UPLOADPOST_KEY",
        "UPLOADPOST_MAX_POSTS_PER_RUN",
        "UPLOADPOST_SEND_INTERVAL_MINUTES",
    ]

    def setup_method(self):
        """Clean up environment before each test."""
        self._saved = {name: os.environ.pop(name) for name in self.ENV_VARS if name in os.environ}

    def teardown_method(self):
        """Restore environment after each test."""
        for name in self.ENV_VARS:
            os.environ.pop(name, None)
        os.environ.update(self._saved)

    def test_defaults(self):
        from core.config import Config

        config = Config.from_env()
        assert config.automation.scheduled_plans_interval == 60
        assert config.automation.video_refresh_interval == 30
        assert config.distribution.max_posts_per_run == 3
        assert config.distribution.send_interval_minutes == 1
        assert config.models.video_models[0] == "sora-2"

    def test_validate_reports_missing_keys(self):
        from core.config import Config

        issues = Config.from_env().validate()
        assert any("DATABASE_URL" in issue for issue in issues)
        assert any("POYO_API_KEY" in issue for issue in issues)
        assert any("UPLOADPOST_KEY" in issue for issue in issues)

    def test_validate_clean_config(self):
        from core.config import Config

        for name in ["DATABASE_URL", "PERPLEXITY_API_KEY", "OPENAI_API_KEY", "POYO_API_KEY", "UPLOADPOST_KEY"]:
            os.environ[name] = "set"

        assert Config.from_env().validate() == []

    def test_distribution_env_overrides(self):
        from core.config import Config

        os.environ["UPLOADPOST_MAX_POSTS_PER_RUN"] = "5"
        os.environ["UPLOADPOST_SEND_INTERVAL_MINUTES"] = "not-a-number"

        config = Config.from_env()
        assert config.distribution.max_posts_per_run == 5
        assert config.distribution.send_interval_minutes == 1


class TestFeatureFlags:
    """Distribution mode and automation switch."""

    def setup_method(self):
        """Clean up environment before each test."""
        for name in ("UPLOADPOST_SKIP_SCHEDULING", "AUTOMATION_ENABLED"):
            if name in os.environ:
                del os.environ[name]

    def teardown_method(self):
        """Clean up environment after each test."""
        for name in ("UPLOADPOST_SKIP_SCHEDULING", "AUTOMATION_ENABLED"):
            if name in os.environ:
                del os.environ[name]

    def test_default_is_deferred(self):
        from core.feature_flags import DistributionMode, get_distribution_mode, should_defer_posting

        assert get_distribution_mode() == DistributionMode.DEFERRED
        assert should_defer_posting()

    def test_provider_mode(self):
        os.environ["UPLOADPOST_SKIP_SCHEDULING"] = "false"

        from core.feature_flags import should_defer_posting

        assert not should_defer_posting()

    def test_any_other_value_defers(self):
        os.environ["UPLOADPOST_SKIP_SCHEDULING"] = "maybe"

        from core.feature_flags import should_defer_posting

        assert should_defer_posting()

    def test_override_wins(self):
        os.environ["UPLOADPOST_SKIP_SCHEDULING"] = "false"

        from core.feature_flags import should_defer_posting

        assert should_defer_posting(override="deferred")
        assert not should_defer_posting(override="provider")

    def test_feature_status(self):
        os.environ["AUTOMATION_ENABLED"] = "false"

        from core.feature_flags import get_feature_status

        status = get_feature_status()
        assert status["distribution_mode"] == "deferred"
        assert status["env_var"] == "UPLOADPOST_SKIP_SCHEDULING"
        assert status["automation_enabled"] is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
