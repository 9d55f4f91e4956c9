"""
Poyo Video Generation Client (Sora 2)

Submit-then-poll access to Sora 2 through the Poyo aggregator:
- Submission walks a fixed model fallback list
- Status lookups try several endpoint shapes, since Poyo has moved them
- Polling reports coarse progress through an optional callback
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from core.circuit_breaker import CircuitBreakerOpen, get_provider_breaker
from core.config import get_config
from core.errors import ProviderError
from core.retry import get_status_code, is_retryable_status, retry_with_backoff

logger = logging.getLogger(__name__)

SUBMIT_PATH = "/api/generate/submit"

# Tried in order; 404/405 moves on to the next one
STATUS_ENDPOINTS = [
    ("GET", "/api/task/status"),
    ("POST", "/api/task/status"),
    ("GET", "/api/generate/status"),
    ("POST", "/api/generate/status"),
]

SUBMIT_TIMEOUT = 30.0
STATUS_TIMEOUT = 15.0
STATUS_MAX_ATTEMPTS = 3
STATUS_BASE_DELAY_MS = 1000


class VideoGenerationError(ProviderError):
    """Raised when video generation fails."""

    def __init__(
        self,
        message: str,
        error_code: str = None,
        status_code: Optional[int] = None,
        headers=None,
    ):
        super().__init__(
            message,
            error_code=error_code,
            provider="poyo",
            status_code=status_code,
            headers=headers,
        )


class TaskStatus(str, Enum):
    """Poyo task states."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    FAILED = "failed"


@dataclass
class SoraRequest:
    """Request for one Sora 2 clip."""
    prompt: str
    duration_seconds: int = 15
    aspect_ratio: str = "9:16"
    image_urls: list[str] = field(default_factory=list)
    style: Optional[str] = None
    storyboard: Optional[bool] = None
    callback_url: Optional[str] = None


@dataclass
class VideoResult:
    """Snapshot of a Poyo task."""
    task_id: str
    status: TaskStatus
    video_url: Optional[str] = None
    model: Optional[str] = None
    error_message: Optional[str] = None
    raw: dict = field(default_factory=dict)

    @property
    def is_done(self) -> bool:
        return self.status in (TaskStatus.FINISHED, TaskStatus.FAILED)


def map_aspect_ratio(value: Optional[str]) -> str:
    """Sora only renders 9:16 or 16:9; anything unrecognised is vertical."""
    if value in ("16:9", "horizontal", "landscape"):
        return "16:9"
    return "9:16"


def map_duration(seconds: Optional[int]) -> int:
    """Sora clip lengths are 10 or 15 seconds."""
    if seconds is not None and seconds >= 15:
        return 15
    return 10


def extract_video_url(data: dict) -> Optional[str]:
    """First video url found in a task's ``data`` block."""
    output = data.get("output") or {}
    result = data.get("result") or {}

    for candidate in (
        data.get("video_url"),
        output.get("video_url"),
        result.get("video_url"),
        output.get("url"),
        result.get("url"),
    ):
        if candidate:
            return candidate

    for urls in (data.get("video_urls"), output.get("urls"), result.get("urls")):
        if urls and urls[0]:
            return urls[0]

    return None


def _error_message(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return body.get("message")


def map_http_error(status: int, body: Any = None, headers=None) -> VideoGenerationError:
    """Translate a Poyo HTTP failure into a VideoGenerationError."""
    detail = _error_message(body)

    if status == 401:
        message, code = "Poyo API authentication failed. Please check POYO_API_KEY.", "AUTH_FAILED"
    elif status == 402:
        message, code = "Insufficient credits in your Poyo account.", "INSUFFICIENT_CREDITS"
    elif status == 404:
        message, code = f"Poyo API error: {detail or 'Not found'}", "NOT_FOUND"
    elif status == 422:
        message, code = f"Invalid request parameters: {detail or 'Validation error'}", "INVALID_PARAMS"
    elif status == 429:
        message, code = "Poyo API rate limit exceeded. Please try again later.", "RATE_LIMIT"
    elif status >= 500:
        message, code = "Poyo API server error. Please try again later.", "SERVER_ERROR"
    else:
        message, code = f"Poyo API error: {detail or f'HTTP {status}'}", f"HTTP_{status}"

    return VideoGenerationError(message, error_code=code, status_code=status, headers=headers)


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _status_wait(retry_state: RetryCallState) -> float:
    # 404 means the task is still registering: back off linearly
    error = retry_state.outcome.exception()
    attempt = retry_state.attempt_number
    if get_status_code(error) == 404:
        return STATUS_BASE_DELAY_MS * attempt / 1000.0
    return STATUS_BASE_DELAY_MS * (2 ** (attempt - 1)) / 1000.0


def _is_status_retryable(error: BaseException) -> bool:
    status = get_status_code(error)
    return status == 404 or is_retryable_status(status)


class PoyoClient:
    """
    Client for Sora 2 through Poyo.

    Usage:
        client = PoyoClient()

        task_id, model = await client.submit(SoraRequest(prompt="..."))
        result = await client.wait_for_completion(task_id)
        print(result.video_url)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        config=None,
        on_progress: Optional[Callable[[str, int, str], None]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            api_key: Overrides POYO_API_KEY
            config: Optional config override
            on_progress: Callback for progress updates (task_id, percent, status)
            transport: httpx transport, replaceable in tests
            sleep: Awaitable sleep used between polls and retries
        """
        self.config = config or get_config()
        self.api_key = api_key or self.config.api.poyo_api_key
        self.base_url = self.config.api.poyo_api_base.rstrip("/")
        self.on_progress = on_progress
        self._transport = transport
        self._sleep = sleep
        self._http_client: Optional[httpx.AsyncClient] = None
        self._breaker = get_provider_breaker("poyo")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=SUBMIT_TIMEOUT, transport=self._transport)
        return self._http_client

    async def close(self):
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _emit_progress(self, task_id: str, percent: int, status: str):
        """Emit progress update via callback."""
        if self.on_progress:
            try:
                self.on_progress(task_id, percent, status)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    def _require_key(self):
        if not self.api_key:
            raise VideoGenerationError("Missing POYO_API_KEY environment variable", error_code="NOT_CONFIGURED")

    def build_payload(self, model: str, request: SoraRequest) -> dict:
        """Submission body for one model attempt."""
        input_params: dict[str, Any] = {
            "prompt": request.prompt,
            "duration": map_duration(request.duration_seconds),
            "aspect_ratio": map_aspect_ratio(request.aspect_ratio),
        }
        if request.image_urls:
            input_params["image_urls"] = list(request.image_urls)
        if request.style:
            input_params["style"] = request.style
        if isinstance(request.storyboard, bool):
            input_params["storyboard"] = request.storyboard

        payload: dict[str, Any] = {"model": model, "input": input_params}
        callback_url = request.callback_url or self.config.api.poyo_callback_url
        if callback_url:
            payload["callback_url"] = callback_url
        return payload

    async def _submit_once(self, payload: dict) -> str:
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}{SUBMIT_PATH}",
                json=payload,
                headers=self._headers,
                timeout=SUBMIT_TIMEOUT,
            )
        except httpx.TimeoutException as e:
            raise VideoGenerationError(
                f"Request timeout while connecting to Poyo API: {type(e).__name__}",
                error_code="TIMEOUT",
            )
        except httpx.RequestError as e:
            raise VideoGenerationError(
                f"Poyo API request failed: {type(e).__name__}: {e}",
                error_code="NETWORK_ERROR",
            )

        body = _safe_json(response)
        if response.status_code >= 400:
            raise map_http_error(response.status_code, body, response.headers)

        if not isinstance(body, dict) or body.get("code") != 200:
            raise VideoGenerationError(
                f"Poyo API error: {_error_message(body) or 'Unexpected response'}",
                error_code=f"POYO_{body.get('code') if isinstance(body, dict) else 'INVALID'}",
            )

        task_id = (body.get("data") or {}).get("task_id")
        if not task_id:
            raise VideoGenerationError("No task_id in Poyo response", error_code="NO_TASK_ID")
        return task_id

    async def submit(self, request: SoraRequest) -> tuple[str, str]:
        """
        Submit a generation task, walking the model fallback list.

        Returns:
            (task_id, model that accepted the task)

        Raises:
            VideoGenerationError: Every model attempt failed (the last error)
            CircuitBreakerOpen: Poyo is failing across the board
        """
        self._require_key()
        models = self.config.models.video_models
        last_error: Optional[BaseException] = None

        for index, model in enumerate(models, start=1):
            payload = self.build_payload(model, request)
            logger.info(
                f"[Poyo] Creating task with {model} (attempt {index}/{len(models)}): "
                f"{request.prompt[:100]}..."
            )
            try:
                task_id = await self._breaker.call(
                    retry_with_backoff,
                    lambda: self._submit_once(payload),
                    max_attempts=self.config.max_retries,
                    base_delay_ms=self.config.retry_base_delay_ms,
                    sleep=self._sleep,
                )
            except CircuitBreakerOpen:
                raise
            except (VideoGenerationError, asyncio.TimeoutError) as e:
                last_error = e
                logger.error(f"[Poyo] Failed to create task with {model} (attempt {index}/{len(models)}): {e}")
                continue

            logger.info(f"[Poyo] Task created: {task_id} ({model})")
            return task_id, model

        if isinstance(last_error, VideoGenerationError):
            raise last_error
        raise VideoGenerationError(
            "Failed to create Sora 2 video generation task",
            error_code="TIMEOUT" if last_error else "SUBMIT_FAILED",
        )

    async def _fetch_status_once(self, task_id: str) -> dict:
        client = await self._get_client()

        for method, path in STATUS_ENDPOINTS:
            url = f"{self.base_url}{path}"
            try:
                if method == "GET":
                    response = await client.get(
                        url, params={"task_id": task_id}, headers=self._headers, timeout=STATUS_TIMEOUT
                    )
                else:
                    response = await client.post(
                        url, json={"task_id": task_id}, headers=self._headers, timeout=STATUS_TIMEOUT
                    )
            except httpx.TimeoutException as e:
                raise VideoGenerationError(f"Poyo status timeout: {type(e).__name__}", error_code="TIMEOUT")
            except httpx.RequestError as e:
                raise VideoGenerationError(f"Poyo status request failed: {e}", error_code="NETWORK_ERROR")

            if response.status_code in (404, 405):
                continue

            body = _safe_json(response)
            if response.status_code >= 400:
                raise map_http_error(response.status_code, body, response.headers)
            if not isinstance(body, dict) or body.get("code") != 200:
                raise VideoGenerationError(
                    f"Poyo API error: {_error_message(body) or 'Unexpected response'}",
                    error_code="STATUS_ERROR",
                )
            return body

        raise VideoGenerationError(f"Task not found: {task_id}", error_code="NOT_FOUND", status_code=404)

    async def get_task_status(self, task_id: str) -> VideoResult:
        """
        Current state of a task.

        A 404 from every endpoint is retried with a linear delay (the task may
        still be registering); 429/5xx are retried with exponential delay.
        """
        self._require_key()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(STATUS_MAX_ATTEMPTS),
            wait=_status_wait,
            retry=retry_if_exception(_is_status_retryable),
            sleep=self._sleep,
            reraise=True,
        )
        body = await retrying(self._fetch_status_once, task_id)

        data = body.get("data") or {}
        try:
            status = TaskStatus(data.get("status", TaskStatus.NOT_STARTED.value))
        except ValueError:
            logger.warning(f"[Poyo] Unknown task status '{data.get('status')}' for {task_id}")
            status = TaskStatus.IN_PROGRESS

        error = data.get("error") or {}
        return VideoResult(
            task_id=data.get("task_id") or task_id,
            status=status,
            video_url=extract_video_url(data),
            error_message=error.get("message") if isinstance(error, dict) else None,
            raw=body,
        )

    async def wait_for_completion(
        self,
        task_id: str,
        max_attempts: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ) -> VideoResult:
        """
        Poll until the task finishes.

        Raises:
            VideoGenerationError: Task failed, or did not finish in max_attempts polls
        """
        max_attempts = max_attempts or self.config.models.video_poll_max_attempts
        poll_interval = poll_interval if poll_interval is not None else self.config.models.video_poll_interval_seconds

        for attempt in range(1, max_attempts + 1):
            try:
                result = await self.get_task_status(task_id)
            except VideoGenerationError as e:
                if e.status_code == 404:
                    logger.warning(f"[Poyo] Task {task_id} not found yet ({attempt}/{max_attempts})")
                    await self._sleep(poll_interval)
                    continue
                raise

            logger.info(f"[Poyo] Task {task_id} status: {result.status.value} ({attempt}/{max_attempts})")
            progress = min(95, int(attempt * 100 / max_attempts + 0.5))
            self._emit_progress(task_id, progress, result.status.value)

            if result.status == TaskStatus.FINISHED:
                return result

            if result.status == TaskStatus.FAILED:
                message = result.error_message or "Video generation failed"
                raise VideoGenerationError(f"Sora video generation failed: {message}", error_code="JOB_FAILED")

            await self._sleep(poll_interval)

        raise VideoGenerationError(
            f"Task {task_id} timed out after {max_attempts} attempts",
            error_code="POLL_TIMEOUT",
        )


# Singleton instance
_client: Optional[PoyoClient] = None


def get_poyo_client() -> PoyoClient:
    """Get the global Poyo client instance."""
    global _client
    if _client is None:
        _client = PoyoClient()
    return _client
