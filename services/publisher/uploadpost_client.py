"""
Upload-Post API Client

Multi-platform short-video publishing via Upload-Post.
Supports: Instagram (Reels), TikTok, YouTube (Shorts), Facebook

Each of our users maps to one Upload-Post profile named ``user_{id}``; the
profile owns the linked social accounts, so uploads only name the profile.

API Docs: https://docs.upload-post.com/
Base URL: https://api.upload-post.com/api
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional
from urllib.parse import quote

import aiohttp

from core.circuit_breaker import get_provider_breaker
from core.config import get_config
from core.errors import ProviderError
from core.feature_flags import should_defer_posting
from core.retry import retry_with_backoff

logger = logging.getLogger(__name__)

ENDPOINTS = {
    "users": "/uploadposts/users",
    "access_link": "/uploadposts/users/generate-jwt",
    "upload": "/upload",
    "upload_status": "/uploadposts/status",
    "analytics": "/analytics",
}

MAX_TITLE_LENGTH = 100
FALLBACK_TITLE = "Video Post"
RETRY_AFTER_HEADERS = ("retry-after", "x-ratelimit-reset")


class Platform(str, Enum):
    """Platforms a plan can publish to."""
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"
    FACEBOOK = "facebook"


SUPPORTED_PLATFORMS = tuple(p.value for p in Platform)


class DistributionError(ProviderError):
    """Raised when Upload-Post rejects or fails a request."""

    def __init__(self, message: str, error_code: str = None, status_code: Optional[int] = None, headers=None):
        super().__init__(
            message,
            error_code=error_code,
            provider="uploadpost",
            status_code=status_code,
            headers=headers,
        )


@dataclass
class PlatformResult:
    """Outcome of a post on one platform."""
    platform: str
    status: str  # success, failed, pending
    post_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == "success"


@dataclass
class UploadResponse:
    """Normalized upload or upload-status response."""
    status: str
    upload_id: Optional[str] = None
    results: list[PlatformResult] = field(default_factory=list)
    error: Optional[str] = None
    raw: Any = None

    def result_for(self, platform: str) -> Optional[PlatformResult]:
        """Result for a platform, matched case-insensitively."""
        wanted = platform.lower()
        for result in self.results:
            if result.platform.lower() == wanted:
                return result
        return None


def build_title(caption: Optional[str]) -> str:
    """Trimmed caption, "Video Post" when empty, at most 100 characters."""
    title = (caption or "").strip() or FALLBACK_TITLE
    if len(title) <= MAX_TITLE_LENGTH:
        return title
    return title[:MAX_TITLE_LENGTH].rstrip()


def format_scheduled_date(value: datetime | str) -> str:
    """ISO 8601 in UTC with a trailing Z."""
    if isinstance(value, str):
        if "T" in value and value.endswith("Z"):
            return value
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise DistributionError(f"Invalid scheduled time format: {value}", error_code="INVALID_PARAMS")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def build_upload_form_fields(
    user: str,
    video_url: str,
    platforms: Iterable[str],
    caption: Optional[str] = None,
    scheduled_time: datetime | str | None = None,
    provider_scheduling: bool = False,
    async_upload: bool = True,
) -> list[tuple[str, str]]:
    """
    Multipart fields for POST /upload.

    ``scheduled_date`` is only sent when Upload-Post does the scheduling;
    in deferred mode our own worker sends the post at the scheduled time.
    """
    platforms = list(platforms)
    title = build_title(caption)
    fields = [
        ("user", user),
        ("video", video_url),
        ("title", title),
        ("description", title),
    ]
    fields.extend(("platform[]", platform) for platform in platforms)

    if Platform.INSTAGRAM.value in platforms:
        fields.append(("media_type", "REELS"))
        fields.append(("share_to_feed", "true"))

    if scheduled_time and provider_scheduling:
        fields.append(("scheduled_date", format_scheduled_date(scheduled_time)))

    fields.append(("async_upload", "true" if async_upload else "false"))
    return fields


def _post_id(result: dict) -> Optional[str]:
    for key in ("url", "container_id", "post_id", "video_id", "id"):
        if result.get(key):
            return str(result[key])
    return None


def _result_status(result: dict) -> str:
    status = result.get("status")
    if result.get("success") is True or status in ("success", "completed", "posted"):
        return "success"
    if result.get("error") or result.get("success") is False or status == "failed":
        return "failed"
    return status or "pending"


def normalize_results(results: Any) -> list[PlatformResult]:
    """
    Per-platform results from either response shape:

    - {"tiktok": {"success": true, "url": ...}, ...}
    - [{"platform": "TikTok", "status": "completed", "post_id": ...}, ...]
    """
    if isinstance(results, dict):
        return [
            PlatformResult(
                platform=str(platform).lower(),
                status=_result_status(result or {}),
                post_id=_post_id(result or {}),
                error=(result or {}).get("error"),
            )
            for platform, result in results.items()
        ]

    if isinstance(results, list):
        normalized = []
        for result in results:
            if not isinstance(result, dict):
                continue
            platform = result.get("platform") or result.get("platform_name") or result.get("name") or "unknown"
            normalized.append(PlatformResult(
                platform=str(platform).lower(),
                status=_result_status(result),
                post_id=_post_id(result),
                error=result.get("error"),
            ))
        return normalized

    return []


def parse_upload_response(status_code: int, body: Any) -> UploadResponse:
    """Interpret a successful POST /upload reply."""
    body = body if isinstance(body, dict) else {}

    if status_code == 202:
        upload_id = body.get("job_id") or body.get("request_id") or body.get("upload_id")
        logger.info(f"[Upload-Post] Scheduled upload, job_id: {upload_id}")
        return UploadResponse(status="scheduled", upload_id=upload_id, raw=body)

    results = normalize_results(body.get("results"))
    upload_id = body.get("request_id") or body.get("upload_id")

    if upload_id:
        logger.info(f"[Upload-Post] Async upload started, request_id: {upload_id}")
        all_done = bool(results) and all(r.success for r in results)
        return UploadResponse(
            status="success" if all_done else "pending",
            upload_id=upload_id,
            results=results,
            raw=body,
        )

    if "results" in body:
        return UploadResponse(
            status="success" if body.get("success") else (body.get("status") or "pending"),
            results=results,
            error=body.get("error"),
            raw=body,
        )

    logger.warning(f"[Upload-Post] Unexpected response format: {body}")
    return UploadResponse(
        status="pending",
        upload_id=body.get("job_id"),
        error="Unexpected response format from upload-post API",
        raw=body,
    )


def parse_status_response(upload_id: str, body: Any) -> UploadResponse:
    """Interpret GET /uploadposts/status."""
    body = body if isinstance(body, dict) else {}
    overall = body.get("status") or "unknown"
    if overall in ("completed", "posted"):
        overall = "success"
    return UploadResponse(
        status=overall,
        upload_id=upload_id,
        results=normalize_results(body.get("results")),
        error=body.get("error"),
        raw=body,
    )


def _error_detail(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        return body.get("message") or body.get("error")
    return None


def map_http_error(status: int, body: Any, headers=None, endpoint: str = "") -> DistributionError:
    detail = _error_detail(body)
    if status == 401:
        message, code = "Upload-Post API authentication failed. Please check UPLOADPOST_KEY.", "AUTH_FAILED"
    elif status == 403:
        message, code = detail or "Upload-Post API access forbidden. Please check your plan limits.", "FORBIDDEN"
    elif status == 404:
        message, code = f"Upload-Post API endpoint not found (404): {endpoint}", "NOT_FOUND"
    elif status == 429:
        message, code = detail or "Upload-Post API rate limit exceeded. Please try again later.", "RATE_LIMIT"
    elif status >= 500:
        message, code = "Upload-Post API server error. Please try again later.", "SERVER_ERROR"
    else:
        message, code = detail or f"Upload-Post API error: HTTP {status}", f"HTTP_{status}"
    return DistributionError(message, error_code=code, status_code=status, headers=headers)


class UploadPostClient:
    """
    Upload-Post API client.

    Usage:
        client = get_uploadpost_client()

        await client.create_user_profile("user_123")
        link = await client.generate_access_link("user_123", platforms=["tiktok"])

        response = await client.post_video(
            user="user_123",
            video_url="https://cdn.example.com/clip.mp4",
            platforms=["tiktok", "instagram"],
            caption="Three habits of funded traders",
        )
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        config=None,
        timeout: int = 60,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or get_config()
        self.api_key = api_key or self.config.api.uploadpost_key
        self.base_url = self.config.api.uploadpost_api_base.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._sleep = sleep
        self._session: Optional[aiohttp.ClientSession] = None
        self._breaker = get_provider_breaker("uploadpost")

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={"Authorization": f"Apikey {self.api_key}"},
            )
        return self._session

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[dict] = None,
        form: Optional[list[tuple[str, str]]] = None,
        params: Optional[dict] = None,
    ) -> tuple[int, Any]:
        """
        One HTTP call. Returns (status, parsed body).

        Raises:
            DistributionError: Transport failure or HTTP status >= 400
        """
        if not self.api_key:
            raise DistributionError("Missing UPLOADPOST_KEY environment variable", error_code="NOT_CONFIGURED")

        session = await self._get_session()
        kwargs: dict[str, Any] = {"params": params}
        if json_body is not None:
            kwargs["json"] = json_body
        if form is not None:
            writer = aiohttp.MultipartWriter("form-data")
            for name, value in form:
                part = writer.append(value)
                part.set_content_disposition("form-data", name=name)
            kwargs["data"] = writer

        try:
            async with session.request(method, f"{self.base_url}{path}", **kwargs) as response:
                text = await response.text()
                status = response.status
                headers = dict(response.headers)
        except asyncio.TimeoutError:
            raise DistributionError(f"Upload-Post timeout: {method} {path}", error_code="TIMEOUT")
        except aiohttp.ClientError as e:
            raise DistributionError(f"Upload-Post request failed: {e}", error_code="NETWORK_ERROR")

        try:
            body = json.loads(text) if text else {}
        except ValueError:
            body = text

        if status >= 400:
            logger.error(f"[Upload-Post] {method} {path} failed: {status} - {str(body)[:300]}")
            raise map_http_error(status, body, headers, path)
        return status, body

    async def create_user_profile(self, username: str, email: Optional[str] = None, name: Optional[str] = None) -> dict:
        """Create an Upload-Post profile that will own the user's social accounts."""
        if not username or not username.strip():
            raise DistributionError("Username is required to create Upload-Post profile", error_code="INVALID_PARAMS")

        payload = {"username": username.strip()}
        if email:
            payload["email"] = email
        if name:
            payload["name"] = name

        _, body = await self._breaker.call(self._request, "POST", ENDPOINTS["users"], json_body=payload)
        if isinstance(body, dict):
            return body.get("profile") if isinstance(body.get("profile"), dict) else body
        return {"username": username, "id": body if isinstance(body, str) else None}

    async def get_user_profile(self, username: str) -> dict:
        if not username or not username.strip():
            raise DistributionError("Username is required to fetch Upload-Post profile", error_code="INVALID_PARAMS")

        _, body = await self._breaker.call(
            self._request, "GET", f"{ENDPOINTS['users']}/{quote(username.strip())}"
        )
        if isinstance(body, dict) and isinstance(body.get("profile"), dict):
            return body["profile"]
        return body if isinstance(body, dict) else {}

    async def generate_access_link(
        self,
        username: str,
        redirect_url: Optional[str] = None,
        platforms: Optional[list[str]] = None,
        logo_image: Optional[str] = None,
        connect_title: Optional[str] = None,
        connect_description: Optional[str] = None,
    ) -> str:
        """
        JWT-backed URL where the user links their social accounts.

        Returns:
            The access_url
        """
        if not username or not username.strip():
            raise DistributionError("Username is required to generate access link", error_code="INVALID_PARAMS")

        payload: dict[str, Any] = {"username": username.strip()}
        if redirect_url:
            payload["redirect_url"] = redirect_url
        if logo_image:
            payload["logo_image"] = logo_image
        if connect_title:
            payload["connect_title"] = connect_title
        if connect_description:
            payload["connect_description"] = connect_description
        if platforms:
            payload["platforms"] = platforms

        _, body = await self._breaker.call(self._request, "POST", ENDPOINTS["access_link"], json_body=payload)
        access_url = body.get("access_url") or body.get("accessUrl") if isinstance(body, dict) else None
        if not access_url or not isinstance(access_url, str):
            raise DistributionError("Upload-Post did not return a valid access_url", error_code="INVALID_RESPONSE")
        return access_url

    async def post_video(
        self,
        user: str,
        video_url: str,
        platforms: list[str],
        caption: Optional[str] = None,
        scheduled_time: datetime | str | None = None,
        async_upload: bool = True,
    ) -> UploadResponse:
        """
        Upload a video to one or more platforms.

        Rate limits and server errors are retried (2s base, honouring
        retry-after / x-ratelimit-reset); auth, permission and 404 errors are not.
        """
        if not user:
            raise DistributionError("User ID is required for posting videos", error_code="INVALID_PARAMS")
        if not platforms:
            raise DistributionError("At least one platform is required", error_code="INVALID_PARAMS")

        fields = build_upload_form_fields(
            user,
            video_url,
            platforms,
            caption=caption,
            scheduled_time=scheduled_time,
            provider_scheduling=not should_defer_posting(),
            async_upload=async_upload,
        )
        logger.info(f"[Upload-Post] Uploading {video_url} for {user} to {platforms}")

        status, body = await self._breaker.call(
            retry_with_backoff,
            lambda: self._request("POST", ENDPOINTS["upload"], form=fields),
            max_attempts=self.config.distribution.max_retries,
            base_delay_ms=self.config.distribution.retry_base_delay_ms,
            retry_after_headers=RETRY_AFTER_HEADERS,
            sleep=self._sleep,
        )
        return parse_upload_response(status, body)

    async def get_upload_status(self, upload_id: str) -> UploadResponse:
        _, body = await self._breaker.call(
            self._request, "GET", ENDPOINTS["upload_status"], params={"request_id": upload_id}
        )
        response = parse_status_response(upload_id, body)
        logger.info(
            f"[Upload-Post] Status for {upload_id}: {response.status} "
            f"{[(r.platform, r.status) for r in response.results]}"
        )
        return response

    async def get_analytics(self, username: str, platforms: list[str]) -> dict:
        """Profile analytics across platforms."""
        if not username or not username.strip():
            raise DistributionError("Profile username is required for analytics", error_code="INVALID_PARAMS")
        if not platforms:
            raise DistributionError("At least one platform is required for analytics", error_code="INVALID_PARAMS")

        _, body = await self._breaker.call(
            self._request,
            "GET",
            f"{ENDPOINTS['analytics']}/{quote(username.strip())}",
            params={"platforms": ",".join(platforms)},
        )
        return body if isinstance(body, dict) else {}


# Singleton instance
_client: Optional[UploadPostClient] = None


def get_uploadpost_client() -> UploadPostClient:
    """Get the global Upload-Post client instance."""
    global _client
    if _client is None:
        _client = UploadPostClient()
    return _client
