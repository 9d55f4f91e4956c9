"""
OpenAI Script Client

Turns a researched topic into a 15-second spoken script via the chat
completions endpoint.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from core.circuit_breaker import get_provider_breaker
from core.config import get_config
from core.errors import ProviderError
from core.retry import retry_with_backoff

from .prompts import build_user_prompt, get_system_prompt

logger = logging.getLogger(__name__)


class ScriptGenerationError(ProviderError):
    """Raised when script generation fails."""

    def __init__(self, message: str, error_code: str = None, status_code: Optional[int] = None, headers=None):
        super().__init__(
            message,
            error_code=error_code,
            provider="openai",
            status_code=status_code,
            headers=headers,
        )


@dataclass
class ScriptRequest:
    """Inputs for one script."""
    idea: str
    description: str = ""
    why_it_matters: str = ""
    useful_tips: str = ""
    category: str = ""
    persona: Optional[str] = None
    extra_instructions: Optional[str] = None


@dataclass
class ScriptResult:
    script: str
    tokens_used: Optional[int] = None


class ScriptClient:
    """
    Thin async wrapper over OpenAI chat completions.

    Usage:
        client = ScriptClient()
        result = await client.generate_script(ScriptRequest(idea="...", category="Trading"))
    """

    def __init__(self, api_key: Optional[str] = None, config=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or get_config()
        self.api_key = api_key or self.config.api.openai_api_key
        self.api_base = self.config.api.openai_api_base.rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._breaker = get_provider_breaker("openai")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=60.0, transport=self._transport)
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    def build_messages(self, request: ScriptRequest) -> list[dict[str, str]]:
        user_prompt = build_user_prompt(
            idea=request.idea,
            description=request.description,
            why_it_matters=request.why_it_matters,
            useful_tips=request.useful_tips,
            category=request.category,
            persona=request.persona,
        )
        if request.extra_instructions:
            user_prompt = f"{user_prompt}\n\n{request.extra_instructions}"

        return [
            {"role": "system", "content": get_system_prompt(request.category)},
            {"role": "user", "content": user_prompt},
        ]

    async def _post_completion(self, messages: list[dict[str, str]]) -> dict:
        client = await self._get_client()
        payload = {
            "model": self.config.models.script_model,
            "messages": messages,
            "temperature": self.config.models.script_temperature,
            "max_tokens": self.config.models.script_max_tokens,
            "response_format": {"type": "text"},
        }

        try:
            response = await client.post(
                f"{self.api_base}/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.TimeoutException as e:
            raise ScriptGenerationError(f"OpenAI timeout: {type(e).__name__}", error_code="TIMEOUT")
        except httpx.RequestError as e:
            raise ScriptGenerationError(f"OpenAI request failed: {e}", error_code="NETWORK_ERROR")

        if response.status_code >= 400:
            raise ScriptGenerationError(
                f"OpenAI API error {response.status_code}: {response.text[:200]}",
                error_code="RATE_LIMIT" if response.status_code == 429 else f"HTTP_{response.status_code}",
                status_code=response.status_code,
                headers=response.headers,
            )
        return response.json()

    async def generate_script(self, request: ScriptRequest) -> ScriptResult:
        """
        Generate a script.

        Raises:
            ScriptGenerationError: Missing key, provider failure or empty reply
        """
        if not self.api_key:
            raise ScriptGenerationError("OPENAI_API_KEY is not configured", error_code="NOT_CONFIGURED")

        messages = self.build_messages(request)
        data = await self._breaker.call(
            retry_with_backoff,
            lambda: self._post_completion(messages),
            max_attempts=self.config.max_retries,
            base_delay_ms=self.config.retry_base_delay_ms,
        )

        choices = data.get("choices") or [{}]
        script = ((choices[0].get("message") or {}).get("content") or "").strip()
        if not script:
            raise ScriptGenerationError("OpenAI returned an empty script", error_code="EMPTY_RESPONSE")

        tokens = (data.get("usage") or {}).get("total_tokens")
        logger.info(f"[Script] Generated {len(script.split())} words ({tokens} tokens) for '{request.idea[:50]}'")
        return ScriptResult(script=script, tokens_used=tokens)
