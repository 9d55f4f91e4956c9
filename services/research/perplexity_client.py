"""
Perplexity Research Client

Two search-augmented prompts against Perplexity's chat completions API:

- Research Scout: three fresh topic ideas per day (Trading, Fin. Freedom,
  Lifestyle), avoiding the user's recent topics
- Research Analyst: one structured research object for a single idea

Both prompts ask for a bare JSON array; the array is cut out of the reply
text before parsing because the model sometimes wraps it in prose or
markdown fences.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from core.circuit_breaker import get_provider_breaker
from core.config import get_config
from core.errors import ProviderError
from core.retry import retry_with_backoff

logger = logging.getLogger(__name__)

JSON_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")

TOPIC_CATEGORIES = ("Trading", "Fin. Freedom", "Lifestyle")

PERSONA = """Persona:
\t•\tName: Max M.
\t•\tAge: 27–38
\t•\tLocation: Europe (DE/PL/CZ/Nordics/Baltics) and Asia (TH/SG/ID/VN)
\t•\tExperience: 1.5–5 years in trading (Forex, some futures)
\t•\tGoals: scale capital without risking personal funds; move from hobby to profession; financial freedom and geographic flexibility
\t•\tPains: blown accounts; lack of capital; distrust of prop firms; information overload
\t•\tInterests: funded accounts/prop; futures vs Forex; financial freedom; digital nomad lifestyle; minimalism/efficiency"""

SCOUT_SYSTEM_PROMPT = f"""Every day, find 3 fresh and relevant topics for short videos (Reels/Shorts) that would interest the target persona. Provide topics ONLY as a list in a JSON array (see "Output Format").

{PERSONA}

Business-model lens:
\t•\tProp trading funded accounts on futures (CME/EUREX).
\t•\tSubscription-based evaluation; 1-stage / no strict deadline; EOD trailing drawdown; no daily loss limit.
\t•\tProfit sharing: 100% of the first payouts, then 90/10.

Focus:
\t•\tHighlight advantages and opportunities: "no risk of personal deposit," "easy to try," "access to larger capital," "financial freedom."
\t•\tMention restrictions briefly and as secondary.
\t•\tAvoid promises of easy money and clickbait.
\t•\tTopics must be fact-checked, but framed positively.
\t•\tNever repeat or slightly rephrase any of the last 10 topics provided in the user prompt. Always suggest new and distinct topics. If needed, invent adjacent but different angles.

Output format:
\t•\tStrictly a JSON array, first line must be [.
\t•\tExactly 3 objects: 1) Trading, 2) Fin. Freedom, 3) Lifestyle.
\t•\tEach object only with the fields:
"Idea": short topic in English
"Category": "Trading" | "Fin. Freedom" | "Lifestyle\""""

ANALYST_SYSTEM_PROMPT = f"""You are Research Analyst.
Your role: when Research Scout provides a topic (Idea), you must return exactly one structured research object.

{PERSONA}

Core message:
\t•\tFunded accounts = fast access to capital without risking personal funds.
\t•\tRemoves fear of losing deposits and lack of funds.
\t•\tLiving as a digital nomad and growing as a trader is realistic through the prop model.

Output format:
Always return a JSON array with exactly one object in this structure:

[
  {{
    "Idea": "...",
    "Description": "...",
    "WhyItMatters": "...",
    "UsefulTips": "...",
    "Category": "Trading" | "Fin. Freedom" | "Lifestyle"
  }}
]

Rules:
\t•\tFor each Idea, return only one research object. Do not split into multiple subtopics, countries, or variations.
\t•\tStyle: friendly, simple English.
\t•\t70% focus on trader benefits/solutions, 30% on rules/limits.
\t•\tEnd with a light invitation ("try", "start", "join").
\t•\tCategory must always be one of: "Trading", "Fin. Freedom", "Lifestyle". Never invent new categories."""


class ResearchError(ProviderError):
    """Raised when Perplexity fails or returns something we cannot parse."""

    def __init__(self, message: str, error_code: str = None, status_code: Optional[int] = None, headers=None):
        super().__init__(
            message,
            error_code=error_code,
            provider="perplexity",
            status_code=status_code,
            headers=headers,
        )


@dataclass
class Topic:
    """A topic idea from the scout prompt."""
    idea: str
    category: str


@dataclass
class ResearchResult:
    """Structured research for one topic."""
    idea: str
    description: str = ""
    why_it_matters: str = ""
    useful_tips: str = ""
    category: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "Idea": self.idea,
            "Description": self.description,
            "WhyItMatters": self.why_it_matters,
            "UsefulTips": self.useful_tips,
            "Category": self.category,
        }


def extract_json_array(content: str) -> list:
    """
    Pull the first-to-last bracketed JSON array out of a model reply.

    Raises:
        ResearchError: No array present, or the array is not valid JSON
    """
    match = JSON_ARRAY_PATTERN.search(content or "")
    if not match:
        raise ResearchError("No JSON array found in Perplexity response", error_code="PARSE_ERROR")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ResearchError(f"Invalid JSON in Perplexity response: {e}", error_code="PARSE_ERROR")
    if not isinstance(parsed, list):
        raise ResearchError("Perplexity response is not a JSON array", error_code="PARSE_ERROR")
    return parsed


class PerplexityClient:
    """
    Client for Perplexity's search-augmented chat completions.

    Usage:
        client = get_perplexity_client()
        topics = await client.generate_topics(recent_topics)
        research = await client.research_topic(topics[0].idea, topics[0].category)
    """

    def __init__(self, api_key: Optional[str] = None, config=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or get_config()
        self.api_key = api_key or self.config.api.perplexity_api_key
        self.api_url = self.config.api.perplexity_api_url
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._breaker = get_provider_breaker("perplexity")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=90.0, transport=self._transport)
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post_chat(self, system_prompt: str, user_prompt: str) -> str:
        client = await self._get_client()
        payload = {
            "model": self.config.models.research_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.config.models.research_temperature,
            "web_search_options": {"search_context_size": "medium"},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise ResearchError(f"Perplexity timeout: {type(e).__name__}", error_code="TIMEOUT")
        except httpx.RequestError as e:
            raise ResearchError(f"Perplexity request failed: {e}", error_code="NETWORK_ERROR")

        if response.status_code >= 400:
            raise ResearchError(
                f"Perplexity API error {response.status_code}: {response.text[:200]}",
                error_code="RATE_LIMIT" if response.status_code == 429 else f"HTTP_{response.status_code}",
                status_code=response.status_code,
                headers=response.headers,
            )

        data = response.json()
        choices = data.get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content") or ""

    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        if not self.api_key:
            raise ResearchError("PERPLEXITY_API_KEY is not configured", error_code="NOT_CONFIGURED")

        return await self._breaker.call(
            retry_with_backoff,
            lambda: self._post_chat(system_prompt, user_prompt),
            max_attempts=self.config.max_retries,
            base_delay_ms=self.config.retry_base_delay_ms,
        )

    async def generate_topics(self, recent_topics: Optional[list[dict[str, Any]]] = None) -> list[Topic]:
        """
        Generate exactly three topic ideas.

        Args:
            recent_topics: Up to 10 recent {"topic", "category"} dicts to avoid

        Raises:
            ResearchError: Provider failure, or anything but a 3-element array
        """
        recent = json.dumps(recent_topics or [])
        user_prompt = (
            'Collect 3 fresh and relevant topics for the persona "Max. M." for today.\n'
            f"Do not repeat or rephrase any of these past topics: {recent}.\n"
            'Output strictly as a JSON array with objects in the form {"Idea": "...", "Category": "..."}.\n'
            "Categories and order are fixed: Trading, Fin. Freedom, Lifestyle."
        )

        content = await self._complete(SCOUT_SYSTEM_PROMPT, user_prompt)
        raw_topics = extract_json_array(content)
        if len(raw_topics) != 3:
            raise ResearchError(
                f"Invalid topics format: expected array of 3 topics, got {len(raw_topics)}",
                error_code="PARSE_ERROR",
            )

        topics = [
            Topic(idea=str(t.get("Idea", "")).strip(), category=str(t.get("Category", "")).strip())
            for t in raw_topics
            if isinstance(t, dict)
        ]
        logger.info(f"[Research] Generated topics: {[t.idea for t in topics]}")
        return topics

    async def research_topic(self, topic: str, category: str) -> ResearchResult:
        """Research a single idea; returns the first object of the reply array."""
        user_prompt = (
            "Take the following topics and do research with internet sources:\n"
            f"{topic}, category {category}\n\n"
            'Return strictly in JSON array with fields "Idea", "Description", "WhyItMatters", "UsefulTips", "Category".'
        )

        content = await self._complete(ANALYST_SYSTEM_PROMPT, user_prompt)
        items = extract_json_array(content)
        if not items or not isinstance(items[0], dict):
            raise ResearchError(
                "Invalid research format: expected array with at least one object",
                error_code="PARSE_ERROR",
            )

        first = items[0]
        return ResearchResult(
            idea=first.get("Idea") or topic,
            description=first.get("Description") or "",
            why_it_matters=first.get("WhyItMatters") or "",
            useful_tips=first.get("UsefulTips") or "",
            category=first.get("Category") or category,
        )


# Singleton instance
_client: Optional[PerplexityClient] = None


def get_perplexity_client() -> PerplexityClient:
    """Get the global Perplexity client instance."""
    global _client
    if _client is None:
        _client = PerplexityClient()
    return _client
