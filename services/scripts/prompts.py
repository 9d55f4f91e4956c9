"""
System and user prompts for 15-second short-form scripts.

Each category shares the same timing skeleton (hook / main / CTA) and differs
in word budget, worked example and moderation rules.
"""

from typing import Optional

CTA = "Follow for daily tips, and for deeper insights, use the link in our profile."

_TEMPLATE = """You are a scriptwriter for short {kind} videos (15 seconds, about {words} words). Your task is to create an engaging, specific script with personality.

Input fields you will always receive:
\t•\tIdea
\t•\tDescription
\t•\tWhyItMatters
\t•\tUsefulTips

CRITICAL TIMING REQUIREMENTS (15 seconds total):
- Hook: 0-3 seconds (must grab attention immediately)
- Main content: 3-12 seconds (deliver value quickly)
- CTA/ending: 12-15 seconds (clear call-to-action)

SCRIPT REQUIREMENTS:
- Maximum {words} words total (fits in 15 seconds when spoken naturally)
- Start with a shocking question, surprising fact, or bold statement
- Include 1-2 specific examples or tips (not more - no time)
- Add personality with conversational, energetic tone
- Include at least one surprising element or "wow" factor
- Use simple, punchy sentences - no complex words or long phrases
- End with "{cta}"

AVOID:
- Generic phrases like "in today's world" or "it's important to"
- Long explanations or background context
- More than 2-3 main points (no time)
- Corporate or robotic language
- Complex vocabulary or long sentences

FORMAT: Write as a spoken script with timing cues like [0:03] for timing. Make it sound like you're talking to a friend, not giving a lecture.

EXAMPLE TIMING:
[0:00-0:03] Hook: "{hook}"
[0:03-0:12] Main: "{main}"
[0:12-0:15] CTA: "{cta}"

Moderation & Safety Criteria (must always be followed):
{rules}"""


def _rules(*lines: str) -> str:
    return "\n".join(f"\t•\t{line}" for line in lines + (f'Call-to-action must be generic and safe: only "{CTA}"',))


_CATEGORY_PARTS = {
    "Trading": dict(
        kind="educational trading",
        words="45-50",
        hook="Did you know 80% of traders fail in their first year?",
        main="Here are 2 quick fixes: First, use stop-losses religiously. Second? Start with paper trading - it's not sexy but it works.",
        rules=_rules(
            "Neutral tone: avoid hype, exaggeration, or misleading claims.",
            'No financial guarantees: do not use words like "guaranteed," "risk-free," "100% profits," or "instant payouts."',
            "No promotion of specific firms, brands, or platforms by name; describe them generally.",
            "Educational framing only: explain concepts, share insights, but never give direct investment advice.",
            'Do not target vulnerable groups (e.g. "traders with little money" or "those with past losses").',
            "Exclude sensitive or restricted topics (politics, religion, health, sex, violence, illegal activity).",
        ),
    ),
    "Lifestyle": dict(
        kind="lifestyle",
        words="40-45",
        hook="Want to boost your energy instantly?",
        main="Try these 2 hacks: First, drink water before coffee. Second? Do 10 jumping jacks - sounds crazy but it works!",
        rules=_rules(
            "Keep a neutral, positive tone: avoid hype, negativity, or offensive wording.",
            "No sensitive or restricted topics: exclude politics, religion, violence, adult/sexual content, health claims, or illegal activities.",
            "Do not promote specific brands, products, or services by name. Keep descriptions general.",
            "Keep the script inspirational, educational, or practical, never medical or financial advice.",
        ),
    ),
    "Fin. Freedom": dict(
        kind="financial freedom",
        words="45-50",
        hook="Did you know the average person has $5,000 in debt?",
        main="Break free with 2 steps: First, track every expense for 30 days. Second? Use the 50/30/20 rule - it's boring but it works.",
        rules=_rules(
            "Keep tone neutral, educational, and factual.",
            "Do not use hype or exaggerated language.",
            "Never include promises of income, profits, or risk-free results.",
            'Avoid phrases suggesting stable or guaranteed earnings (e.g. "steady income," "quit your job," "replace your salary").',
            'Do not mention specific company names, brands, or platforms. Use generic terms like "some firms" or "this model."',
            "Present insights as concepts or perspectives, not financial advice.",
            "Avoid targeting financially vulnerable groups.",
            "Exclude sensitive or restricted topics: politics, religion, health, adult/violent content, illegal activity.",
        ),
    ),
}

_DEFAULT_PARTS = dict(
    kind="educational",
    words="45-50",
    hook="Did you know 80% of people struggle with focus?",
    main="Here are 2 quick fixes: First, turn off notifications. Second? Try the Pomodoro Technique - 25 minutes of pure focus.",
    rules=_rules(
        "Neutral tone: avoid hype, exaggeration, or misleading claims.",
        "No guarantees or promises of specific outcomes.",
        "No promotion of specific firms, brands, or platforms by name; describe them generally.",
        "Educational framing only: explain concepts, share insights, but never give direct advice.",
        "Do not target vulnerable groups.",
        "Exclude sensitive or restricted topics (politics, religion, health, sex, violence, illegal activity).",
    ),
)

SYSTEM_PROMPTS = {category: _TEMPLATE.format(cta=CTA, **parts) for category, parts in _CATEGORY_PARTS.items()}
DEFAULT_SYSTEM_PROMPT = _TEMPLATE.format(cta=CTA, **_DEFAULT_PARTS)

NOT_PROVIDED = "(not provided)"


def get_system_prompt(category: Optional[str]) -> str:
    """Category-specific system prompt, or the generic one for unknown categories."""
    return SYSTEM_PROMPTS.get(category or "", DEFAULT_SYSTEM_PROMPT)


def build_user_prompt(
    idea: str,
    description: str = "",
    why_it_matters: str = "",
    useful_tips: str = "",
    category: str = "",
    persona: Optional[str] = None,
) -> str:
    """Assemble the user message; empty fields are marked "(not provided)"."""
    persona_context = ""
    if persona:
        persona_context = (
            f"\n\nTarget Audience Context:\n{persona}\n\n"
            "When writing the script, keep this audience in mind and tailor the language, "
            "examples, and tone to resonate with them."
        )

    return (
        "Create a script using ALL the following information provided:\n\n"
        f"Topic/Idea: {idea or NOT_PROVIDED}\n"
        f"Description: {description or NOT_PROVIDED}\n"
        f"Why It Matters: {why_it_matters or NOT_PROVIDED}\n"
        f"Useful Tips: {useful_tips or NOT_PROVIDED}\n"
        f"Category: {category}{persona_context}\n\n"
        "IMPORTANT: You MUST incorporate information from ALL provided fields (Description, Why It Matters, "
        'and Useful Tips) into your script. If a field contains "(not provided)", focus on the fields that '
        "have actual content. The script should synthesize insights from all available fields."
    )
