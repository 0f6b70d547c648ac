"""
Text generation for daily town copy.

The core only supplies structured input and never depends on generated
text beyond inferring a category from it. Every caller keeps a
deterministic fallback, so any failure here is UpstreamUnavailable.

Kinds and reply shapes:

    micro_route        {"microRouteLine", "captionAddOn", "staffLine",
                        "optionalCollabCategory"?}
    graph_suggestion   {"nextStopIdeas": [{"idea", "captionAddOn",
                        "staffLine"}, ...1-3], "collabSuggestion"}

Every call logs: model, prompt version, latency, token usage.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Protocol

import anthropic

from services.townintel.config import settings
from services.townintel.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

# Prompt version: bump whenever prompt text changes meaningfully
WRITER_PROMPT_VERSION = "town-writer-v1.1"
WRITER_MODEL = "claude-sonnet-4-6"

_SHARED_RULES = """
Rules:
- Plain, friendly small-town voice. No hype, no emojis, no hashtags.
- Never name specific competing businesses; talk about categories of stops.
- explicitPartners are businesses the owner chose to work with. You may name them.
- No markdown, no explanation outside the JSON block."""

_SYSTEM_PROMPTS: dict[str, str] = {
    "micro_route": """You write one-line local route suggestions for a small business.
You receive the business, its town, a day-part window, and ranked three-stop
routes across business categories.

You must return ONLY a valid JSON object in this exact shape:
{
  "microRouteLine": "<one sentence describing a simple local route>",
  "captionAddOn": "<short line to append to a social caption>",
  "staffLine": "<what staff can say to a guest>",
  "optionalCollabCategory": "cafe" | "fitness" | "salon" | "retail" | "service" | "food" | "other"
}
""" + _SHARED_RULES,
    "graph_suggestion": """You suggest natural next stops after visiting a small business.
You receive the business category and the categories locals most often visit next.

You must return ONLY a valid JSON object in this exact shape:
{
  "nextStopIdeas": [
    {"idea": "<one sentence>", "captionAddOn": "<short caption line>", "staffLine": "<staff script>"}
  ],
  "collabSuggestion": "<one sentence pairing idea>"
}

Return between 1 and 3 nextStopIdeas.
""" + _SHARED_RULES,
}

_REQUIRED_KEYS: dict[str, tuple[str, ...]] = {
    "micro_route": ("microRouteLine", "captionAddOn", "staffLine"),
    "graph_suggestion": ("nextStopIdeas", "collabSuggestion"),
}


class TextGenerator(Protocol):
    async def generate(self, kind: str, payload: dict[str, Any]) -> dict[str, Any]: ...


def validate_reply(kind: str, parsed: Any) -> dict[str, Any]:
    if not isinstance(parsed, dict):
        raise ValueError("reply is not a JSON object")
    for key in _REQUIRED_KEYS[kind]:
        value = parsed.get(key)
        if not value:
            raise ValueError(f"missing {key}")
        if key != "nextStopIdeas" and not isinstance(value, str):
            raise ValueError(f"{key} must be a string")
    if kind == "graph_suggestion":
        ideas = parsed["nextStopIdeas"]
        if not isinstance(ideas, list) or not 1 <= len(ideas) <= 3:
            raise ValueError("nextStopIdeas must hold 1-3 items")
        for idea in ideas:
            if not isinstance(idea, dict) or not all(
                isinstance(idea.get(k), str) and idea.get(k) for k in ("idea", "captionAddOn", "staffLine")
            ):
                raise ValueError("malformed next stop idea")
    return parsed


class AnthropicTextGenerator:
    def __init__(
        self,
        client: anthropic.AsyncAnthropic | None = None,
        timeout_s: float | None = None,
    ) -> None:
        self._client = client or anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key or None)
        self._timeout_s = settings.text_generation_timeout_s if timeout_s is None else timeout_s

    async def generate(self, kind: str, payload: dict[str, Any]) -> dict[str, Any]:
        if kind not in _SYSTEM_PROMPTS:
            raise ValueError(f"unknown generation kind: {kind}")

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=WRITER_MODEL,
                    max_tokens=600,
                    system=_SYSTEM_PROMPTS[kind],
                    messages=[{
                        "role": "user",
                        "content": json.dumps(payload, ensure_ascii=False, default=str),
                    }],
                ),
                timeout=self._timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamUnavailable(f"{kind} generation timed out after {self._timeout_s}s") from exc
        except anthropic.APIError as exc:
            raise UpstreamUnavailable(f"{kind} generation failed: {exc}") from exc

        latency_ms = int((time.monotonic() - start) * 1000)
        raw_text = response.content[0].text.strip()

        # Parse: model is instructed to return only JSON
        try:
            parsed = validate_reply(kind, json.loads(raw_text))
        except (json.JSONDecodeError, ValueError) as exc:
            logger.error(
                "writer: %s returned unparseable response: %s",
                kind,
                raw_text[:300],
                exc_info=exc,
            )
            raise UpstreamUnavailable(f"{kind} generation returned malformed JSON") from exc

        logger.info(
            "writer: %s generated in %dms model=%s prompt=%s (in=%d out=%d)",
            kind,
            latency_ms,
            WRITER_MODEL,
            WRITER_PROMPT_VERSION,
            response.usage.input_tokens,
            response.usage.output_tokens,
        )
        return parsed
