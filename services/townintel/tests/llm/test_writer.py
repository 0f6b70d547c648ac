"""
Tests for services/townintel/llm/writer.py

Mocks the Anthropic client -- no network.

Covers:
- Valid JSON reply is returned for both kinds
- Model, system prompt and JSON payload are sent as expected
- Timeout, API error, malformed JSON and missing keys -> UpstreamUnavailable
- Unknown kind -> ValueError before any call
- validate_reply: non-object replies, non-string fields and empty idea lists
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from services.townintel.errors import UpstreamUnavailable
from services.townintel.llm.writer import WRITER_MODEL, AnthropicTextGenerator, validate_reply

pytestmark = pytest.mark.asyncio


def _mock_client(reply: str | None = None, side_effect: BaseException | None = None) -> MagicMock:
    client = MagicMock()
    if side_effect is not None:
        client.messages.create = AsyncMock(side_effect=side_effect)
        return client
    response = MagicMock()
    response.content = [MagicMock(text=reply)]
    response.usage = MagicMock(input_tokens=120, output_tokens=60)
    client.messages.create = AsyncMock(return_value=response)
    return client


_ROUTE_REPLY = {
    "microRouteLine": "Start with coffee, then a quick class.",
    "captionAddOn": "Make a morning of it.",
    "staffLine": "Mention the studio down the block.",
    "optionalCollabCategory": "fitness",
}

_SUGGESTION_REPLY = {
    "nextStopIdeas": [
        {"idea": "Browse the boutique.", "captionAddOn": "Shop local.", "staffLine": "Point to the shop."},
    ],
    "collabSuggestion": "Pair with the boutique for a weekend loop.",
}


class TestGenerate:
    async def test_micro_route_reply(self):
        client = _mock_client(json.dumps(_ROUTE_REPLY))
        generator = AnthropicTextGenerator(client=client)

        result = await generator.generate("micro_route", {"window": "morning"})

        assert result == _ROUTE_REPLY
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == WRITER_MODEL
        assert "microRouteLine" in kwargs["system"]
        assert json.loads(kwargs["messages"][0]["content"]) == {"window": "morning"}

    async def test_graph_suggestion_reply_with_whitespace(self):
        client = _mock_client("\n  " + json.dumps(_SUGGESTION_REPLY) + "\n")
        generator = AnthropicTextGenerator(client=client)

        result = await generator.generate("graph_suggestion", {"category": "cafe"})

        assert result["collabSuggestion"] == _SUGGESTION_REPLY["collabSuggestion"]

    async def test_unknown_kind(self):
        client = _mock_client(json.dumps(_ROUTE_REPLY))
        generator = AnthropicTextGenerator(client=client)
        with pytest.raises(ValueError):
            await generator.generate("poem", {})
        client.messages.create.assert_not_called()


class TestFailures:
    async def test_timeout(self):
        async def _slow(**kwargs):
            await asyncio.sleep(1)

        client = MagicMock()
        client.messages.create = _slow
        generator = AnthropicTextGenerator(client=client, timeout_s=0.01)

        with pytest.raises(UpstreamUnavailable):
            await generator.generate("micro_route", {})

    async def test_api_error(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        client = _mock_client(side_effect=anthropic.APIConnectionError(request=request))
        generator = AnthropicTextGenerator(client=client)

        with pytest.raises(UpstreamUnavailable):
            await generator.generate("micro_route", {})

    async def test_malformed_json(self):
        generator = AnthropicTextGenerator(client=_mock_client("Here is your route: coffee then gym"))
        with pytest.raises(UpstreamUnavailable):
            await generator.generate("micro_route", {})

    async def test_missing_required_key(self):
        reply = dict(_ROUTE_REPLY)
        del reply["staffLine"]
        generator = AnthropicTextGenerator(client=_mock_client(json.dumps(reply)))
        with pytest.raises(UpstreamUnavailable):
            await generator.generate("micro_route", {})

    async def test_too_many_ideas(self):
        reply = dict(_SUGGESTION_REPLY)
        reply["nextStopIdeas"] = _SUGGESTION_REPLY["nextStopIdeas"] * 4
        generator = AnthropicTextGenerator(client=_mock_client(json.dumps(reply)))
        with pytest.raises(UpstreamUnavailable):
            await generator.generate("graph_suggestion", {})


class TestValidateReply:
    async def test_valid_reply_passes_through(self):
        assert validate_reply("micro_route", dict(_ROUTE_REPLY)) == _ROUTE_REPLY

    @pytest.mark.parametrize("kind,reply", [
        ("micro_route", ["not", "an", "object"]),
        ("micro_route", {"microRouteLine": "x"}),
        ("micro_route", {"microRouteLine": 7, "captionAddOn": "a", "staffLine": "b"}),
        ("graph_suggestion", {"nextStopIdeas": [], "collabSuggestion": "coffee"}),
        ("graph_suggestion", {"nextStopIdeas": "walk", "collabSuggestion": "coffee"}),
        ("graph_suggestion", {
            "nextStopIdeas": [{"idea": "x", "captionAddOn": "y", "staffLine": ["z"]}],
            "collabSuggestion": "coffee",
        }),
    ])
    async def test_unusable_replies_rejected(self, kind, reply):
        with pytest.raises(ValueError):
            validate_reply(kind, reply)
