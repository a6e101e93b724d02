"""Tests for the OpenAI-compatible provider and the retrying completion client.

The provider talks to an ``httpx.MockTransport`` so the full request and
response path is exercised without a network.
"""
import json

import httpx
import pytest
from pydantic import BaseModel

from coachforge.config.settings import Settings
from coachforge.core.exceptions import (
    MalformedOutputError,
    ProviderRequestError,
    TransientProviderError,
)
from coachforge.llm.base import Message
from coachforge.llm.completion import (
    CompletionClient,
    StreamUsage,
    TextDelta,
    ToolFinished,
    ToolStart,
    iter_json_objects,
)
from coachforge.llm.openai_provider import OpenAIProvider
from coachforge.schemas.tools import ClientRef, ListClientsResult, ToolFailure


class Verdict(BaseModel):
    answer: str
    score: int


def completion(content: str | None, tool_calls: list[dict] | None = None, usage: dict | None = None) -> dict:
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {
        "model": "test-model",
        "choices": [{"message": message, "finish_reason": "stop"}],
        "usage": usage or {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }


class ScriptedTransport:
    """Replays a list of responses and records every request body."""

    def __init__(self, responses: list[httpx.Response]):
        self.responses = list(responses)
        self.requests: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        return self.responses.pop(0)


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


def make_client(responses, **settings_overrides):
    script = ScriptedTransport(responses)
    provider = OpenAIProvider(
        api_key="test-key",
        base_url="https://llm.test/v1",
        transport=httpx.MockTransport(script.handler),
    )
    sleep = RecordingSleep()
    settings = Settings(**{"llm_retry_base_delay": 1.0, "llm_max_retries": 2, **settings_overrides})
    return CompletionClient(provider, settings, sleep=sleep), script, sleep


class TestJsonExtraction:
    """Locating JSON objects inside free-form model output."""

    def test_prose_around_object(self):
        text = 'Sure! Here it is:\n```json\n{"a": 1}\n```\nAnything else?'
        assert list(iter_json_objects(text)) == ['{"a": 1}']

    def test_braces_inside_strings(self):
        text = '{"note": "use {curly} braces"} trailing'
        assert list(iter_json_objects(text)) == ['{"note": "use {curly} braces"}']

    def test_multiple_and_nested_objects(self):
        text = '{"x": {"y": 2}} and then {"z": 3}'
        assert list(iter_json_objects(text)) == ['{"x": {"y": 2}}', '{"z": 3}']

    def test_unbalanced(self):
        assert list(iter_json_objects('{"a": 1')) == []


class TestStructuredCompletion:
    """Single-shot structured completions and their retry policy."""

    @pytest.mark.asyncio
    async def test_parses_json_reply(self):
        client, script, _ = make_client([
            httpx.Response(200, json=completion('{"answer": "yes", "score": 4}')),
        ])

        verdict, tokens = await client.complete_structured("system", "question", Verdict)

        assert verdict == Verdict(answer="yes", score=4)
        assert tokens == 15
        body = script.requests[0]
        assert body["response_format"] == {"type": "json_object"}
        assert "Respond with valid JSON matching this schema" in body["messages"][0]["content"]
        assert body["messages"][1]["content"].endswith("Output ONLY the JSON object.")

    @pytest.mark.asyncio
    async def test_extracts_object_from_prose(self):
        client, _, _ = make_client([
            httpx.Response(200, json=completion('Result:\n{"answer": "no", "score": 1}\nThanks')),
        ])
        verdict, _ = await client.complete_structured("system", "question", Verdict)
        assert verdict.answer == "no"

    @pytest.mark.asyncio
    async def test_skips_fragments_that_violate_schema(self):
        client, _, _ = make_client([
            httpx.Response(200, json=completion('{"draft": true} {"answer": "ok", "score": 2}')),
        ])
        verdict, _ = await client.complete_structured("system", "question", Verdict)
        assert verdict.score == 2

    @pytest.mark.asyncio
    async def test_malformed_output_keeps_token_count(self):
        client, _, sleep = make_client([
            httpx.Response(200, json=completion("I cannot answer that.")),
        ])

        with pytest.raises(MalformedOutputError) as exc_info:
            await client.complete_structured("system", "question", Verdict)

        assert exc_info.value.tokens_used == 15
        assert exc_info.value.raw_content == "I cannot answer that."
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_transient_errors_retry_with_backoff(self):
        client, script, sleep = make_client([
            httpx.Response(503, text="overloaded"),
            httpx.Response(429, text="slow down"),
            httpx.Response(200, json=completion('{"answer": "late", "score": 3}')),
        ])

        verdict, _ = await client.complete_structured("system", "question", Verdict)

        assert verdict.answer == "late"
        assert len(script.requests) == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_retry_budget_exhausted(self):
        client, script, _ = make_client([httpx.Response(500, text="boom") for _ in range(3)])

        with pytest.raises(TransientProviderError) as exc_info:
            await client.complete_structured("system", "question", Verdict)

        assert exc_info.value.status_code == 500
        assert len(script.requests) == 3

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        client, script, sleep = make_client([httpx.Response(400, text="bad request")])

        with pytest.raises(ProviderRequestError):
            await client.complete_structured("system", "question", Verdict)

        assert len(script.requests) == 1
        assert sleep.delays == []


class TestStreaming:
    """Token streaming ends with exactly one usage event."""

    @pytest.mark.asyncio
    async def test_deltas_then_usage(self):
        lines = [
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}}]},
            {"choices": [], "usage": {"prompt_tokens": 7, "completion_tokens": 2, "total_tokens": 9}},
        ]
        body = "".join(f"data: {json.dumps(line)}\n\n" for line in lines) + "data: [DONE]\n\n"
        client, script, _ = make_client([httpx.Response(200, content=body.encode())])

        events = [e async for e in client.stream_text("system", [Message(role="user", content="hi")])]

        assert events == [TextDelta("Hel"), TextDelta("lo"), StreamUsage(input_tokens=7, output_tokens=2)]
        assert script.requests[0]["stream"] is True
        assert script.requests[0]["stream_options"] == {"include_usage": True}

    @pytest.mark.asyncio
    async def test_retries_before_first_delta(self):
        body = 'data: {"choices": [{"delta": {"content": "ok"}}]}\n\ndata: [DONE]\n\n'
        client, _, sleep = make_client([
            httpx.Response(502, text="bad gateway"),
            httpx.Response(200, content=body.encode()),
        ])

        events = [e async for e in client.stream_text("system", [Message(role="user", content="hi")])]

        assert events == [TextDelta("ok"), StreamUsage(input_tokens=0, output_tokens=0)]
        assert sleep.delays == [1.0]


class TestToolLoop:
    """Multi-round tool use with failures reported back to the model."""

    @pytest.mark.asyncio
    async def test_tool_failure_does_not_end_conversation(self):
        tool_calls = [
            {"id": "call_1", "type": "function", "function": {"name": "list_clients", "arguments": "{}"}},
            {
                "id": "call_2",
                "type": "function",
                "function": {
                    "name": "lookup_client_profile",
                    "arguments": '{"client_id": "c1", "client_name": "Sam"}',
                },
            },
        ]
        client, script, _ = make_client([
            httpx.Response(200, json=completion(None, tool_calls, {"prompt_tokens": 10, "completion_tokens": 5})),
            httpx.Response(200, json=completion("Done.", usage={"prompt_tokens": 20, "completion_tokens": 7})),
        ])
        clients = ListClientsResult(clients=[ClientRef(id="c1", name="Sam")], summary="1 client")

        async def executor(name, arguments):
            if name == "lookup_client_profile":
                raise LookupError("profile store unavailable")
            return clients

        events = [
            e async for e in client.run_tools(
                "system", [Message(role="user", content="plan for Sam")], [], executor,
            )
        ]

        assert events == [
            ToolStart(call_id="call_1", name="list_clients", arguments={}),
            ToolFinished(call_id="call_1", name="list_clients", result=clients),
            ToolStart(
                call_id="call_2",
                name="lookup_client_profile",
                arguments={"client_id": "c1", "client_name": "Sam"},
            ),
            ToolFinished(
                call_id="call_2",
                name="lookup_client_profile",
                result=ToolFailure(tool="lookup_client_profile", error="profile store unavailable"),
            ),
            TextDelta("Done."),
            StreamUsage(input_tokens=30, output_tokens=12),
        ]
        assert events[3].is_error
        second_round = script.requests[1]["messages"]
        assert [m["role"] for m in second_round] == ["system", "user", "assistant", "tool", "tool"]
        assert second_round[4]["tool_call_id"] == "call_2"
        assert "profile store unavailable" in second_round[4]["content"]

    @pytest.mark.asyncio
    async def test_round_limit(self):
        call = [{"id": "c", "type": "function", "function": {"name": "list_clients", "arguments": "{}"}}]
        client, script, _ = make_client([httpx.Response(200, json=completion(None, call)) for _ in range(2)])

        async def executor(name, arguments):
            return ListClientsResult(clients=[], summary="none")

        events = [
            e async for e in client.run_tools("system", [], [], executor, max_rounds=2)
        ]

        assert len(script.requests) == 2
        assert isinstance(events[-1], StreamUsage)
