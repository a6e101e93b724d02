"""OpenAI-compatible LLM provider implementation."""
import json
import logging
from typing import AsyncIterator

import httpx

from coachforge.config.settings import get_settings
from coachforge.core.exceptions import ProviderRequestError, TransientProviderError
from coachforge.llm.base import (
    LLMConfig,
    LLMProvider,
    LLMResponse,
    Message,
    StreamChunk,
    ToolCall,
)

logger = logging.getLogger(__name__)


def translate_status(status_code: int, body: str) -> Exception:
    """Map an HTTP error status to the completion error taxonomy."""
    message = f"Completion API returned {status_code}: {body[:500]}"
    if status_code == 429 or status_code >= 500:
        return TransientProviderError(message, status_code)
    return ProviderRequestError(message, status_code)


class OpenAIProvider(LLMProvider):
    """
    OpenAI-compatible LLM provider.

    Works with OpenAI API, OpenRouter, and other compatible endpoints.
    Uses the chat completions endpoint for conversations, JSON output and
    native tool calls.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.openai_api_key
        self.base_url = (base_url or settings.openai_base_url).rstrip('/')
        self.default_model = default_model or settings.openai_model
        self.timeout = timeout or settings.openai_timeout
        self._transport = transport

        if not self.api_key:
            logger.warning("OpenAI API key not configured. LLM features will fail.")

        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _build_messages(self, messages: list[Message]) -> list[dict]:
        """Convert Message objects to OpenAI format."""
        built = []
        for m in messages:
            item: dict = {"role": m.role, "content": m.content}
            if m.tool_calls:
                item["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                    }
                    for call in m.tool_calls
                ]
            if m.tool_call_id:
                item["tool_call_id"] = m.tool_call_id
            built.append(item)
        return built

    def _build_payload(self, messages: list[Message], config: LLMConfig) -> dict:
        payload = {
            "model": config.model or self.default_model,
            "messages": self._build_messages(messages),
            "temperature": config.temperature,
        }

        if config.max_tokens:
            payload["max_tokens"] = config.max_tokens

        # Request JSON output if schema provided
        if config.json_schema:
            payload["response_format"] = {"type": "json_object"}
            # Add schema hint to system message for better compliance
            schema_hint = f"\n\nRespond with valid JSON matching this schema: {json.dumps(config.json_schema)}"
            if payload["messages"] and payload["messages"][0]["role"] == "system":
                payload["messages"][0]["content"] += schema_hint

        if config.tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
                for tool in config.tools
            ]
        return payload

    @staticmethod
    def _parse_tool_calls(raw_calls: list[dict] | None) -> list[ToolCall]:
        calls = []
        for raw in raw_calls or []:
            function = raw.get("function", {})
            try:
                arguments = json.loads(function.get("arguments") or "{}")
            except json.JSONDecodeError:
                logger.warning(f"Unparseable arguments for tool {function.get('name')}")
                arguments = {}
            calls.append(ToolCall(id=raw.get("id", ""), name=function.get("name", ""), arguments=arguments))
        return calls

    async def chat(
        self,
        messages: list[Message],
        config: LLMConfig,
    ) -> LLMResponse:
        """
        Send chat request to OpenAI-compatible API.

        Uses the /chat/completions endpoint with optional JSON response format
        and tool definitions.
        """
        client = await self._get_client()
        payload = self._build_payload(messages, config)

        try:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
            )
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise TransientProviderError(f"Completion API unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error(f"OpenAI API error: {response.status_code} - {response.text[:500]}")
            raise translate_status(response.status_code, response.text)

        data = response.json()
        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message", {})
        content = message.get("content") or ""

        # Parse structured data if schema was provided
        structured_data = None
        if config.json_schema:
            try:
                parsed = json.loads(content)
                if isinstance(parsed, dict):
                    structured_data = parsed
            except json.JSONDecodeError:
                logger.warning("Failed to parse JSON from OpenAI response")

        usage = data.get("usage") or {}

        return LLMResponse(
            content=content,
            structured_data=structured_data,
            tool_calls=self._parse_tool_calls(message.get("tool_calls")),
            usage={
                "prompt_tokens": usage.get("prompt_tokens"),
                "completion_tokens": usage.get("completion_tokens"),
                "total_tokens": usage.get("total_tokens"),
            },
            model=data.get("model"),
            finish_reason=choice.get("finish_reason"),
        )

    async def chat_stream(
        self,
        messages: list[Message],
        config: LLMConfig,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream chat response from OpenAI-compatible API.

        Uses the /chat/completions endpoint with stream=true and asks for a
        trailing usage chunk.
        """
        client = await self._get_client()

        payload = self._build_payload(messages, config)
        payload["stream"] = True
        payload["stream_options"] = {"include_usage": True}

        usage = None
        try:
            async with client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                json=payload,
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode(errors="replace")
                    logger.error(f"OpenAI API error: {response.status_code} - {body[:500]}")
                    raise translate_status(response.status_code, body)

                async for line in response.aiter_lines():
                    if not line or not line.startswith("data: "):
                        continue

                    data_str = line[6:]  # Remove "data: " prefix

                    if data_str == "[DONE]":
                        break

                    try:
                        data = json.loads(data_str)
                    except json.JSONDecodeError:
                        continue

                    if data.get("usage"):
                        usage = {
                            "prompt_tokens": data["usage"].get("prompt_tokens"),
                            "completion_tokens": data["usage"].get("completion_tokens"),
                            "total_tokens": data["usage"].get("total_tokens"),
                        }

                    choices = data.get("choices") or []
                    if not choices:
                        continue
                    content = choices[0].get("delta", {}).get("content") or ""
                    if content:
                        yield StreamChunk(content=content)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise TransientProviderError(f"Completion stream interrupted: {e}") from e

        yield StreamChunk(content="", done=True, usage=usage)

    async def health_check(self) -> bool:
        """
        Check if OpenAI API is accessible.

        Attempts to list models to verify connection.
        """
        if not self.api_key:
            return False

        try:
            client = await self._get_client()
            response = await client.get(f"{self.base_url}/models")
            return response.status_code == 200
        except Exception as e:
            logger.warning(f"OpenAI health check failed: {e}")
            return False
