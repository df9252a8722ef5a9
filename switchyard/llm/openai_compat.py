"""OpenAI-compatible chat completions backend.

Used for OpenAI itself and for vendors exposing an OpenAI-compatible
endpoint (Anthropic, Gemini). Only the base URL, key and model differ.
"""

import json
import time
import uuid
from datetime import UTC, datetime
from typing import Any

import httpx

from switchyard.exceptions import ConfigurationError
from switchyard.llm.base import (
    ConversationContext,
    LLMProvider,
    Message,
    ProviderResponse,
    RequestOptions,
    ToolCall,
)
from switchyard.logging import get_logger

log = get_logger(__name__)


class OpenAICompatibleProvider(LLMProvider):
    """Backend speaking the `/chat/completions` protocol."""

    def __init__(
        self,
        name: str,
        model: str,
        base_url: str,
        api_key: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 8192,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(model=model, max_tokens=max_tokens, temperature=temperature)
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def initialize(self) -> bool:
        if not self.api_key:
            raise ConfigurationError(f"No API key configured for provider: {self.name}")
        if not self.base_url:
            raise ConfigurationError(f"No base URL configured for provider: {self.name}")
        self.initialized = True
        log.info("Provider initialized", provider=self.name, model=self.model, base_url=self.base_url)
        return True

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    @staticmethod
    def _convert_messages(messages: list[Message]) -> list[dict[str, Any]]:
        result = []
        for msg in messages:
            if msg.role == "tool":
                result.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id or "",
                    "content": msg.content or "",
                })
                continue
            entry: dict[str, Any] = {"role": msg.role, "content": msg.content or ""}
            if msg.role == "assistant" and msg.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                    }
                    for tc in msg.tool_calls
                ]
            result.append(entry)
        return result

    @staticmethod
    def _convert_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "parameters": tool.get("parameters", {}),
                },
            }
            for tool in tools
            if tool.get("name")
        ]

    @staticmethod
    def _parse_tool_calls(message: dict[str, Any]) -> list[ToolCall]:
        tool_calls = []
        for tc in message.get("tool_calls") or []:
            function = tc.get("function", {})
            raw_arguments = function.get("arguments") or "{}"
            if isinstance(raw_arguments, dict):
                arguments = raw_arguments
            else:
                try:
                    arguments = json.loads(raw_arguments)
                except json.JSONDecodeError:
                    arguments = {"raw": raw_arguments}
            tool_calls.append(ToolCall(
                id=str(tc.get("id") or f"call_{uuid.uuid4().hex[:12]}"),
                name=function.get("name", ""),
                arguments=arguments if isinstance(arguments, dict) else {"raw": arguments},
            ))
        return tool_calls

    async def send_message(
        self,
        message: str | None,
        context: ConversationContext,
        options: RequestOptions | None = None,
    ) -> ProviderResponse:
        options = options or RequestOptions()
        url = f"{self.base_url}/chat/completions"
        body: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(self.build_messages(message, context)),
            "temperature": options.temperature if options.temperature is not None else self.temperature,
            "max_tokens": options.max_tokens or self.max_tokens,
        }
        if options.tools:
            body["tools"] = self._convert_tools(options.tools)

        started = time.monotonic()
        try:
            log.debug("Calling provider", provider=self.name, model=self.model, msg_count=len(body["messages"]))
            response = await self.client.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            return self.format_error(f"{self.name} HTTP error: {e}", status_code=503, code="TRANSPORT_ERROR")

        if not response.is_success:
            code = "RATE_LIMITED" if response.status_code == 429 else "API_ERROR"
            return self.format_error(
                f"{self.name} API error {response.status_code}: {response.text}",
                status_code=response.status_code,
                code=code,
            )

        try:
            data = response.json()
            choice = data["choices"][0]
            message_payload = choice.get("message") or {}
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            return self.format_error(f"Invalid response from {self.name}: {e}", code="INVALID_RESPONSE")

        usage = data.get("usage") or {}
        prompt_tokens = int(usage.get("prompt_tokens", 0) or 0)
        completion_tokens = int(usage.get("completion_tokens", 0) or 0)
        return self.format_response(
            content=message_payload.get("content") or "",
            tool_calls=self._parse_tool_calls(message_payload),
            usage={
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": int(usage.get("total_tokens", prompt_tokens + completion_tokens) or 0),
            },
            model=data.get("model") or self.model,
            request_id=response.headers.get("x-request-id") or data.get("id"),
            latency_ms=int((time.monotonic() - started) * 1000),
        )

    async def health_check(self) -> bool:
        """List models; cheaper than a completion and needs the same key."""
        try:
            response = await self.client.get(f"{self.base_url}/models", headers=self._headers())
            self.healthy = response.is_success
        except httpx.HTTPError as e:
            log.warning("Health check failed", provider=self.name, error=str(e))
            self.healthy = False
        self.last_health_check = datetime.now(UTC)
        return self.healthy

    async def close(self) -> None:
        await self.client.aclose()
