"""Ollama backend - direct HTTP calls to the Ollama API."""

import json
import time
import uuid
from datetime import UTC, datetime
from typing import Any

import httpx

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


OLLAMA_NATIVE_BASE_URL = "http://127.0.0.1:11434"


class OllamaProvider(LLMProvider):
    """Direct Ollama API backend."""

    name = "ollama"

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str = OLLAMA_NATIVE_BASE_URL,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        api_key: str | None = None,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize Ollama backend.

        Args:
            model: Ollama model name (e.g., 'llama3.2', 'qwen3:32b')
            base_url: Ollama API base URL
            temperature: Sampling temperature
            max_tokens: Max tokens to generate
            api_key: Optional API key (Ollama usually doesn't need one locally)
            timeout: Transport timeout in seconds
            client: Optional preconfigured HTTP client
        """
        super().__init__(model=model, max_tokens=max_tokens, temperature=temperature)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def initialize(self) -> bool:
        self.initialized = True
        log.info("Ollama provider initialized", base_url=self.base_url, model=self.model)
        return True

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert messages to Ollama format."""
        result = []
        for msg in messages:
            entry: dict[str, Any] = {"role": msg.role, "content": msg.content or ""}
            if msg.role == "assistant" and msg.tool_calls:
                entry["tool_calls"] = [
                    {"function": {"name": tc.name, "arguments": tc.arguments}}
                    for tc in msg.tool_calls
                ]
            elif msg.role == "tool" and msg.tool_name:
                entry["tool_name"] = msg.tool_name
            result.append(entry)
        return result

    @staticmethod
    def _convert_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert tool definitions to Ollama format."""
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
    def _parse_tool_calls(data: dict[str, Any]) -> list[ToolCall]:
        tool_calls = []
        for tc in data.get("message", {}).get("tool_calls") or []:
            function = tc.get("function", {})
            arguments = function.get("arguments", {})
            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments)
                except json.JSONDecodeError:
                    arguments = {"raw": arguments}
            call_id = str(tc.get("id") or "").strip() or uuid.uuid4().hex[:12]
            tool_calls.append(ToolCall(
                id=f"ollama_call_{call_id}",
                name=function.get("name", ""),
                arguments=arguments if isinstance(arguments, dict) else {},
            ))
        return tool_calls

    async def send_message(
        self,
        message: str | None,
        context: ConversationContext,
        options: RequestOptions | None = None,
    ) -> ProviderResponse:
        """Generate a completion."""
        options = options or RequestOptions()
        url = f"{self.base_url}/api/chat"

        body: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(self.build_messages(message, context)),
            "stream": False,
            "options": {
                "temperature": options.temperature if options.temperature is not None else self.temperature,
                "num_predict": options.max_tokens or self.max_tokens,
            },
        }
        if options.tools:
            body["tools"] = self._convert_tools(options.tools)

        started = time.monotonic()
        try:
            log.debug("Calling Ollama", model=self.model, url=url, msg_count=len(body["messages"]))
            response = await self.client.post(url, json=body, headers=self._headers())
        except httpx.ConnectError:
            return self.format_error(
                f"Connection refused. Is Ollama running on {self.base_url}?",
                status_code=503,
                code="CONNECTION_REFUSED",
            )
        except httpx.HTTPError as e:
            return self.format_error(f"Ollama HTTP error: {e}", status_code=503, code="TRANSPORT_ERROR")

        if not response.is_success:
            return self.format_error(
                f"Ollama API error {response.status_code}: {response.text}",
                status_code=response.status_code,
                code="API_ERROR",
            )

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            return self.format_error(f"Ollama response decode error: {e}", code="DECODE_ERROR")

        if not isinstance(data, dict) or "message" not in data:
            return self.format_error("Invalid response from Ollama", code="INVALID_RESPONSE")

        prompt_tokens = int(data.get("prompt_eval_count", 0) or 0)
        completion_tokens = int(data.get("eval_count", 0) or 0)
        return self.format_response(
            content=data["message"].get("content", ""),
            tool_calls=self._parse_tool_calls(data),
            usage={
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
            model=data.get("model") or self.model,
            latency_ms=int((time.monotonic() - started) * 1000),
        )

    async def health_check(self) -> bool:
        """Ollama exposes a cheap model listing; use it instead of a chat call."""
        try:
            response = await self.client.get(f"{self.base_url}/api/tags", headers=self._headers())
            self.healthy = response.status_code == 200
        except httpx.HTTPError as e:
            log.warning("Health check failed", provider=self.name, error=str(e))
            self.healthy = False
        self.last_health_check = datetime.now(UTC)
        return self.healthy

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
