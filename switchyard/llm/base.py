"""Uniform request/response shapes and the abstract model backend."""

import json
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from switchyard.logging import get_logger

log = get_logger(__name__)


@dataclass
class ToolCall:
    """A tool call from the model."""

    id: str
    name: str
    arguments: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant", "tool"
    content: str
    tool_call_id: str | None = None
    tool_name: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass
class Snippet:
    """A retrieved code snippet."""

    file_path: str
    start_line: int
    end_line: int
    content: str
    score: float = 0.0


@dataclass
class ConversationContext:
    """Conversation state handed to a backend alongside the new message."""

    conversation_id: str | None = None
    messages: list[Message] = field(default_factory=list)
    snippets: list[Snippet] = field(default_factory=list)
    system_prompt: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def size_bytes(self) -> int:
        """Approximate serialized size, used for failover bookkeeping."""
        return len(json.dumps(self.to_dict(), default=str).encode("utf-8"))


@dataclass
class RequestOptions:
    """Per-request options."""

    tools: list[dict[str, Any]] | None = None
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass
class ProviderErrorInfo:
    """Error payload of a failed backend response."""

    message: str
    code: str = "UNKNOWN_ERROR"
    status_code: int = 500


@dataclass
class ProviderResponse:
    """Response from a model backend."""

    success: bool = True
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)
    provider: str = ""
    model: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    error: ProviderErrorInfo | None = None

    @property
    def total_tokens(self) -> int:
        return int(self.usage.get("total_tokens", 0) or 0)


@dataclass
class Capabilities:
    """What a backend supports."""

    streaming: bool = False
    max_tokens: int = 4096
    supported_models: list[str] = field(default_factory=list)
    features: list[str] = field(default_factory=list)


def empty_usage() -> dict[str, int]:
    """Create an empty usage bucket."""
    return {
        "prompt_tokens": 0,
        "completion_tokens": 0,
        "total_tokens": 0,
    }


def render_snippets(snippets: list[Snippet]) -> str:
    """Render retrieved snippets as a system note."""
    blocks = ["Relevant code from the project:"]
    for snippet in snippets:
        blocks.append(
            f"--- {snippet.file_path}:{snippet.start_line}-{snippet.end_line} "
            f"(score {snippet.score:.2f})\n{snippet.content}"
        )
    return "\n\n".join(blocks)


class LLMProvider(ABC):
    """Abstract base class for model backends."""

    name: str = ""

    def __init__(self, model: str = "", max_tokens: int = 4096, temperature: float = 0.7):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.initialized = False
        self.healthy = False
        self.last_health_check: datetime | None = None

    @abstractmethod
    async def initialize(self) -> bool:
        pass

    @abstractmethod
    async def send_message(
        self,
        message: str | None,
        context: ConversationContext,
        options: RequestOptions | None = None,
    ) -> ProviderResponse:
        pass

    async def health_check(self) -> bool:
        """Probe the backend with a tiny request."""
        started = time.monotonic()
        try:
            response = await self.send_message("Hello", ConversationContext())
            self.healthy = bool(response.success)
        except Exception as e:
            log.warning("Health check failed", provider=self.name, error=str(e))
            self.healthy = False
        self.last_health_check = datetime.now(UTC)
        log.debug(
            "Health check completed",
            provider=self.name,
            healthy=self.healthy,
            latency_ms=int((time.monotonic() - started) * 1000),
        )
        return self.healthy

    def get_capabilities(self) -> Capabilities:
        return Capabilities(max_tokens=self.max_tokens, supported_models=[self.model] if self.model else [])

    async def close(self) -> None:
        """Release transport resources."""
        return None

    def generate_request_id(self) -> str:
        return f"{self.name}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"

    def build_messages(self, message: str | None, context: ConversationContext) -> list[Message]:
        """Flatten system prompt, snippets, history and the new message."""
        messages: list[Message] = []
        if context.system_prompt:
            messages.append(Message(role="system", content=context.system_prompt))
        if context.snippets:
            messages.append(Message(role="system", content=render_snippets(context.snippets)))
        messages.extend(context.messages)
        if message:
            messages.append(Message(role="user", content=message))
        return messages

    def format_response(
        self,
        content: str,
        tool_calls: list[ToolCall] | None = None,
        usage: dict[str, int] | None = None,
        model: str | None = None,
        request_id: str | None = None,
        latency_ms: int = 0,
    ) -> ProviderResponse:
        return ProviderResponse(
            success=True,
            content=content or "",
            tool_calls=list(tool_calls or []),
            usage=usage or empty_usage(),
            provider=self.name,
            model=model or self.model or "unknown",
            metadata={
                "request_id": request_id or self.generate_request_id(),
                "timestamp": datetime.now(UTC).isoformat(),
                "latency_ms": latency_ms,
            },
        )

    def format_error(
        self,
        message: str,
        status_code: int = 500,
        code: str = "UNKNOWN_ERROR",
    ) -> ProviderResponse:
        return ProviderResponse(
            success=False,
            provider=self.name,
            model=self.model,
            error=ProviderErrorInfo(message=message, code=code, status_code=status_code),
            metadata={
                "request_id": self.generate_request_id(),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )
