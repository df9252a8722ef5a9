"""Conversation context assembly: history window, retrieval and project info."""

import os
from pathlib import Path
from typing import Any, Protocol

from switchyard.exceptions import ConversationNotFoundError
from switchyard.llm.base import ConversationContext, Message, Snippet, ToolCall
from switchyard.logging import get_logger
from switchyard.storage import Conversation, Database, StoredMessage

log = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are Switchyard, a coding assistant working inside the user's project.\n"
    "Use the available tools to inspect files before changing them. Write whole files "
    "with write_file; paths are relative to the project root. When a tool result says "
    "an action was skipped or cancelled, do not retry it; explain what you would have done."
)

# Marker file -> project type
PROJECT_MARKERS = {
    "pyproject.toml": "Python",
    "setup.py": "Python",
    "requirements.txt": "Python",
    "package.json": "Node.js",
    "tsconfig.json": "TypeScript",
    "Cargo.toml": "Rust",
    "go.mod": "Go",
    "pom.xml": "Java (Maven)",
    "build.gradle": "Java (Gradle)",
    "Gemfile": "Ruby",
    "composer.json": "PHP",
    "CMakeLists.txt": "C/C++ (CMake)",
    "Dockerfile": "Docker",
}


class Retriever(Protocol):
    """Finds code relevant to a query."""

    async def find_relevant(self, query: str, top_k: int) -> list[Snippet]: ...


class NullRetriever:
    """Retriever used when no index is configured."""

    async def find_relevant(self, query: str, top_k: int) -> list[Snippet]:
        return []


def detect_project_types(root: Path) -> list[str]:
    found: list[str] = []
    for marker, project_type in PROJECT_MARKERS.items():
        if (root / marker).exists() and project_type not in found:
            found.append(project_type)
    return found


def describe_project(root: Path) -> str:
    """Short description of the working directory for the model."""
    types = detect_project_types(root)
    lines = [
        f"Working directory: {root}",
        f"Project type: {', '.join(types) if types else 'unknown'}",
        f"Platform: {os.name}",
    ]
    return "\n".join(lines)


def _to_message(stored: StoredMessage) -> Message:
    metadata = stored.metadata or {}
    if stored.role == "tool":
        return Message(
            role="tool",
            content=stored.content,
            tool_call_id=metadata.get("tool_call_id"),
            tool_name=metadata.get("tool_name"),
        )
    tool_calls = [
        ToolCall(id=str(tc.get("id", "")), name=str(tc.get("name", "")), arguments=tc.get("arguments") or {})
        for tc in metadata.get("tool_calls") or []
    ]
    return Message(role=stored.role, content=stored.content, tool_calls=tool_calls)


class ContextManager:
    """Owns the active conversation and builds the context sent to backends."""

    def __init__(
        self,
        database: Database,
        retriever: Retriever | None = None,
        max_messages: int = 50,
        retrieval_top_k: int = 5,
        project_root: Path | str | None = None,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self.database = database
        self.retriever = retriever or NullRetriever()
        self.max_messages = max_messages
        self.retrieval_top_k = retrieval_top_k
        self.project_root = Path(project_root).expanduser().resolve() if project_root else Path.cwd().resolve()
        self.system_prompt = system_prompt
        self.current_conversation_id: str | None = None

    async def create_conversation(self, title: str = "New Conversation") -> str:
        self.current_conversation_id = await self.database.create_conversation(title)
        log.info("Conversation created", conversation_id=self.current_conversation_id)
        return self.current_conversation_id

    async def load_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self.database.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        self.current_conversation_id = conversation_id
        log.info("Conversation loaded", conversation_id=conversation_id)
        return conversation

    def clear_conversation(self) -> None:
        self.current_conversation_id = None
        log.info("Conversation cleared")

    async def _ensure_conversation(self, title: str = "New Conversation") -> str:
        if self.current_conversation_id is None:
            await self.create_conversation(title)
        return self.current_conversation_id  # type: ignore[return-value]

    async def add_user_message(self, content: str) -> str:
        # Title new conversations after their first request.
        title = content.strip().splitlines()[0][:60] if content.strip() else "New Conversation"
        conversation_id = await self._ensure_conversation(title)
        message_id = await self.database.add_message(conversation_id, "user", content)
        log.debug("User message added", conversation_id=conversation_id, length=len(content))
        return message_id

    async def add_assistant_message(
        self,
        content: str,
        provider: str | None = None,
        model: str | None = None,
        tokens: int | None = None,
        tool_calls: list[ToolCall] | None = None,
    ) -> str:
        conversation_id = await self._ensure_conversation()
        metadata: dict[str, Any] = {}
        if tool_calls:
            metadata["tool_calls"] = [tc.to_dict() for tc in tool_calls]
        message_id = await self.database.add_message(
            conversation_id,
            "assistant",
            content,
            provider=provider,
            model=model,
            tokens=tokens,
            metadata=metadata,
        )
        log.debug(
            "Assistant message added",
            conversation_id=conversation_id,
            provider=provider,
            model=model,
            tokens=tokens,
            tool_calls=len(tool_calls or []),
        )
        return message_id

    async def add_tool_result_message(self, tool_call_id: str, tool_name: str, content: str) -> str:
        conversation_id = await self._ensure_conversation()
        return await self.database.add_message(
            conversation_id,
            "tool",
            content,
            metadata={"tool_call_id": tool_call_id, "tool_name": tool_name},
        )

    async def get_history(self, limit: int | None = None) -> list[Message]:
        """Return the message window in chronological order."""
        if self.current_conversation_id is None:
            return []
        stored = await self.database.get_messages(self.current_conversation_id, limit or self.max_messages)
        messages = [_to_message(item) for item in reversed(stored)]
        # A window must not open on tool results whose assistant turn fell outside it.
        while messages and messages[0].role == "tool":
            messages.pop(0)
        return messages

    async def get_context(self, limit: int | None = None) -> ConversationContext:
        """Assemble history, retrieval snippets and the system prompt."""
        messages = await self.get_history(limit)
        snippets: list[Snippet] = []
        query = next((m.content for m in reversed(messages) if m.role == "user"), "")
        if query and self.retrieval_top_k > 0:
            snippets = list(await self.retriever.find_relevant(query, self.retrieval_top_k))
        log.debug(
            "Context assembled",
            conversation_id=self.current_conversation_id,
            messages=len(messages),
            snippets=len(snippets),
        )
        return ConversationContext(
            conversation_id=self.current_conversation_id,
            messages=messages,
            snippets=snippets,
            system_prompt=self.system_prompt,
        )

    def get_project_context(self) -> str:
        return describe_project(self.project_root)

    async def conversation_summary(self) -> dict[str, Any] | None:
        if self.current_conversation_id is None:
            return None
        conversation = await self.database.get_conversation(self.current_conversation_id)
        if conversation is None:
            return None
        return {
            "id": conversation.id,
            "title": conversation.title,
            "message_count": await self.database.count_messages(conversation.id),
            "created_at": conversation.created_at,
            "updated_at": conversation.updated_at,
        }
