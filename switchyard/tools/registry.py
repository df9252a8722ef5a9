"""Tool registry and base tool class."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError, model_validator

from switchyard.checkpoints import CheckpointManager
from switchyard.exceptions import (
    ActionCancelledError,
    ToolBlockedError,
    ToolExecutionError,
    ToolNotFoundError,
)
from switchyard.interaction import Interaction
from switchyard.llm.base import ToolCall
from switchyard.logging import get_logger
from switchyard.permissions import PermissionAction, PermissionManager, PermissionMode

log = get_logger(__name__)


class ToolName(str, Enum):
    """The closed set of tools a model may call."""

    READ_FILE = "read_file"
    WRITE_FILE = "write_file"
    LIST_DIR = "list_dir"
    DELETE_FILE = "delete_file"
    RUN_COMMAND = "run_command"


# Calls of these tools are gathered into the batch-write path.
WRITE_TOOL_NAMES = frozenset({ToolName.WRITE_FILE.value})

SKIPPED_PLAN_ONLY = "Skipped: plan-only mode"
CANCELLED_BY_USER = "Cancelled by user"


@dataclass
class CallOutcome:
    """Tool-result text for one model tool call."""

    call_id: str
    tool_name: str
    content: str
    success: bool = True


class ToolResult(BaseModel):
    """Result from tool execution."""

    success: bool = True
    content: str = ""
    error: str | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = (self.content or "").strip()
            self.error = fallback or "Tool execution failed"
        return self


def resolve_workspace_path(base_path: Path, raw_path: str, tool_name: str) -> Path:
    """Resolve a tool path against the workspace, refusing anything outside it."""
    base = base_path.expanduser().resolve()
    requested = Path(raw_path).expanduser()
    candidate = (requested if requested.is_absolute() else base / requested).resolve()
    try:
        candidate.relative_to(base)
    except ValueError as e:
        raise ToolBlockedError(tool_name, f"Access denied: {raw_path} is outside {base}") from e
    return candidate


@dataclass
class ToolContext:
    """Per-call environment handed to a tool."""

    base_path: Path
    permissions: PermissionManager
    mode: PermissionMode = PermissionMode.DEFAULT
    checkpoints: CheckpointManager | None = None
    interaction: Interaction | None = None
    # Set when the user already approved the whole batch.
    skip_confirmation: bool = False

    def ensure_allowed(self, tool_name: str, action: PermissionAction) -> None:
        if not self.permissions.is_action_allowed(action, self.mode):
            raise ToolBlockedError(tool_name, f"not allowed in {self.mode.value} mode")

    def should_confirm(self, action: PermissionAction) -> bool:
        if self.skip_confirmation:
            return False
        return self.permissions.needs_confirmation(action, self.mode)

    async def authorize(
        self,
        tool_name: str,
        action: PermissionAction,
        details: str,
        cancel_message: str,
    ) -> None:
        """Ask for permission, raising ActionCancelledError on a decline."""
        self.ensure_allowed(tool_name, action)
        if not self.should_confirm(action):
            return
        prompt = self.interaction.confirm if self.interaction is not None else None
        approved = await self.permissions.request_permission(action, details, prompt, self.mode)
        if not approved:
            raise ActionCancelledError(tool_name, cancel_message)


class Tool(ABC):
    """Base class for all tools."""

    name: ToolName
    description: str = ""
    parameters: dict[str, Any] = {}
    args_model: type[BaseModel]
    action: PermissionAction

    @abstractmethod
    async def execute(self, args: Any, context: ToolContext) -> ToolResult:
        """Execute the tool.

        Args:
            args: Validated instance of ``args_model``
            context: Workspace, permission and checkpoint handles

        Returns:
            ToolResult with success status and content
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        """Get the tool definition for LLM.

        Returns:
            OpenAI function-style definition
        """
        return {
            "name": self.name.value,
            "description": self.description,
            "parameters": self.parameters,
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> BaseModel:
        """Validate tool arguments against the argument model.

        Raises:
            ToolExecutionError if invalid
        """
        try:
            return self.args_model.model_validate(arguments or {})
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            raise ToolExecutionError(self.name.value, f"Invalid arguments: {problems}") from e


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        log.debug("Registering tool", tool=tool.name.value)
        self._tools[tool.name.value] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_tools(self) -> list[str]:
        return list(self._tools)

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool definitions for LLM."""
        return [tool.get_definition() for tool in self._tools.values()]

    def action_for(self, name: str) -> PermissionAction:
        return self.get(name).action

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        context: ToolContext,
    ) -> ToolResult:
        """Execute a tool by name.

        Raises:
            ToolNotFoundError if tool not found
            ToolExecutionError if arguments are invalid
            ToolBlockedError if the path or mode forbids the call
            ActionCancelledError if the user declines
        """
        tool = self.get(name)
        args = tool.validate_arguments(arguments)
        log.info("Executing tool", tool=name, args=arguments, mode=context.mode.value)
        result = await tool.execute(args, context)
        if not result.success:
            log.warning("Tool returned failure", tool=name, error=result.error)
        return result

    async def run_call(self, call: ToolCall, context: ToolContext) -> CallOutcome:
        """Execute one model tool call and render its result text.

        Never raises for tool-level problems: refusals, declines and
        failures all become the text fed back to the model.
        """
        if (
            context.mode == PermissionMode.PLAN_ONLY
            and self.has_tool(call.name)
            and not context.permissions.is_action_allowed(self.action_for(call.name), context.mode)
        ):
            log.info("Tool skipped in plan-only mode", tool=call.name, call_id=call.id)
            return CallOutcome(call.id, call.name, SKIPPED_PLAN_ONLY, success=False)
        try:
            result = await self.execute(call.name, call.arguments, context)
        except ActionCancelledError as e:
            log.info("Tool cancelled by user", tool=call.name, call_id=call.id, reason=str(e))
            return CallOutcome(call.id, call.name, CANCELLED_BY_USER, success=False)
        except Exception as e:
            log.error("Tool execution failed", tool=call.name, call_id=call.id, error=str(e))
            return CallOutcome(call.id, call.name, f"Error: {e}", success=False)
        if result.success:
            return CallOutcome(call.id, call.name, result.content, success=True)
        return CallOutcome(call.id, call.name, f"Error: {result.error}", success=False)
