"""Tools package for Switchyard."""

from switchyard.config import Config, get_config
from switchyard.exceptions import ConfigurationError
from switchyard.tools.delete import DeleteFileTool
from switchyard.tools.list_dir import ListDirTool
from switchyard.tools.read import ReadFileTool
from switchyard.tools.registry import (
    CANCELLED_BY_USER,
    SKIPPED_PLAN_ONLY,
    WRITE_TOOL_NAMES,
    CallOutcome,
    Tool,
    ToolContext,
    ToolName,
    ToolRegistry,
    ToolResult,
    resolve_workspace_path,
)
from switchyard.tools.shell import RunCommandTool, is_blocked_shell_command
from switchyard.tools.write import WriteFileTool, classify_change, read_existing


def build_registry(config: Config | None = None) -> ToolRegistry:
    """Create a registry holding the tools enabled in config, in config order."""
    config = config or get_config()
    factories = {
        ToolName.READ_FILE: lambda: ReadFileTool(config),
        ToolName.WRITE_FILE: WriteFileTool,
        ToolName.LIST_DIR: ListDirTool,
        ToolName.DELETE_FILE: DeleteFileTool,
        ToolName.RUN_COMMAND: lambda: RunCommandTool(config),
    }
    registry = ToolRegistry()
    for raw_name in config.tools.enabled:
        try:
            name = ToolName(str(raw_name).strip())
        except ValueError as e:
            raise ConfigurationError(f"Unknown tool in tools.enabled: {raw_name}") from e
        registry.register(factories[name]())
    return registry


__all__ = [
    "CANCELLED_BY_USER",
    "SKIPPED_PLAN_ONLY",
    "WRITE_TOOL_NAMES",
    "CallOutcome",
    "DeleteFileTool",
    "ListDirTool",
    "ReadFileTool",
    "RunCommandTool",
    "Tool",
    "ToolContext",
    "ToolName",
    "ToolRegistry",
    "ToolResult",
    "WriteFileTool",
    "build_registry",
    "classify_change",
    "is_blocked_shell_command",
    "read_existing",
    "resolve_workspace_path",
]
