"""Directory listing tool."""

import asyncio
from pathlib import Path

from pydantic import BaseModel, Field

from switchyard.logging import get_logger
from switchyard.permissions import PermissionAction
from switchyard.tools.registry import Tool, ToolContext, ToolName, ToolResult, resolve_workspace_path

log = get_logger(__name__)

MAX_ENTRIES = 500


class ListDirArgs(BaseModel):
    path: str = Field(default=".", min_length=1)


def _list_entries(directory: Path) -> list[str]:
    entries = []
    for child in sorted(directory.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower())):
        entries.append(f"{child.name}/" if child.is_dir() else child.name)
    return entries


class ListDirTool(Tool):
    """List the entries of a directory."""

    name = ToolName.LIST_DIR
    description = "List files and directories. Directories end with '/'."
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Directory to list, relative to the project root (default '.')",
            },
        },
        "required": [],
    }
    args_model = ListDirArgs
    action = PermissionAction.LIST_DIR

    async def execute(self, args: ListDirArgs, context: ToolContext) -> ToolResult:
        directory = resolve_workspace_path(context.base_path, args.path, self.name.value)
        context.ensure_allowed(self.name.value, self.action)

        if not directory.exists():
            return ToolResult(success=False, error=f"Directory not found: {args.path}")
        if not directory.is_dir():
            return ToolResult(success=False, error=f"Not a directory: {args.path}")

        try:
            entries = await asyncio.to_thread(_list_entries, directory)
        except OSError as e:
            log.error("List failed", path=str(directory), error=str(e))
            return ToolResult(success=False, error=str(e))

        if not entries:
            return ToolResult(success=True, content="[empty directory]")
        if len(entries) > MAX_ENTRIES:
            hidden = len(entries) - MAX_ENTRIES
            entries = entries[:MAX_ENTRIES] + [f"... [{hidden} more entries]"]
        return ToolResult(success=True, content="\n".join(entries))
