"""Read tool for reading file contents."""

import asyncio

from pydantic import BaseModel, Field

from switchyard.config import Config, get_config
from switchyard.logging import get_logger
from switchyard.permissions import PermissionAction
from switchyard.tools.registry import Tool, ToolContext, ToolName, ToolResult, resolve_workspace_path

log = get_logger(__name__)


class ReadFileArgs(BaseModel):
    path: str = Field(min_length=1)
    offset: int | None = Field(default=None, ge=1)
    limit: int | None = Field(default=None, ge=1)


class ReadFileTool(Tool):
    """Read file contents."""

    name = ToolName.READ_FILE
    description = "Read the contents of a file in the project."
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file, relative to the project root",
            },
            "offset": {
                "type": "number",
                "description": "Line number to start reading from (1-indexed)",
            },
            "limit": {
                "type": "number",
                "description": "Maximum number of lines to read",
            },
        },
        "required": ["path"],
    }
    args_model = ReadFileArgs
    action = PermissionAction.FILE_READ

    def __init__(self, config: Config | None = None):
        self.config = config or get_config()

    async def execute(self, args: ReadFileArgs, context: ToolContext) -> ToolResult:
        file_path = resolve_workspace_path(context.base_path, args.path, self.name.value)
        context.ensure_allowed(self.name.value, self.action)

        if not file_path.exists():
            return ToolResult(success=False, error=f"File not found: {args.path}")
        if not file_path.is_file():
            return ToolResult(success=False, error=f"Not a file: {args.path}")

        max_size = self.config.tools.max_read_bytes
        try:
            file_size = file_path.stat().st_size
            if file_size > max_size:
                return ToolResult(
                    success=False,
                    error=f"File too large: {file_size} bytes (max {max_size})",
                )
            content = await asyncio.to_thread(file_path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log.error("Read failed", path=str(file_path), error=str(e))
            return ToolResult(success=False, error=str(e))

        if args.offset or args.limit:
            lines = content.splitlines()
            start = (args.offset or 1) - 1
            end = start + args.limit if args.limit else len(lines)
            content = "\n".join(lines[start:end])
        return ToolResult(success=True, content=content)
