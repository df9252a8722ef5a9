"""Delete tool for removing files."""

import asyncio

from pydantic import BaseModel, Field

from switchyard.logging import get_logger
from switchyard.permissions import PermissionAction
from switchyard.tools.registry import Tool, ToolContext, ToolName, ToolResult, resolve_workspace_path

log = get_logger(__name__)


class DeleteFileArgs(BaseModel):
    path: str = Field(min_length=1)


class DeleteFileTool(Tool):
    """Delete a file after checkpointing it."""

    name = ToolName.DELETE_FILE
    description = "Delete a file from the project."
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file to delete, relative to the project root",
            },
        },
        "required": ["path"],
    }
    args_model = DeleteFileArgs
    action = PermissionAction.FILE_DELETE

    async def execute(self, args: DeleteFileArgs, context: ToolContext) -> ToolResult:
        file_path = resolve_workspace_path(context.base_path, args.path, self.name.value)
        context.ensure_allowed(self.name.value, self.action)

        if not file_path.exists():
            return ToolResult(success=False, error=f"File not found: {args.path}")
        if not file_path.is_file():
            return ToolResult(success=False, error=f"Not a file: {args.path}")

        checkpoint_id = None
        if context.checkpoints is not None:
            checkpoint_id = await context.checkpoints.create_checkpoint(file_path)
        await context.authorize(self.name.value, self.action, args.path, "User cancelled file delete")

        try:
            await asyncio.to_thread(file_path.unlink)
        except OSError as e:
            log.error("Delete failed", path=str(file_path), error=str(e))
            return ToolResult(success=False, error=str(e))

        log.info("File deleted", path=str(file_path), checkpoint_id=checkpoint_id)
        message = f"Deleted {args.path}"
        if checkpoint_id:
            message += f" (checkpoint {checkpoint_id})"
        return ToolResult(success=True, content=message)
