"""Write tool for writing file contents."""

import asyncio
from pathlib import Path

from pydantic import BaseModel, Field

from switchyard.interaction import ChangeKind
from switchyard.logging import get_logger
from switchyard.permissions import PermissionAction
from switchyard.tools.registry import Tool, ToolContext, ToolName, ToolResult, resolve_workspace_path

log = get_logger(__name__)


class WriteFileArgs(BaseModel):
    path: str = Field(min_length=1)
    content: str


def read_existing(path: Path) -> str | None:
    """Return current file text, or None when the file does not exist.

    Undecodable bytes are replaced so binary files still diff and classify.
    """
    try:
        with open(path, encoding="utf-8", errors="replace", newline="") as f:
            return f.read()
    except FileNotFoundError:
        return None


def classify_change(existing: str | None, new_content: str) -> ChangeKind:
    if existing is None:
        return ChangeKind.CREATE
    if existing == new_content:
        return ChangeKind.UNCHANGED
    return ChangeKind.MODIFY


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


class WriteFileTool(Tool):
    """Create or overwrite files, checkpointing the previous state first."""

    name = ToolName.WRITE_FILE
    description = "Create or overwrite a file with content."
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file to write, relative to the project root",
            },
            "content": {
                "type": "string",
                "description": "Full new content of the file",
            },
        },
        "required": ["path", "content"],
    }
    args_model = WriteFileArgs
    action = PermissionAction.FILE_WRITE

    async def execute(self, args: WriteFileArgs, context: ToolContext) -> ToolResult:
        """Write content to a file.

        The checkpoint is taken before the user is asked, so the recorded
        pre-write state never depends on the answer.

        Raises:
            ActionCancelledError: the user declined the write
        """
        file_path = resolve_workspace_path(context.base_path, args.path, self.name.value)
        context.ensure_allowed(self.name.value, self.action)

        if file_path.is_dir():
            return ToolResult(success=False, error=f"Is a directory: {args.path}")

        checkpoint_id = None
        if context.checkpoints is not None:
            checkpoint_id = await context.checkpoints.create_checkpoint(file_path)

        if context.should_confirm(self.action) and context.interaction is not None:
            existing = await asyncio.to_thread(read_existing, file_path)
            await context.interaction.show_diff(args.path, existing, args.content)
        await context.authorize(self.name.value, self.action, args.path, "User cancelled file write")

        try:
            await asyncio.to_thread(_write, file_path, args.content)
        except OSError as e:
            log.error("Write failed", path=str(file_path), error=str(e))
            return ToolResult(success=False, error=str(e))

        log.info("File written", path=str(file_path), chars=len(args.content), checkpoint_id=checkpoint_id)
        message = f"Wrote {len(args.content)} chars to {args.path}"
        if checkpoint_id:
            message += f" (checkpoint {checkpoint_id})"
        return ToolResult(success=True, content=message)
