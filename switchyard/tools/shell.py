"""Shell tool for executing commands in the project directory."""

import asyncio
import os
import re
import shlex

from pydantic import BaseModel, Field

from switchyard.config import Config, get_config
from switchyard.logging import get_logger
from switchyard.permissions import PermissionAction
from switchyard.tools.registry import Tool, ToolContext, ToolName, ToolResult

log = get_logger(__name__)

_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=.*$")
_SHELL_SEPARATOR_TOKENS = {";", "&&", "||", "|", "&"}
_SHELL_WRAPPER_TOKENS = {"sudo", "command", "builtin", "nohup", "time"}


def _compile_shell_pattern(pattern: str) -> re.Pattern[str]:
    """Compile regex pattern with literal fallback for invalid regex input."""
    try:
        return re.compile(pattern)
    except re.error:
        return re.compile(re.escape(pattern))


def _split_shell_segments(command: str) -> list[list[str]]:
    """Split shell command into tokenized segments separated by control operators."""
    lexer = shlex.shlex(command, posix=True, punctuation_chars=";&|")
    lexer.whitespace_split = True
    lexer.commenters = ""
    segments: list[list[str]] = []
    current: list[str] = []
    for token in lexer:
        if token in _SHELL_SEPARATOR_TOKENS:
            if current:
                segments.append(current)
                current = []
            continue
        current.append(token)
    if current:
        segments.append(current)
    return segments


def _extract_segment_base_command(tokens: list[str]) -> str:
    """Extract executable command token from a tokenized shell segment."""
    for token in tokens:
        token = token.strip()
        if not token or token in _SHELL_WRAPPER_TOKENS:
            continue
        if _ASSIGNMENT_RE.match(token) and "/" not in token:
            continue
        return token
    return ""


def is_blocked_shell_command(command: str, blocked_patterns: list[str]) -> tuple[bool, str]:
    """Evaluate a command against blocked patterns.

    Patterns containing whitespace match whole segments (``rm -rf /``);
    single-word patterns match the executable of any segment (``mkfs``).
    The raw command is also checked literally so that fork bombs and
    similar unparseable payloads cannot slip through.

    Returns:
        Tuple of (blocked, matched pattern or reason)
    """
    cleaned = str(command or "").strip()
    if not cleaned:
        return True, "empty_command"

    for raw_pattern in blocked_patterns or []:
        pattern = str(raw_pattern or "").strip()
        if pattern and pattern in cleaned:
            return True, pattern

    try:
        segments = _split_shell_segments(cleaned)
    except ValueError:
        return True, "unparseable_command"

    segment_texts = [" ".join(tokens) for tokens in segments]
    base_commands = [base for segment in segments if (base := _extract_segment_base_command(segment))]
    if not base_commands:
        return True, "unparseable_command"

    for raw_pattern in blocked_patterns or []:
        pattern = str(raw_pattern or "").strip()
        if not pattern:
            continue
        compiled = _compile_shell_pattern(pattern)
        segment_level_pattern = bool(re.search(r"\s", pattern))
        targets = segment_texts if segment_level_pattern else base_commands
        matcher = compiled.search if segment_level_pattern else compiled.match
        for target in targets:
            if matcher(target):
                return True, pattern
    return False, ""


class RunCommandArgs(BaseModel):
    command: str = Field(min_length=1)
    timeout: int | None = Field(default=None, ge=1)


class RunCommandTool(Tool):
    """Execute shell commands."""

    name = ToolName.RUN_COMMAND
    description = "Execute a shell command in the project directory and return its output."
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute",
            },
            "timeout": {
                "type": "number",
                "description": "Timeout in seconds (optional, default from config)",
            },
        },
        "required": ["command"],
    }
    args_model = RunCommandArgs
    action = PermissionAction.COMMAND_EXECUTE

    def __init__(self, config: Config | None = None):
        self.config = config or get_config()

    async def execute(self, args: RunCommandArgs, context: ToolContext) -> ToolResult:
        shell_config = self.config.tools.shell
        blocked, matched = is_blocked_shell_command(args.command, shell_config.blocked)
        if blocked:
            if matched == "empty_command":
                reason = "Command is empty"
            elif matched == "unparseable_command":
                reason = "Command is not parseable"
            else:
                reason = f"Command matches blocked pattern: {matched}"
            log.warning("Blocked unsafe command", command=args.command, reason=reason)
            return ToolResult(success=False, error=f"Command blocked: {reason}")

        await context.authorize(self.name.value, self.action, args.command, "User cancelled command")

        timeout = max(1, int(args.timeout or shell_config.timeout))
        log.info("Executing shell command", command=args.command, timeout=timeout)
        process = await asyncio.create_subprocess_shell(
            args.command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(context.base_path),
            env=os.environ.copy(),
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except TimeoutError:
            process.kill()
            await process.wait()
            return ToolResult(success=False, error=f"Command timed out after {timeout}s")

        output = stdout.decode("utf-8", errors="replace").strip()
        stderr_text = stderr.decode("utf-8", errors="replace").strip()
        if stderr_text:
            output += f"\n[stderr] {stderr_text}"

        max_length = shell_config.max_output_chars
        if len(output) > max_length:
            output = output[:max_length] + f"\n... [truncated, {len(output)} total chars]"

        if process.returncode != 0:
            return ToolResult(
                success=False,
                content=output,
                error=f"Exit code {process.returncode}: {output or '[no output]'}",
            )
        return ToolResult(success=True, content=output or "[no output]")
