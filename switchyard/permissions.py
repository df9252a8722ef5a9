"""Permission modes and the confirmation gate for side-effecting actions."""

from collections.abc import Awaitable, Callable
from enum import Enum

from switchyard.exceptions import InvalidPermissionModeError
from switchyard.logging import get_logger
from switchyard.storage import Database

log = get_logger(__name__)

PERMISSION_MODE_SETTING = "permission_mode"


class PermissionMode(str, Enum):
    """How much the assistant may do without asking."""

    DEFAULT = "default"
    AUTO_EDIT = "auto-edit"
    PLAN_ONLY = "plan-only"

    @classmethod
    def parse(cls, value: "PermissionMode | str") -> "PermissionMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            raise InvalidPermissionModeError(str(value)) from e


class PermissionAction(str, Enum):
    """Actions subject to the permission policy."""

    FILE_READ = "file_read"
    LIST_DIR = "list_dir"
    FILE_WRITE = "file_write"
    FILE_EDIT = "file_edit"
    FILE_DELETE = "file_delete"
    COMMAND_EXECUTE = "command_execute"


MODE_CYCLE = (PermissionMode.DEFAULT, PermissionMode.AUTO_EDIT, PermissionMode.PLAN_ONLY)

MODE_DESCRIPTIONS = {
    PermissionMode.DEFAULT: "Ask before writing, deleting or running commands",
    PermissionMode.AUTO_EDIT: "Apply file edits without asking",
    PermissionMode.PLAN_ONLY: "Read-only; never modify anything",
}

READ_ONLY_ACTIONS = frozenset({PermissionAction.FILE_READ, PermissionAction.LIST_DIR})
AUTO_EDIT_ACTIONS = frozenset({PermissionAction.FILE_WRITE, PermissionAction.FILE_EDIT})

PromptFn = Callable[[str], Awaitable[bool]]


class PermissionManager:
    """Holds the current mode and decides whether an action may proceed."""

    def __init__(
        self,
        mode: PermissionMode | str = PermissionMode.DEFAULT,
        database: Database | None = None,
    ):
        self.mode = PermissionMode.parse(mode)
        self.database = database

    async def load(self) -> PermissionMode:
        """Load the persisted mode, keeping the current one when none is stored."""
        if self.database is None:
            return self.mode
        stored = await self.database.get_setting(PERMISSION_MODE_SETTING)
        if stored:
            try:
                self.mode = PermissionMode.parse(stored)
            except InvalidPermissionModeError:
                log.warning("Ignoring invalid persisted permission mode", mode=stored)
        return self.mode

    async def set_mode(self, mode: PermissionMode | str) -> PermissionMode:
        self.mode = PermissionMode.parse(mode)
        if self.database is not None:
            await self.database.set_setting(PERMISSION_MODE_SETTING, self.mode.value)
        log.info("Permission mode changed", mode=self.mode.value)
        return self.mode

    async def cycle_mode(self) -> PermissionMode:
        """Advance default -> auto-edit -> plan-only -> default."""
        index = MODE_CYCLE.index(self.mode)
        return await self.set_mode(MODE_CYCLE[(index + 1) % len(MODE_CYCLE)])

    def mode_display(self, mode: PermissionMode | None = None) -> str:
        mode = mode or self.mode
        return f"{mode.value} - {MODE_DESCRIPTIONS[mode]}"

    def is_action_allowed(self, action: PermissionAction, mode: PermissionMode | None = None) -> bool:
        """Whether the mode permits the action at all (before any prompt)."""
        mode = mode or self.mode
        if mode == PermissionMode.PLAN_ONLY:
            return action in READ_ONLY_ACTIONS
        return True

    def needs_confirmation(self, action: PermissionAction, mode: PermissionMode | None = None) -> bool:
        mode = mode or self.mode
        if action in READ_ONLY_ACTIONS:
            return False
        if mode == PermissionMode.AUTO_EDIT and action in AUTO_EDIT_ACTIONS:
            return False
        return True

    async def request_permission(
        self,
        action: PermissionAction,
        details: str,
        prompt: PromptFn | None = None,
        mode: PermissionMode | None = None,
    ) -> bool:
        """Decide whether an action may proceed, asking the user when required.

        Args:
            action: Action being attempted
            details: Human-readable target (path or command)
            prompt: Async yes/no prompt; without one, confirmation is granted
            mode: Mode for this call; defaults to the manager's mode

        Returns:
            True if the action may proceed
        """
        mode = mode or self.mode
        if not self.is_action_allowed(action, mode):
            log.info("Permission denied by mode", action=action.value, mode=mode.value, details=details)
            return False
        if not self.needs_confirmation(action, mode):
            return True
        if prompt is None:
            return True
        approved = bool(await prompt(self.format_permission_message(action, details)))
        log.info("Permission decision", action=action.value, details=details, approved=approved)
        return approved

    @staticmethod
    def format_permission_message(action: PermissionAction, details: str) -> str:
        verbs = {
            PermissionAction.FILE_READ: "Read file",
            PermissionAction.LIST_DIR: "List directory",
            PermissionAction.FILE_WRITE: "Write file",
            PermissionAction.FILE_EDIT: "Edit file",
            PermissionAction.FILE_DELETE: "Delete file",
            PermissionAction.COMMAND_EXECUTE: "Run command",
        }
        return f"{verbs[action]}: {details}?"
