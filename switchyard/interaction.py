"""User-facing confirmation, diff display and the batch-write chooser."""

import asyncio
import difflib
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.syntax import Syntax
from rich.table import Table


class ChangeKind(str, Enum):
    """Classification of a pending file write."""

    CREATE = "create"
    MODIFY = "modify"
    UNCHANGED = "unchanged"
    INVALID = "invalid"


class BatchAction(str, Enum):
    """Choice offered when several writes arrive in one round."""

    APPLY_ALL = "apply_all"
    REVIEW_EACH = "review_each"
    CANCEL = "cancel"


@dataclass
class FileChange:
    """One intended write, as shown to the user."""

    path: str
    kind: ChangeKind
    call_id: str = ""


@dataclass
class WriteOutcome:
    """Per-file result of a batch write."""

    path: str
    success: bool
    error: str | None = None


class Interaction(Protocol):
    """Everything the core asks of the user."""

    async def confirm(self, question: str) -> bool: ...

    async def show_diff(self, path: str, old: str | None, new: str) -> None: ...

    async def choose_batch_action(self, changes: list[FileChange]) -> BatchAction: ...

    async def show_planned_changes(self, changes: list[FileChange]) -> None: ...

    async def show_batch_results(self, outcomes: list[WriteOutcome]) -> None: ...


def unified_diff(path: str, old: str | None, new: str) -> str:
    """Return a unified diff between the old and new file content."""
    lines = difflib.unified_diff(
        (old or "").splitlines(keepends=True),
        new.splitlines(keepends=True),
        fromfile=f"a/{path}" if old is not None else "/dev/null",
        tofile=f"b/{path}",
    )
    return "".join(lines)


_KIND_STYLES = {
    ChangeKind.CREATE: "green",
    ChangeKind.MODIFY: "yellow",
    ChangeKind.UNCHANGED: "dim",
    ChangeKind.INVALID: "red",
}


class ConsoleInteraction:
    """Rich terminal implementation of Interaction.

    Prompts block on stdin, so they run in a worker thread.
    """

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    async def confirm(self, question: str) -> bool:
        return await asyncio.to_thread(Confirm.ask, question, default=False, console=self.console)

    async def show_diff(self, path: str, old: str | None, new: str) -> None:
        diff = unified_diff(path, old, new)
        if not diff:
            self.console.print(f"[dim]No changes to {path}[/dim]")
            return
        self.console.print(
            Panel(Syntax(diff, "diff", word_wrap=True), title=path, border_style="cyan")
        )

    def _changes_table(self, changes: list[FileChange], title: str) -> Table:
        table = Table(title=title, show_header=True, header_style="bold cyan")
        table.add_column("#", justify="right")
        table.add_column("Path", overflow="fold")
        table.add_column("Change")
        for idx, change in enumerate(changes, start=1):
            style = _KIND_STYLES[change.kind]
            table.add_row(str(idx), change.path, f"[{style}]{change.kind.value}[/{style}]")
        return table

    async def choose_batch_action(self, changes: list[FileChange]) -> BatchAction:
        self.console.print(self._changes_table(changes, "Pending File Changes"))
        choice = await asyncio.to_thread(
            Prompt.ask,
            "Apply all, review each, or cancel?",
            choices=["a", "r", "c"],
            default="c",
            console=self.console,
        )
        return {
            "a": BatchAction.APPLY_ALL,
            "r": BatchAction.REVIEW_EACH,
        }.get(choice, BatchAction.CANCEL)

    async def show_planned_changes(self, changes: list[FileChange]) -> None:
        self.console.print(self._changes_table(changes, "Planned Changes (plan-only, nothing written)"))

    async def show_batch_results(self, outcomes: list[WriteOutcome]) -> None:
        table = Table(title="Write Results", show_header=True, header_style="bold cyan")
        table.add_column("Path", overflow="fold")
        table.add_column("Result")
        for outcome in outcomes:
            status = "[green]written[/green]" if outcome.success else f"[red]{outcome.error}[/red]"
            table.add_row(outcome.path, status)
        self.console.print(table)
