"""Gate for several file writes requested in one model round."""

import asyncio
from dataclasses import replace

from switchyard.exceptions import ToolBlockedError
from switchyard.interaction import BatchAction, ChangeKind, FileChange, Interaction, WriteOutcome
from switchyard.llm.base import ToolCall
from switchyard.logging import get_logger
from switchyard.permissions import PermissionMode
from switchyard.tools.registry import (
    CANCELLED_BY_USER,
    SKIPPED_PLAN_ONLY,
    CallOutcome,
    ToolContext,
    ToolRegistry,
    resolve_workspace_path,
)
from switchyard.tools.write import classify_change, read_existing

log = get_logger(__name__)


class BatchWriter:
    """Decide, per mode, how a group of write calls is applied.

    plan-only skips every call, default asks the user once for the whole
    group, auto-edit applies everything. Writes always run one at a time.
    """

    def __init__(self, registry: ToolRegistry, interaction: Interaction | None = None):
        self.registry = registry
        self.interaction = interaction

    async def plan(self, calls: list[ToolCall], context: ToolContext) -> list[FileChange]:
        """Classify each intended write as create, modify, unchanged or invalid."""
        changes = []
        for call in calls:
            raw_path = str(call.arguments.get("path") or "")
            content = call.arguments.get("content")
            if not raw_path or not isinstance(content, str):
                changes.append(FileChange(path=raw_path or "?", kind=ChangeKind.INVALID, call_id=call.id))
                continue
            try:
                path = resolve_workspace_path(context.base_path, raw_path, call.name)
            except ToolBlockedError as e:
                log.warning("Batch write path rejected", path=raw_path, error=str(e))
                changes.append(FileChange(path=raw_path, kind=ChangeKind.INVALID, call_id=call.id))
                continue
            if path.is_dir():
                changes.append(FileChange(path=raw_path, kind=ChangeKind.INVALID, call_id=call.id))
                continue
            try:
                existing = await asyncio.to_thread(read_existing, path)
            except OSError as e:
                log.warning("Batch write target unreadable", path=raw_path, error=str(e))
                kind = ChangeKind.MODIFY
            else:
                kind = classify_change(existing, content)
            changes.append(FileChange(path=raw_path, kind=kind, call_id=call.id))
        return changes

    async def run(self, calls: list[ToolCall], context: ToolContext) -> list[CallOutcome]:
        """Resolve every write call; outcomes follow the order of ``calls``."""
        changes = await self.plan(calls, context)

        if context.mode == PermissionMode.PLAN_ONLY:
            if self.interaction is not None:
                await self.interaction.show_planned_changes(changes)
            log.info("Batch write skipped in plan-only mode", files=len(calls))
            return [CallOutcome(call.id, call.name, SKIPPED_PLAN_ONLY, success=False) for call in calls]

        if context.mode == PermissionMode.AUTO_EDIT or self.interaction is None:
            action = BatchAction.APPLY_ALL
        else:
            action = await self.interaction.choose_batch_action(changes)
        log.info("Batch write action", action=action.value, files=len(calls), mode=context.mode.value)

        if action == BatchAction.CANCEL:
            return [CallOutcome(call.id, call.name, CANCELLED_BY_USER, success=False) for call in calls]

        if action == BatchAction.REVIEW_EACH:
            return [await self.registry.run_call(call, context) for call in calls]

        apply_context = replace(context, skip_confirmation=True)
        outcomes = []
        for call in calls:
            outcomes.append(await self.registry.run_call(call, apply_context))

        if self.interaction is not None:
            await self.interaction.show_batch_results(
                [
                    WriteOutcome(
                        path=change.path,
                        success=outcome.success,
                        error=None if outcome.success else outcome.content,
                    )
                    for change, outcome in zip(changes, outcomes)
                ]
            )
        return outcomes
