"""File checkpoints taken before every mutation, with revert and retention."""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from switchyard.exceptions import CheckpointNotFoundError
from switchyard.logging import get_logger
from switchyard.storage import CheckpointRecord, Database

log = get_logger(__name__)

# Checkpoints older than this are eligible for clear_old_checkpoints().
RETENTION_SECONDS = 24 * 60 * 60


@dataclass
class CheckpointSummary:
    """Listing entry for a checkpoint."""

    id: str
    file_path: str
    timestamp: float
    age: str
    file_existed: bool


def format_age(seconds: float) -> str:
    """Render an elapsed time as '3h ago', '5m ago' or '12s ago'."""
    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h ago"
    if minutes > 0:
        return f"{minutes}m ago"
    return f"{secs}s ago"


def _read_bytes(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def _restore(path: Path, content: bytes | None) -> None:
    if content is None:
        path.unlink(missing_ok=True)
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


class CheckpointManager:
    """Snapshot files before mutation and restore them on request."""

    def __init__(self, database: Database, clock: Callable[[], float] = time.time):
        self.database = database
        self._clock = clock

    async def create_checkpoint(self, file_path: Path | str) -> str:
        """Snapshot a file's current bytes.

        A missing file is recorded as "did not exist" so that a revert
        removes whatever was created afterwards.

        Returns:
            Checkpoint id
        """
        path = Path(file_path).expanduser().resolve()
        content = await asyncio.to_thread(_read_bytes, path)
        checkpoint_id = await self.database.save_checkpoint(
            file_path=str(path),
            content=content,
            file_existed=content is not None,
            timestamp=self._clock(),
        )
        log.info(
            "Checkpoint created",
            checkpoint_id=checkpoint_id,
            path=str(path),
            file_existed=content is not None,
        )
        return checkpoint_id

    async def get_checkpoint(self, checkpoint_id: str) -> CheckpointRecord:
        record = await self.database.get_checkpoint(checkpoint_id)
        if record is None:
            raise CheckpointNotFoundError(checkpoint_id)
        return record

    async def revert_to_checkpoint(self, checkpoint_id: str) -> CheckpointRecord:
        """Restore the file to its checkpointed state.

        Reverting does not record a checkpoint of its own.
        """
        record = await self.get_checkpoint(checkpoint_id)
        path = Path(record.file_path)
        await asyncio.to_thread(_restore, path, record.content if record.file_existed else None)
        log.info(
            "Checkpoint reverted",
            checkpoint_id=checkpoint_id,
            path=record.file_path,
            restored=record.file_existed,
        )
        return record

    async def list_checkpoints(self, limit: int = 10) -> list[CheckpointSummary]:
        """Return recent checkpoints, newest first."""
        now = self._clock()
        records = await self.database.get_recent_checkpoints(limit)
        return [
            CheckpointSummary(
                id=record.id,
                file_path=record.file_path,
                timestamp=record.timestamp,
                age=format_age(now - record.timestamp),
                file_existed=record.file_existed,
            )
            for record in records
        ]

    async def clear_old_checkpoints(self) -> int:
        """Delete checkpoints past the retention horizon."""
        cutoff = self._clock() - RETENTION_SECONDS
        deleted = await self.database.delete_checkpoints_before(cutoff)
        log.info("Old checkpoints cleared", deleted=deleted)
        return deleted
