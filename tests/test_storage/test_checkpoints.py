import time

import pytest

from switchyard.checkpoints import RETENTION_SECONDS, CheckpointManager, format_age
from switchyard.exceptions import CheckpointNotFoundError
from switchyard.storage import Database


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def open_manager(tmp_path, clock=time.time) -> tuple[Database, CheckpointManager]:
    database = Database(tmp_path / "data.db")
    return database, CheckpointManager(database, clock=clock)


@pytest.mark.asyncio
async def test_revert_restores_previous_content(tmp_path):
    target = tmp_path / "app.py"
    target.write_text("v1", encoding="utf-8")
    database, manager = open_manager(tmp_path)
    try:
        checkpoint_id = await manager.create_checkpoint(target)
        target.write_text("v2", encoding="utf-8")
        record = await manager.revert_to_checkpoint(checkpoint_id)

        assert target.read_text(encoding="utf-8") == "v1"
        assert record.file_existed is True
        assert record.file_path == str(target.resolve())
    finally:
        await database.close()


@pytest.mark.asyncio
async def test_revert_of_new_file_removes_it(tmp_path):
    target = tmp_path / "fresh" / "new.txt"
    database, manager = open_manager(tmp_path)
    try:
        checkpoint_id = await manager.create_checkpoint(target)
        target.parent.mkdir()
        target.write_text("created later", encoding="utf-8")
        await manager.revert_to_checkpoint(checkpoint_id)

        assert not target.exists()
        # Reverting again is harmless.
        await manager.revert_to_checkpoint(checkpoint_id)
        assert not target.exists()
    finally:
        await database.close()


@pytest.mark.asyncio
async def test_revert_recreates_deleted_file(tmp_path):
    target = tmp_path / "sub" / "notes.md"
    target.parent.mkdir()
    target.write_text("keep", encoding="utf-8")
    database, manager = open_manager(tmp_path)
    try:
        checkpoint_id = await manager.create_checkpoint(target)
        target.unlink()
        target.parent.rmdir()
        await manager.revert_to_checkpoint(checkpoint_id)

        assert target.read_text(encoding="utf-8") == "keep"
    finally:
        await database.close()


@pytest.mark.asyncio
async def test_revert_keeps_crlf_line_endings(tmp_path):
    target = tmp_path / "win.txt"
    target.write_bytes(b"a\r\nb\r\n")
    database, manager = open_manager(tmp_path)
    try:
        checkpoint_id = await manager.create_checkpoint(target)
        target.write_bytes(b"changed\n")
        await manager.revert_to_checkpoint(checkpoint_id)

        assert target.read_bytes() == b"a\r\nb\r\n"
    finally:
        await database.close()


@pytest.mark.asyncio
async def test_binary_file_is_restored_byte_for_byte(tmp_path):
    target = tmp_path / "logo.png"
    target.write_bytes(b"\x89PNG\xff\x00")
    database, manager = open_manager(tmp_path)
    try:
        checkpoint_id = await manager.create_checkpoint(target)
        target.unlink()
        record = await manager.revert_to_checkpoint(checkpoint_id)

        assert record.content == b"\x89PNG\xff\x00"
        assert target.read_bytes() == b"\x89PNG\xff\x00"
    finally:
        await database.close()


@pytest.mark.asyncio
async def test_revert_does_not_create_a_checkpoint(tmp_path):
    target = tmp_path / "a.txt"
    target.write_text("a", encoding="utf-8")
    database, manager = open_manager(tmp_path)
    try:
        checkpoint_id = await manager.create_checkpoint(target)
        await manager.revert_to_checkpoint(checkpoint_id)

        assert len(await manager.list_checkpoints()) == 1
    finally:
        await database.close()


@pytest.mark.asyncio
async def test_unknown_checkpoint_raises(tmp_path):
    database, manager = open_manager(tmp_path)
    try:
        with pytest.raises(CheckpointNotFoundError, match="Checkpoint nope not found"):
            await manager.revert_to_checkpoint("nope")
    finally:
        await database.close()


@pytest.mark.asyncio
async def test_list_checkpoints_newest_first_with_ages(tmp_path):
    clock = FakeClock()
    database, manager = open_manager(tmp_path, clock)
    (tmp_path / "old.txt").write_text("o", encoding="utf-8")
    try:
        await manager.create_checkpoint(tmp_path / "old.txt")
        clock.now += 2 * 3600
        await manager.create_checkpoint(tmp_path / "mid.txt")
        clock.now += 90
        await manager.create_checkpoint(tmp_path / "new.txt")
        clock.now += 5

        listing = await manager.list_checkpoints()

        assert [item.file_path.rsplit("/", 1)[-1] for item in listing] == ["new.txt", "mid.txt", "old.txt"]
        assert [item.age for item in listing] == ["5s ago", "1m ago", "2h ago"]
        assert [item.file_existed for item in listing] == [False, False, True]
        assert len(await manager.list_checkpoints(limit=2)) == 2
    finally:
        await database.close()


@pytest.mark.asyncio
async def test_clear_old_checkpoints_uses_retention_window(tmp_path):
    clock = FakeClock()
    database, manager = open_manager(tmp_path, clock)
    try:
        await manager.create_checkpoint(tmp_path / "stale.txt")
        clock.now += RETENTION_SECONDS - 60
        recent_id = await manager.create_checkpoint(tmp_path / "recent.txt")
        clock.now += 120

        deleted = await manager.clear_old_checkpoints()

        assert deleted == 1
        assert [item.id for item in await manager.list_checkpoints()] == [recent_id]
    finally:
        await database.close()


def test_format_age_picks_largest_unit():
    assert format_age(0) == "0s ago"
    assert format_age(59) == "59s ago"
    assert format_age(61) == "1m ago"
    assert format_age(3 * 3600 + 5) == "3h ago"
    assert format_age(-4) == "0s ago"
