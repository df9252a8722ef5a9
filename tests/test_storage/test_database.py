import pytest

from switchyard.storage import ApiCallRecord, Database


@pytest.mark.asyncio
async def test_messages_are_returned_newest_first(tmp_path):
    database = Database(tmp_path / "data.db")
    try:
        conversation_id = await database.create_conversation("Refactor")
        await database.add_message(conversation_id, "user", "first")
        await database.add_message(conversation_id, "assistant", "second", provider="gemini", model="m", tokens=7)
        await database.add_message(
            conversation_id,
            "tool",
            "third",
            metadata={"tool_call_id": "c1", "tool_name": "read_file"},
        )

        newest_two = await database.get_messages(conversation_id, limit=2)

        assert [m.content for m in newest_two] == ["third", "second"]
        assert newest_two[0].metadata == {"tool_call_id": "c1", "tool_name": "read_file"}
        assert newest_two[1].provider == "gemini"
        assert newest_two[1].token_count == 7
        assert await database.count_messages(conversation_id) == 3
    finally:
        await database.close()


@pytest.mark.asyncio
async def test_conversations_round_trip(tmp_path):
    database = Database(tmp_path / "data.db")
    try:
        first = await database.create_conversation("One", metadata={"origin": "cli"})
        await database.create_conversation("Two")

        conversation = await database.get_conversation(first)

        assert conversation.title == "One"
        assert conversation.metadata == {"origin": "cli"}
        assert await database.get_conversation("missing") is None
        assert len(await database.list_conversations()) == 2
    finally:
        await database.close()


@pytest.mark.asyncio
async def test_settings_store_json_values(tmp_path):
    database = Database(tmp_path / "data.db")
    try:
        assert await database.get_setting("permission_mode") is None

        await database.set_setting("permission_mode", "auto-edit")
        await database.set_setting("recent", ["a", "b"])
        await database.set_setting("permission_mode", "plan-only")

        assert await database.get_setting("permission_mode") == "plan-only"
        assert await database.get_setting("recent") == ["a", "b"]
    finally:
        await database.close()


@pytest.mark.asyncio
async def test_settings_survive_reopen(tmp_path):
    database = Database(tmp_path / "data.db")
    await database.set_setting("permission_mode", "auto-edit")
    await database.close()

    reopened = Database(tmp_path / "data.db")
    try:
        assert await reopened.get_setting("permission_mode") == "auto-edit"
    finally:
        await reopened.close()


@pytest.mark.asyncio
async def test_api_logs_keep_insertion_order_and_filter(tmp_path):
    database = Database(tmp_path / "data.db")
    try:
        await database.log_api_call(ApiCallRecord(provider="gemini", success=False, status_code=429, error_message="rate"))
        await database.log_api_call(ApiCallRecord(provider="anthropic", success=True, tokens_used=12, latency_ms=30))
        await database.log_api_call(ApiCallRecord(provider="gemini", success=True))

        logs = await database.get_api_logs()
        gemini_logs = await database.get_api_logs(provider="gemini")

        assert [(r.provider, r.success) for r in logs] == [
            ("gemini", False),
            ("anthropic", True),
            ("gemini", True),
        ]
        assert logs[0].status_code == 429
        assert logs[1].tokens_used == 12
        assert len(gemini_logs) == 2
    finally:
        await database.close()


@pytest.mark.asyncio
async def test_failover_events_are_recorded(tmp_path):
    database = Database(tmp_path / "data.db")
    try:
        await database.log_failover("gemini", "anthropic", "Provider failure: 429", context_size=120)

        events = await database.get_failover_events()

        assert len(events) == 1
        assert events[0].from_provider == "gemini"
        assert events[0].to_provider == "anthropic"
        assert events[0].context_size == 120
        assert events[0].success is True
    finally:
        await database.close()


@pytest.mark.asyncio
async def test_limited_audit_reads_return_latest_rows(tmp_path):
    database = Database(tmp_path / "data.db")
    try:
        for provider in ["gemini", "anthropic", "openai", "ollama"]:
            await database.log_api_call(ApiCallRecord(provider=provider, success=True))
        for target in ["anthropic", "openai", "ollama"]:
            await database.log_failover("gemini", target, "Provider failure: 503", context_size=10)

        logs = await database.get_api_logs(limit=2)
        events = await database.get_failover_events(limit=2)

        assert [r.provider for r in logs] == ["openai", "ollama"]
        assert [e.to_provider for e in events] == ["openai", "ollama"]
    finally:
        await database.close()
