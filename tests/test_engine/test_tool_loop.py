import pytest

from switchyard.config import Config
from switchyard.engine import Engine, ProcessOptions
from switchyard.exceptions import SwitchyardError, ToolRoundLimitError
from switchyard.interaction import BatchAction
from switchyard.llm.base import LLMProvider, ProviderResponse, Snippet, ToolCall


class ScriptedBackend(LLMProvider):
    name = "ollama"

    def __init__(self, turns: list[tuple[str, list[ToolCall]]], endless_tool: ToolCall | None = None):
        super().__init__(model="scripted-model")
        self.turns = list(turns)
        self.endless_tool = endless_tool
        self.requests: list[tuple] = []

    async def initialize(self) -> bool:
        self.initialized = True
        return True

    async def send_message(self, message, context, options=None) -> ProviderResponse:
        self.requests.append((message, context, options))
        if self.turns:
            content, calls = self.turns.pop(0)
        elif self.endless_tool is not None:
            n = len(self.requests)
            content, calls = "", [ToolCall(id=f"loop_{n}", name=self.endless_tool.name, arguments=self.endless_tool.arguments)]
        else:
            content, calls = "done", []
        return self.format_response(
            content=content,
            tool_calls=calls,
            usage={"prompt_tokens": 4, "completion_tokens": 1, "total_tokens": 5},
        )


class FakeInteraction:
    def __init__(self, answers: list[bool] | None = None, batch_action: BatchAction = BatchAction.APPLY_ALL):
        self.answers = list(answers or [])
        self.batch_action = batch_action
        self.questions: list[str] = []
        self.diffs: list[tuple] = []

    async def confirm(self, question: str) -> bool:
        self.questions.append(question)
        return self.answers.pop(0) if self.answers else True

    async def show_diff(self, path, old, new) -> None:
        self.diffs.append((path, old, new))

    async def choose_batch_action(self, changes) -> BatchAction:
        return self.batch_action

    async def show_planned_changes(self, changes) -> None:
        return None

    async def show_batch_results(self, outcomes) -> None:
        return None


class RecordingRetriever:
    def __init__(self, snippets: list[Snippet] | None = None):
        self.snippets = list(snippets or [])
        self.queries: list[tuple[str, int]] = []

    async def find_relevant(self, query: str, top_k: int) -> list[Snippet]:
        self.queries.append((query, top_k))
        return list(self.snippets)


async def make_engine(tmp_path, backend, interaction=None, retriever=None, mode="default", max_tool_rounds=25):
    workspace = tmp_path / "project"
    workspace.mkdir(exist_ok=True)
    config = Config(
        providers={"ranked": ["ollama"]},
        failover={"enabled": False},
        workspace={"path": str(workspace)},
        storage={"db_path": str(tmp_path / "data.db")},
        engine={"max_tool_rounds": max_tool_rounds},
        permissions={"mode": mode},
    )
    engine = Engine.from_config(
        config,
        interaction=interaction,
        retriever=retriever,
        backend_factory=lambda name, settings, api_key: backend,
    )
    await engine.initialize()
    return engine, workspace


async def stored_messages(engine):
    conversation_id = engine.context.current_conversation_id
    return list(reversed(await engine.database.get_messages(conversation_id, limit=100)))


@pytest.mark.asyncio
async def test_plain_answer_is_terminal_and_persisted(tmp_path):
    backend = ScriptedBackend([("Hello there", [])])
    engine, _ = await make_engine(tmp_path, backend)
    try:
        result = await engine.process_request("hi")

        assert result.content == "Hello there"
        assert result.provider == "ollama"
        assert result.model == "scripted-model"
        assert result.tool_rounds == 0
        assert result.usage["total_tokens"] == 5

        message, context, options = backend.requests[0]
        assert message.startswith("[System Context]\n")
        assert message.endswith("\n\nhi")
        assert "Working directory:" in message
        # The new input is sent once, not duplicated in the history.
        assert context.messages == []
        assert [tool["name"] for tool in options.tools] == ["read_file", "write_file", "list_dir", "delete_file"]

        rows = await stored_messages(engine)
        assert [(row.role, row.content) for row in rows] == [("user", "hi"), ("assistant", "Hello there")]
        assert rows[1].provider == "ollama"
        assert rows[1].token_count == 5
    finally:
        await engine.shutdown()


@pytest.mark.asyncio
async def test_tool_results_follow_assistant_message_in_call_order(tmp_path):
    calls = [
        ToolCall(id="c1", name="read_file", arguments={"path": "notes.txt"}),
        ToolCall(id="c2", name="list_dir", arguments={}),
        ToolCall(id="c3", name="read_file", arguments={"path": "missing.txt"}),
    ]
    backend = ScriptedBackend([("Let me look.", calls), ("All done", [])])
    engine, workspace = await make_engine(tmp_path, backend)
    (workspace / "notes.txt").write_text("remember the milk", encoding="utf-8")
    try:
        result = await engine.process_request("what is in my notes?")

        assert result.content == "All done"
        assert result.tool_rounds == 1
        assert result.usage["total_tokens"] == 10

        rows = await stored_messages(engine)
        assert [row.role for row in rows] == ["user", "assistant", "tool", "tool", "tool", "assistant"]
        assert [tc["id"] for tc in rows[1].metadata["tool_calls"]] == ["c1", "c2", "c3"]
        assert [row.metadata["tool_call_id"] for row in rows[2:5]] == ["c1", "c2", "c3"]
        assert rows[2].content == "remember the milk"
        assert rows[3].content == "notes.txt"
        assert rows[4].content == "Error: File not found: missing.txt"

        # Continuation turn carries no new message and sees the tool results.
        message, context, _ = backend.requests[1]
        assert message is None
        assert [m.role for m in context.messages] == ["user", "assistant", "tool", "tool", "tool"]
        assert context.messages[1].tool_calls[0].id == "c1"
        assert context.messages[2].tool_call_id == "c1"
    finally:
        await engine.shutdown()


@pytest.mark.asyncio
async def test_unknown_tool_and_bad_arguments_become_error_results(tmp_path):
    calls = [
        ToolCall(id="u1", name="format_disk", arguments={}),
        ToolCall(id="u2", name="read_file", arguments={"file": "x"}),
    ]
    backend = ScriptedBackend([("", calls), ("sorry", [])])
    engine, _ = await make_engine(tmp_path, backend)
    try:
        result = await engine.process_request("do things")

        assert result.content == "sorry"
        rows = await stored_messages(engine)
        tool_rows = [row for row in rows if row.role == "tool"]
        assert tool_rows[0].content == "Error: Tool not found: format_disk"
        assert tool_rows[1].content.startswith("Error: Tool 'read_file' failed: Invalid arguments")
    finally:
        await engine.shutdown()


@pytest.mark.asyncio
async def test_round_limit_stops_endless_tool_requests(tmp_path):
    backend = ScriptedBackend([], endless_tool=ToolCall(id="x", name="list_dir", arguments={}))
    engine, _ = await make_engine(tmp_path, backend, max_tool_rounds=2)
    try:
        with pytest.raises(ToolRoundLimitError):
            await engine.process_request("loop forever")

        assert len(backend.requests) == 3
        rows = await stored_messages(engine)
        assert [row.role for row in rows] == ["user", "assistant", "tool", "assistant", "tool", "assistant", "tool"]
        assert rows[-1].content == "Skipped: tool round limit reached"
    finally:
        await engine.shutdown()


@pytest.mark.asyncio
async def test_declined_single_write_records_cancellation(tmp_path):
    calls = [ToolCall(id="w1", name="write_file", arguments={"path": "app.py", "content": "print('new')\n"})]
    backend = ScriptedBackend([("", calls), ("ok", [])])
    interaction = FakeInteraction(answers=[False])
    engine, workspace = await make_engine(tmp_path, backend, interaction=interaction)
    target = workspace / "app.py"
    target.write_text("print('old')\n", encoding="utf-8")
    try:
        await engine.process_request("update app.py")

        assert target.read_text(encoding="utf-8") == "print('old')\n"
        assert interaction.diffs == [("app.py", "print('old')\n", "print('new')\n")]
        assert interaction.questions == ["Write file: app.py?"]

        rows = await stored_messages(engine)
        assert [row.content for row in rows if row.role == "tool"] == ["Cancelled by user"]

        checkpoints = await engine.checkpoints.list_checkpoints()
        assert len(checkpoints) == 1
        record = await engine.checkpoints.get_checkpoint(checkpoints[0].id)
        assert record.content == b"print('old')\n"
    finally:
        await engine.shutdown()


@pytest.mark.asyncio
async def test_per_request_plan_only_mode_skips_mutations(tmp_path):
    calls = [
        ToolCall(id="w1", name="write_file", arguments={"path": "new.txt", "content": "x"}),
        ToolCall(id="d1", name="delete_file", arguments={"path": "keep.txt"}),
        ToolCall(id="r1", name="read_file", arguments={"path": "keep.txt"}),
    ]
    backend = ScriptedBackend([("", calls), ("planned", [])])
    engine, workspace = await make_engine(tmp_path, backend, interaction=FakeInteraction())
    (workspace / "keep.txt").write_text("keep me", encoding="utf-8")
    try:
        await engine.process_request("plan it", ProcessOptions(mode="plan-only"))

        assert not (workspace / "new.txt").exists()
        assert (workspace / "keep.txt").exists()
        rows = await stored_messages(engine)
        assert [row.content for row in rows if row.role == "tool"] == [
            "Skipped: plan-only mode",
            "Skipped: plan-only mode",
            "keep me",
        ]
        # Per-call mode does not change the persisted mode.
        assert engine.permissions.mode.value == "default"
    finally:
        await engine.shutdown()


@pytest.mark.asyncio
async def test_path_outside_workspace_is_denied(tmp_path):
    (tmp_path / "secret.txt").write_text("top secret", encoding="utf-8")
    calls = [ToolCall(id="r1", name="read_file", arguments={"path": "../secret.txt"})]
    backend = ScriptedBackend([("", calls), ("ok", [])])
    engine, _ = await make_engine(tmp_path, backend)
    try:
        await engine.process_request("read the secret")
        rows = await stored_messages(engine)
        tool_row = next(row for row in rows if row.role == "tool")
        assert tool_row.content.startswith("Error: ")
        assert "Access denied" in tool_row.content
    finally:
        await engine.shutdown()


@pytest.mark.asyncio
async def test_zero_retrieval_snippets_still_builds_context(tmp_path):
    retriever = RecordingRetriever([])
    backend = ScriptedBackend([("fine", [])])
    engine, _ = await make_engine(tmp_path, backend, retriever=retriever)
    try:
        result = await engine.process_request("where is the parser?")

        assert result.content == "fine"
        assert retriever.queries == [("where is the parser?", 5)]
        _, context, _ = backend.requests[0]
        assert context.snippets == []
    finally:
        await engine.shutdown()


@pytest.mark.asyncio
async def test_retrieved_snippets_are_sent_with_context(tmp_path):
    snippet = Snippet(file_path="src/parser.py", start_line=1, end_line=3, content="def parse(): ...", score=0.9)
    backend = ScriptedBackend([("found it", [])])
    engine, _ = await make_engine(tmp_path, backend, retriever=RecordingRetriever([snippet]))
    try:
        await engine.process_request("where is the parser?")
        _, context, _ = backend.requests[0]
        assert context.snippets == [snippet]
    finally:
        await engine.shutdown()


@pytest.mark.asyncio
async def test_process_request_requires_initialize(tmp_path):
    config = Config(
        providers={"ranked": ["ollama"]},
        failover={"enabled": False},
        storage={"db_path": str(tmp_path / "data.db")},
    )
    engine = Engine.from_config(config, backend_factory=lambda name, settings, api_key: ScriptedBackend([]))
    with pytest.raises(SwitchyardError, match="not initialized"):
        await engine.process_request("hi")
