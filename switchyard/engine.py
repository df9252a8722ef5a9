"""Request lifecycle: backend calls, tool execution rounds and persistence."""

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from switchyard.batch_write import BatchWriter
from switchyard.checkpoints import CheckpointManager
from switchyard.config import Config, get_config
from switchyard.context import ContextManager, Retriever
from switchyard.exceptions import SwitchyardError, ToolRoundLimitError
from switchyard.interaction import Interaction
from switchyard.llm import create_provider
from switchyard.llm.base import RequestOptions, ToolCall, empty_usage
from switchyard.logging import get_logger
from switchyard.orchestrator import BackendFactory, ProviderOrchestrator
from switchyard.permissions import PermissionManager, PermissionMode
from switchyard.storage import Conversation, Database
from switchyard.tools import WRITE_TOOL_NAMES, CallOutcome, ToolContext, ToolRegistry, build_registry

log = get_logger(__name__)

ROUND_LIMIT_SKIPPED = "Skipped: tool round limit reached"


@dataclass
class ProcessOptions:
    """Per-request overrides."""

    mode: PermissionMode | str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass
class EngineResult:
    """Final answer of one request."""

    content: str
    provider: str
    model: str
    usage: dict[str, int] = field(default_factory=empty_usage)
    tool_rounds: int = 0


def _accumulate_usage(target: dict[str, int], usage: dict[str, int] | None) -> None:
    """Add usage values into target totals."""
    if not usage:
        return
    prompt = int(usage.get("prompt_tokens", 0) or 0)
    completion = int(usage.get("completion_tokens", 0) or 0)
    total = int(usage.get("total_tokens", prompt + completion) or 0)
    target["prompt_tokens"] += prompt
    target["completion_tokens"] += completion
    target["total_tokens"] += total


class Engine:
    """Runs a user request to a final answer.

    Each round sends the conversation to the orchestrator, persists the
    assistant reply, then executes any requested tools one at a time and
    records one tool-result message per call. The loop ends when a reply
    carries no tool calls, or fails once ``max_tool_rounds`` is exceeded.
    """

    def __init__(
        self,
        orchestrator: ProviderOrchestrator,
        context_manager: ContextManager,
        registry: ToolRegistry,
        permissions: PermissionManager,
        checkpoints: CheckpointManager | None = None,
        interaction: Interaction | None = None,
        database: Database | None = None,
        config: Config | None = None,
        base_path: Path | str | None = None,
        tool_output_callback: Callable[[str, dict[str, Any], str], None] | None = None,
    ):
        self.config = config or get_config()
        self.orchestrator = orchestrator
        self.context = context_manager
        self.registry = registry
        self.permissions = permissions
        self.checkpoints = checkpoints
        self.interaction = interaction
        self.database = database
        self.base_path = Path(base_path).expanduser().resolve() if base_path else self.config.resolved_workspace_path()
        self.tool_output_callback = tool_output_callback
        self.batch_writer = BatchWriter(registry, interaction)
        self.max_tool_rounds = self.config.engine.max_tool_rounds
        self._initialized = False

    @classmethod
    def from_config(
        cls,
        config: Config | None = None,
        interaction: Interaction | None = None,
        retriever: Retriever | None = None,
        backend_factory: BackendFactory = create_provider,
        tool_output_callback: Callable[[str, dict[str, Any], str], None] | None = None,
    ) -> "Engine":
        """Wire every collaborator from configuration."""
        config = config or get_config()
        base_path = config.resolved_workspace_path()
        database = Database(config.storage.db_path)
        return cls(
            orchestrator=ProviderOrchestrator(config, database, backend_factory=backend_factory),
            context_manager=ContextManager(
                database,
                retriever=retriever,
                max_messages=config.context.max_conversation_messages,
                retrieval_top_k=config.context.retrieval_top_k,
                project_root=base_path,
            ),
            registry=build_registry(config),
            permissions=PermissionManager(config.permissions.mode, database),
            checkpoints=CheckpointManager(database),
            interaction=interaction,
            database=database,
            config=config,
            base_path=base_path,
            tool_output_callback=tool_output_callback,
        )

    async def initialize(self) -> None:
        if self._initialized:
            return
        log.info("Initializing engine", workspace=str(self.base_path))
        if self.database is not None:
            await self.database.initialize()
        await self.permissions.load()
        if not self.orchestrator.available_providers():
            await self.orchestrator.initialize()
        self._initialized = True
        log.info(
            "Engine initialized",
            current_provider=self.orchestrator.current_provider_name,
            tools=self.registry.list_tools(),
            mode=self.permissions.mode.value,
        )

    def _emit_tool_output(self, tool_name: str, arguments: dict[str, Any], output: str) -> None:
        """Forward tool output to UI callback when configured."""
        if not self.tool_output_callback:
            return
        try:
            self.tool_output_callback(tool_name, arguments, output)
        except Exception as e:
            log.warning("Tool output callback failed", tool=tool_name, error=str(e))

    async def process_request(self, message: str | None, options: ProcessOptions | None = None) -> EngineResult:
        """Run one user request through as many tool rounds as the model needs.

        Args:
            message: New user input; None continues after stored tool results
            options: Permission mode and sampling overrides for this request

        Raises:
            ProvidersExhaustedError: no backend produced a response
            ToolRoundLimitError: the model kept requesting tools
        """
        if not self._initialized:
            raise SwitchyardError("Engine not initialized")
        options = options or ProcessOptions()
        mode = PermissionMode.parse(options.mode) if options.mode else self.permissions.mode
        request_options = RequestOptions(
            tools=self.registry.get_definitions(),
            temperature=options.temperature,
            max_tokens=options.max_tokens,
        )
        tool_context = ToolContext(
            base_path=self.base_path,
            permissions=self.permissions,
            mode=mode,
            checkpoints=self.checkpoints,
            interaction=self.interaction,
        )

        if message is not None:
            await self.context.add_user_message(message)

        usage = empty_usage()
        pending = message
        rounds = 0
        while True:
            context = await self.context.get_context()
            outgoing: str | None = None
            if pending is not None:
                # The new input goes out once, prefixed with project info, instead of as history.
                if context.messages and context.messages[-1].role == "user":
                    context.messages.pop()
                outgoing = f"[System Context]\n{self.context.get_project_context()}\n\n{pending}"

            response = await self.orchestrator.send_message(outgoing, context, request_options)
            _accumulate_usage(usage, response.usage)
            await self.context.add_assistant_message(
                response.content,
                provider=response.provider,
                model=response.model,
                tokens=response.total_tokens,
                tool_calls=response.tool_calls,
            )

            if not response.tool_calls:
                log.info("Request completed", provider=response.provider, rounds=rounds, usage=usage)
                return EngineResult(
                    content=response.content,
                    provider=response.provider,
                    model=response.model,
                    usage=usage,
                    tool_rounds=rounds,
                )

            if rounds >= self.max_tool_rounds:
                for call in response.tool_calls:
                    await self.context.add_tool_result_message(call.id, call.name, ROUND_LIMIT_SKIPPED)
                log.error("Tool round limit reached", max_rounds=self.max_tool_rounds)
                raise ToolRoundLimitError(self.max_tool_rounds)

            rounds += 1
            await self._execute_tool_calls(response.tool_calls, tool_context)
            pending = None

    async def _execute_tool_calls(self, calls: list[ToolCall], tool_context: ToolContext) -> None:
        """Run one round of tool calls and record results in call order."""
        write_indexes = [i for i, call in enumerate(calls) if call.name in WRITE_TOOL_NAMES]
        batched = len(write_indexes) >= 2
        outcomes: dict[int, CallOutcome] = {}

        for index, call in enumerate(calls):
            if batched and index in write_indexes:
                continue
            outcomes[index] = await self.registry.run_call(call, tool_context)
            self._emit_tool_output(call.name, call.arguments, outcomes[index].content)

        if batched:
            batch_calls = [calls[i] for i in write_indexes]
            for index, outcome in zip(write_indexes, await self.batch_writer.run(batch_calls, tool_context)):
                outcomes[index] = outcome
                self._emit_tool_output(calls[index].name, calls[index].arguments, outcome.content)

        for index, call in enumerate(calls):
            await self.context.add_tool_result_message(call.id, call.name, outcomes[index].content)

    # Conversation and provider management

    async def new_conversation(self, title: str = "New Conversation") -> str:
        return await self.context.create_conversation(title)

    async def load_conversation(self, conversation_id: str) -> Conversation:
        return await self.context.load_conversation(conversation_id)

    async def conversation_summary(self) -> dict[str, Any] | None:
        return await self.context.conversation_summary()

    def available_providers(self) -> list[str]:
        return self.orchestrator.available_providers()

    def current_provider(self) -> dict[str, Any] | None:
        backend = self.orchestrator.get_current_provider()
        if backend is None:
            return None
        return {
            "name": self.orchestrator.current_provider_name,
            "model": backend.model,
            "capabilities": backend.get_capabilities(),
        }

    def switch_provider(self, name: str) -> None:
        self.orchestrator.switch_provider(name)

    async def shutdown(self) -> None:
        log.info("Shutting down engine")
        await self.orchestrator.shutdown()
        if self.database is not None:
            await self.database.close()
        self._initialized = False
