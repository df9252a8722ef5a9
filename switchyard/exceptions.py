"""Custom exceptions for Switchyard."""


class SwitchyardError(Exception):
    """Base exception for Switchyard."""

    pass


class ConfigurationError(SwitchyardError):
    """Configuration-related errors."""

    pass


class InvalidPermissionModeError(ConfigurationError):
    """Unknown permission mode requested."""

    def __init__(self, mode: str):
        super().__init__(f"Invalid permission mode: {mode}")
        self.mode = mode


class ProviderError(SwitchyardError):
    """Model backend errors."""

    pass


class ProviderAPIError(ProviderError):
    """Backend API errors (rate limit, auth, transport, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderNotAvailableError(ProviderError):
    """Requested backend is not in the available set."""

    def __init__(self, provider: str):
        super().__init__(f"Provider not available: {provider}")
        self.provider = provider


class ProvidersExhaustedError(ProviderError):
    """Every ranked backend exhausted its retries."""

    def __init__(self, attempted: list[str], last_error: str | None):
        attempted_text = ", ".join(attempted) if attempted else "none"
        super().__init__(
            f"All API providers failed. Attempted: {attempted_text}. Last error: {last_error}"
        )
        self.attempted = list(attempted)
        self.last_error = last_error


class ToolError(SwitchyardError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class ToolBlockedError(ToolError):
    """Tool execution blocked by policy."""

    def __init__(self, tool_name: str, reason: str):
        super().__init__(f"Tool '{tool_name}' blocked: {reason}")
        self.tool_name = tool_name
        self.reason = reason


class ActionCancelledError(ToolError):
    """User declined to confirm a side-effecting tool action."""

    def __init__(self, tool_name: str, message: str = "User cancelled file write"):
        super().__init__(message)
        self.tool_name = tool_name


class ToolRoundLimitError(SwitchyardError):
    """Backend kept requesting tools past the configured round limit."""

    def __init__(self, max_rounds: int):
        super().__init__(f"Tool round limit reached: {max_rounds} rounds without a final answer")
        self.max_rounds = max_rounds


class ConversationNotFoundError(SwitchyardError):
    """Conversation not found."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class CheckpointNotFoundError(SwitchyardError):
    """Checkpoint not found."""

    def __init__(self, checkpoint_id: str):
        super().__init__(f"Checkpoint {checkpoint_id} not found")
        self.checkpoint_id = checkpoint_id
