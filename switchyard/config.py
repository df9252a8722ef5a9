"""Configuration management for Switchyard."""

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from switchyard.exceptions import ConfigurationError


# Paths
DEFAULT_CONFIG_PATH = Path("~/.switchyard/config.yaml").expanduser()
DEFAULT_DB_PATH = Path("~/.switchyard/data.db").expanduser()
LOCAL_CONFIG_FILENAME = "switchyard.yaml"

SUPPORTED_PROVIDERS = ("gemini", "anthropic", "openai", "ollama")
PROVIDER_ALIASES = {
    "claude": "anthropic",
    "google": "gemini",
    "chatgpt": "openai",
}
PROVIDER_ENV_KEYS = {
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "anthropic": ("ANTHROPIC_API_KEY",),
    "openai": ("OPENAI_API_KEY",),
    "ollama": ("OLLAMA_API_KEY",),
}


def normalize_provider_name(name: str) -> str:
    """Lower-case a provider name and resolve known aliases."""
    cleaned = str(name or "").strip().lower()
    return PROVIDER_ALIASES.get(cleaned, cleaned)


class ProviderSettings(BaseModel):
    """Settings for a single model backend."""

    model: str
    base_url: str = ""
    api_key: str = ""
    max_tokens: int = 8192
    temperature: float = 0.7
    timeout: float = 120.0


class ProvidersConfig(BaseModel):
    """Ranked backend list plus per-backend settings."""

    # primary, secondary, tertiary...
    ranked: list[str] = ["gemini", "anthropic", "openai"]
    gemini: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(
            model="gemini-2.0-flash",
            base_url="https://generativelanguage.googleapis.com/v1beta/openai",
        )
    )
    anthropic: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(
            model="claude-sonnet-4-5",
            base_url="https://api.anthropic.com/v1",
        )
    )
    openai: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(
            model="gpt-4.1",
            base_url="https://api.openai.com/v1",
        )
    )
    ollama: ProviderSettings = Field(
        default_factory=lambda: ProviderSettings(
            model="llama3.2",
            base_url="http://127.0.0.1:11434",
            max_tokens=4096,
        )
    )

    @field_validator("ranked")
    @classmethod
    def _normalize_ranked(cls, value: list[str]) -> list[str]:
        ranked: list[str] = []
        for raw in value:
            name = normalize_provider_name(raw)
            if not name:
                continue
            if name not in SUPPORTED_PROVIDERS:
                raise ValueError(f"Unknown provider: {raw}")
            if name not in ranked:
                ranked.append(name)
        return ranked

    def settings_for(self, name: str) -> ProviderSettings:
        """Return settings for a provider name (aliases accepted)."""
        key = normalize_provider_name(name)
        if key not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(f"Unknown provider: {name}")
        return getattr(self, key)


class FailoverConfig(BaseModel):
    """Retry, backoff and health-check configuration."""

    enabled: bool = True
    max_retries_per_provider: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=1000, ge=0)
    max_retry_delay_ms: int = Field(default=10000, ge=0)
    health_check_interval_ms: int = Field(default=30000, ge=1)
    skip_unhealthy: bool = False


class ContextConfig(BaseModel):
    """Conversation context configuration."""

    max_conversation_messages: int = Field(default=50, ge=1)
    retrieval_top_k: int = Field(default=5, ge=0)


class EngineConfig(BaseModel):
    """Tool-execution loop configuration."""

    max_tool_rounds: int = Field(default=25, ge=1)


class PermissionsConfig(BaseModel):
    """Initial permission mode (a persisted mode takes precedence)."""

    mode: Literal["default", "auto-edit", "plan-only"] = "default"


class ShellToolConfig(BaseModel):
    """Shell tool configuration."""

    timeout: int = 30
    max_output_chars: int = 10000
    blocked: list[str] = [
        "rm -rf /",
        "rm -rf ~",
        "mkfs",
        "dd if=/dev/zero",
        ":(){:|:&};:",
    ]


class ToolsConfig(BaseModel):
    """Tools configuration."""

    enabled: list[str] = [
        "read_file",
        "write_file",
        "list_dir",
        "delete_file",
    ]
    max_read_bytes: int = 200_000
    shell: ShellToolConfig = Field(default_factory=ShellToolConfig)


class WorkspaceConfig(BaseModel):
    """Base directory that file tools are confined to."""

    path: str = "."


class StorageConfig(BaseModel):
    """Persistent storage configuration."""

    db_path: str = str(DEFAULT_DB_PATH)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Switchyard."""

    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    failover: FailoverConfig = Field(default_factory=FailoverConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    permissions: PermissionsConfig = Field(default_factory=PermissionsConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="SWITCHYARD_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from the default YAML location."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_workspace_path(self, runtime_base: Path | str | None = None) -> Path:
        """Resolve workspace path, anchoring relative paths to runtime base/cwd."""
        raw = Path(self.workspace.path).expanduser()
        if raw.is_absolute():
            return raw.resolve()
        anchor = Path(runtime_base).expanduser().resolve() if runtime_base is not None else Path.cwd().resolve()
        return (anchor / raw).resolve()

    def lookup_api_key(self, provider: str) -> str | None:
        """Return the API key for a provider from config, then the environment."""
        name = normalize_provider_name(provider)
        settings = self.providers.settings_for(name)
        if settings.api_key.strip():
            return settings.api_key.strip()
        for env_name in PROVIDER_ENV_KEYS.get(name, ()):
            value = os.environ.get(env_name, "").strip()
            if value:
                return value
        return None


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
