from pathlib import Path

import pytest

from switchyard.config import Config, normalize_provider_name
from switchyard.exceptions import ConfigurationError


def test_defaults_rank_gemini_anthropic_openai():
    cfg = Config()

    assert cfg.providers.ranked == ["gemini", "anthropic", "openai"]
    assert cfg.failover.max_retries_per_provider == 3
    assert cfg.failover.retry_delay_ms == 1000
    assert cfg.failover.max_retry_delay_ms == 10000
    assert cfg.failover.health_check_interval_ms == 30000
    assert cfg.context.max_conversation_messages == 50
    assert cfg.engine.max_tool_rounds == 25


def test_from_yaml_reads_nested_sections(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "\n".join(
            [
                "providers:",
                "  ranked: [claude, ollama]",
                "  ollama:",
                "    model: qwen3:8b",
                "failover:",
                "  retry_delay_ms: 250",
                "permissions:",
                "  mode: auto-edit",
                "workspace:",
                "  path: ./work",
            ]
        ),
        encoding="utf-8",
    )

    cfg = Config.from_yaml(path)

    assert cfg.providers.ranked == ["anthropic", "ollama"]
    assert cfg.providers.settings_for("ollama").model == "qwen3:8b"
    assert cfg.failover.retry_delay_ms == 250
    assert cfg.permissions.mode == "auto-edit"
    assert cfg.resolved_workspace_path(tmp_path) == (tmp_path / "work").resolve()


def test_missing_yaml_file_gives_defaults(tmp_path: Path):
    cfg = Config.from_yaml(tmp_path / "absent.yaml")

    assert cfg.providers.ranked == ["gemini", "anthropic", "openai"]


def test_invalid_yaml_values_raise_configuration_error(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text("providers:\n  ranked: [gemini, mystery]\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Invalid configuration"):
        Config.from_yaml(path)


def test_env_overrides_nested_values(monkeypatch):
    monkeypatch.setenv("SWITCHYARD_FAILOVER__MAX_RETRIES_PER_PROVIDER", "5")
    monkeypatch.setenv("SWITCHYARD_PERMISSIONS__MODE", "plan-only")

    cfg = Config()

    assert cfg.failover.max_retries_per_provider == 5
    assert cfg.permissions.mode == "plan-only"


def test_lookup_api_key_prefers_config_then_environment(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("GOOGLE_API_KEY", "from-env")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    cfg = Config(providers={"anthropic": {"model": "claude-x", "api_key": "from-config"}})

    assert cfg.lookup_api_key("claude") == "from-config"
    assert cfg.lookup_api_key("gemini") == "from-env"
    assert cfg.lookup_api_key("openai") is None


def test_save_and_reload_round_trip(tmp_path: Path):
    path = tmp_path / "nested" / "config.yaml"
    Config(engine={"max_tool_rounds": 7}).save(path)

    assert Config.from_yaml(path).engine.max_tool_rounds == 7


def test_provider_aliases_normalize():
    assert normalize_provider_name(" Claude ") == "anthropic"
    assert normalize_provider_name("google") == "gemini"
    assert normalize_provider_name("OpenAI") == "openai"
    with pytest.raises(ConfigurationError):
        Config().providers.settings_for("mystery")
