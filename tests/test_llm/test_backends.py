import json

import httpx
import pytest

from switchyard.config import ProviderSettings
from switchyard.exceptions import ConfigurationError
from switchyard.llm import (
    ConversationContext,
    Message,
    OllamaProvider,
    OpenAICompatibleProvider,
    RequestOptions,
    Snippet,
    ToolCall,
    create_provider,
)


def openai_backend(handler, api_key="sk-test") -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(
        name="openai",
        model="gpt-test",
        base_url="https://api.example.test/v1/",
        api_key=api_key,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.mark.asyncio
async def test_openai_compatible_parses_content_tool_calls_and_usage():
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append({"url": str(request.url), "auth": request.headers["authorization"], "body": json.loads(request.content)})
        return httpx.Response(
            200,
            headers={"x-request-id": "req_1"},
            json={
                "id": "chatcmpl_1",
                "model": "gpt-test-2024",
                "choices": [
                    {
                        "message": {
                            "content": "Reading it.",
                            "tool_calls": [
                                {
                                    "id": "call_1",
                                    "type": "function",
                                    "function": {"name": "read_file", "arguments": '{"path": "a.py"}'},
                                }
                            ],
                        }
                    }
                ],
                "usage": {"prompt_tokens": 10, "completion_tokens": 3, "total_tokens": 13},
            },
        )

    backend = openai_backend(handler)
    await backend.initialize()
    context = ConversationContext(
        messages=[
            Message(role="user", content="hi"),
            Message(role="assistant", content="", tool_calls=[ToolCall(id="c0", name="list_dir", arguments={})]),
            Message(role="tool", content="a.py", tool_call_id="c0", tool_name="list_dir"),
        ],
        snippets=[Snippet(file_path="a.py", start_line=1, end_line=2, content="x = 1")],
        system_prompt="be helpful",
    )

    response = await backend.send_message(
        "open a.py",
        context,
        RequestOptions(tools=[{"name": "read_file", "description": "Read", "parameters": {"type": "object"}}]),
    )
    await backend.close()

    assert response.success is True
    assert response.content == "Reading it."
    assert response.tool_calls == [ToolCall(id="call_1", name="read_file", arguments={"path": "a.py"})]
    assert response.total_tokens == 13
    assert response.model == "gpt-test-2024"
    assert response.metadata["request_id"] == "req_1"

    request = seen[0]
    assert request["url"] == "https://api.example.test/v1/chat/completions"
    assert request["auth"] == "Bearer sk-test"
    roles = [m["role"] for m in request["body"]["messages"]]
    assert roles == ["system", "system", "user", "assistant", "tool", "user"]
    assert request["body"]["messages"][3]["tool_calls"][0]["function"]["name"] == "list_dir"
    assert request["body"]["messages"][4]["tool_call_id"] == "c0"
    assert request["body"]["tools"][0]["function"]["name"] == "read_file"


@pytest.mark.asyncio
async def test_openai_compatible_rate_limit_is_soft_failure():
    backend = openai_backend(lambda request: httpx.Response(429, text="slow down"))

    response = await backend.send_message("hi", ConversationContext())
    await backend.close()

    assert response.success is False
    assert response.error.code == "RATE_LIMITED"
    assert response.error.status_code == 429
    assert "slow down" in response.error.message


@pytest.mark.asyncio
async def test_openai_compatible_requires_key():
    backend = openai_backend(lambda request: httpx.Response(200, json={}), api_key=None)

    with pytest.raises(ConfigurationError, match="No API key"):
        await backend.initialize()
    await backend.close()


@pytest.mark.asyncio
async def test_openai_compatible_malformed_body_is_invalid_response():
    backend = openai_backend(lambda request: httpx.Response(200, json={"choices": []}))

    response = await backend.send_message("hi", ConversationContext())
    await backend.close()

    assert response.success is False
    assert response.error.code == "INVALID_RESPONSE"


@pytest.mark.asyncio
async def test_ollama_parses_chat_response():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert request.url.path == "/api/chat"
        assert body["stream"] is False
        return httpx.Response(
            200,
            json={
                "model": "llama3.2",
                "message": {
                    "content": "",
                    "tool_calls": [{"function": {"name": "list_dir", "arguments": {"path": "."}}}],
                },
                "prompt_eval_count": 8,
                "eval_count": 2,
            },
        )

    backend = OllamaProvider(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    await backend.initialize()

    response = await backend.send_message("list", ConversationContext())
    await backend.close()

    assert response.success is True
    assert response.provider == "ollama"
    assert response.tool_calls[0].name == "list_dir"
    assert response.tool_calls[0].arguments == {"path": "."}
    assert response.tool_calls[0].id.startswith("ollama_call_")
    assert response.usage == {"prompt_tokens": 8, "completion_tokens": 2, "total_tokens": 10}


@pytest.mark.asyncio
async def test_ollama_connection_refused_is_soft_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    backend = OllamaProvider(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    response = await backend.send_message("hi", ConversationContext())
    healthy = await backend.health_check()
    await backend.close()

    assert response.success is False
    assert response.error.code == "CONNECTION_REFUSED"
    assert response.error.status_code == 503
    assert healthy is False
    assert backend.last_health_check is not None


@pytest.mark.asyncio
async def test_create_provider_builds_each_backend_kind():
    ollama = create_provider("ollama", ProviderSettings(model="qwen3:8b", base_url=""))
    claude = create_provider(
        "claude",
        ProviderSettings(model="claude-x", base_url="https://api.anthropic.com/v1"),
        api_key="key",
    )
    try:
        assert isinstance(ollama, OllamaProvider)
        assert ollama.base_url == "http://127.0.0.1:11434"
        assert isinstance(claude, OpenAICompatibleProvider)
        assert claude.name == "anthropic"
        assert claude.model == "claude-x"
        with pytest.raises(ValueError, match="not supported"):
            create_provider("mystery", ProviderSettings(model="m"))
    finally:
        await ollama.close()
        await claude.close()
