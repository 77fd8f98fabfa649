import json
from unittest.mock import patch

import aiohttp
import pytest

from action_engine.errors import ModelInvocationError
from action_engine.llm.clients.llm_client import LLMClient
from action_engine.llm.models import (
    ChatCompletionRequest,
    FunctionDefinition,
    Message,
    MessageRole,
    Tool,
)

SESSION_PATH = "action_engine.llm.clients.llm_client.aiohttp.ClientSession"


@pytest.fixture
def llm_client():
    return LLMClient(
        url="https://api.test-llm.com/v1/", token="test-token-123", model_name="test-model"
    )


def _mock_session(status=200, body=None, text="", posts=None, error=None):
    class MockResponse:
        def __init__(self):
            self.ok = 200 <= status < 300
            self.status = status

        async def json(self):
            return body

        async def text(self):
            return text

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc_val, exc_tb):
            pass

    class MockSession:
        def __init__(self, timeout=None):
            self.timeout = timeout

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc_val, exc_tb):
            pass

        def post(self, url, headers, data):
            if error is not None:
                raise error
            if posts is not None:
                posts.append((url, headers, json.loads(data)))
            return MockResponse()

    return MockSession


def _completion_body(message, usage=None):
    body = {
        "id": "chatcmpl-test123",
        "object": "chat.completion",
        "created": 1234567890,
        "model": "test-model",
        "choices": [{"index": 0, "message": message, "finish_reason": "stop"}],
    }
    if usage:
        body["usage"] = usage
    return body


class TestLLMClient:
    def test_init_strips_trailing_slash(self, llm_client):
        assert llm_client.llm_url == "https://api.test-llm.com/v1"

    def test_headers_with_token(self, llm_client):
        headers = llm_client._get_headers()
        assert headers["Authorization"] == "Bearer test-token-123"
        assert headers["Content-Type"] == "application/json"
        assert "User-Agent" in headers

    def test_headers_without_token(self):
        headers = LLMClient(url="http://llm", token="")._get_headers()
        assert "Authorization" not in headers

    def test_payload_drops_tool_choice_without_tools(self, llm_client):
        request = ChatCompletionRequest(
            messages=[Message(role=MessageRole.USER, content="hi")], model=None
        )
        payload = llm_client._generate_llm_payload(request)
        assert "tools" not in payload
        assert "tool_choice" not in payload
        assert payload["model"] == "test-model"

    @pytest.mark.asyncio
    async def test_complete_returns_content_and_usage(self, llm_client):
        posts = []
        body = _completion_body(
            {"role": "assistant", "content": "Hola, ¿en qué te ayudo?"},
            usage={"prompt_tokens": 10, "completion_tokens": 8, "total_tokens": 18},
        )
        tool = Tool(function=FunctionDefinition(name="queryErpData", parameters={"type": "object"}))

        with patch(SESSION_PATH, _mock_session(body=body, posts=posts)):
            result = await llm_client.complete(
                [Message(role=MessageRole.USER, content="hola")],
                tools=[tool],
                temperature=0.2,
                max_tokens=100,
            )

        assert result.content == "Hola, ¿en qué te ayudo?"
        assert result.has_tool_calls is False
        assert result.usage.prompt_tokens == 10
        url, headers, payload = posts[0]
        assert url == "https://api.test-llm.com/v1/chat/completions"
        assert payload["stream"] is False
        assert payload["temperature"] == 0.2
        assert payload["max_tokens"] == 100
        assert payload["tools"][0]["function"]["name"] == "queryErpData"
        assert payload["tool_choice"] == "auto"

    @pytest.mark.asyncio
    async def test_complete_returns_tool_calls(self, llm_client):
        body = _completion_body(
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": "call_1",
                        "type": "function",
                        "function": {"name": "queryErpData", "arguments": '{"entity":"stock"}'},
                    }
                ],
            }
        )
        with patch(SESSION_PATH, _mock_session(body=body)):
            result = await llm_client.complete([Message(role=MessageRole.USER, content="stock?")])

        assert result.has_tool_calls is True
        assert result.tool_calls[0].function.name == "queryErpData"
        assert result.usage is None

    @pytest.mark.asyncio
    async def test_http_error_raises_model_invocation_error(self, llm_client):
        with patch(SESSION_PATH, _mock_session(status=503, text="overloaded")):
            with pytest.raises(ModelInvocationError) as exc_info:
                await llm_client.complete([Message(role=MessageRole.USER, content="hi")])
        assert exc_info.value.status_code == 503
        assert "overloaded" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self, llm_client):
        error = aiohttp.ClientConnectionError("connection refused")
        with patch(SESSION_PATH, _mock_session(error=error)):
            with pytest.raises(ModelInvocationError):
                await llm_client.complete([Message(role=MessageRole.USER, content="hi")])

    @pytest.mark.asyncio
    async def test_response_without_choices(self, llm_client):
        body = {
            "id": "x",
            "created": 1,
            "model": "test-model",
            "choices": [],
        }
        with patch(SESSION_PATH, _mock_session(body=body)):
            with pytest.raises(ModelInvocationError):
                await llm_client.complete([Message(role=MessageRole.USER, content="hi")])

    @pytest.mark.asyncio
    async def test_malformed_response(self, llm_client):
        with patch(SESSION_PATH, _mock_session(body={"unexpected": True})):
            with pytest.raises(ModelInvocationError) as exc_info:
                await llm_client.complete([Message(role=MessageRole.USER, content="hi")])
        assert "Malformed" in str(exc_info.value)
