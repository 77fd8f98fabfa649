import json

import pytest

from action_engine.integrations.models import ActionResult, IntegrationInfo, IntegrationType
from action_engine.llm.models import MessageRole, ToolCall, ToolCallFunction
from action_engine.llm.services.tool_service import ToolService, parse_tool_arguments
from action_engine.errors import MalformedToolArgumentsError


class StubDispatcher:
    def __init__(self, results=None, error=None):
        self.results = results or {}
        self.error = error
        self.calls = []

    async def dispatch(self, tool_name, arguments, active_integrations, *, action=None, caller_id=None, conversation_id=None):
        self.calls.append((tool_name, arguments, caller_id, conversation_id))
        if self.error:
            raise self.error
        return self.results.get(tool_name, ActionResult.ok({"ok": True}))


def _call(call_id, name, arguments):
    return ToolCall(id=call_id, function=ToolCallFunction(name=name, arguments=arguments))


INTEGRATIONS = [IntegrationInfo(id="erp-1", type=IntegrationType.ERP, provider="generic")]


def test_parse_tool_arguments():
    assert parse_tool_arguments(_call("c", "t", '{"a": 1}')) == {"a": 1}
    assert parse_tool_arguments(_call("c", "t", "  ")) == {}
    with pytest.raises(MalformedToolArgumentsError):
        parse_tool_arguments(_call("c", "t", "{broken"))
    with pytest.raises(MalformedToolArgumentsError):
        parse_tool_arguments(_call("c", "t", "[1, 2]"))


@pytest.mark.asyncio
async def test_results_follow_call_order_and_ids():
    dispatcher = StubDispatcher(
        {
            "queryErpData": ActionResult.ok({"stock": 4, "sku": "A-1"}),
            "getGoogleCalendarEvents": ActionResult.failure("no calendar", details={"kind": "integration_unavailable"}),
        }
    )
    service = ToolService(dispatcher)
    calls = [
        _call("call_a", "queryErpData", '{"entity": "stock"}'),
        _call("call_b", "getGoogleCalendarEvents", "{}"),
    ]

    messages, success = await service.execute_tool_calls(calls, INTEGRATIONS, "user-1", "conv-1")

    assert success is False
    assert [m.tool_call_id for m in messages] == ["call_a", "call_b"]
    assert [m.name for m in messages] == ["queryErpData", "getGoogleCalendarEvents"]
    assert all(m.role == MessageRole.TOOL for m in messages)
    assert messages[0].content == '{"stock":4,"sku":"A-1"}'
    assert json.loads(messages[1].content) == {
        "error": "no calendar",
        "details": {"kind": "integration_unavailable"},
    }
    assert dispatcher.calls[0] == ("queryErpData", {"entity": "stock"}, "user-1", "conv-1")


@pytest.mark.asyncio
async def test_malformed_arguments_fail_only_that_call():
    dispatcher = StubDispatcher()
    service = ToolService(dispatcher)
    calls = [
        _call("call_1", "queryErpData", "{not json"),
        _call("call_2", "queryErpData", '{"entity": "orders"}'),
    ]

    messages, success = await service.execute_tool_calls(calls, INTEGRATIONS)

    assert success is False
    assert len(messages) == 2
    assert "not a valid JSON object" in json.loads(messages[0].content)["error"]
    assert json.loads(messages[1].content) == {"ok": True}
    assert len(dispatcher.calls) == 1


@pytest.mark.asyncio
async def test_dispatcher_exception_becomes_error_message():
    service = ToolService(StubDispatcher(error=RuntimeError("boom")))

    messages, success = await service.execute_tool_calls(
        [_call("call_1", "queryErpData", "{}")], INTEGRATIONS
    )

    assert success is False
    assert "boom" in json.loads(messages[0].content)["error"]


@pytest.mark.asyncio
async def test_results_are_bounded():
    big = ActionResult.ok({"rows": ["x" * 50] * 100})
    service = ToolService(StubDispatcher({"queryErpData": big}), result_char_limit=200)

    messages, success = await service.execute_tool_calls(
        [_call("call_1", "queryErpData", "{}")], INTEGRATIONS
    )

    assert success is True
    assert len(messages[0].content) <= 200
    assert messages[0].content.endswith("...[truncated]")


def test_string_results_are_minified():
    service = ToolService(StubDispatcher())
    assert service.format_result(ActionResult.ok('  { "a" : 1 }  ')) == '{"a":1}'
    assert service.format_result(ActionResult.ok("  plain text ")) == "plain text"
