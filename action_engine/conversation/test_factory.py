import json
from unittest.mock import AsyncMock

import pytest

from action_engine.conversation.factory import build_chat_completion_handler
from action_engine.conversation.models import (
    ChatCompletionJob,
    CompletionContext,
    TurnMessage,
)
from action_engine.integrations.dispatcher import ActionExecutor
from action_engine.integrations.models import (
    ActionLogStatus,
    IntegrationInfo,
    IntegrationType,
)
from action_engine.llm.models import CompletionResult, ToolCall, ToolCallFunction
from action_engine.workflows import repository as repository_module
from action_engine.workflows.catalog import BUILTIN_WORKFLOWS

CALENDAR = IntegrationInfo(id="cal-1", type=IntegrationType.CALENDAR, provider="google")


class CalendarExecutor(ActionExecutor):
    def __init__(self):
        self.calls = []

    async def execute(self, integration, action, parameters, caller_id):
        self.calls.append(action)
        return {"success": True, "result": {"events": []}}


class ScriptedLLM:
    def __init__(self, responses):
        self.responses = list(responses)

    async def complete(self, messages, tools=None, temperature=None, max_tokens=None):
        return self.responses.pop(0)


def _store():
    store = AsyncMock()
    store.get_agent_config.return_value = None
    store.save_assistant_message.return_value = "reply-1"
    store.list_user_messages.return_value = []
    store.list_conversation_messages.return_value = []
    return store


def _build(llm, telemetry=None, executor=None, **kwargs):
    return build_chat_completion_handler(
        _store(),
        AsyncMock(),
        {(IntegrationType.CALENDAR, "google"): executor or CalendarExecutor()},
        llm_client=llm,
        telemetry=telemetry,
        **kwargs,
    )


def test_workflow_layer_and_tool_loop_share_one_dispatcher():
    telemetry = AsyncMock()
    handler = _build(ScriptedLLM([]), telemetry=telemetry)

    loop_dispatcher = handler.runner.tool_service.dispatcher
    assert handler.workflow_runner.executor.dispatcher is loop_dispatcher
    assert loop_dispatcher.log_callback == telemetry.record_integration_action
    assert handler.workflow_runner.telemetry is telemetry
    assert handler.workflow_runner.profile_builder is not None


def test_without_telemetry_no_action_log_callback():
    handler = _build(ScriptedLLM([]))
    assert handler.runner.tool_service.dispatcher.log_callback is None


def test_catalog_defaults_to_builtin(monkeypatch):
    monkeypatch.setattr(repository_module, "WORKFLOWS_PATH", "")
    handler = _build(ScriptedLLM([]))
    assert len(handler.workflow_runner.matcher.repository) == len(BUILTIN_WORKFLOWS)


def test_catalog_loaded_from_workflows_path(monkeypatch, tmp_path):
    (tmp_path / "billing.json").write_text(
        json.dumps({"name": "billing_flow", "triggers": ["factura"], "category": "sales"}),
        encoding="utf-8",
    )
    monkeypatch.setattr(repository_module, "WORKFLOWS_PATH", str(tmp_path))

    handler = _build(ScriptedLLM([]))

    assert [w.name for w in handler.workflow_runner.matcher.repository] == ["billing_flow"]


@pytest.mark.asyncio
async def test_tool_actions_reach_telemetry():
    call = ToolCall(
        id="c1", function=ToolCallFunction(name="getGoogleCalendarEvents", arguments="{}")
    )
    llm = ScriptedLLM(
        [CompletionResult(tool_calls=[call]), CompletionResult(content="No tienes eventos.")]
    )
    telemetry = AsyncMock()
    executor = CalendarExecutor()
    handler = _build(llm, telemetry=telemetry, executor=executor)

    await handler.execute(
        ChatCompletionJob(
            message_id="in-1",
            conversation_id="conv-1",
            agent_id="agent-1",
            user_id="user-1",
            context=CompletionContext(
                active_integrations=[CALENDAR],
                conversation_context=[TurnMessage(role="user", content="¿qué eventos tengo hoy?")],
            ),
        )
    )

    assert "getEvents" in executor.calls
    entry = telemetry.record_integration_action.await_args.args[0]
    assert entry.status == ActionLogStatus.SUCCESS
    assert entry.action == "getEvents"
    handler.store.save_assistant_message.assert_awaited_once()
