import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from action_engine.integrations import dispatcher as dispatcher_module
from action_engine.integrations.dispatcher import (
    ActionDispatcher,
    ActionExecutor,
    StaticIntegrationDirectory,
    validate_event_id,
)
from action_engine.integrations.models import (
    ActionLogStatus,
    IntegrationAction,
    IntegrationInfo,
    IntegrationStatus,
    IntegrationType,
)

REAL_EVENT_ID = "abc123def456ghi789"
FIXED_NOW = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)


class RecordingExecutor(ActionExecutor):
    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result if result is not None else {"success": True, "result": {"ok": 1}}
        self.error = error
        self.delay = delay
        self.calls = []

    async def execute(self, integration, action, parameters, caller_id):
        self.calls.append((integration.id, action, dict(parameters), caller_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


def _calendar(**overrides) -> IntegrationInfo:
    values = dict(
        id="cal-1",
        type=IntegrationType.CALENDAR,
        provider="google",
        name="Agenda",
        agent_id="agent-1",
    )
    values.update(overrides)
    return IntegrationInfo(**values)


def _dispatcher(executor, integrations=(), **kwargs):
    log_entries = []

    async def log_callback(entry):
        log_entries.append(entry)

    dispatcher = ActionDispatcher(
        {(IntegrationType.CALENDAR, "google"): executor},
        directory=StaticIntegrationDirectory(integrations),
        log_callback=log_callback,
        clock=lambda: FIXED_NOW,
        **kwargs,
    )
    return dispatcher, log_entries


class TestValidateEventId:
    def test_ignores_other_actions(self):
        assert validate_event_id("createEvent", {}) is None

    def test_missing_id(self):
        assert "Missing eventId" in validate_event_id("updateEvent", {})

    @pytest.mark.parametrize("event_id", ["1", "10", "event-1", "event-id", "existing-event-id"])
    def test_placeholders_rejected(self, event_id):
        error = validate_event_id("deleteEvent", {"eventId": event_id})
        assert error is not None
        assert "getMyBookedCalendarEvents" in error

    def test_short_id_rejected(self):
        assert "too short" in validate_event_id("updateEvent", {"eventId": "abc12"})

    def test_real_id_accepted(self):
        assert validate_event_id("updateEvent", {"eventId": REAL_EVENT_ID}) is None


class TestDispatch:
    @pytest.mark.asyncio
    async def test_dispatch_success_logs_and_returns_result(self):
        executor = RecordingExecutor()
        dispatcher, log_entries = _dispatcher(executor)

        result = await dispatcher.dispatch(
            "getMyBookedCalendarEvents",
            {"timeMin": "2025-03-10T00:00:00Z"},
            [_calendar()],
            caller_id="user-1",
        )

        assert result.success is True
        assert result.result == {"ok": 1}
        assert executor.calls == [
            ("cal-1", "getMyBookedEvents", {"timeMin": "2025-03-10T00:00:00Z"}, "user-1")
        ]
        assert len(log_entries) == 1
        entry = log_entries[0]
        assert entry.status == ActionLogStatus.SUCCESS
        assert entry.executed_by == "user-1"
        assert entry.agent_id == "agent-1"
        assert entry.timestamp == FIXED_NOW

    @pytest.mark.asyncio
    async def test_action_override(self):
        executor = RecordingExecutor()
        dispatcher, _ = _dispatcher(executor)

        await dispatcher.dispatch(
            "getGoogleCalendarEvents", {}, [_calendar()], action="listActiveServices"
        )

        assert executor.calls[0][1] == "listActiveServices"

    @pytest.mark.asyncio
    async def test_unmapped_tool_is_a_failed_result(self):
        executor = RecordingExecutor()
        dispatcher, log_entries = _dispatcher(executor)

        result = await dispatcher.dispatch("launchRockets", {}, [_calendar()])

        assert result.success is False
        assert result.details["kind"] == "unmapped_tool"
        assert executor.calls == []
        assert log_entries == []

    @pytest.mark.asyncio
    async def test_missing_integration_is_a_failed_result(self):
        dispatcher, _ = _dispatcher(RecordingExecutor())

        result = await dispatcher.dispatch("sendWhatsAppTextMessage", {}, [_calendar()])

        assert result.success is False
        assert result.details["kind"] == "integration_unavailable"
        assert result.details["provider"] == "whatsapp"

    @pytest.mark.asyncio
    async def test_executor_exception_is_normalized(self):
        executor = RecordingExecutor(error=RuntimeError("quota exceeded"))
        dispatcher, log_entries = _dispatcher(executor)

        result = await dispatcher.dispatch("getGoogleCalendarEvents", {}, [_calendar()])

        assert result.success is False
        assert "quota exceeded" in result.error
        assert result.details == {"exception": "RuntimeError"}
        assert result.status_code == 500
        assert log_entries[0].status == ActionLogStatus.ERROR
        assert "quota exceeded" in log_entries[0].error_message

    @pytest.mark.asyncio
    async def test_executor_timeout(self):
        executor = RecordingExecutor(delay=1.0)
        dispatcher, _ = _dispatcher(executor, timeout_seconds=0.01)

        result = await dispatcher.dispatch("getGoogleCalendarEvents", {}, [_calendar()])

        assert result.success is False
        assert result.status_code == 504
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_placeholder_event_id_never_reaches_executor(self):
        executor = RecordingExecutor()
        dispatcher, _ = _dispatcher(executor)

        result = await dispatcher.dispatch(
            "updateGoogleCalendarEvent", {"eventId": "10"}, [_calendar()]
        )

        assert result.success is False
        assert result.status_code == 400
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_missing_executor(self):
        dispatcher = ActionDispatcher({})

        result = await dispatcher.dispatch("getGoogleCalendarEvents", {}, [_calendar()])

        assert result.success is False
        assert result.status_code == 501

    @pytest.mark.asyncio
    async def test_failing_log_callback_does_not_fail_the_action(self):
        async def broken_callback(entry):
            raise RuntimeError("audit store offline")

        dispatcher = ActionDispatcher(
            {(IntegrationType.CALENDAR, "google"): RecordingExecutor()},
            log_callback=broken_callback,
        )

        result = await dispatcher.dispatch("getGoogleCalendarEvents", {}, [_calendar()])

        assert result.success is True


class TestExecute:
    @pytest.mark.asyncio
    async def test_unknown_integration_id(self):
        dispatcher, _ = _dispatcher(RecordingExecutor())

        result = await dispatcher.execute(
            IntegrationAction(integration_id="missing", action="getEvents")
        )

        assert result.success is False
        assert result.status_code == 404

    @pytest.mark.asyncio
    async def test_inactive_integration_is_rejected(self):
        executor = RecordingExecutor()
        inactive = _calendar(status=IntegrationStatus.PENDING)
        dispatcher, log_entries = _dispatcher(executor, [inactive])

        result = await dispatcher.execute(
            IntegrationAction(integration_id="cal-1", action="getEvents"), caller_id="u"
        )

        assert result.success is False
        assert result.status_code == 400
        assert "not active" in result.error
        assert executor.calls == []
        assert log_entries[0].status == ActionLogStatus.ERROR

    @pytest.mark.asyncio
    async def test_sync_execute_uses_request_user(self):
        executor = RecordingExecutor(result={"success": True, "result": "created"})
        dispatcher, _ = _dispatcher(executor, [_calendar()])

        result = await dispatcher.execute(
            IntegrationAction.model_validate(
                {"integrationId": "cal-1", "action": "createEvent", "userId": "user-9"}
            )
        )

        assert result.success is True
        assert result.result == "created"
        assert executor.calls[0][3] == "user-9"

    @pytest.mark.asyncio
    async def test_async_execute_returns_202_and_posts_callback(self, monkeypatch):
        posted = []

        class FakeAsyncClient:
            def __init__(self, timeout=None):
                self.timeout = timeout

            async def __aenter__(self):
                return self

            async def __aexit__(self, exc_type, exc_val, exc_tb):
                return False

            async def post(self, url, json):
                posted.append((url, json))
                return SimpleNamespace(status_code=200)

        monkeypatch.setattr(dispatcher_module.httpx, "AsyncClient", FakeAsyncClient)

        executor = RecordingExecutor(result={"success": True, "result": {"id": REAL_EVENT_ID}})
        dispatcher, log_entries = _dispatcher(executor, [_calendar()])

        result = await dispatcher.execute(
            IntegrationAction.model_validate(
                {
                    "integrationId": "cal-1",
                    "action": "createEvent",
                    "conversationId": "conv-7",
                    "async": True,
                    "callbackUrl": "https://hooks.example.com/done",
                }
            )
        )

        assert result.success is True
        assert result.status_code == 202
        assert result.request_id and result.request_id != "conv-7"
        assert result.result == {"message": "Request queued", "requestId": result.request_id}
        assert log_entries[0].status == ActionLogStatus.QUEUED

        await dispatcher.background_queue.drain()

        assert executor.calls[0][1] == "createEvent"
        assert [entry.status for entry in log_entries] == [
            ActionLogStatus.QUEUED,
            ActionLogStatus.SUCCESS,
        ]
        url, payload = posted[0]
        assert url == "https://hooks.example.com/done"
        assert payload["integrationId"] == "cal-1"
        assert payload["action"] == "createEvent"
        assert payload["requestId"] == result.request_id
        assert payload["conversationId"] == "conv-7"
        assert payload["result"]["success"] is True
        assert payload["result"]["result"] == {"id": REAL_EVENT_ID}

    @pytest.mark.asyncio
    async def test_async_execute_without_callback(self, monkeypatch):
        def _fail(*args, **kwargs):
            raise AssertionError("no callback expected")

        monkeypatch.setattr(dispatcher_module.httpx, "AsyncClient", _fail)
        executor = RecordingExecutor()
        dispatcher, _ = _dispatcher(executor, [_calendar()])

        result = await dispatcher.execute(
            IntegrationAction(integration_id="cal-1", action="getEvents", run_async=True)
        )
        await dispatcher.background_queue.drain()

        assert result.status_code == 202
        assert result.request_id
        assert len(executor.calls) == 1

    @pytest.mark.asyncio
    async def test_async_requests_in_one_conversation_get_distinct_ids(self, monkeypatch):
        posted = []

        class FakeAsyncClient:
            def __init__(self, timeout=None):
                self.timeout = timeout

            async def __aenter__(self):
                return self

            async def __aexit__(self, exc_type, exc_val, exc_tb):
                return False

            async def post(self, url, json):
                posted.append(json)
                return SimpleNamespace(status_code=200)

        monkeypatch.setattr(dispatcher_module.httpx, "AsyncClient", FakeAsyncClient)
        executor = RecordingExecutor(delay=0.01)
        dispatcher, _ = _dispatcher(executor, [_calendar()])

        def _request(action):
            return IntegrationAction.model_validate(
                {
                    "integrationId": "cal-1",
                    "action": action,
                    "conversationId": "c1",
                    "async": True,
                    "callbackUrl": "https://hooks.example.com/done",
                }
            )

        first = await dispatcher.execute(_request("getEvents"))
        second = await dispatcher.execute(_request("createEvent"))

        assert first.request_id != second.request_id
        assert dispatcher.background_queue.pending_count == 2

        await dispatcher.background_queue.drain()

        assert len(executor.calls) == 2
        assert {payload["requestId"] for payload in posted} == {
            first.request_id,
            second.request_id,
        }
        assert all(payload["conversationId"] == "c1" for payload in posted)
