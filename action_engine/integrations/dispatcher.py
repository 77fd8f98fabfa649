import asyncio
import logging
import re
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple

import httpx
from opentelemetry import trace

from action_engine.errors import IntegrationUnavailableError, UnmappedToolError
from action_engine.integrations.background import ActionBackgroundQueue
from action_engine.integrations.models import (
    ActionLogEntry,
    ActionLogStatus,
    ActionResult,
    IntegrationAction,
    IntegrationInfo,
    IntegrationType,
)
from action_engine.integrations.tool_registry import resolve_integration
from action_engine.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from action_engine.vars import (
    ACTION_TIMEOUT_SECONDS,
    CALLBACK_TIMEOUT_SECONDS,
    LOGGER_NAME,
)

logger = logging.getLogger(LOGGER_NAME)
tracer = trace.get_tracer(__name__)

ActionLogCallback = Callable[[ActionLogEntry], Awaitable[None]]

# Actions that address an existing calendar event by id
EVENT_ID_ACTIONS = frozenset({"updateEvent", "deleteEvent"})
MIN_EVENT_ID_LENGTH = 10
PLACEHOLDER_EVENT_ID_PATTERNS = (
    re.compile(r"^[0-9]{1,3}$"),
    re.compile(r"^event-[0-9]{1,3}$", re.IGNORECASE),
    re.compile(r"^existing-event-id$", re.IGNORECASE),
    re.compile(r"^event-?id$", re.IGNORECASE),
)
ERROR_MESSAGE_LIMIT = 1024


class ActionExecutor(ABC):
    """Provider-specific executor for one integration type/provider pair."""

    @abstractmethod
    async def execute(
        self,
        integration: IntegrationInfo,
        action: str,
        parameters: Dict[str, Any],
        caller_id: Optional[str],
    ) -> Any:
        """Run ``action`` and return an ``ActionResult`` or a ``{success, ...}`` dict."""


class IntegrationDirectory(ABC):
    @abstractmethod
    async def get_integration(self, integration_id: str) -> Optional[IntegrationInfo]:
        pass


class StaticIntegrationDirectory(IntegrationDirectory):
    """Directory backed by a fixed set of integrations."""

    def __init__(self, integrations: Iterable[IntegrationInfo] = ()):
        self._integrations = {integration.id: integration for integration in integrations}

    async def get_integration(self, integration_id: str) -> Optional[IntegrationInfo]:
        return self._integrations.get(integration_id)


def validate_event_id(action: str, parameters: Dict[str, Any]) -> Optional[str]:
    """Return an error message when an event-addressed action carries a bad id."""
    if action not in EVENT_ID_ACTIONS:
        return None
    raw = parameters.get("eventId")
    if raw is None or not str(raw).strip():
        return f"Missing eventId for {action}"
    event_id = str(raw).strip()
    if any(pattern.match(event_id) for pattern in PLACEHOLDER_EVENT_ID_PATTERNS):
        return (
            f'EventId "{event_id}" looks like a placeholder. '
            "Call getMyBookedCalendarEvents to obtain the real id."
        )
    if len(event_id) < MIN_EVENT_ID_LENGTH:
        return (
            f'EventId "{event_id}" is too short to be a real calendar event id. '
            "Call getMyBookedCalendarEvents to obtain the real id."
        )
    return None


class ActionDispatcher:
    """
    Route tool names to integrations and run the resulting actions.

    ``dispatch`` and ``execute`` never raise: resolution failures, inactive
    integrations, executor exceptions and timeouts all come back as a failed
    ``ActionResult``.
    """

    def __init__(
        self,
        executors: Dict[Tuple[IntegrationType, str], ActionExecutor],
        directory: Optional[IntegrationDirectory] = None,
        background_queue: Optional[ActionBackgroundQueue] = None,
        log_callback: Optional[ActionLogCallback] = None,
        timeout_seconds: float = ACTION_TIMEOUT_SECONDS,
        callback_timeout_seconds: float = CALLBACK_TIMEOUT_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.executors = dict(executors)
        self.directory = directory or StaticIntegrationDirectory()
        self.background_queue = background_queue or ActionBackgroundQueue()
        self.log_callback = log_callback
        self.timeout_seconds = timeout_seconds
        self.callback_timeout_seconds = callback_timeout_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def dispatch(
        self,
        tool_name: str,
        arguments: Optional[Dict[str, Any]],
        active_integrations: Iterable[IntegrationInfo],
        *,
        action: Optional[str] = None,
        caller_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> ActionResult:
        """
        Resolve ``tool_name`` against the active integrations and run it
        synchronously. ``action`` overrides the binding's default action.
        """
        with tracer.start_as_current_span("action.dispatch") as span:
            span.set_attribute("tool.name", tool_name)
            try:
                tool, binding, integration = resolve_integration(
                    tool_name, active_integrations
                )
            except UnmappedToolError as exc:
                logger.warning("[ActionDispatcher] %s", exc)
                span.set_attribute("error", True)
                return ActionResult.failure(str(exc), details={"kind": "unmapped_tool"})
            except IntegrationUnavailableError as exc:
                logger.warning("[ActionDispatcher] %s", exc)
                span.set_attribute("error", True)
                return ActionResult.failure(
                    str(exc),
                    details={
                        "kind": "integration_unavailable",
                        "integrationType": exc.integration_type,
                        "provider": exc.provider,
                    },
                )

            span.set_attribute("integration.id", integration.id)
            request = IntegrationAction(
                integration_id=integration.id,
                action=action or binding.action,
                parameters=dict(arguments or {}),
                user_id=caller_id,
                conversation_id=conversation_id,
            )
            logger.info(
                "[ActionDispatcher] Dispatching %s -> %s.%s (%s)",
                tool.value,
                integration.id,
                request.action,
                binding.provider,
            )
            return await self._run(integration, request, caller_id)

    async def execute(
        self, request: IntegrationAction, caller_id: Optional[str] = None
    ) -> ActionResult:
        """Run an action against an integration looked up by id."""
        effective_caller = request.user_id or caller_id
        try:
            integration = await self.directory.get_integration(request.integration_id)
        except Exception as exc:
            log_exception_with_details(
                logger, "[ActionDispatcher] Integration lookup failed", exc
            )
            return ActionResult.failure(
                f"Could not load integration {request.integration_id}: "
                f"{format_exception_message(exc)}",
                status_code=500,
            )
        if integration is None:
            return ActionResult.failure(
                f"Integration not found: {request.integration_id}", status_code=404
            )

        if request.run_async:
            return await self._enqueue(integration, request, effective_caller)
        return await self._run(integration, request, effective_caller)

    async def _run(
        self,
        integration: IntegrationInfo,
        request: IntegrationAction,
        caller_id: Optional[str],
    ) -> ActionResult:
        if not integration.usable:
            error = (
                f"Integration '{integration.name or integration.id}' is not active "
                f"(status={integration.status.value}, is_active={integration.is_active})"
            )
            await self._log_action(integration, request, ActionLogStatus.ERROR, caller_id, error)
            return ActionResult.failure(error, status_code=400)

        result = await self._invoke_executor(integration, request, caller_id)
        await self._log_action(
            integration,
            request,
            ActionLogStatus.SUCCESS if result.success else ActionLogStatus.ERROR,
            caller_id,
            result.error,
        )
        return result

    async def _invoke_executor(
        self,
        integration: IntegrationInfo,
        request: IntegrationAction,
        caller_id: Optional[str],
    ) -> ActionResult:
        invalid_id = validate_event_id(request.action, request.parameters)
        if invalid_id:
            logger.warning("[ActionDispatcher] Rejected %s: %s", request.action, invalid_id)
            return ActionResult.failure(invalid_id, status_code=400)

        executor = self.executors.get((integration.type, integration.provider))
        if executor is None:
            return ActionResult.failure(
                f"No executor registered for {integration.type.value}/{integration.provider}",
                status_code=501,
            )

        try:
            payload = await asyncio.wait_for(
                executor.execute(integration, request.action, request.parameters, caller_id),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "[ActionDispatcher] %s on %s timed out after %ss",
                request.action,
                integration.id,
                self.timeout_seconds,
            )
            return ActionResult.failure(
                f"Action {request.action} timed out after {self.timeout_seconds}s",
                status_code=504,
            )
        except Exception as exc:
            log_exception_with_details(
                logger,
                f"[ActionDispatcher] Action '{request.action}' on {integration.id} failed",
                exc,
            )
            return ActionResult.failure(
                format_exception_message(exc),
                details={"exception": type(exc).__name__},
                status_code=getattr(exc, "status_code", None) or 500,
            )
        return ActionResult.from_payload(payload)

    async def _enqueue(
        self,
        integration: IntegrationInfo,
        request: IntegrationAction,
        caller_id: Optional[str],
    ) -> ActionResult:
        if not integration.usable:
            return await self._run(integration, request, caller_id)

        request_id = uuid.uuid4().hex

        async def _job() -> Optional[ActionResult]:
            return await self._run_queued(request, caller_id, request_id)

        await self.background_queue.enqueue(request_id, _job)
        await self._log_action(integration, request, ActionLogStatus.QUEUED, caller_id)
        return ActionResult.accepted(request_id)

    async def _run_queued(
        self, request: IntegrationAction, caller_id: Optional[str], request_id: str
    ) -> Optional[ActionResult]:
        integration = await self.directory.get_integration(request.integration_id)
        if integration is None or not integration.usable:
            logger.warning(
                "[ActionDispatcher] Integration %s is not active, skipping queued %s",
                request.integration_id,
                request.action,
            )
            return None

        result = await self._run(integration, request, caller_id)
        if request.callback_url:
            await self._post_callback(request, request_id, result)
        return result

    async def _post_callback(
        self, request: IntegrationAction, request_id: str, result: ActionResult
    ) -> None:
        payload = {
            "integrationId": request.integration_id,
            "action": request.action,
            "requestId": request_id,
            "conversationId": request.conversation_id,
            "messageId": request.message_id,
            "result": result.model_dump(mode="json", exclude_none=True),
        }
        logger.info("[ActionDispatcher] Posting result to callback %s", request.callback_url)
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.callback_timeout_seconds)
            ) as client:
                response = await client.post(request.callback_url, json=payload)
            if response.status_code >= 400:
                logger.error(
                    "[ActionDispatcher] Callback %s answered HTTP %s",
                    request.callback_url,
                    response.status_code,
                )
        except httpx.HTTPError as exc:
            logger.error(
                "[ActionDispatcher] Callback %s failed: %s", request.callback_url, exc
            )

    async def _log_action(
        self,
        integration: IntegrationInfo,
        request: IntegrationAction,
        status: ActionLogStatus,
        caller_id: Optional[str],
        error: Optional[str] = None,
    ) -> None:
        entry = ActionLogEntry(
            integration_id=integration.id,
            action=request.action,
            status=status,
            executed_by=caller_id,
            agent_id=integration.agent_id,
            error_message=error[:ERROR_MESSAGE_LIMIT] if error else None,
            timestamp=self._clock(),
        )
        log = logger.info if status != ActionLogStatus.ERROR else logger.warning
        log(
            "[ActionDispatcher] action=%s integration=%s status=%s actor=%s at=%s%s",
            entry.action,
            entry.integration_id,
            entry.status.value,
            entry.executed_by,
            entry.timestamp.isoformat(),
            f" error={entry.error_message}" if entry.error_message else "",
        )
        if self.log_callback is None:
            return
        try:
            await self.log_callback(entry)
        except Exception as exc:
            log_exception_with_details(
                logger, "[ActionDispatcher] Failed to record action log", exc
            )
