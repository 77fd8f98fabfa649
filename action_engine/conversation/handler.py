"""
Entry point for one queued inbound message: run the matched workflow, drive the
tool-calling loop, and persist and enqueue exactly one assistant reply.
"""

import logging
import time
from datetime import datetime
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from opentelemetry import trace

from action_engine.conversation.collaborators import (
    ConversationStore,
    DeliveryQueue,
    TelemetrySink,
)
from action_engine.conversation.models import (
    AgentConfig,
    ChatCompletionJob,
    MessageStatus,
    TurnMessage,
    TurnRole,
)
from action_engine.llm.models import Tool
from action_engine.llm.services.prompt_service import PromptService
from action_engine.llm.services.tool_chat_runner import ChatOutcome, ToolChatRunner
from action_engine.llm.services.tools.tool_catalog import tools_for_integrations
from action_engine.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from action_engine.vars import BUSINESS_TIMEZONE, LOGGER_NAME
from action_engine.workflows.executor import WorkflowRunContext
from action_engine.workflows.models import WorkflowResult
from action_engine.workflows.runner import WorkflowRunner
from action_engine.workflows.signals import SIMPLE_CONFIRMATION_INTENT

logger = logging.getLogger(LOGGER_NAME)
tracer = trace.get_tracer(__name__)

GENERIC_APOLOGY = (
    "I'm sorry, something went wrong while processing your message. "
    "Please try again in a few minutes."
)


def latest_user_utterance(turns: List[TurnMessage]) -> str:
    for turn in reversed(turns or []):
        if turn.role == TurnRole.USER.value and turn.content and turn.content.strip():
            return turn.content.strip()
    return ""


class ChatCompletionHandler:
    """
    Process one ``ChatCompletionJob``. ``execute`` never raises: every failure
    ends in a persisted reply, queued for delivery or marked failed.
    """

    def __init__(
        self,
        store: ConversationStore,
        delivery_queue: DeliveryQueue,
        runner: ToolChatRunner,
        workflow_runner: Optional[WorkflowRunner] = None,
        prompt_service: Optional[PromptService] = None,
        telemetry: Optional[TelemetrySink] = None,
        clock: Optional[Callable[[], datetime]] = None,
        tz_name: str = BUSINESS_TIMEZONE,
    ):
        self.logger = logger
        self.store = store
        self.delivery_queue = delivery_queue
        self.runner = runner
        self.workflow_runner = workflow_runner
        self.prompt_service = prompt_service or PromptService()
        self.telemetry = telemetry
        tz = ZoneInfo(tz_name)
        self._clock = clock or (lambda: datetime.now(tz))

    async def execute(self, job: ChatCompletionJob) -> None:
        started = time.perf_counter()
        with tracer.start_as_current_span("chat_completion.execute") as span:
            span.set_attribute("conversation.id", job.conversation_id)
            span.set_attribute("agent.id", job.agent_id)
            try:
                outcome = await self._complete(job)
                message_id = await self._save_reply(job, outcome.content, outcome.status, started)
            except Exception as exc:
                span.set_attribute("error", True)
                span.set_attribute("error.message", format_exception_message(exc))
                log_exception_with_details(
                    self.logger,
                    f"[ChatCompletionHandler] Failed to process message {job.message_id}",
                    exc,
                )
                await self._fail(job, exc, started)
                return

            await self._deliver(job, message_id, outcome.status)
            span.set_attribute("chat.status", outcome.status.value)
            span.set_attribute("chat.rounds", outcome.rounds)
            await self._record_usage(job, outcome)

    async def _complete(self, job: ChatCompletionJob) -> ChatOutcome:
        context = job.context
        now = self._clock()
        agent_config = await self._load_agent_config(job.agent_id)
        utterance = latest_user_utterance(context.conversation_context)

        workflow = await self._run_workflow(job, utterance, now)
        annex = workflow.enhanced_context if workflow and workflow.workflow_executed else ""

        tools: List[Tool] = []
        if not (workflow and workflow.user_intent == SIMPLE_CONFIRMATION_INTENT):
            tools = tools_for_integrations(context.active_integrations)

        messages = self.prompt_service.build_messages(
            context, agent_config, annex, tools, now, latest_query=utterance or None
        )
        return await self.runner.run(
            messages,
            tools=tools,
            active_integrations=context.active_integrations,
            temperature=agent_config.temperature,
            max_tokens=agent_config.max_tokens,
            caller_id=job.user_id,
            conversation_id=job.conversation_id,
        )

    async def _load_agent_config(self, agent_id: str) -> AgentConfig:
        try:
            config = await self.store.get_agent_config(agent_id)
        except Exception as exc:
            log_exception_with_details(
                self.logger,
                f"[ChatCompletionHandler] Could not load config for agent {agent_id}, using defaults",
                exc,
                level=logging.WARNING,
            )
            return AgentConfig()
        return config or AgentConfig()

    async def _run_workflow(
        self, job: ChatCompletionJob, utterance: str, now: datetime
    ) -> Optional[WorkflowResult]:
        if self.workflow_runner is None or not utterance:
            return None
        try:
            return await self.workflow_runner.run(
                WorkflowRunContext(
                    utterance=utterance,
                    now=now,
                    active_integrations=list(job.context.active_integrations),
                    user_id=job.user_id,
                    conversation_id=job.conversation_id,
                    recent_context=list(job.context.conversation_context),
                )
            )
        except Exception as exc:
            log_exception_with_details(
                self.logger,
                "[ChatCompletionHandler] Workflow run failed, continuing without annex",
                exc,
            )
            return None

    async def _save_reply(
        self,
        job: ChatCompletionJob,
        content: str,
        status: MessageStatus,
        started: float,
    ) -> str:
        response_time_ms = int((time.perf_counter() - started) * 1000)
        message_id = await self.store.save_assistant_message(
            job.conversation_id, job.agent_id, content, response_time_ms, status
        )
        self.logger.info(
            "[ChatCompletionHandler] Saved reply %s for conversation %s (status=%s, %sms)",
            message_id,
            job.conversation_id,
            status.value,
            response_time_ms,
        )
        return message_id

    async def _deliver(
        self, job: ChatCompletionJob, message_id: str, status: MessageStatus
    ) -> None:
        """
        Hand a saved reply to the delivery queue. A reply that cannot be queued
        is marked failed in place; no second reply is written.
        """
        try:
            await self.delivery_queue.enqueue_for_sending(
                job.conversation_id, message_id, job.agent_id, job.recipient_id
            )
        except Exception as exc:
            log_exception_with_details(
                self.logger,
                f"[ChatCompletionHandler] Could not queue reply {message_id} for delivery",
                exc,
            )
            if status == MessageStatus.FAILED:
                return
            try:
                await self.store.update_message_status(
                    job.conversation_id,
                    message_id,
                    MessageStatus.FAILED,
                    error=format_exception_message(exc),
                )
            except Exception as update_exc:
                log_exception_with_details(
                    self.logger,
                    f"[ChatCompletionHandler] Could not mark reply {message_id} as failed",
                    update_exc,
                )

    async def _fail(self, job: ChatCompletionJob, error: Exception, started: float) -> None:
        try:
            await self.store.update_message_status(
                job.conversation_id,
                job.message_id,
                MessageStatus.FAILED,
                error=format_exception_message(error),
            )
        except Exception as exc:
            log_exception_with_details(
                self.logger, "[ChatCompletionHandler] Could not mark message as failed", exc
            )
        try:
            message_id = await self._save_reply(job, GENERIC_APOLOGY, MessageStatus.FAILED, started)
        except Exception as exc:
            log_exception_with_details(
                self.logger, "[ChatCompletionHandler] Could not save apology", exc
            )
            return
        await self._deliver(job, message_id, MessageStatus.FAILED)

    async def _record_usage(self, job: ChatCompletionJob, outcome: ChatOutcome) -> None:
        if self.telemetry is None:
            return
        try:
            await self.telemetry.record_usage(
                job.agent_id, job.user_id, outcome.prompt_tokens, outcome.completion_tokens
            )
        except Exception as exc:
            log_exception_with_details(
                self.logger, "[ChatCompletionHandler] Failed to record usage", exc
            )
