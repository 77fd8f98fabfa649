import logging
import time
from typing import Optional

from opentelemetry import trace

from action_engine.conversation.collaborators import TelemetrySink
from action_engine.utils.exception_logging import log_exception_with_details
from action_engine.vars import LOGGER_NAME
from action_engine.workflows.executor import StepExecutor, WorkflowRunContext
from action_engine.workflows.matcher import WorkflowMatcher
from action_engine.workflows.models import WorkflowResult
from action_engine.workflows.profile import UserProfileBuilder
from action_engine.workflows.signals import CONFIRM_RESCHEDULE_INTENT

logger = logging.getLogger(LOGGER_NAME)
tracer = trace.get_tracer(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class WorkflowRunner:
    """
    Match the utterance to a workflow and, when one is selected, run it.

    The returned ``WorkflowResult`` carries the context annex for the
    completion loop. When nothing matches, ``workflow_executed`` is False and
    the annex is empty.
    """

    def __init__(
        self,
        matcher: WorkflowMatcher,
        executor: StepExecutor,
        profile_builder: Optional[UserProfileBuilder] = None,
        telemetry: Optional[TelemetrySink] = None,
    ):
        self.matcher = matcher
        self.executor = executor
        self.profile_builder = profile_builder
        self.telemetry = telemetry

    async def run(self, context: WorkflowRunContext) -> WorkflowResult:
        started = time.perf_counter()
        with tracer.start_as_current_span("workflow.runner") as span:
            outcome = self.matcher.evaluate(context.utterance, context.recent_context)
            span.set_attribute("workflow.intent", outcome.user_intent)
            workflow = outcome.workflow
            if workflow is None:
                return WorkflowResult(
                    workflow_executed=False,
                    execution_time_ms=_elapsed_ms(started),
                    user_intent=outcome.user_intent,
                    score=outcome.score,
                )

            span.set_attribute("workflow.name", workflow.name)
            span.set_attribute("workflow.score", outcome.score)
            is_confirmation = outcome.user_intent == CONFIRM_RESCHEDULE_INTENT

            profile = None
            if workflow.context_aware and not is_confirmation and self.profile_builder:
                profile = await self.profile_builder.build(
                    context.user_id or "", context.conversation_id or "", context.now
                )

            result = await self.executor.run(workflow, context, profile)
            result.user_intent = outcome.user_intent
            result.score = outcome.score
            result.execution_time_ms = _elapsed_ms(started)
            logger.info(
                "[WorkflowRunner] %s finished: %s/%s steps succeeded in %sms",
                workflow.name,
                result.successful_steps,
                result.total_steps,
                result.execution_time_ms,
            )

            if not is_confirmation:
                await self._record(result, context)
            return result

    async def _record(self, result: WorkflowResult, context: WorkflowRunContext) -> None:
        if self.telemetry is None:
            return
        try:
            await self.telemetry.record_workflow_execution(
                result.workflow_name or "",
                context.conversation_id or "",
                result,
                result.execution_time_ms,
            )
        except Exception as exc:
            log_exception_with_details(
                logger, "[WorkflowRunner] Failed to record workflow execution", exc
            )
