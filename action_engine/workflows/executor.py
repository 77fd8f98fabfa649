import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from opentelemetry import trace

from action_engine.conversation.models import TurnMessage
from action_engine.integrations.dispatcher import ActionDispatcher
from action_engine.integrations.models import IntegrationInfo
from action_engine.utils.exception_logging import format_exception_message
from action_engine.vars import LOGGER_NAME, STEP_RETRY_BACKOFF_SECONDS
from action_engine.workflows.conditions import EvaluationContext, evaluate_condition
from action_engine.workflows.context_builder import WorkflowContextBuilder
from action_engine.workflows.instructions import InstructionBuilder
from action_engine.workflows.models import (
    StepResult,
    UserProfile,
    WorkflowDefinition,
    WorkflowResult,
    WorkflowStep,
)
from action_engine.workflows.signals import extract_user_intent

logger = logging.getLogger(LOGGER_NAME)
tracer = trace.get_tracer(__name__)

SleepFn = Callable[[float], Awaitable[Any]]
UNKNOWN_STEP_ERROR = "Unknown error"


@dataclass
class WorkflowRunContext:
    """Everything a workflow run reads about the current turn."""

    utterance: str
    now: datetime
    active_integrations: List[IntegrationInfo] = field(default_factory=list)
    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
    recent_context: List[TurnMessage] = field(default_factory=list)


class StepExecutor:
    """
    Run a workflow's steps in order against the action dispatcher.

    Steps are strictly sequential: a step's precondition may read the results
    of any step before it. A failing step, required or not, is recorded and
    narrated and the run moves on to the next step.
    """

    def __init__(
        self,
        dispatcher: ActionDispatcher,
        context_builder: Optional[WorkflowContextBuilder] = None,
        instruction_builder: Optional[InstructionBuilder] = None,
        sleep: SleepFn = asyncio.sleep,
        backoff_seconds: float = STEP_RETRY_BACKOFF_SECONDS,
    ):
        self.dispatcher = dispatcher
        self.context_builder = context_builder or WorkflowContextBuilder()
        self.instruction_builder = instruction_builder or InstructionBuilder()
        self._sleep = sleep
        self.backoff_seconds = backoff_seconds

    async def run(
        self,
        workflow: WorkflowDefinition,
        context: WorkflowRunContext,
        profile: Optional[UserProfile] = None,
    ) -> WorkflowResult:
        results: List[StepResult] = []
        with tracer.start_as_current_span("workflow.run_steps") as span:
            span.set_attribute("workflow.name", workflow.name)
            for step in workflow.steps:
                if step.conditional and not evaluate_condition(
                    step.conditional,
                    EvaluationContext(
                        prior_results=tuple(results),
                        profile=profile,
                        utterance=context.utterance,
                        now=context.now,
                    ),
                ):
                    logger.info(
                        "[StepExecutor] Skipping '%s': condition '%s' not met",
                        step.tool_name,
                        step.conditional,
                    )
                    continue

                result = await self.execute_step(step, context)
                results.append(result)
                if not result.success and step.required:
                    logger.warning(
                        "[StepExecutor] Required step '%s' failed, continuing: %s",
                        step.tool_name,
                        result.error,
                    )
            span.set_attribute("workflow.steps_run", len(results))

        enhanced_context = self.context_builder.build(
            workflow, results, profile, context.now
        ) + self.instruction_builder.build(
            workflow, results, context.utterance, profile, context.now
        )
        return WorkflowResult(
            workflow_executed=True,
            workflow_name=workflow.name,
            category=workflow.category,
            results=results,
            enhanced_context=enhanced_context,
            user_intent=extract_user_intent(context.utterance),
        )

    async def execute_step(
        self, step: WorkflowStep, context: WorkflowRunContext
    ) -> StepResult:
        """Execute one step, retrying with linear backoff when configured."""
        max_retries = step.effective_max_retries
        parameters = self.step_parameters(step, context.now)
        last_error: Optional[str] = None

        for attempt in range(max_retries + 1):
            if attempt > 0:
                logger.info(
                    "[StepExecutor] Retry %s/%s for step '%s'",
                    attempt,
                    max_retries,
                    step.tool_name,
                )
                await self._sleep(self.backoff_seconds * attempt)
            try:
                outcome = await self.dispatcher.dispatch(
                    step.tool_name,
                    dict(parameters),
                    context.active_integrations,
                    action=step.action,
                    caller_id=context.user_id,
                    conversation_id=context.conversation_id,
                )
            except Exception as exc:
                last_error = format_exception_message(exc)
                logger.error(
                    "[StepExecutor] Step '%s' raised on attempt %s: %s",
                    step.tool_name,
                    attempt + 1,
                    last_error,
                )
                continue

            if outcome.success:
                return StepResult(
                    step_name=step.tool_name,
                    success=True,
                    result=outcome.result,
                    retry_attempts=attempt,
                )
            last_error = outcome.error

        return StepResult(
            step_name=step.tool_name,
            success=False,
            error=last_error or UNKNOWN_STEP_ERROR,
            retry_attempts=max_retries,
        )

    @staticmethod
    def step_parameters(step: WorkflowStep, now: datetime) -> Dict[str, Any]:
        parameters = dict(step.parameters)
        if step.lookahead_days:
            parameters.setdefault("timeMin", now.isoformat())
            parameters.setdefault(
                "timeMax", (now + timedelta(days=step.lookahead_days)).isoformat()
            )
        return parameters
