import logging
from typing import Optional, Sequence

from opentelemetry import trace

from action_engine.conversation.models import TurnMessage
from action_engine.vars import LOGGER_NAME, WORKFLOW_MATCH_THRESHOLD
from action_engine.workflows.catalog import RESCHEDULE_WORKFLOW_NAME
from action_engine.workflows.models import (
    MatchOutcome,
    WorkflowCategory,
    WorkflowDefinition,
)
from action_engine.workflows.repository import WorkflowRepository
from action_engine.workflows import signals

logger = logging.getLogger(LOGGER_NAME)
tracer = trace.get_tracer(__name__)

MULTI_WORD_BONUS = 0.5
WORD_BOUNDARY_BONUS = 0.3
APPOINTMENT_CATEGORY_BONUS = 20
SERVICE_CATEGORY_BONUS = 15
VIP_URGENCY_BONUS = 50
GENERIC_NAME_MALUS = 10

EXPLICIT_RESCHEDULE_SCORE = 1000
CONFIRMED_RESCHEDULE_SCORE = 800
APPOINTMENT_QUESTION_SCORE = 200


class WorkflowMatcher:
    """
    Pick at most one workflow for an utterance.

    Generic workflows are scored by trigger keywords weighted by priority. The
    reschedule workflow ignores triggers and is scored by its own rules so
    that explicit reschedule requests and confirmations of a reschedule offer
    win decisively.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        threshold: float = WORKFLOW_MATCH_THRESHOLD,
        reschedule_workflow_name: str = RESCHEDULE_WORKFLOW_NAME,
    ):
        self.repository = repository
        self.threshold = threshold
        self.reschedule_workflow_name = reschedule_workflow_name

    def match(
        self, utterance: str, recent_context: Optional[Sequence[TurnMessage]] = None
    ) -> Optional[WorkflowDefinition]:
        return self.evaluate(utterance, recent_context).workflow

    def evaluate(
        self, utterance: str, recent_context: Optional[Sequence[TurnMessage]] = None
    ) -> MatchOutcome:
        text = (utterance or "").lower().strip()
        with tracer.start_as_current_span("workflow.match") as span:
            if signals.is_simple_confirmation(text):
                outcome = self._match_confirmation(text, recent_context)
            else:
                outcome = self._match_scored(text, recent_context)
            span.set_attribute("workflow.name", outcome.workflow.name if outcome.workflow else "")
            span.set_attribute("workflow.score", outcome.score)
            span.set_attribute("workflow.intent", outcome.user_intent)
            return outcome

    def score(
        self,
        text: str,
        workflow: WorkflowDefinition,
        recent_context: Optional[Sequence[TurnMessage]] = None,
    ) -> float:
        text = (text or "").lower().strip()
        if workflow.name == self.reschedule_workflow_name:
            return self._reschedule_score(text, recent_context)
        return self._generic_score(text, workflow)

    def _match_confirmation(
        self, text: str, recent_context: Optional[Sequence[TurnMessage]]
    ) -> MatchOutcome:
        if signals.has_recent_reschedule_context(recent_context):
            workflow = self.repository.get(self.reschedule_workflow_name)
            if workflow is not None:
                logger.info(
                    "[WorkflowMatcher] Confirmation '%s' follows a reschedule offer, "
                    "selecting %s",
                    text,
                    workflow.name,
                )
                return MatchOutcome(
                    workflow=workflow,
                    score=self._reschedule_score(text, recent_context),
                    user_intent=signals.CONFIRM_RESCHEDULE_INTENT,
                )
        logger.info("[WorkflowMatcher] Simple confirmation '%s', no workflow", text)
        return MatchOutcome(
            workflow=None,
            score=0.0,
            user_intent=signals.SIMPLE_CONFIRMATION_INTENT,
        )

    def _match_scored(
        self, text: str, recent_context: Optional[Sequence[TurnMessage]]
    ) -> MatchOutcome:
        best: Optional[WorkflowDefinition] = None
        best_score = 0.0
        for workflow in self.repository:
            workflow_score = self.score(text, workflow, recent_context)
            logger.debug(
                "[WorkflowMatcher] Workflow '%s': score=%s", workflow.name, workflow_score
            )
            if workflow_score > best_score:
                best, best_score = workflow, workflow_score

        intent = signals.extract_user_intent(text)
        if best is None or best_score <= self.threshold:
            return MatchOutcome(workflow=None, score=best_score, user_intent=intent)
        logger.info(
            "[WorkflowMatcher] Selected '%s' (%s) with score %s",
            best.name,
            best.category.value,
            best_score,
        )
        return MatchOutcome(workflow=best, score=best_score, user_intent=intent)

    def _trigger_score(self, text: str, workflow: WorkflowDefinition) -> float:
        score = 0.0
        for trigger in workflow.triggers:
            if trigger not in text:
                continue
            increment = len(trigger) * workflow.priority
            score += increment
            if " " in trigger:
                score += increment * MULTI_WORD_BONUS
            if signals.contains_word(text, trigger):
                score += increment * WORD_BOUNDARY_BONUS
        return score

    def _generic_score(self, text: str, workflow: WorkflowDefinition) -> float:
        score = self._trigger_score(text, workflow)
        if score <= 0:
            return 0.0

        if (
            workflow.category == WorkflowCategory.APPOINTMENTS
            and signals.has_appointment_context(text)
        ):
            score += APPOINTMENT_CATEGORY_BONUS
        if (
            workflow.category == WorkflowCategory.CUSTOMER_SERVICE
            and signals.has_service_context(text)
        ):
            score += SERVICE_CATEGORY_BONUS
        name = workflow.name.lower()
        if "vip" in name and signals.detect_urgency(text):
            score += VIP_URGENCY_BONUS
        if "general" in name and signals.has_specific_context(text):
            score -= GENERIC_NAME_MALUS
        return score

    def _reschedule_score(
        self, text: str, recent_context: Optional[Sequence[TurnMessage]]
    ) -> float:
        score = 0.0
        if signals.mentions_reschedule(text):
            score += EXPLICIT_RESCHEDULE_SCORE
        if signals.is_short_confirmation(text) and signals.has_recent_reschedule_context(
            recent_context
        ):
            score += CONFIRMED_RESCHEDULE_SCORE
        if signals.asks_about_appointments(text):
            score += APPOINTMENT_QUESTION_SCORE
        return score
