import pytest

from action_engine.conversation.models import TurnMessage
from action_engine.workflows.catalog import RESCHEDULE_WORKFLOW_NAME
from action_engine.workflows.matcher import WorkflowMatcher
from action_engine.workflows.models import WorkflowCategory, WorkflowDefinition
from action_engine.workflows.repository import WorkflowRepository


@pytest.fixture
def matcher():
    return WorkflowMatcher(WorkflowRepository.default())


def _assistant(content: str) -> TurnMessage:
    return TurnMessage(role="assistant", content=content)


RESCHEDULE_OFFER = [
    TurnMessage(role="user", content="tengo una cita el lunes"),
    _assistant("I found your appointment on Monday. Would you like to change it?"),
]


class TestNoMatch:
    @pytest.mark.parametrize(
        "utterance", ["hola buenas tardes", "gracias por todo", "", "xyz"]
    )
    def test_zero_triggers_yields_no_workflow(self, matcher, utterance):
        outcome = matcher.evaluate(utterance)
        assert outcome.workflow is None
        assert outcome.user_intent != "simple_confirmation"

    def test_confirmation_words_do_not_match_inside_other_words(self, matcher):
        # "si" and "ok" are reschedule triggers but must not score inside words
        assert matcher.match("me gusta el sushi en tokio") is None


class TestConfirmationShortCircuit:
    @pytest.mark.parametrize("token", ["sí", "ok", "👍"])
    def test_bare_confirmation_without_context(self, matcher, token):
        outcome = matcher.evaluate(token, [_assistant("Here are our opening hours.")])
        assert outcome.workflow is None
        assert outcome.user_intent == "simple_confirmation"

    def test_confirmation_after_reschedule_offer(self, matcher):
        outcome = matcher.evaluate("sí", RESCHEDULE_OFFER)
        assert outcome.workflow.name == RESCHEDULE_WORKFLOW_NAME
        assert outcome.user_intent == "confirm_reschedule"
        assert outcome.score >= 800

    def test_offer_outside_window_is_ignored(self, matcher):
        context = [_assistant("Would you like to change your appointment?")] + [
            _assistant(f"Message {i}") for i in range(3)
        ]
        assert matcher.evaluate("ok", context).user_intent == "simple_confirmation"


class TestRescheduleOverride:
    def test_explicit_reschedule_request(self, matcher):
        outcome = matcher.evaluate("quiero cambiar mi cita")
        assert outcome.workflow.name == RESCHEDULE_WORKFLOW_NAME
        assert outcome.score >= 1000

    def test_scores(self, matcher):
        reschedule = matcher.repository.get(RESCHEDULE_WORKFLOW_NAME)
        assert matcher.score("can I reschedule?", reschedule) == 1000
        assert matcher.score("¿qué citas tengo?", reschedule) == 200
        assert matcher.score("ok gracias", reschedule, RESCHEDULE_OFFER) == 800
        assert matcher.score("ok gracias", reschedule) == 0
        assert matcher.score("cambiar mi cita", reschedule) == 1200

    def test_short_confirmation_with_context_beats_generic(self, matcher):
        outcome = matcher.evaluate("ok, cita", RESCHEDULE_OFFER)
        assert outcome.workflow.name == RESCHEDULE_WORKFLOW_NAME


class TestGenericScoring:
    def test_appointment_request(self, matcher):
        outcome = matcher.evaluate("quiero agendar una cita")
        assert outcome.workflow.name == "intelligent_appointment_management"
        assert outcome.user_intent == "schedule_appointment"

    def test_trigger_weighting(self, matcher):
        workflow = WorkflowDefinition(
            name="demo",
            triggers=("horario", "nuevo horario"),
            priority=10,
            steps=(),
            category=WorkflowCategory.SALES,
        )
        # "horario": 7*10 = 70, +30% word boundary = 91
        assert matcher.score("horario", workflow) == pytest.approx(91.0)
        # both triggers: 91 + (130 * 1.5) + (130 * 0.3)
        assert matcher.score("nuevo horario", workflow) == pytest.approx(91.0 + 195.0 + 39.0)
        # substring without word boundary gets no boundary bonus
        assert matcher.score("horarios", workflow) == pytest.approx(70.0)

    def test_urgency_picks_vip_flow(self, matcher):
        outcome = matcher.evaluate("es urgente, necesito atención")
        assert outcome.workflow.name == "vip_customer_flow"

    def test_general_malus(self, matcher):
        general = matcher.repository.get("general_support_inquiry")
        # "help": 4*5 = 20 + 6 boundary, minus 10 for specific context
        assert matcher.score("help", general) == pytest.approx(16.0)
        # "support" is not a service term, so no malus
        assert matcher.score("support", general) == pytest.approx(35 + 10.5)

    def test_threshold_is_exclusive(self):
        workflow = WorkflowDefinition(
            name="tiny",
            triggers=("ab",),
            priority=5,
            steps=(),
            category=WorkflowCategory.SALES,
        )
        matcher = WorkflowMatcher(WorkflowRepository([workflow]), threshold=13.0)
        # "ab" contained in a word: 2*5 = 10, no boundary bonus
        assert matcher.evaluate("abc").workflow is None
        # as a word: 10 + 3 = 13, equal to the threshold
        assert matcher.evaluate("ab").workflow is None
        assert WorkflowMatcher(WorkflowRepository([workflow]), threshold=12.9).match("ab") is workflow
