import pytest

from action_engine.conversation.models import TurnMessage
from action_engine.workflows import signals


def _assistant(content: str) -> TurnMessage:
    return TurnMessage(role="assistant", content=content)


def _user(content: str) -> TurnMessage:
    return TurnMessage(role="user", content=content)


@pytest.mark.parametrize("utterance", ["sí", "Ok", "dale", "👍", "change it", " yes "])
def test_simple_confirmation_patterns(utterance):
    assert signals.is_simple_confirmation(utterance)


@pytest.mark.parametrize("utterance", ["sí por favor", "okey dokey", "si quiero una cita", ""])
def test_not_simple_confirmation(utterance):
    assert not signals.is_simple_confirmation(utterance)


def test_short_confirmation_needs_whole_token():
    assert signals.is_short_confirmation("ok gracias")
    assert signals.is_short_confirmation("sí")
    assert not signals.is_short_confirmation("silla")
    assert not signals.is_short_confirmation("ok, pero mañana mejor")


def test_reschedule_verbs_match_word_starts():
    assert signals.mentions_reschedule("quiero cambiarla para el lunes")
    assert signals.mentions_reschedule("can we move it?")
    assert not signals.mentions_reschedule("please remove me from the list")
    assert not signals.mentions_reschedule("hola, buenos días")


def test_urgency_uses_whole_words():
    assert signals.detect_urgency("Es URGENTE")
    assert signals.detect_urgency("lo necesito ya")
    assert not signals.detect_urgency("ayer fui")


def test_recent_reschedule_context_only_reads_last_three_assistant_turns():
    old_offer = _assistant("Would you like to change your appointment?")
    context = [
        old_offer,
        _assistant("Anything else?"),
        _user("quiero cambiar"),
        _assistant("Here are our services."),
        _assistant("Thanks for writing."),
    ]
    assert not signals.has_recent_reschedule_context(context)

    context.append(_assistant("¿Te gustaría cambiar tu cita al martes?"))
    assert signals.has_recent_reschedule_context(context)


def test_user_turns_do_not_count_as_reschedule_context():
    assert not signals.has_recent_reschedule_context([_user("quiero cambiar mi cita")])
    assert not signals.has_recent_reschedule_context(None)


@pytest.mark.parametrize(
    "utterance, intent",
    [
        ("Quiero agendar una cita", "schedule_appointment"),
        ("necesito mover la reunión", "reschedule_appointment"),
        ("quiero cancelar", "cancel_appointment"),
        ("¿cuál es el precio?", "inquiry_pricing"),
        ("¿qué servicio tienen?", "inquiry_services"),
        ("es urgente", "urgent_request"),
        ("hola", "general_inquiry"),
    ],
)
def test_extract_user_intent(utterance, intent):
    assert signals.extract_user_intent(utterance) == intent
