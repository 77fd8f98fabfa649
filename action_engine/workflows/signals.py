"""
Keyword heuristics over the user's utterance and recent assistant turns.

Vocabulary is bilingual (Spanish and English). All helpers expect text that
has already been lower-cased unless noted otherwise.
"""

import re
from functools import lru_cache
from typing import Iterable, Optional, Sequence

from action_engine.conversation.models import TurnMessage

CONFIRMATION_PATTERNS = (
    re.compile(r"^(si|sí|yes|ok|okay|dale|perfecto|correcto|adelante)$", re.IGNORECASE),
    re.compile(r"^(cambiala|modificala|cancela|eliminala)$", re.IGNORECASE),
    re.compile(r"^(change it|modify it|cancel it|delete it|update it)$", re.IGNORECASE),
    re.compile(r"^(👍|👎|✅|❌)$"),
)

CONFIRMATION_TOKENS = (
    "si",
    "sí",
    "yes",
    "ok",
    "okay",
    "dale",
    "perfecto",
    "correcto",
    "adelante",
)
SHORT_CONFIRMATION_MAX_CHARS = 10

RESCHEDULE_VERBS = (
    "cambiar",
    "mover",
    "reagendar",
    "modificar",
    "actualizar",
    "reschedule",
    "change",
    "move",
    "update",
)

RESCHEDULE_CONTEXT_PHRASES = (
    "cambiar",
    "mover",
    "reagendar",
    "modificar",
    "change",
    "reschedule",
    "nueva fecha",
    "nuevo horario",
    "another time",
    "different time",
    "quieres cambiar",
    "te gustaría cambiar",
    "would you like to change",
    "qué día y hora",
    "what day and time",
)
RESCHEDULE_CONTEXT_WINDOW = 3

APPOINTMENT_QUESTION_PHRASES = ("mis citas", "mi cita", "citas tengo", "cita tengo")
APPOINTMENT_TERMS = ("cita", "appointment", "agendar", "schedule", "consulta", "reunión")
SERVICE_TERMS = ("servicio", "service", "ayuda", "help", "información", "information")
URGENCY_TERMS = ("urgente", "emergency", "asap", "ahora", "immediately", "ya")

# Checked in order; the first matching rule names the intent.
INTENT_RULES = (
    (("agendar", "cita"), "schedule_appointment"),
    (("cambiar", "mover"), "reschedule_appointment"),
    (("cancelar", "eliminar"), "cancel_appointment"),
    (("precio", "costo"), "inquiry_pricing"),
    (("servicio", "disponible"), "inquiry_services"),
    (("urgente", "emergency"), "urgent_request"),
)
GENERAL_INTENT = "general_inquiry"
SIMPLE_CONFIRMATION_INTENT = "simple_confirmation"
CONFIRM_RESCHEDULE_INTENT = "confirm_reschedule"


@lru_cache(maxsize=512)
def _word_pattern(term: str) -> "re.Pattern[str]":
    return re.compile(rf"(?<!\w){re.escape(term)}(?!\w)")


def contains_word(text: str, term: str) -> bool:
    """True when ``term`` appears in ``text`` delimited by non-word characters."""
    return bool(_word_pattern(term).search(text))


@lru_cache(maxsize=512)
def _word_start_pattern(term: str) -> "re.Pattern[str]":
    return re.compile(rf"(?<!\w){re.escape(term)}")


def starts_word(text: str, term: str) -> bool:
    """True when a word in ``text`` begins with ``term`` ("cambiarla" for "cambiar")."""
    return bool(_word_start_pattern(term).search(text))


def contains_any(text: str, terms: Iterable[str]) -> bool:
    return any(term in text for term in terms)


def contains_any_word(text: str, terms: Iterable[str]) -> bool:
    return any(contains_word(text, term) for term in terms)


def is_simple_confirmation(utterance: str) -> bool:
    text = (utterance or "").strip()
    return any(pattern.match(text) for pattern in CONFIRMATION_PATTERNS)


def is_short_confirmation(text: str) -> bool:
    text = text.strip()
    if not text or len(text) > SHORT_CONFIRMATION_MAX_CHARS:
        return False
    return contains_any_word(text, CONFIRMATION_TOKENS)


def mentions_reschedule(text: str) -> bool:
    return any(starts_word(text, verb) for verb in RESCHEDULE_VERBS)


def has_appointment_context(text: str) -> bool:
    return contains_any(text, APPOINTMENT_TERMS)


def has_service_context(text: str) -> bool:
    return contains_any(text, SERVICE_TERMS)


def detect_urgency(text: str) -> bool:
    return contains_any_word(text.lower(), URGENCY_TERMS)


def has_specific_context(text: str) -> bool:
    return has_appointment_context(text) or has_service_context(text) or detect_urgency(text)


def asks_about_appointments(text: str) -> bool:
    return contains_any(text, APPOINTMENT_QUESTION_PHRASES)


def recent_assistant_turns(
    recent_context: Optional[Sequence[TurnMessage]],
    window: int = RESCHEDULE_CONTEXT_WINDOW,
) -> list:
    turns = [turn for turn in recent_context or [] if turn.is_assistant]
    return turns[-window:] if window > 0 else []


def has_recent_reschedule_context(recent_context: Optional[Sequence[TurnMessage]]) -> bool:
    """True when one of the last assistant turns talks about moving an appointment."""
    for turn in recent_assistant_turns(recent_context):
        content = (turn.content or "").lower()
        if contains_any(content, RESCHEDULE_CONTEXT_PHRASES):
            return True
    return False


def extract_user_intent(utterance: str) -> str:
    text = (utterance or "").lower()
    for keywords, intent in INTENT_RULES:
        if contains_any(text, keywords):
            return intent
    return GENERAL_INTENT
