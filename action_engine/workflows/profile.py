import logging
from datetime import datetime
from typing import Iterable

from action_engine.conversation.collaborators import ConversationStore
from action_engine.conversation.models import TurnMessage
from action_engine.utils.exception_logging import log_exception_with_details
from action_engine.vars import LOGGER_NAME
from action_engine.workflows.models import UserProfile

logger = logging.getLogger(LOGGER_NAME)

APPOINTMENT_MENTION_TERMS = ("cita", "appointment")
PREMIUM_APPOINTMENT_THRESHOLD = 5
SPANISH_KEYWORDS = ("que", "como", "cuando", "donde", "cita", "hola")
ENGLISH_KEYWORDS = ("what", "how", "when", "where", "appointment", "hello")


def count_appointment_mentions(messages: Iterable[TurnMessage]) -> int:
    count = 0
    for message in messages:
        content = (message.content or "").lower()
        if any(term in content for term in APPOINTMENT_MENTION_TERMS):
            count += 1
    return count


def detect_language_preference(messages: Iterable[TurnMessage]) -> str:
    spanish = english = 0
    for message in messages:
        content = (message.content or "").lower()
        spanish += sum(1 for keyword in SPANISH_KEYWORDS if keyword in content)
        english += sum(1 for keyword in ENGLISH_KEYWORDS if keyword in content)
    return "es" if spanish >= english else "en"


class UserProfileBuilder:
    """Derive a ``UserProfile`` from the user's stored messages."""

    def __init__(self, store: ConversationStore):
        self.store = store

    async def build(self, user_id: str, conversation_id: str, now: datetime) -> UserProfile:
        try:
            user_messages = await self.store.list_user_messages(user_id)
            conversation = await self.store.list_conversation_messages(conversation_id)
        except Exception as exc:
            log_exception_with_details(
                logger, "[UserProfileBuilder] Could not load user history", exc
            )
            return UserProfile.default(now)

        history = count_appointment_mentions(user_messages)
        profile = UserProfile(
            is_existing_client=history > 0,
            is_premium_user=history > PREMIUM_APPOINTMENT_THRESHOLD,
            appointment_history=history,
            preferred_language=detect_language_preference(conversation),
            last_activity=now,
        )
        logger.info(
            "[UserProfileBuilder] user=%s existing=%s premium=%s history=%s",
            user_id,
            profile.is_existing_client,
            profile.is_premium_user,
            profile.appointment_history,
        )
        return profile
