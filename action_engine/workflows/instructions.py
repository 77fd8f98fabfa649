from datetime import datetime
from typing import Any, Dict, List, Optional

from action_engine.integrations.tool_registry import ToolName
from action_engine.vars import BUSINESS_HOURS_END, BUSINESS_HOURS_START, BUSINESS_TIMEZONE
from action_engine.workflows.catalog import RESCHEDULE_WORKFLOW_NAME
from action_engine.workflows.conditions import is_business_hours
from action_engine.workflows.events import active_events, event_moment, event_title, precise_date
from action_engine.workflows.models import (
    StepResult,
    UserProfile,
    WorkflowCategory,
    WorkflowDefinition,
    booked_events,
    find_step_result,
)
from action_engine.workflows.signals import CONFIRMATION_TOKENS, detect_urgency

_BOOKED = ToolName.GET_MY_BOOKED_CALENDAR_EVENTS.value
_UPDATE = ToolName.UPDATE_GOOGLE_CALENDAR_EVENT.value
_CREATE = ToolName.CREATE_GOOGLE_CALENDAR_EVENT.value
_DELETE = ToolName.DELETE_GOOGLE_CALENDAR_EVENT.value


class InstructionBuilder:
    """
    Append model-facing instructions conditioned on the workflow category,
    the user profile, the clock and what the steps returned.
    """

    def __init__(
        self,
        tz_name: str = BUSINESS_TIMEZONE,
        business_hours_start: int = BUSINESS_HOURS_START,
        business_hours_end: int = BUSINESS_HOURS_END,
        reschedule_workflow_name: str = RESCHEDULE_WORKFLOW_NAME,
    ):
        self.tz_name = tz_name
        self.business_hours_start = business_hours_start
        self.business_hours_end = business_hours_end
        self.reschedule_workflow_name = reschedule_workflow_name

    def build(
        self,
        workflow: WorkflowDefinition,
        results: List[StepResult],
        utterance: str,
        profile: Optional[UserProfile],
        now: datetime,
    ) -> str:
        text = "\n### 🎯 CONTEXTUAL INSTRUCTIONS:\n"
        if profile is not None:
            text += self.profile_instructions(profile)
        if workflow.name == self.reschedule_workflow_name:
            text += self.reschedule_instructions(results, utterance, now)
        text += self.category_instructions(workflow, results, utterance)

        if not is_business_hours(now, self.business_hours_start, self.business_hours_end):
            text += "- 🌙 **OUTSIDE BUSINESS HOURS**: offer a callback and a slot for tomorrow\n"
            text += "- 📧 **ALTERNATIVES**: collect an email for early follow-up\n"

        emergency = find_step_result(results, ToolName.GET_EMERGENCY_SLOTS.value)
        if emergency and emergency.success and _list_field(emergency.result, "slots"):
            text += "- 🚨 **URGENT SLOTS**: present the immediate options listed above\n"

        text += "\n### ⚡ CRITICAL RULES:\n"
        text += "- 🔒 Everything above is CURRENT and must be the basis of the answer\n"
        text += "- 🧠 Personalize the answer to the detected profile and context\n"
        text += "- 🎯 Adapt tone and options to the workflow category\n"
        text += "- 🚫 NEVER contradict the contextual information obtained\n\n"
        return text

    def profile_instructions(self, profile: UserProfile) -> str:
        text = ""
        if profile.is_premium_user:
            text += "- 💎 **VIP CLIENT**: offer premium services and priority attention\n"
            text += "- 📞 **DIRECT CONTACT**: share the VIP line and direct WhatsApp channel\n"
        if profile.is_existing_client:
            text += "- 🎖️ **LOYAL CLIENT**: thank them for their loyalty and mention benefits\n"
            text += "- 📊 **PERSONALIZATION**: use their history for recommendations\n"
        else:
            text += "- 🆕 **NEW CLIENT**: explain the full process and its advantages\n"
            text += "- 📚 **EDUCATION**: introduce services and policies gradually\n"
        return text

    def category_instructions(
        self, workflow: WorkflowDefinition, results: List[StepResult], utterance: str
    ) -> str:
        if workflow.category == WorkflowCategory.APPOINTMENTS:
            if booked_events(find_step_result(results, _BOOKED)):
                return (
                    "- 🔄 **EXISTING BOOKING**: prefer modifying over creating a new one\n"
                    f"- ⚡ **TOOLS**: use {_UPDATE} for changes\n"
                )
            return (
                "- 📝 **NEW APPOINTMENT**: email and name are mandatory\n"
                f"- ✅ **TOOLS**: use {_CREATE} to book\n"
            )
        if workflow.category == WorkflowCategory.CUSTOMER_SERVICE:
            if detect_urgency(utterance):
                return (
                    "- 🚨 **URGENCY**: prioritize a fast resolution and escalate if needed\n"
                    "- ⚡ **TIME**: offer same-day slots when possible\n"
                )
            return ""
        if workflow.category == WorkflowCategory.SALES:
            return (
                "- 💰 **OPPORTUNITY**: mention available promotions and packages\n"
                "- 🎯 **CONVERSION**: guide the user towards booking after informing\n"
            )
        return ""

    def reschedule_instructions(
        self, results: List[StepResult], utterance: str, now: datetime
    ) -> str:
        text = "\n### 🔄 RESCHEDULING INSTRUCTIONS:\n\n"
        appointments = find_step_result(results, _BOOKED)
        if appointments is None or not appointments.success:
            text += "❌ **TECHNICAL ERROR**: the existing appointments could not be retrieved\n"
            text += "- Tell the user there was a technical problem\n"
            text += "- Do NOT try to use the calendar tools manually\n"
            text += "- Suggest trying again later\n\n"
            return text

        events = active_events(booked_events(appointments), now, self.tz_name)
        if not events:
            text += "ℹ️ **NO ACTIVE APPOINTMENTS**: the user has nothing to reschedule\n"
            text += "**REQUIRED ACTIONS:**\n"
            text += '- Say clearly: "You have no scheduled appointments to change"\n'
            text += "- Ask whether they want to book a NEW appointment\n"
            text += f"- Do NOT use {_UPDATE} or {_DELETE}\n"
            text += f"- For a new appointment ask for email and name, then use {_CREATE}\n\n"
            return text

        text += f"✅ **ACTIVE APPOINTMENTS FOUND**: {len(events)} appointment(s) can be rescheduled\n\n"
        if len(events) == 1:
            text += self._single_event_instructions(events[0])
        else:
            text += self._multiple_event_instructions(events)

        if utterance.lower().strip() in CONFIRMATION_TOKENS:
            text += "**CURRENT CONTEXT: CONFIRMATION DETECTED**\n"
            text += f'- The user said: "{utterance}"\n'
            text += "- Review the conversation to understand WHAT is being confirmed\n"
            text += f"- If it confirms the reschedule, proceed with {_UPDATE}\n\n"

        text += "### ⚠️ ABSOLUTE RESCHEDULING RULES:\n"
        text += "- ✅ ALWAYS use real event ids from the list above\n"
        text += '- ❌ NEVER invent ids such as "existing-event-id"\n'
        text += "- ✅ COMMUNICATE dates exactly as they appear above\n"
        text += "- ❌ Do NOT mix the requested day with the date found\n"
        text += f"- ✅ VALIDATE the new date and time before calling {_UPDATE}\n"
        text += f"- ❌ Do NOT use {_CREATE} to reschedule\n"
        text += "- ✅ Confirm the successful change to the user\n"
        text += "- ❌ Do NOT ask for email or name when rescheduling\n\n"

        if len(events) == 1:
            event_id = events[0].get("id")
            text += f"### 🔒 FINAL CHECK BEFORE CALLING {_UPDATE}:\n"
            text += f'1. Is the eventId you are about to use "{event_id}"? ✅\n'
            text += '2. Is it NOT a bare number such as "10"? ✅\n'
            text += "3. Is it longer than 15 characters? ✅\n"
            text += "**If any answer is NO, STOP and ask the user**\n\n"
        return text

    def _describe(self, event: Dict[str, Any]):
        start = event_moment(event, "start", self.tz_name)
        return precise_date(start) if start else None

    def _single_event_instructions(self, event: Dict[str, Any]) -> str:
        event_id = event.get("id")
        date = self._describe(event)
        text = "**CASE: ONE ACTIVE APPOINTMENT**\n"
        text += f'- **Current appointment**: "{event_title(event)}"\n'
        if date is not None:
            text += f"- **Exact date**: {date.full_date}\n"
            text += f"- **Day of week**: {date.day_name}\n"
            text += f"- **Time**: {date.time}\n"
        text += f"- **Event ID**: `{event_id}`\n\n"

        text += f"### 🚨 CRITICAL - EVENT ID FOR {_UPDATE}:\n"
        text += "**YOU MUST USE EXACTLY THIS EVENT ID:**\n"
        text += f'```\n"{event_id}"\n```\n'
        text += '❌ NEVER use: "10", "1", "existing-event-id", or any other id\n'
        text += f'✅ ALWAYS copy and paste: "{event_id}"\n\n'

        if date is not None:
            text += "**COMMUNICATION PROTOCOL:**\n"
            text += (
                f'1. When describing the appointment say: "You have an appointment on '
                f'{date.day_name} {date.full_date} at {date.time}"\n'
            )
            text += "2. If the user asked for a different weekday, point out the real day "
            text += f"({date.day_name}) and ask whether to change or keep it\n\n"

        text += "**REQUIRED FLOW:**\n"
        text += "1. If the user already gave a new date and time:\n"
        text += "   - Check the business rules (24h+ notice, Mon-Fri business hours)\n"
        text += f'   - 🔑 Call {_UPDATE} with eventId: "{event_id}"\n'
        text += "   - ⚠️ COPY the eventId above exactly, do not change it\n"
        text += f"   - NEVER use {_CREATE} to reschedule\n"
        text += "2. If no new date and time was given:\n"
        text += '   - Ask: "What day and time would you like to move your appointment to?"\n'
        text += f"   - Wait for the answer, then call {_UPDATE}\n\n"
        return text

    def _multiple_event_instructions(self, events: List[Dict[str, Any]]) -> str:
        text = "**CASE: SEVERAL ACTIVE APPOINTMENTS**\n"
        text += f"- The user has {len(events)} appointments that can be rescheduled\n"
        text += "- You MUST ask which one they want to change\n\n"
        text += "**LIST THEM AS:**\n"
        for index, event in enumerate(events, start=1):
            date = self._describe(event)
            when = f" - {date.day_name} {date.full_date} at {date.time}" if date else ""
            text += f'{index}. "{event_title(event)}"{when}\n'
        text += "\n**REQUIRED FLOW:**\n"
        text += '1. Ask: "Which of these appointments would you like to reschedule?"\n'
        text += "2. Once chosen, ask for the new date and time\n"
        text += f"3. Call {_UPDATE} with the matching Event ID\n\n"
        text += "### 🔑 REAL IDS AVAILABLE:\n"
        for index, event in enumerate(events, start=1):
            text += f'{index}. "{event_title(event)}" → Event ID: "{event.get("id")}"\n'
        text += "\n⚠️ USE EXACTLY one of these ids, do NOT invent others\n\n"
        return text


def _list_field(result: Any, key: str) -> list:
    if isinstance(result, dict) and isinstance(result.get(key), list):
        return result[key]
    return []
