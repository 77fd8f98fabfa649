"""
Render step results as the context annex handed to the language model.

The output is deterministic for a given workflow, result list, profile and
clock, so re-running a workflow with the same inputs yields the same text.
"""

import json
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from action_engine.integrations.tool_registry import ToolName
from action_engine.utils import truncate_text
from action_engine.vars import BUSINESS_TIMEZONE
from action_engine.workflows.events import (
    active_events,
    event_moment,
    event_title,
    format_moment,
)
from action_engine.workflows.models import StepResult, UserProfile, WorkflowDefinition

GENERIC_RESULT_CHAR_LIMIT = 600


def _compact_json(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), sort_keys=True, default=str)
    except (TypeError, ValueError):
        return str(value)


def _items(result: Any, key: str) -> List[Any]:
    if isinstance(result, dict) and isinstance(result.get(key), list):
        return result[key]
    if isinstance(result, list):
        return result
    return []


class WorkflowContextBuilder:
    def __init__(self, tz_name: str = BUSINESS_TIMEZONE):
        self.tz_name = tz_name
        self._formatters: Dict[str, Callable[[Any, datetime], str]] = {
            ToolName.GET_MY_BOOKED_CALENDAR_EVENTS.value: self._booked_events_block,
            ToolName.GET_AVAILABLE_SLOTS.value: self._slots_block,
            ToolName.GET_EMERGENCY_SLOTS.value: self._slots_block,
            ToolName.CHECK_CURRENT_BUSINESS_HOURS.value: self._business_hours_block,
            ToolName.GET_AVAILABLE_SERVICES.value: self._services_block,
        }

    def build(
        self,
        workflow: WorkflowDefinition,
        results: List[StepResult],
        profile: Optional[UserProfile],
        now: datetime,
    ) -> str:
        parts = [self.header(workflow)]
        if profile is not None:
            parts.append(self.profile_section(profile))
        for result in results:
            parts.append(self.step_block(result, now))
        return "".join(parts)

    def header(self, workflow: WorkflowDefinition) -> str:
        return f"\n\n### 🤖 WORKFLOW: {workflow.name} ({workflow.category.value})\n"

    def profile_section(self, profile: UserProfile) -> str:
        lines = ["### 👤 USER PROFILE:"]
        if profile.is_existing_client:
            lines.append(
                f"- ✅ **EXISTING CLIENT**: {profile.appointment_history} previous appointment(s)"
            )
        else:
            lines.append("- 🆕 **NEW CLIENT**: first interaction")
        if profile.is_premium_user:
            lines.append("- 💎 **PREMIUM USER**: eligible for VIP services")
        lines.append(f"- 🌐 **LANGUAGE**: {profile.preferred_language}")
        return "\n".join(lines) + "\n\n"

    def step_block(self, result: StepResult, now: datetime) -> str:
        if not result.success:
            return f"❌ Error in {result.step_name}: {result.error}\n"
        formatter = self._formatters.get(result.step_name)
        if formatter is not None:
            return formatter(result.result, now)
        return (
            f"✅ **{result.step_name}**: "
            f"{truncate_text(_compact_json(result.result), GENERIC_RESULT_CHAR_LIMIT)}\n"
        )

    def _booked_events_block(self, result: Any, now: datetime) -> str:
        events = [e for e in _items(result, "events") if isinstance(e, dict)]
        if not events:
            return "🆕 **NEW CLIENT**: no appointment history\n"

        active = active_events(events, now, self.tz_name)
        text = f"📅 **ACTIVE APPOINTMENTS**: {len(active)} active appointment(s)\n"
        if not active:
            return text

        text += "\n### 📋 EXISTING APPOINTMENTS:\n"
        for index, event in enumerate(active, start=1):
            event_id = event.get("id")
            text += f'{index}. **"{event_title(event)}"**\n'
            start = event_moment(event, "start", self.tz_name)
            if start is not None:
                text += f"   - 🕐 Date/Time: {format_moment(start)}\n"
            text += f'   - 🔑 **CRITICAL_EVENT_ID_FOR_UPDATE**: "{event_id}"\n'
            text += f'   - 🚨 **USE_THIS_EXACT_ID**: "{event_id}"\n'
            if event.get("location"):
                text += f"   - 📍 Location: {event['location']}\n"
            text += "\n"

        if len(active) == 1:
            event_id = active[0].get("id")
            text += "\n🚨🚨🚨 CRITICAL INSTRUCTION 🚨🚨🚨\n"
            text += "IF THE USER WANTS TO UPDATE OR DELETE THIS APPOINTMENT:\n"
            text += f'COPY THIS EXACT eventId: "{event_id}"\n'
            text += 'DO NOT USE: "10", "1", "event-id", or any other value\n'
            text += f'ONLY USE: "{event_id}"\n'
            text += "🚨🚨🚨 END CRITICAL INSTRUCTION 🚨🚨🚨\n\n"
        return text

    def _slots_block(self, result: Any, now: datetime) -> str:
        slots = _items(result, "slots")
        if not slots:
            return "⏳ **AVAILABILITY**: no open slots found\n"
        text = f"🗓️ **AVAILABLE SLOTS**: {len(slots)} option(s)\n"
        for index, slot in enumerate(slots, start=1):
            if isinstance(slot, dict):
                start = event_moment(slot, "start", self.tz_name)
                label = format_moment(start) if start else _compact_json(slot)
            else:
                label = str(slot)
            text += f"{index}. {label}\n"
        return text + "\n"

    def _business_hours_block(self, result: Any, now: datetime) -> str:
        if isinstance(result, dict) and "isOpen" in result:
            state = "OPEN" if result.get("isOpen") else "CLOSED"
            text = f"🏢 **BUSINESS STATUS**: {state}\n"
            if result.get("hours"):
                text += f"   - Hours: {result['hours']}\n"
            return text
        return f"🏢 **BUSINESS STATUS**: {truncate_text(_compact_json(result), GENERIC_RESULT_CHAR_LIMIT)}\n"

    def _services_block(self, result: Any, now: datetime) -> str:
        services = _items(result, "services")
        if not services:
            return "🧾 **SERVICES**: no active services listed\n"
        text = f"🧾 **SERVICES**: {len(services)} active service(s)\n"
        for service in services:
            if isinstance(service, dict):
                line = str(service.get("name") or service.get("id") or _compact_json(service))
                if service.get("price") is not None:
                    line += f" ({service['price']})"
            else:
                line = str(service)
            text += f"- {line}\n"
        return text + "\n"
