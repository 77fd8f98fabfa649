"""
Function schemas offered to the model, keyed by registry tool name.

Only tools whose integration is active for the agent are offered.
"""

from typing import Any, Dict, Iterable, List

from action_engine.integrations.models import IntegrationInfo
from action_engine.integrations.tool_registry import ToolName, is_tool_available
from action_engine.llm.models import FunctionDefinition, Tool


def _object(properties: Dict[str, Any], required: Iterable[str] = ()) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    required = list(required)
    if required:
        schema["required"] = required
    return schema


_STRING = {"type": "string"}
_EVENT_ID = {
    "type": "string",
    "description": "Exact event id as returned by getMyBookedCalendarEvents. Never a placeholder.",
}
_DATETIME = {"type": "string", "description": "ISO 8601 date-time with offset"}

TOOL_SCHEMAS: Dict[ToolName, FunctionDefinition] = {
    ToolName.GET_MY_BOOKED_CALENDAR_EVENTS: FunctionDefinition(
        name=ToolName.GET_MY_BOOKED_CALENDAR_EVENTS.value,
        description="List the appointments the current user has booked.",
        parameters=_object({"timeMin": _DATETIME, "timeMax": _DATETIME}),
    ),
    ToolName.GET_GOOGLE_CALENDAR_EVENTS: FunctionDefinition(
        name=ToolName.GET_GOOGLE_CALENDAR_EVENTS.value,
        description="List calendar events in a time range to check availability.",
        parameters=_object(
            {"timeMin": _DATETIME, "timeMax": _DATETIME, "maxResults": {"type": "integer"}}
        ),
    ),
    ToolName.CREATE_GOOGLE_CALENDAR_EVENT: FunctionDefinition(
        name=ToolName.CREATE_GOOGLE_CALENDAR_EVENT.value,
        description="Book a new appointment. Requires the user's name and email.",
        parameters=_object(
            {
                "summary": _STRING,
                "description": _STRING,
                "start": _DATETIME,
                "end": _DATETIME,
                "userName": _STRING,
                "userEmail": _STRING,
            },
            required=("summary", "start", "end", "userName", "userEmail"),
        ),
    ),
    ToolName.UPDATE_GOOGLE_CALENDAR_EVENT: FunctionDefinition(
        name=ToolName.UPDATE_GOOGLE_CALENDAR_EVENT.value,
        description="Move or edit an existing appointment.",
        parameters=_object(
            {"eventId": _EVENT_ID, "start": _DATETIME, "end": _DATETIME, "summary": _STRING},
            required=("eventId",),
        ),
    ),
    ToolName.DELETE_GOOGLE_CALENDAR_EVENT: FunctionDefinition(
        name=ToolName.DELETE_GOOGLE_CALENDAR_EVENT.value,
        description="Cancel an existing appointment.",
        parameters=_object({"eventId": _EVENT_ID, "reason": _STRING}, required=("eventId",)),
    ),
    ToolName.SEND_WHATSAPP_TEXT_MESSAGE: FunctionDefinition(
        name=ToolName.SEND_WHATSAPP_TEXT_MESSAGE.value,
        description="Send a WhatsApp text message.",
        parameters=_object({"to": _STRING, "message": _STRING}, required=("to", "message")),
    ),
    ToolName.SEND_WHATSAPP_TEMPLATE_MESSAGE: FunctionDefinition(
        name=ToolName.SEND_WHATSAPP_TEMPLATE_MESSAGE.value,
        description="Send an approved WhatsApp template message.",
        parameters=_object(
            {
                "to": _STRING,
                "templateName": _STRING,
                "languageCode": _STRING,
                "components": {"type": "array", "items": {"type": "object"}},
            },
            required=("to", "templateName"),
        ),
    ),
    ToolName.GET_OUTLOOK_CALENDAR_EVENTS: FunctionDefinition(
        name=ToolName.GET_OUTLOOK_CALENDAR_EVENTS.value,
        description="List Outlook calendar events in a time range.",
        parameters=_object({"startDateTime": _DATETIME, "endDateTime": _DATETIME}),
    ),
    ToolName.SEND_OUTLOOK_MAIL: FunctionDefinition(
        name=ToolName.SEND_OUTLOOK_MAIL.value,
        description="Send an email through Outlook.",
        parameters=_object(
            {"to": _STRING, "subject": _STRING, "body": _STRING},
            required=("to", "subject", "body"),
        ),
    ),
    ToolName.QUERY_ERP_DATA: FunctionDefinition(
        name=ToolName.QUERY_ERP_DATA.value,
        description="Query records from the connected ERP (stock, orders, prices).",
        parameters=_object(
            {"entity": _STRING, "filters": {"type": "object"}, "limit": {"type": "integer"}},
            required=("entity",),
        ),
    ),
}


def tools_for_integrations(active_integrations: Iterable[IntegrationInfo]) -> List[Tool]:
    """Schemas for every catalogued tool that an active integration can serve."""
    integrations = list(active_integrations or [])
    return [
        Tool(function=definition)
        for tool_name, definition in TOOL_SCHEMAS.items()
        if is_tool_available(tool_name, integrations)
    ]
