"""
Closed registry of the tool names the engine knows how to route.

Every ``ToolName`` is bound to the integration type and provider that serves
it, plus the provider action it runs by default. Adding a tool means adding
an enum member and its binding; unknown names never fall through to a default.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Union

from action_engine.errors import IntegrationUnavailableError, UnmappedToolError
from action_engine.integrations.models import IntegrationInfo, IntegrationType


class ToolName(str, Enum):
    GET_MY_BOOKED_CALENDAR_EVENTS = "getMyBookedCalendarEvents"
    GET_GOOGLE_CALENDAR_EVENTS = "getGoogleCalendarEvents"
    CREATE_GOOGLE_CALENDAR_EVENT = "createGoogleCalendarEvent"
    UPDATE_GOOGLE_CALENDAR_EVENT = "updateGoogleCalendarEvent"
    DELETE_GOOGLE_CALENDAR_EVENT = "deleteGoogleCalendarEvent"
    CHECK_CURRENT_BUSINESS_HOURS = "checkCurrentBusinessHours"
    GET_AVAILABLE_SERVICES = "getAvailableServices"
    GET_AVAILABLE_SLOTS = "getAvailableSlots"
    GET_EMERGENCY_SLOTS = "getEmergencySlots"
    SCHEDULE_CALLBACK = "scheduleCallback"
    SEND_WHATSAPP_TEXT_MESSAGE = "sendWhatsAppTextMessage"
    SEND_WHATSAPP_TEMPLATE_MESSAGE = "sendWhatsAppTemplateMessage"
    NOTIFY_MANAGER = "notifyManager"
    GET_OUTLOOK_CALENDAR_EVENTS = "getOutlookCalendarEvents"
    SEND_OUTLOOK_MAIL = "sendOutlookMail"
    QUERY_ERP_DATA = "queryErpData"
    GET_PERSONALIZED_PRICING = "getPersonalizedPricing"
    CHECK_USER_PROFILE = "checkUserProfile"
    CHECK_VIP_STATUS = "checkVIPStatus"
    ANALYZE_SERVICE_HISTORY = "analyzeServiceHistory"


@dataclass(frozen=True)
class ToolBinding:
    integration_type: IntegrationType
    provider: str
    action: str


_CALENDAR = IntegrationType.CALENDAR
_MESSAGING = IntegrationType.MESSAGING

TOOL_BINDINGS: Mapping[ToolName, ToolBinding] = MappingProxyType(
    {
        ToolName.GET_MY_BOOKED_CALENDAR_EVENTS: ToolBinding(
            _CALENDAR, "google", "getMyBookedEvents"
        ),
        ToolName.GET_GOOGLE_CALENDAR_EVENTS: ToolBinding(_CALENDAR, "google", "getEvents"),
        ToolName.CREATE_GOOGLE_CALENDAR_EVENT: ToolBinding(
            _CALENDAR, "google", "createEvent"
        ),
        ToolName.UPDATE_GOOGLE_CALENDAR_EVENT: ToolBinding(
            _CALENDAR, "google", "updateEvent"
        ),
        ToolName.DELETE_GOOGLE_CALENDAR_EVENT: ToolBinding(
            _CALENDAR, "google", "deleteEvent"
        ),
        ToolName.CHECK_CURRENT_BUSINESS_HOURS: ToolBinding(
            _CALENDAR, "google", "getCurrentBusinessStatus"
        ),
        ToolName.GET_AVAILABLE_SERVICES: ToolBinding(
            _CALENDAR, "google", "listActiveServices"
        ),
        ToolName.GET_AVAILABLE_SLOTS: ToolBinding(
            _CALENDAR, "google", "getNextAvailableSlots"
        ),
        ToolName.GET_EMERGENCY_SLOTS: ToolBinding(
            _CALENDAR, "google", "getEmergencyAvailability"
        ),
        ToolName.SCHEDULE_CALLBACK: ToolBinding(
            _CALENDAR, "google", "scheduleCallbackForTomorrow"
        ),
        ToolName.SEND_WHATSAPP_TEXT_MESSAGE: ToolBinding(
            _MESSAGING, "whatsapp", "sendMessage"
        ),
        ToolName.SEND_WHATSAPP_TEMPLATE_MESSAGE: ToolBinding(
            _MESSAGING, "whatsapp", "sendTemplate"
        ),
        ToolName.NOTIFY_MANAGER: ToolBinding(
            _MESSAGING, "whatsapp", "sendUrgentNotification"
        ),
        ToolName.GET_OUTLOOK_CALENDAR_EVENTS: ToolBinding(
            _CALENDAR, "microsoft", "getEvents"
        ),
        ToolName.SEND_OUTLOOK_MAIL: ToolBinding(
            IntegrationType.EMAIL, "microsoft", "sendMail"
        ),
        ToolName.QUERY_ERP_DATA: ToolBinding(IntegrationType.ERP, "generic", "queryData"),
        ToolName.GET_PERSONALIZED_PRICING: ToolBinding(
            IntegrationType.ERP, "generic", "getCustomPricing"
        ),
        ToolName.CHECK_USER_PROFILE: ToolBinding(
            IntegrationType.CRM, "generic", "getUserProfile"
        ),
        ToolName.CHECK_VIP_STATUS: ToolBinding(
            IntegrationType.CRM, "generic", "verifyVIPStatus"
        ),
        ToolName.ANALYZE_SERVICE_HISTORY: ToolBinding(
            IntegrationType.CRM, "generic", "getServicePreferences"
        ),
    }
)


def resolve_tool_name(name: Union[str, ToolName]) -> ToolName:
    if isinstance(name, ToolName):
        return name
    try:
        return ToolName(name)
    except ValueError:
        raise UnmappedToolError(str(name)) from None


def find_integration(
    binding: ToolBinding, active_integrations: Iterable[IntegrationInfo]
) -> Optional[IntegrationInfo]:
    for integration in active_integrations or []:
        if (
            integration.type == binding.integration_type
            and integration.provider == binding.provider
            and integration.usable
        ):
            return integration
    return None


def resolve_integration(
    name: Union[str, ToolName], active_integrations: Iterable[IntegrationInfo]
) -> tuple[ToolName, ToolBinding, IntegrationInfo]:
    """
    Resolve a tool name to the integration that should serve it.

    Raises:
        UnmappedToolError: the name is not a known tool.
        IntegrationUnavailableError: no usable integration matches the binding.
    """
    tool = resolve_tool_name(name)
    binding = TOOL_BINDINGS[tool]
    integration = find_integration(binding, active_integrations)
    if integration is None:
        raise IntegrationUnavailableError(
            tool.value, binding.integration_type.value, binding.provider
        )
    return tool, binding, integration


def is_tool_available(
    name: Union[str, ToolName], active_integrations: Iterable[IntegrationInfo]
) -> bool:
    try:
        resolve_integration(name, active_integrations)
    except (UnmappedToolError, IntegrationUnavailableError):
        return False
    return True
