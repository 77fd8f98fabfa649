from action_engine.integrations.tool_registry import ToolName
from action_engine.workflows.models import WorkflowCategory, WorkflowDefinition, WorkflowStep

RESCHEDULE_WORKFLOW_NAME = "smart_reschedule_flow"
BOOKED_EVENTS_LOOKAHEAD_DAYS = 365

_BOOKED_EVENTS = ToolName.GET_MY_BOOKED_CALENDAR_EVENTS.value


BUILTIN_WORKFLOWS = (
    WorkflowDefinition(
        name="intelligent_appointment_management",
        triggers=("cita", "agendar", "appointment", "schedule", "consulta", "reunión"),
        priority=20,
        category=WorkflowCategory.APPOINTMENTS,
        context_aware=True,
        steps=(
            WorkflowStep(
                tool_name=_BOOKED_EVENTS,
                action="getMyBookedEvents",
                required=True,
                retry_on_failure=True,
                max_retries=2,
                lookahead_days=BOOKED_EVENTS_LOOKAHEAD_DAYS,
            ),
            WorkflowStep(
                tool_name=ToolName.CHECK_USER_PROFILE.value,
                action="getUserProfile",
                conditional="hasExistingAppointments",
            ),
            WorkflowStep(
                tool_name=ToolName.GET_AVAILABLE_SLOTS.value,
                action="getNextAvailableSlots",
                conditional="isUrgentRequest",
                parameters={"timeRange": "today"},
            ),
        ),
    ),
    WorkflowDefinition(
        name=RESCHEDULE_WORKFLOW_NAME,
        triggers=(
            "cambiar",
            "mover",
            "reagendar",
            "modificar",
            "actualizar",
            "reschedule",
            "change",
            "move",
            "update",
            "si",
            "sí",
            "yes",
            "ok",
            "okay",
            "dale",
            "perfecto",
            "correcto",
            "adelante",
        ),
        priority=30,
        category=WorkflowCategory.APPOINTMENTS,
        context_aware=True,
        steps=(
            WorkflowStep(
                tool_name=_BOOKED_EVENTS,
                action="getMyBookedEvents",
                required=True,
                retry_on_failure=True,
                max_retries=3,
                lookahead_days=BOOKED_EVENTS_LOOKAHEAD_DAYS,
            ),
        ),
    ),
    WorkflowDefinition(
        name="vip_customer_flow",
        triggers=("urgente", "emergency", "asap", "ahora mismo", "immediately"),
        priority=25,
        category=WorkflowCategory.CUSTOMER_SERVICE,
        context_aware=True,
        steps=(
            WorkflowStep(
                tool_name=_BOOKED_EVENTS,
                action="getMyBookedEvents",
                required=True,
                lookahead_days=BOOKED_EVENTS_LOOKAHEAD_DAYS,
            ),
            WorkflowStep(
                tool_name=ToolName.CHECK_VIP_STATUS.value,
                action="verifyVIPStatus",
                conditional="isExistingClient",
            ),
            WorkflowStep(
                tool_name=ToolName.GET_EMERGENCY_SLOTS.value,
                action="getEmergencyAvailability",
                required=True,
                conditional="isUrgentRequest",
                parameters={"priority": "urgent", "timeRange": "today"},
            ),
            WorkflowStep(
                tool_name=ToolName.NOTIFY_MANAGER.value,
                action="sendUrgentNotification",
                conditional="isVIPCustomer",
            ),
        ),
    ),
    WorkflowDefinition(
        name="business_hours_adaptive",
        triggers=("disponibilidad", "horarios", "available", "hours", "abierto", "cerrado"),
        priority=15,
        category=WorkflowCategory.CUSTOMER_SERVICE,
        context_aware=False,
        steps=(
            WorkflowStep(
                tool_name=ToolName.CHECK_CURRENT_BUSINESS_HOURS.value,
                action="getCurrentBusinessStatus",
            ),
            WorkflowStep(
                tool_name=_BOOKED_EVENTS,
                action="getMyBookedEvents",
                conditional="isBusinessHours",
                lookahead_days=BOOKED_EVENTS_LOOKAHEAD_DAYS,
            ),
            WorkflowStep(
                tool_name=ToolName.SCHEDULE_CALLBACK.value,
                action="scheduleCallbackForTomorrow",
                conditional="isOutsideBusinessHours",
            ),
        ),
    ),
    WorkflowDefinition(
        name="multi_service_intelligent",
        triggers=("servicio", "servicios", "service", "services", "precio", "costo", "cost"),
        priority=18,
        category=WorkflowCategory.SALES,
        context_aware=True,
        steps=(
            WorkflowStep(
                tool_name=ToolName.GET_AVAILABLE_SERVICES.value,
                action="listActiveServices",
            ),
            WorkflowStep(
                tool_name=_BOOKED_EVENTS,
                action="getMyBookedEvents",
                lookahead_days=BOOKED_EVENTS_LOOKAHEAD_DAYS,
            ),
            WorkflowStep(
                tool_name=ToolName.ANALYZE_SERVICE_HISTORY.value,
                action="getServicePreferences",
                conditional="hasExistingAppointments",
            ),
            WorkflowStep(
                tool_name=ToolName.GET_PERSONALIZED_PRICING.value,
                action="getCustomPricing",
                conditional="isPremiumUser",
                parameters={"includeDiscounts": True},
            ),
        ),
    ),
    WorkflowDefinition(
        name="general_support_inquiry",
        triggers=("ayuda", "help", "soporte", "support", "pregunta", "question"),
        priority=5,
        category=WorkflowCategory.SUPPORT,
        context_aware=False,
        steps=(
            WorkflowStep(
                tool_name=ToolName.GET_AVAILABLE_SERVICES.value,
                action="listActiveServices",
            ),
        ),
    ),
)
