import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Sequence

from action_engine.integrations.tool_registry import ToolName
from action_engine.vars import BUSINESS_HOURS_END, BUSINESS_HOURS_START, LOGGER_NAME
from action_engine.workflows.models import StepResult, UserProfile, booked_events, find_step_result
from action_engine.workflows.signals import detect_urgency

logger = logging.getLogger(LOGGER_NAME)

VIP_APPOINTMENT_THRESHOLD = 5
RECENT_ACTIVITY_WINDOW = timedelta(hours=24)


class Condition(str, Enum):
    HAS_EXISTING_APPOINTMENTS = "hasExistingAppointments"
    IS_PREMIUM_USER = "isPremiumUser"
    IS_EXISTING_CLIENT = "isExistingClient"
    IS_BUSINESS_HOURS = "isBusinessHours"
    IS_OUTSIDE_BUSINESS_HOURS = "isOutsideBusinessHours"
    IS_URGENT_REQUEST = "isUrgentRequest"
    IS_VIP_CUSTOMER = "isVIPCustomer"
    IS_WEEKEND = "isWeekend"
    IS_FIRST_TIME_USER = "isFirstTimeUser"
    HAS_RECENT_ACTIVITY = "hasRecentActivity"


@dataclass(frozen=True)
class EvaluationContext:
    prior_results: Sequence[StepResult]
    profile: Optional[UserProfile]
    utterance: str
    now: datetime
    business_hours_start: int = BUSINESS_HOURS_START
    business_hours_end: int = BUSINESS_HOURS_END


def is_business_hours(now: datetime, start: int = BUSINESS_HOURS_START, end: int = BUSINESS_HOURS_END) -> bool:
    """Monday to Friday, ``start`` inclusive to ``end`` exclusive, in ``now``'s zone."""
    return now.weekday() < 5 and start <= now.hour < end


def _has_existing_appointments(ctx: EvaluationContext) -> bool:
    result = find_step_result(list(ctx.prior_results), ToolName.GET_MY_BOOKED_CALENDAR_EVENTS.value)
    return len(booked_events(result)) > 0


def _is_business_hours(ctx: EvaluationContext) -> bool:
    return is_business_hours(ctx.now, ctx.business_hours_start, ctx.business_hours_end)


def _is_vip_customer(ctx: EvaluationContext) -> bool:
    profile = ctx.profile
    return bool(
        profile
        and profile.is_premium_user
        and profile.appointment_history > VIP_APPOINTMENT_THRESHOLD
    )


def _has_recent_activity(ctx: EvaluationContext) -> bool:
    if ctx.profile is None or ctx.profile.last_activity is None:
        return False
    return ctx.now - ctx.profile.last_activity < RECENT_ACTIVITY_WINDOW


PREDICATES: Mapping[Condition, Callable[[EvaluationContext], bool]] = MappingProxyType(
    {
        Condition.HAS_EXISTING_APPOINTMENTS: _has_existing_appointments,
        Condition.IS_PREMIUM_USER: lambda ctx: bool(ctx.profile and ctx.profile.is_premium_user),
        Condition.IS_EXISTING_CLIENT: lambda ctx: bool(ctx.profile and ctx.profile.is_existing_client),
        Condition.IS_BUSINESS_HOURS: _is_business_hours,
        Condition.IS_OUTSIDE_BUSINESS_HOURS: lambda ctx: not _is_business_hours(ctx),
        Condition.IS_URGENT_REQUEST: lambda ctx: detect_urgency(ctx.utterance),
        Condition.IS_VIP_CUSTOMER: _is_vip_customer,
        Condition.IS_WEEKEND: lambda ctx: ctx.now.weekday() >= 5,
        Condition.IS_FIRST_TIME_USER: lambda ctx: bool(
            ctx.profile and ctx.profile.appointment_history == 0
        ),
        Condition.HAS_RECENT_ACTIVITY: _has_recent_activity,
    }
)


def parse_condition(name: str) -> Optional[Condition]:
    try:
        return Condition(name)
    except ValueError:
        return None


def evaluate_condition(name: str, ctx: EvaluationContext) -> bool:
    """
    Evaluate a step precondition by name.

    Unknown names evaluate to False and are logged; they never abort a run.
    """
    condition = parse_condition(name)
    if condition is None:
        logger.warning("[Conditions] Unknown condition '%s', treating as false", name)
        return False
    return bool(PREDICATES[condition](ctx))
