"""Reading calendar events returned by the booked-events action."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from action_engine.vars import BUSINESS_TIMEZONE

UNTITLED_EVENT = "Untitled appointment"


@dataclass(frozen=True)
class EventMoment:
    at: datetime
    all_day: bool


@dataclass(frozen=True)
class PreciseDate:
    full_date: str
    day_name: str
    time: str


def _parse_iso(value: str, zone: ZoneInfo) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed.astimezone(zone)


def event_moment(event: Dict[str, Any], key: str, tz_name: str = BUSINESS_TIMEZONE) -> Optional[EventMoment]:
    """Parse ``event[key]`` (``start`` or ``end``) in Google Calendar shape."""
    zone = ZoneInfo(tz_name)
    raw = event.get(key)
    if isinstance(raw, str):
        parsed = _parse_iso(raw, zone)
        return EventMoment(parsed, all_day="T" not in raw) if parsed else None
    if not isinstance(raw, dict):
        return None
    if raw.get("dateTime"):
        parsed = _parse_iso(str(raw["dateTime"]), zone)
        return EventMoment(parsed, all_day=False) if parsed else None
    if raw.get("date"):
        parsed = _parse_iso(str(raw["date"]), zone)
        return EventMoment(parsed, all_day=True) if parsed else None
    return None


def event_title(event: Dict[str, Any]) -> str:
    return str(event.get("summary") or UNTITLED_EVENT)


def active_events(events: List[Dict[str, Any]], now: datetime, tz_name: str = BUSINESS_TIMEZONE) -> List[Dict[str, Any]]:
    """Events that have not finished yet. Events without an end use their start."""
    selected = []
    for event in events:
        moment = event_moment(event, "end", tz_name) or event_moment(event, "start", tz_name)
        if moment is not None and moment.at > now:
            selected.append(event)
    return selected


def format_moment(moment: EventMoment) -> str:
    at = moment.at
    day = f"{at.strftime('%A')}, {at.strftime('%B')} {at.day}, {at.year}"
    if moment.all_day:
        return day
    return f"{day}, {format_time(at)}"


def format_time(at: datetime) -> str:
    return at.strftime("%I:%M %p").lstrip("0")


def precise_date(moment: EventMoment) -> PreciseDate:
    at = moment.at
    return PreciseDate(
        full_date=f"{at.strftime('%B')} {at.day}, {at.year}",
        day_name=at.strftime("%A"),
        time="all day" if moment.all_day else format_time(at),
    )
