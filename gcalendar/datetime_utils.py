"""
Time helpers shared by the calendar tools.

The Calendar API represents an event boundary either as {"date": "YYYY-MM-DD"}
for all-day events or as {"dateTime": RFC3339, "timeZone": IANA name}. These
helpers convert between tool input strings, that wire shape, and Python
datetimes.
"""

import datetime
import re
from datetime import timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from typing_extensions import Dict, Optional, Union

from .errors import ValidationError

DATE_ONLY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
RFC3339_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})$"
)

Boundary = Dict[str, str]


def utc_now() -> datetime.datetime:
    """Current instant in UTC. Tests patch this instead of the clock."""
    return datetime.datetime.now(timezone.utc)


def is_date_only(value: Optional[str]) -> bool:
    return bool(value) and bool(DATE_ONLY_PATTERN.match(value))


def has_timezone(value: Optional[str]) -> bool:
    """True for an RFC3339 date-time carrying Z or an explicit offset."""
    return bool(value) and bool(RFC3339_PATTERN.match(value))


def parse_rfc3339(value: str) -> datetime.datetime:
    """
    Parse an RFC3339 date-time into an aware datetime.

    Raises:
        ValidationError: If the value lacks a timezone or is not a date-time.
    """
    if not has_timezone(value):
        raise ValidationError(
            f"'{value}' must be RFC3339 with a timezone (e.g. '2024-01-01T10:00:00Z' "
            f"or '2024-01-01T10:00:00-08:00')"
        )
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.datetime.fromisoformat(value)


def parse_date(value: str) -> datetime.date:
    if not is_date_only(value):
        raise ValidationError(f"'{value}' is not a YYYY-MM-DD date")
    return datetime.date.fromisoformat(value)


def resolve_timezone(name: str) -> ZoneInfo:
    """Look up an IANA zone, raising ValidationError for unknown names."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(
            f"Invalid timezone '{name}'. Use an IANA name such as 'America/Los_Angeles' or 'UTC'.",
            field="timeZone",
        ) from e


def create_time_object(value: str, time_zone: Optional[str] = None) -> Boundary:
    """
    Build the API boundary object for a tool input string.

    Date-only values become all-day boundaries and never carry a timezone.
    Date-time values keep their literal text; an explicit time_zone is
    attached so recurring expansion happens in that zone.
    """
    if is_date_only(value):
        return {"date": value}
    boundary: Boundary = {"dateTime": value}
    if time_zone:
        boundary["timeZone"] = time_zone
    return boundary


def boundary_value(boundary: Optional[Boundary]) -> str:
    """The literal dateTime or date string of a boundary, or ''."""
    if not boundary:
        return ""
    return boundary.get("dateTime") or boundary.get("date") or ""


def is_all_day(boundary: Optional[Boundary]) -> bool:
    return bool(boundary) and "date" in boundary and "dateTime" not in boundary


def boundary_to_datetime(
    boundary: Boundary, default_time_zone: Optional[str] = None
) -> Union[datetime.datetime, datetime.date]:
    """
    Convert a boundary to a Python value.

    All-day boundaries become dates. Timed boundaries become aware datetimes,
    expressed in the boundary's own timeZone (or default_time_zone) when one
    is known so wall-clock arithmetic follows that zone's DST rules.
    """
    if is_all_day(boundary):
        return parse_date(boundary["date"])
    moment = parse_rfc3339(boundary["dateTime"])
    zone_name = boundary.get("timeZone") or default_time_zone
    if zone_name:
        moment = moment.astimezone(resolve_timezone(zone_name))
    return moment


def to_rfc3339(moment: datetime.datetime) -> str:
    """Format an aware datetime as RFC3339, using Z for UTC."""
    if moment.tzinfo is None:
        raise ValueError("to_rfc3339 requires an aware datetime")
    text = moment.replace(microsecond=0).isoformat()
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text


def to_utc_basic(moment: datetime.datetime) -> str:
    """RFC 5545 UTC basic format: 20240615T170000Z."""
    return moment.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def to_date_basic(day: datetime.date) -> str:
    """RFC 5545 date basic format: 20240615."""
    return day.strftime("%Y%m%d")


def exceeds_range(time_min: str, time_max: str, max_days: int) -> bool:
    """True when time_max is more than max_days after time_min."""
    return parse_rfc3339(time_max) - parse_rfc3339(time_min) > datetime.timedelta(days=max_days)
