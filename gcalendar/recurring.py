"""
Recurring event modification engine.

An update names a modification scope:

- all: patch the series master (or a plain single event) directly.
- thisEventOnly: patch one materialized instance, addressed by the master id
  plus its original start time.
- thisAndFollowing: split the series at futureStartDate. The master's rule is
  capped with UNTIL just before the cut, then a new series carrying the
  changes starts at the cut. The two steps are not atomic: if creating the
  new series fails the master stays truncated and PartialFailure is raised.
"""

import datetime
from datetime import timezone
from enum import Enum

from dateutil.rrule import rrulestr
from typing_extensions import Any, Callable, Dict, List, Optional, Tuple, Union

from auth.service_helpers import execute_request
from config.enhanced_logging import log_execution_time, setup_logger

from .calendar_types import UpdateEventResponse
from .datetime_utils import (
    Boundary,
    boundary_to_datetime,
    is_all_day,
    parse_date,
    parse_rfc3339,
    resolve_timezone,
    to_date_basic,
    to_rfc3339,
    to_utc_basic,
    utc_now,
)
from .errors import PartialFailure, ValidationError, translate_http_error

logger = setup_logger()

# Server-owned fields that must not be copied into a new series
SERVER_OWNED_FIELDS = (
    "id",
    "etag",
    "iCalUID",
    "created",
    "updated",
    "htmlLink",
    "hangoutLink",
    "recurringEventId",
    "originalStartTime",
    "sequence",
    "creator",
    "organizer",
    "kind",
    "calendarId",
)

DATE_PROPERTIES = ("EXDATE", "RDATE")

IcalValue = Union[datetime.datetime, datetime.date]


class ModificationScope(str, Enum):
    ALL = "all"
    THIS_EVENT_ONLY = "thisEventOnly"
    THIS_AND_FOLLOWING = "thisAndFollowing"


def is_recurring(event: Dict[str, Any]) -> bool:
    """True for a series master: an event with a non-empty recurrence set."""
    return any(line.strip() for line in event.get("recurrence") or [])


def validate_modification_request(
    scope: Optional[str],
    original_start_time: Optional[str] = None,
    future_start_date: Optional[str] = None,
    now: Optional[datetime.datetime] = None,
) -> ModificationScope:
    """
    Check the fields each scope requires. Runs before any API call.

    Raises:
        ValidationError: unknown scope, missing originalStartTime or
            futureStartDate, or a futureStartDate not after now.
    """
    try:
        resolved = ModificationScope(scope or ModificationScope.ALL.value)
    except ValueError as e:
        raise ValidationError(
            f"Unknown modificationScope '{scope}'. Use 'all', 'thisEventOnly' or 'thisAndFollowing'.",
            field="modificationScope",
        ) from e

    if resolved is ModificationScope.THIS_EVENT_ONLY and not original_start_time:
        raise ValidationError(
            "originalStartTime is required when modificationScope is 'thisEventOnly'",
            field="originalStartTime",
        )

    if resolved is ModificationScope.THIS_AND_FOLLOWING:
        if not future_start_date:
            raise ValidationError(
                "futureStartDate is required when modificationScope is 'thisAndFollowing'",
                field="futureStartDate",
            )
        if parse_rfc3339(future_start_date) <= (now or utc_now()):
            raise ValidationError("futureStartDate must be in the future", field="futureStartDate")

    return resolved


def check_scope_applies(event: Dict[str, Any], scope: ModificationScope) -> None:
    if scope is not ModificationScope.ALL and not is_recurring(event):
        raise ValidationError(
            "Modification scope applies only to recurring events", field="modificationScope"
        )


def format_instance_id(event_id: str, original_start_time: str, all_day: bool = False) -> str:
    """
    Instance id of one occurrence of a series.

    Timed series use the UTC basic form of the original start
    (abc_20240615T170000Z); all-day series use the date (abc_20240615).
    """
    if all_day:
        return f"{event_id}_{to_date_basic(parse_date(original_start_time[:10]))}"
    return f"{event_id}_{to_utc_basic(parse_rfc3339(original_start_time))}"


def calculate_until(cut: datetime.datetime, all_day: bool = False) -> str:
    """UNTIL value that ends a series immediately before the cut."""
    if all_day:
        return to_date_basic(cut.date() - datetime.timedelta(days=1))
    return to_utc_basic(cut - datetime.timedelta(seconds=1))


def _split_property(line: str) -> Tuple[str, List[str], str]:
    head, _, value = line.strip().partition(":")
    name, *params = head.split(";")
    return name.upper(), params, value


def _rule_parts(value: str) -> List[Tuple[str, str]]:
    parts = []
    for part in value.split(";"):
        if "=" in part:
            key, _, item = part.partition("=")
            parts.append((key.upper(), item))
    return parts


def _join_rule(parts: List[Tuple[str, str]]) -> str:
    return "RRULE:" + ";".join(f"{key}={item}" for key, item in parts)


def parse_ical_value(
    value: str, tzid: Optional[str] = None, default_zone: Optional[datetime.tzinfo] = None
) -> IcalValue:
    """
    Parse an RFC 5545 DATE or DATE-TIME value.

    Floating times are placed in tzid, else default_zone, else UTC.
    """
    value = value.strip()
    if len(value) == 8:
        return datetime.datetime.strptime(value, "%Y%m%d").date()
    if value.endswith("Z"):
        return datetime.datetime.strptime(value, "%Y%m%dT%H%M%SZ").replace(tzinfo=timezone.utc)
    naive = datetime.datetime.strptime(value, "%Y%m%dT%H%M%S")
    zone = resolve_timezone(tzid) if tzid else (default_zone or timezone.utc)
    return naive.replace(tzinfo=zone)


def _is_before(value: IcalValue, cut: datetime.datetime) -> bool:
    """Compare instants for timed cuts, calendar days for all-day (naive) cuts."""
    if isinstance(value, datetime.datetime):
        if cut.tzinfo is not None:
            return value < cut
        value = value.date()
    return value < cut.date()


def _tzid(params: List[str]) -> Optional[str]:
    for param in params:
        key, _, item = param.partition("=")
        if key.upper() == "TZID":
            return item
    return None


def _partition_dates(
    line: str, cut: datetime.datetime, default_zone: Optional[datetime.tzinfo]
) -> Tuple[Optional[str], Optional[str]]:
    """Split an EXDATE/RDATE line into the values before and at-or-after the cut."""
    name, params, value = _split_property(line)
    tzid = _tzid(params)
    head = ";".join([name, *params])

    before, after = [], []
    for item in filter(None, (v.strip() for v in value.split(","))):
        target = before if _is_before(parse_ical_value(item, tzid, default_zone), cut) else after
        target.append(item)

    return (
        f"{head}:{','.join(before)}" if before else None,
        f"{head}:{','.join(after)}" if after else None,
    )


def count_occurrences_before(
    rule_value: str, dtstart: datetime.datetime, cut: datetime.datetime
) -> int:
    """
    Number of occurrences the rule generates strictly before the cut.

    EXDATE is not applied: COUNT bounds the rule's own occurrences.
    """
    rule = rrulestr(rule_value, dtstart=dtstart)
    consumed = 0
    for occurrence in rule:
        if occurrence >= cut:
            break
        consumed += 1
    return consumed


def _series_start(event: Dict[str, Any]) -> Tuple[datetime.datetime, Optional[datetime.tzinfo], bool]:
    """DTSTART of the master as a datetime, its zone, and whether it is all-day."""
    start = event.get("start") or {}
    if is_all_day(start):
        return datetime.datetime.combine(parse_date(start["date"]), datetime.time()), None, True
    moment = boundary_to_datetime(start)
    return moment, moment.tzinfo, False


@log_execution_time
def split_recurrence(
    recurrence: List[str], event: Dict[str, Any], cut: datetime.datetime
) -> Tuple[List[str], List[str]]:
    """
    Split a recurrence set at the cut.

    Returns (master, following): the master rule ends with UNTIL just before
    the cut; the following rule keeps the original end, with COUNT reduced by
    the occurrences already consumed. EXDATE/RDATE values go to whichever side
    of the cut they fall on.

    Raises:
        ValidationError: the cut is not inside the series.
    """
    dtstart, zone, all_day = _series_start(event)
    cut_point = (
        datetime.datetime.combine(cut.date(), datetime.time())
        if all_day
        else cut.astimezone(zone or timezone.utc)
    )

    if cut_point <= dtstart:
        raise ValidationError(
            "futureStartDate must be after the first occurrence of the series; "
            "use modificationScope 'all' to change the whole series",
            field="futureStartDate",
        )

    master: List[str] = []
    following: List[str] = []

    for line in recurrence:
        name, _, value = _split_property(line)
        if name == "RRULE":
            parts = _rule_parts(value)
            keys = dict(parts)

            if "UNTIL" in keys:
                if _is_before(parse_ical_value(keys["UNTIL"], default_zone=zone), cut_point):
                    raise ValidationError(
                        "futureStartDate is after the end of the series", field="futureStartDate"
                    )

            following_parts = parts
            if "COUNT" in keys:
                consumed = count_occurrences_before(value, dtstart, cut_point)
                remaining = int(keys["COUNT"]) - consumed
                if remaining <= 0:
                    raise ValidationError(
                        "futureStartDate is after the last occurrence of the series",
                        field="futureStartDate",
                    )
                following_parts = [
                    (key, str(remaining) if key == "COUNT" else item) for key, item in parts
                ]

            master_parts = [(key, item) for key, item in parts if key not in ("COUNT", "UNTIL")]
            master_parts.append(("UNTIL", calculate_until(cut, all_day)))
            master.append(_join_rule(master_parts))
            following.append(_join_rule(following_parts))
        elif name in DATE_PROPERTIES:
            before, after = _partition_dates(line, cut_point, zone)
            if before:
                master.append(before)
            if after:
                following.append(after)
        else:
            master.append(line)
            following.append(line)

    return master, following


def calculate_end_time(
    original_start: Boundary, original_end: Boundary, new_start: Boundary
) -> Boundary:
    """
    End boundary giving the new start the original event's length.

    Timed events keep their wall-clock length in the event's time zone, so
    a one hour meeting stays one hour across a DST change.
    """
    if is_all_day(new_start):
        days = parse_date(original_end["date"]) - parse_date(original_start["date"])
        return {"date": (parse_date(new_start["date"]) + days).isoformat()}

    zone_name = new_start.get("timeZone") or original_start.get("timeZone")
    start = boundary_to_datetime(original_start, zone_name)
    end = boundary_to_datetime(original_end, zone_name)
    moment = boundary_to_datetime(new_start, zone_name)

    if zone_name:
        zone = resolve_timezone(zone_name)
        duration = end.replace(tzinfo=None) - start.replace(tzinfo=None)
        new_end = (moment.replace(tzinfo=None) + duration).replace(tzinfo=zone)
        return {"dateTime": to_rfc3339(new_end), "timeZone": zone_name}

    return {"dateTime": to_rfc3339(moment + (end - start))}


def clean_event_for_duplication(event: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in event.items() if key not in SERVER_OWNED_FIELDS}


def _following_start(master: Dict[str, Any], future_start_date: str) -> Boundary:
    start = master.get("start") or {}
    if is_all_day(start):
        return {"date": future_start_date[:10]}
    zone_name = start.get("timeZone")
    if zone_name:
        local = parse_rfc3339(future_start_date).astimezone(resolve_timezone(zone_name))
        return {"dateTime": to_rfc3339(local), "timeZone": zone_name}
    return {"dateTime": future_start_date}


class RecurringEventModifier:
    """Applies update-event requests according to their modification scope."""

    def __init__(self, service, timeout=None, now: Optional[Callable[[], datetime.datetime]] = None):
        self.service = service
        self.timeout = timeout
        self.now = now or utc_now

    async def _call(self, request, context: str, resource_id: Optional[str] = None):
        try:
            return await execute_request(request, self.timeout)
        except Exception as e:
            raise translate_http_error(e, context, resource_id) from e

    async def update(
        self,
        calendar_id: str,
        event_id: str,
        changes: Dict[str, Any],
        scope: Optional[str] = None,
        original_start_time: Optional[str] = None,
        future_start_date: Optional[str] = None,
        send_updates: str = "all",
    ) -> UpdateEventResponse:
        resolved = validate_modification_request(
            scope, original_start_time, future_start_date, self.now()
        )

        if resolved is ModificationScope.ALL:
            return await self._update_all(calendar_id, event_id, changes, send_updates)

        master = await self._call(
            self.service.events().get(calendarId=calendar_id, eventId=event_id),
            f"Fetching event {event_id}",
            event_id,
        )
        check_scope_applies(master, resolved)

        if resolved is ModificationScope.THIS_EVENT_ONLY:
            return await self._update_instance(
                calendar_id, master, event_id, changes, original_start_time, send_updates
            )
        return await self._split_series(
            calendar_id, master, event_id, changes, future_start_date, send_updates
        )

    async def _update_all(
        self, calendar_id: str, event_id: str, changes: Dict[str, Any], send_updates: str
    ) -> UpdateEventResponse:
        logger.info(f"[update_event] Patching event {event_id} in {calendar_id}")
        event = await self._call(
            self.service.events().patch(
                calendarId=calendar_id, eventId=event_id, body=changes, sendUpdates=send_updates
            ),
            f"Updating event {event_id}",
            event_id,
        )
        return {"scope": ModificationScope.ALL.value, "calendarId": calendar_id, "event": event}

    async def _update_instance(
        self,
        calendar_id: str,
        master: Dict[str, Any],
        event_id: str,
        changes: Dict[str, Any],
        original_start_time: str,
        send_updates: str,
    ) -> UpdateEventResponse:
        if "recurrence" in changes:
            raise ValidationError(
                "recurrence cannot be changed on a single instance; use modificationScope 'all'",
                field="recurrence",
            )

        instance_id = format_instance_id(
            event_id, original_start_time, is_all_day(master.get("start"))
        )
        logger.info(f"[update_event] Patching instance {instance_id} of series {event_id}")
        event = await self._call(
            self.service.events().patch(
                calendarId=calendar_id, eventId=instance_id, body=changes, sendUpdates=send_updates
            ),
            f"Updating instance {instance_id}",
            instance_id,
        )
        return {
            "scope": ModificationScope.THIS_EVENT_ONLY.value,
            "calendarId": calendar_id,
            "event": event,
        }

    async def _split_series(
        self,
        calendar_id: str,
        master: Dict[str, Any],
        event_id: str,
        changes: Dict[str, Any],
        future_start_date: str,
        send_updates: str,
    ) -> UpdateEventResponse:
        if (
            "start" in changes
            and "end" not in changes
            and is_all_day(changes["start"]) != is_all_day(master.get("start"))
        ):
            raise ValidationError(
                "start switches between all-day and timed; provide end as well", field="start"
            )

        original_recurrence = list(master["recurrence"])
        cut = parse_rfc3339(future_start_date)
        master_recurrence, following_recurrence = split_recurrence(original_recurrence, master, cut)

        new_event = clean_event_for_duplication(master)
        new_event.update(changes)
        if "recurrence" not in changes:
            new_event["recurrence"] = following_recurrence
        if "start" not in changes:
            new_event["start"] = _following_start(master, future_start_date)
        if "end" not in changes:
            new_event["end"] = calculate_end_time(master["start"], master["end"], new_event["start"])

        # Step 1: cap the existing series. Nothing has changed if this fails.
        logger.info(
            f"[update_event] Truncating series {event_id} before {future_start_date}: {master_recurrence}"
        )
        truncated = await self._call(
            self.service.events().patch(
                calendarId=calendar_id,
                eventId=event_id,
                body={"recurrence": master_recurrence},
                sendUpdates=send_updates,
            ),
            f"Truncating series {event_id}",
            event_id,
        )

        # Step 2: start the replacement series. No rollback of step 1.
        try:
            created = await execute_request(
                self.service.events().insert(
                    calendarId=calendar_id, body=new_event, sendUpdates=send_updates
                ),
                self.timeout,
            )
        except Exception as e:
            cause = translate_http_error(e, "Creating new series")
            logger.error(
                f"[update_event] ❌ Series {event_id} truncated but new series failed: {cause.message}"
            )
            raise PartialFailure(
                f"Series split only partially applied: the original series {event_id} was already "
                f"truncated to end before {future_start_date}, but the new series starting at "
                f"{future_start_date} could not be created. Original recurrence: "
                f"{'; '.join(original_recurrence)}",
                succeeded=[f"Truncated series {event_id}: {'; '.join(master_recurrence)}"],
                failed=[f"Create new series starting {future_start_date}: {cause.message}"],
            ) from e

        logger.info(f"[update_event] ✅ Split series {event_id}; new series {created.get('id')}")
        return {
            "scope": ModificationScope.THIS_AND_FOLLOWING.value,
            "calendarId": calendar_id,
            "event": created,
            "originalEvent": truncated,
            "newEvent": created,
        }
