"""
Multi-calendar event aggregation.

One calendar is listed with a direct events.list call. Two or more are
listed through a single batch request; each sub-response is tagged with its
source calendar, failures are collected instead of aborting, and the merged
events are sorted by start boundary.
"""

import json
from dataclasses import dataclass, field
from urllib.parse import quote, urlencode

from typing_extensions import Any, Dict, List, Optional, Sequence, Tuple, Union

from auth.service_helpers import execute_request
from config.enhanced_logging import setup_logger

from .batch import MAX_BATCH_SIZE, BatchRequest, BatchRequestEngine, BatchResponse
from .calendar_types import CalendarFailure
from .datetime_utils import boundary_value
from .errors import ValidationError, translate_http_error
from .formatting import (
    format_calendar_failures,
    format_event_list,
    format_multi_calendar_events,
)

logger = setup_logger()

MAX_CALENDARS = MAX_BATCH_SIZE
EVENTS_PATH_TEMPLATE = "/calendar/v3/calendars/{calendar_id}/events"


def parse_calendar_id_input(calendar_id: Union[str, Sequence[Any]]) -> Union[str, List[Any]]:
    """
    Accept a single id, a list of ids, or a JSON array string of ids.

    Clients that cannot send arrays pass '["a", "b"]' as a string.
    """
    if isinstance(calendar_id, str):
        stripped = calendar_id.strip()
        if stripped.startswith("[") and stripped.endswith("]"):
            try:
                parsed = json.loads(stripped)
            except ValueError as e:
                raise ValidationError(
                    f"Invalid JSON format for calendarId: {e}", field="calendarId"
                ) from e
            if not isinstance(parsed, list):
                raise ValidationError(
                    "Invalid JSON format for calendarId: JSON string must contain an array of non-empty strings",
                    field="calendarId",
                )
            return parsed
        return calendar_id
    return list(calendar_id)


def validate_calendar_ids(calendar_id: Union[str, Sequence[Any]]) -> List[str]:
    """
    Normalize calendar id input into a validated, ordered list.

    Raises:
        ValidationError: non-string or empty entries, duplicates, or a count
            outside [1, 50].
    """
    parsed = parse_calendar_id_input(calendar_id)
    ids = [parsed] if isinstance(parsed, str) else parsed

    if len(ids) == 0:
        raise ValidationError("At least one calendar ID is required", field="calendarId")
    if len(ids) > MAX_CALENDARS:
        raise ValidationError(
            f"Maximum {MAX_CALENDARS} calendars allowed per request (got {len(ids)})",
            field="calendarId",
        )
    if not all(isinstance(cid, str) and cid.strip() for cid in ids):
        raise ValidationError("All calendar IDs must be non-empty strings", field="calendarId")
    if len(set(ids)) != len(ids):
        duplicates = sorted({cid for cid in ids if ids.count(cid) > 1})
        raise ValidationError(
            f"Duplicate calendar IDs are not allowed: {', '.join(duplicates)}",
            field="calendarId",
        )
    return list(ids)


def build_events_path(
    calendar_id: str, time_min: Optional[str] = None, time_max: Optional[str] = None
) -> str:
    """Relative events.list path for one batch sub-request."""
    params = {"singleEvents": "true", "orderBy": "startTime"}
    if time_min:
        params["timeMin"] = time_min
    if time_max:
        params["timeMax"] = time_max
    path = EVENTS_PATH_TEMPLATE.format(calendar_id=quote(calendar_id, safe=""))
    return f"{path}?{urlencode(params)}"


def event_sort_key(event: Dict[str, Any]) -> str:
    """
    Literal start string: dateTime, else date, else ''.

    This is a string comparison, matching the API's own per-calendar
    ordering; mixed offsets or all-day/timed mixes are not normalized.
    """
    return boundary_value(event.get("start"))


def sort_events_by_start_time(events: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(events, key=event_sort_key)


def tag_events(items: Sequence[Dict[str, Any]], calendar_id: str) -> List[Dict[str, Any]]:
    return [{**item, "calendarId": calendar_id} for item in items]


def process_batch_responses(
    responses: Sequence[BatchResponse], calendar_ids: Sequence[str]
) -> Tuple[List[Dict[str, Any]], List[CalendarFailure]]:
    """
    Split batch outcomes into tagged events and per-calendar failures.

    responses[i] belongs to calendar_ids[i].
    """
    events: List[Dict[str, Any]] = []
    failures: List[CalendarFailure] = []

    for calendar_id, response in zip(calendar_ids, responses):
        if response.ok and isinstance(response.body, dict):
            events.extend(tag_events(response.body.get("items") or [], calendar_id))
        else:
            failures.append({"calendarId": calendar_id, "error": response.error_message})

    return events, failures


@dataclass
class AggregatedEvents:
    """Merged result of a list-events request."""

    calendar_ids: List[str]
    events: List[Dict[str, Any]] = field(default_factory=list)
    failures: List[CalendarFailure] = field(default_factory=list)
    used_batch: bool = False


class MultiCalendarAggregator:
    """Lists events across one or many calendars."""

    def __init__(self, service, batch_engine: Optional[BatchRequestEngine] = None, timeout=None):
        self.service = service
        self.batch_engine = batch_engine
        self.timeout = timeout

    async def list_events(
        self,
        calendar_ids: Sequence[str],
        time_min: Optional[str] = None,
        time_max: Optional[str] = None,
    ) -> AggregatedEvents:
        ids = validate_calendar_ids(list(calendar_ids))

        if len(ids) == 1:
            events = await self._fetch_single_calendar_events(ids[0], time_min, time_max)
            return AggregatedEvents(calendar_ids=ids, events=events)

        return await self._fetch_multiple_calendar_events(ids, time_min, time_max)

    async def _fetch_single_calendar_events(
        self, calendar_id: str, time_min: Optional[str], time_max: Optional[str]
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "calendarId": calendar_id,
            "singleEvents": True,
            "orderBy": "startTime",
        }
        if time_min:
            params["timeMin"] = time_min
        if time_max:
            params["timeMax"] = time_max

        logger.info(f"[list_events] Listing events for single calendar '{calendar_id}'")
        items: List[Dict[str, Any]] = []
        try:
            while True:
                response = await execute_request(self.service.events().list(**params), self.timeout)
                items.extend(response.get("items") or [])
                page_token = response.get("nextPageToken")
                if not page_token:
                    break
                params["pageToken"] = page_token
        except Exception as e:
            raise translate_http_error(e, f"Listing events for {calendar_id}", calendar_id) from e

        return tag_events(items, calendar_id)

    async def _fetch_multiple_calendar_events(
        self, calendar_ids: List[str], time_min: Optional[str], time_max: Optional[str]
    ) -> AggregatedEvents:
        if self.batch_engine is None:
            raise ValueError("A batch engine is required to list more than one calendar")

        requests = [
            BatchRequest(method="GET", path=build_events_path(cid, time_min, time_max))
            for cid in calendar_ids
        ]
        logger.info(f"[list_events] Listing events for {len(calendar_ids)} calendars in one batch")
        responses = await self.batch_engine.execute_batch(requests)

        events, failures = process_batch_responses(responses, calendar_ids)
        if failures:
            logger.warning(
                "[list_events] ⚠️ Some calendars had errors: "
                + ", ".join(f"{f['calendarId']}: {f['error']}" for f in failures)
            )

        return AggregatedEvents(
            calendar_ids=calendar_ids,
            events=sort_events_by_start_time(events),
            failures=failures,
            used_batch=True,
        )


def format_aggregated_events(result: AggregatedEvents) -> str:
    """Flat list for one calendar, grouped by calendar otherwise, failures last."""
    if not result.events:
        text = f"No events found in {len(result.calendar_ids)} calendar(s)."
    elif len(result.calendar_ids) == 1:
        text = format_event_list(result.events, result.calendar_ids[0])
    else:
        text = format_multi_calendar_events(result.events, result.calendar_ids)

    failures = format_calendar_failures(result.failures)
    if failures:
        text = f"{text.rstrip()}\n\n{failures}"
    return text
