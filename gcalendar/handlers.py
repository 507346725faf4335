"""
Tool handlers: one class per calendar tool.

Each handler receives arguments already validated by its pydantic model,
shapes them for the engines or a direct API call, and renders the text
result. API failures are translated into the error taxonomy and raised.
"""

import datetime
from abc import ABC, abstractmethod

from typing_extensions import Any, Dict, List, Optional

from auth.service_helpers import CalendarClient, execute_request
from config.enhanced_logging import setup_logger

from .aggregator import MultiCalendarAggregator, format_aggregated_events, validate_calendar_ids
from .batch import BatchRequestEngine
from .calendar_types import (
    CalendarArgs,
    CreateEventArgs,
    DeleteEventArgs,
    EventFields,
    FreeBusyArgs,
    GetCurrentTimeArgs,
    ListEventsArgs,
    SearchEventsArgs,
    UpdateEventArgs,
    UpdateEventResponse,
)
from .datetime_utils import (
    create_time_object,
    exceeds_range,
    is_date_only,
    parse_rfc3339,
    resolve_timezone,
    to_rfc3339,
    utc_now,
)
from .errors import ValidationError, translate_http_error
from .formatting import (
    format_calendar_list,
    format_colors,
    format_event_list,
    format_event_with_url,
    format_free_busy_summary,
)
from .recurring import ModificationScope, RecurringEventModifier

logger = setup_logger()

FREE_BUSY_MAX_DAYS = 90


def validate_time_range(time_min: str, time_max: str, max_days: int = FREE_BUSY_MAX_DAYS) -> None:
    """
    Raises:
        ValidationError: timeMin not before timeMax, or a range longer than max_days.
    """
    if parse_rfc3339(time_min) >= parse_rfc3339(time_max):
        raise ValidationError("timeMin must be before timeMax", field="timeMin")
    if exceeds_range(time_min, time_max, max_days):
        raise ValidationError(
            "The time gap between timeMin and timeMax must be less than 3 months", field="timeMax"
        )


def build_event_fields(args: EventFields, time_zone: Optional[str] = None) -> Dict[str, Any]:
    """Calendar API event body from the writable fields that were provided."""
    body: Dict[str, Any] = {}
    if args.summary is not None:
        body["summary"] = args.summary
    if args.description is not None:
        body["description"] = args.description
    if args.location is not None:
        body["location"] = args.location
    if args.color_id is not None:
        body["colorId"] = args.color_id
    if args.start is not None:
        body["start"] = create_time_object(args.start, time_zone)
    if args.end is not None:
        body["end"] = create_time_object(args.end, time_zone)
    if args.attendees is not None:
        body["attendees"] = [{"email": attendee.email} for attendee in args.attendees]
    if args.reminders is not None:
        body["reminders"] = args.reminders.model_dump(by_alias=True, exclude_none=True)
    if args.recurrence is not None:
        body["recurrence"] = list(args.recurrence)
    return body


class BaseToolHandler(ABC):
    """Common plumbing: the calendar client, timed API calls, error translation."""

    name = "tool"
    requires_client = True

    def __init__(self, client: Optional[CalendarClient] = None, timeout: Optional[float] = None):
        self.client = client
        self.timeout = timeout

    @property
    def service(self):
        return self.client.service

    async def call_api(self, request, context: str, resource_id: Optional[str] = None) -> Any:
        try:
            return await execute_request(request, self.timeout)
        except Exception as e:
            error = translate_http_error(e, context, resource_id)
            logger.error(f"[{self.name}] ❌ {error.message}")
            raise error from e

    @abstractmethod
    async def execute(self, args: CalendarArgs) -> str:
        """Run the tool and return its text result."""


class ListCalendarsHandler(BaseToolHandler):
    name = "list-calendars"

    async def execute(self, args: CalendarArgs) -> str:
        calendars: List[Dict[str, Any]] = []
        params: Dict[str, Any] = {}
        while True:
            response = await self.call_api(
                self.service.calendarList().list(**params), "Listing calendars"
            )
            calendars.extend(response.get("items") or [])
            page_token = response.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        logger.info(f"[{self.name}] Found {len(calendars)} calendars")
        return format_calendar_list(calendars)


class ListEventsHandler(BaseToolHandler):
    name = "list-events"

    async def execute(self, args: ListEventsArgs) -> str:
        calendar_ids = validate_calendar_ids(args.calendar_id)
        batch_engine = (
            BatchRequestEngine(self.client.credentials, timeout=self.timeout)
            if len(calendar_ids) > 1
            else None
        )
        aggregator = MultiCalendarAggregator(self.service, batch_engine, self.timeout)
        result = await aggregator.list_events(calendar_ids, args.time_min, args.time_max)
        return format_aggregated_events(result)


class SearchEventsHandler(BaseToolHandler):
    name = "search-events"

    async def execute(self, args: SearchEventsArgs) -> str:
        response = await self.call_api(
            self.service.events().list(
                calendarId=args.calendar_id,
                q=args.query,
                timeMin=args.time_min,
                timeMax=args.time_max,
                singleEvents=True,
                orderBy="startTime",
            ),
            f"Searching events in {args.calendar_id}",
            args.calendar_id,
        )
        events = response.get("items") or []
        logger.info(f"[{self.name}] '{args.query}' matched {len(events)} events in {args.calendar_id}")
        if not events:
            return f'No events found matching "{args.query}" in {args.calendar_id}.'
        return format_event_list(events, args.calendar_id)


class ListColorsHandler(BaseToolHandler):
    name = "list-colors"

    async def execute(self, args: CalendarArgs) -> str:
        colors = await self.call_api(self.service.colors().get(), "Listing colors")
        return format_colors(colors)


class CreateEventHandler(BaseToolHandler):
    name = "create-event"

    async def _calendar_time_zone(self, calendar_id: str) -> Optional[str]:
        calendar = await self.call_api(
            self.service.calendars().get(calendarId=calendar_id),
            f"Reading calendar {calendar_id}",
            calendar_id,
        )
        return calendar.get("timeZone")

    async def execute(self, args: CreateEventArgs) -> str:
        time_zone = args.time_zone
        if time_zone:
            resolve_timezone(time_zone)
        elif not is_date_only(args.start):
            time_zone = await self._calendar_time_zone(args.calendar_id)

        body = build_event_fields(args, time_zone)
        logger.info(f"[{self.name}] Creating '{args.summary}' in {args.calendar_id}")
        event = await self.call_api(
            self.service.events().insert(calendarId=args.calendar_id, body=body),
            f"Creating event in {args.calendar_id}",
            args.calendar_id,
        )
        logger.info(f"[{self.name}] ✅ Created event {event.get('id')}")
        return (
            "✅ Event created successfully! Click the link below to view it in Google Calendar:\n\n"
            f"{format_event_with_url(event, args.calendar_id)}"
        )


def format_update_result(result: UpdateEventResponse, future_start_date: Optional[str] = None) -> str:
    calendar_id = result["calendarId"]
    if result["scope"] == ModificationScope.THIS_AND_FOLLOWING.value:
        return (
            f"✅ Recurring series split at {future_start_date}.\n\n"
            f"Original series (now ends before {future_start_date}):\n"
            f"{format_event_with_url(result['originalEvent'], calendar_id)}\n"
            f"New series:\n"
            f"{format_event_with_url(result['newEvent'], calendar_id)}"
        )
    label = "Event instance" if result["scope"] == ModificationScope.THIS_EVENT_ONLY.value else "Event"
    return (
        f"✅ {label} updated successfully! Click the link below to view it in Google Calendar:\n\n"
        f"{format_event_with_url(result['event'], calendar_id)}"
    )


class UpdateEventHandler(BaseToolHandler):
    name = "update-event"

    async def execute(self, args: UpdateEventArgs) -> str:
        if args.time_zone:
            resolve_timezone(args.time_zone)

        modifier = RecurringEventModifier(self.service, self.timeout)
        result = await modifier.update(
            calendar_id=args.calendar_id,
            event_id=args.event_id,
            changes=build_event_fields(args, args.time_zone),
            scope=args.modification_scope,
            original_start_time=args.original_start_time,
            future_start_date=args.future_start_date,
            send_updates=args.send_updates,
        )
        return format_update_result(result, args.future_start_date)


class DeleteEventHandler(BaseToolHandler):
    name = "delete-event"

    async def execute(self, args: DeleteEventArgs) -> str:
        logger.info(f"[{self.name}] Deleting event {args.event_id} from {args.calendar_id}")
        await self.call_api(
            self.service.events().delete(
                calendarId=args.calendar_id, eventId=args.event_id, sendUpdates=args.send_updates
            ),
            f"Deleting event {args.event_id}",
            args.event_id,
        )
        return f"✅ Event {args.event_id} deleted successfully from {args.calendar_id}."


class FreeBusyHandler(BaseToolHandler):
    name = "get-freebusy"

    async def execute(self, args: FreeBusyArgs) -> str:
        validate_time_range(args.time_min, args.time_max)
        if args.time_zone:
            resolve_timezone(args.time_zone)

        calendar_ids = [item.id for item in args.calendars]
        body: Dict[str, Any] = {
            "timeMin": args.time_min,
            "timeMax": args.time_max,
            "items": [{"id": calendar_id} for calendar_id in calendar_ids],
        }
        if args.time_zone:
            body["timeZone"] = args.time_zone
        if args.group_expansion_max is not None:
            body["groupExpansionMax"] = args.group_expansion_max
        if args.calendar_expansion_max is not None:
            body["calendarExpansionMax"] = args.calendar_expansion_max

        response = await self.call_api(
            self.service.freebusy().query(body=body), "Querying free/busy"
        )
        return format_free_busy_summary(response, calendar_ids)


class GetCurrentTimeHandler(BaseToolHandler):
    name = "get-current-time"
    requires_client = False

    async def execute(self, args: GetCurrentTimeArgs) -> str:
        now = utc_now()
        lines = [
            "Current time:",
            f"UTC: {to_rfc3339(now)}",
            f"Timestamp: {int(now.timestamp())}",
            f"System timezone: {datetime.datetime.now().astimezone().tzname()}",
        ]
        if args.time_zone:
            local = now.astimezone(resolve_timezone(args.time_zone))
            lines.append(f"{args.time_zone}: {to_rfc3339(local)} (UTC{local.strftime('%z')})")
        return "\n".join(lines)
