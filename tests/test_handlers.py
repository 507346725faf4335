"""Tests for the calendar tool handlers."""

import datetime
from datetime import timezone
from unittest.mock import AsyncMock, patch

import pytest

from calendar_fakes import api_request, http_error, timed_event
from gcalendar.batch import BatchResponse
from gcalendar.calendar_types import (
    CreateEventArgs,
    DeleteEventArgs,
    FreeBusyArgs,
    GetCurrentTimeArgs,
    ListEventsArgs,
    NoArgs,
    SearchEventsArgs,
    UpdateEventArgs,
    parse_arguments,
)
from gcalendar.errors import CalendarApiError, NotFoundError, TransientNetworkError, ValidationError
from gcalendar.handlers import (
    CreateEventHandler,
    DeleteEventHandler,
    FreeBusyHandler,
    GetCurrentTimeHandler,
    ListCalendarsHandler,
    ListColorsHandler,
    ListEventsHandler,
    SearchEventsHandler,
    UpdateEventHandler,
    build_event_fields,
    validate_time_range,
)

DAY_MIN = "2099-01-05T00:00:00Z"
DAY_MAX = "2099-01-06T00:00:00Z"


class TestValidateTimeRange:
    def test_valid_range(self):
        validate_time_range(DAY_MIN, DAY_MAX)

    def test_reversed_range(self):
        with pytest.raises(ValidationError, match="timeMin must be before timeMax"):
            validate_time_range(DAY_MAX, DAY_MIN)

    def test_range_longer_than_three_months(self):
        with pytest.raises(ValidationError, match="less than 3 months") as exc_info:
            validate_time_range("2099-01-01T00:00:00Z", "2099-06-01T00:00:00Z")
        assert exc_info.value.field == "timeMax"


class TestBuildEventFields:
    def test_only_provided_fields(self):
        args = parse_arguments(UpdateEventArgs, {"calendarId": "primary", "eventId": "e1", "summary": "x"})
        assert build_event_fields(args) == {"summary": "x"}

    def test_time_zone_is_attached_to_timed_boundaries(self):
        args = parse_arguments(
            CreateEventArgs,
            {
                "calendarId": "primary",
                "summary": "Demo",
                "start": "2099-01-01T10:00:00-08:00",
                "end": "2099-01-01T11:00:00-08:00",
                "attendees": [{"email": "a@x.com"}],
                "reminders": {"useDefault": True},
            },
        )

        body = build_event_fields(args, "America/Los_Angeles")

        assert body["start"] == {"dateTime": "2099-01-01T10:00:00-08:00", "timeZone": "America/Los_Angeles"}
        assert body["attendees"] == [{"email": "a@x.com"}]
        assert body["reminders"] == {"useDefault": True}


class TestReadHandlers:
    """list-calendars, list-colors, search-events and get-freebusy."""

    @pytest.mark.asyncio
    async def test_list_calendars_follows_pages(self, calendar_client, mock_service):
        mock_service.calendarList.return_value.list.side_effect = [
            api_request({"items": [{"id": "me@x.com", "summary": "Me", "primary": True}], "nextPageToken": "t"}),
            api_request({"items": [{"id": "team@x.com", "summary": "Team"}]}),
        ]

        text = await ListCalendarsHandler(calendar_client).execute(NoArgs())

        assert text == "Me (me@x.com) [primary]\nTeam (team@x.com)"
        mock_service.calendarList.return_value.list.assert_called_with(pageToken="t")

    @pytest.mark.asyncio
    async def test_list_colors(self, calendar_client, mock_service):
        mock_service.colors.return_value.get.return_value = api_request(
            {"event": {"1": {"background": "#a4bdfc", "foreground": "#1d1d1d"}}}
        )

        text = await ListColorsHandler(calendar_client).execute(NoArgs())

        assert "Color ID: 1 - #a4bdfc (background) / #1d1d1d (foreground)" in text

    @pytest.mark.asyncio
    async def test_api_failure_is_translated(self, calendar_client, mock_service):
        mock_service.colors.return_value.get.return_value = api_request(error=http_error(500, "Backend Error"))

        with pytest.raises(TransientNetworkError, match="Listing colors: Server error"):
            await ListColorsHandler(calendar_client).execute(NoArgs())

    @pytest.mark.asyncio
    async def test_search_events(self, calendar_client, mock_service):
        events = mock_service.events.return_value
        events.list.return_value = api_request(
            {"items": [timed_event("e1", "2099-01-05T10:00:00Z", "2099-01-05T11:00:00Z", summary="Dentist")]}
        )
        args = SearchEventsArgs(calendar_id="primary", query="dentist", time_min=DAY_MIN, time_max=DAY_MAX)

        text = await SearchEventsHandler(calendar_client).execute(args)

        events.list.assert_called_once_with(
            calendarId="primary", q="dentist", timeMin=DAY_MIN, timeMax=DAY_MAX,
            singleEvents=True, orderBy="startTime",
        )
        assert text.startswith("Dentist (e1)")

    @pytest.mark.asyncio
    async def test_search_without_matches(self, calendar_client, mock_service):
        mock_service.events.return_value.list.return_value = api_request({"items": []})
        args = SearchEventsArgs(calendar_id="primary", query="yoga", time_min=DAY_MIN, time_max=DAY_MAX)

        text = await SearchEventsHandler(calendar_client).execute(args)

        assert text == 'No events found matching "yoga" in primary.'

    @pytest.mark.asyncio
    async def test_free_busy_request_body(self, calendar_client, mock_service):
        query = mock_service.freebusy.return_value.query
        query.return_value = api_request(
            {"timeMin": DAY_MIN, "timeMax": DAY_MAX, "calendars": {"primary": {"busy": []}}}
        )
        args = FreeBusyArgs(
            calendars=[{"id": "primary"}], time_min=DAY_MIN, time_max=DAY_MAX,
            time_zone="UTC", group_expansion_max=5,
        )

        text = await FreeBusyHandler(calendar_client).execute(args)

        query.assert_called_once_with(
            body={
                "timeMin": DAY_MIN,
                "timeMax": DAY_MAX,
                "items": [{"id": "primary"}],
                "timeZone": "UTC",
                "groupExpansionMax": 5,
            }
        )
        assert text == f"primary is available during {DAY_MIN} to {DAY_MAX}"

    @pytest.mark.asyncio
    async def test_free_busy_repeated_query_is_stable(self, calendar_client, mock_service):
        mock_service.freebusy.return_value.query.return_value = api_request(
            {
                "timeMin": DAY_MIN,
                "timeMax": DAY_MAX,
                "calendars": {
                    "zeta-room@group.calendar.google.com": {"busy": []},
                    "team@x.com": {"busy": [{"start": "2099-01-05T11:00:00Z", "end": "2099-01-05T12:00:00Z"}]},
                    "gone@x.com": {"errors": [{"domain": "global", "reason": "notFound"}], "busy": []},
                    "primary": {
                        "busy": [
                            {"start": "2099-01-05T09:00:00Z", "end": "2099-01-05T10:00:00Z"},
                            {"start": "2099-01-05T13:00:00Z", "end": "2099-01-05T14:00:00Z"},
                        ]
                    },
                },
            }
        )
        args = FreeBusyArgs(
            calendars=[{"id": "primary"}, {"id": "gone@x.com"}, {"id": "team@x.com"}],
            time_min=DAY_MIN,
            time_max=DAY_MAX,
        )
        handler = FreeBusyHandler(calendar_client)

        first = await handler.execute(args)
        second = await handler.execute(args)

        assert first == second
        positions = [
            first.index("primary is busy during:"),
            first.index("Cannot check availability for gone@x.com (account not found)"),
            first.index("team@x.com is busy during:"),
            first.index("zeta-room@group.calendar.google.com is available"),
        ]
        assert positions == sorted(positions)
        assert "- From 2099-01-05T09:00:00Z to 2099-01-05T10:00:00Z\n- From 2099-01-05T13:00:00Z" in first

    @pytest.mark.asyncio
    async def test_free_busy_range_checked_before_call(self, calendar_client, mock_service):
        args = FreeBusyArgs(calendars=[{"id": "primary"}], time_min=DAY_MIN, time_max="2099-05-01T00:00:00Z")

        with pytest.raises(ValidationError):
            await FreeBusyHandler(calendar_client).execute(args)

        mock_service.freebusy.assert_not_called()


class TestListEventsHandler:
    @pytest.mark.asyncio
    async def test_single_calendar_skips_batch(self, calendar_client, mock_service):
        mock_service.events.return_value.list.return_value = api_request({"items": []})

        with patch("gcalendar.handlers.BatchRequestEngine") as engine_class:
            text = await ListEventsHandler(calendar_client).execute(ListEventsArgs(calendar_id="primary"))

        engine_class.assert_not_called()
        assert text == "No events found in 1 calendar(s)."

    @pytest.mark.asyncio
    async def test_json_array_string_uses_batch(self, calendar_client, credentials):
        with patch("gcalendar.handlers.BatchRequestEngine") as engine_class:
            engine_class.return_value.execute_batch = AsyncMock(
                return_value=[
                    BatchResponse(200, body={"items": [timed_event("a", "2099-01-05T09:00:00Z", "2099-01-05T10:00:00Z")]}),
                    BatchResponse(200, body={"items": [timed_event("b", "2099-01-05T08:00:00Z", "2099-01-05T09:00:00Z")]}),
                ]
            )

            text = await ListEventsHandler(calendar_client, timeout=7).execute(
                ListEventsArgs(calendar_id='["primary", "work@x.com"]')
            )

        engine_class.assert_called_once_with(credentials, timeout=7)
        assert text.startswith("Found 2 events across 2 calendars:")
        assert text.index("Calendar: work@x.com") < text.index("Calendar: primary")


class TestWriteHandlers:
    """create-event, update-event and delete-event."""

    @pytest.mark.asyncio
    async def test_create_uses_calendar_time_zone(self, calendar_client, mock_service):
        mock_service.calendars.return_value.get.return_value = api_request({"timeZone": "Europe/Paris"})
        insert = mock_service.events.return_value.insert
        insert.return_value = api_request(
            timed_event("new1", "2099-01-01T10:00:00+01:00", "2099-01-01T11:00:00+01:00", summary="Demo",
                        htmlLink="https://www.google.com/calendar/event?eid=new1")
        )
        args = CreateEventArgs(
            calendar_id="primary", summary="Demo",
            start="2099-01-01T10:00:00+01:00", end="2099-01-01T11:00:00+01:00",
        )

        text = await CreateEventHandler(calendar_client).execute(args)

        body = insert.call_args.kwargs["body"]
        assert body["start"]["timeZone"] == "Europe/Paris"
        assert text.startswith("✅ Event created successfully!")
        assert "🔗 View in Google Calendar: https://www.google.com/calendar/event?eid=new1" in text

    @pytest.mark.asyncio
    async def test_create_all_day_event_has_no_time_zone(self, calendar_client, mock_service):
        insert = mock_service.events.return_value.insert
        insert.return_value = api_request({"id": "new2", "start": {"date": "2099-01-01"}, "end": {"date": "2099-01-02"}})
        args = CreateEventArgs(calendar_id="primary", summary="Holiday", start="2099-01-01", end="2099-01-02")

        await CreateEventHandler(calendar_client).execute(args)

        mock_service.calendars.assert_not_called()
        assert insert.call_args.kwargs["body"]["start"] == {"date": "2099-01-01"}

    @pytest.mark.asyncio
    async def test_create_rejects_unknown_time_zone(self, calendar_client, mock_service):
        args = CreateEventArgs(
            calendar_id="primary", summary="Demo", time_zone="Nowhere/Land",
            start="2099-01-01T10:00:00Z", end="2099-01-01T11:00:00Z",
        )

        with pytest.raises(ValidationError):
            await CreateEventHandler(calendar_client).execute(args)

        mock_service.events.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_propagates_calendar_lookup_failure(self, calendar_client, mock_service):
        mock_service.calendars.return_value.get.return_value = api_request(error=http_error(403, "Forbidden"))
        args = CreateEventArgs(
            calendar_id="other@x.com", summary="Demo",
            start="2099-01-01T10:00:00Z", end="2099-01-01T11:00:00Z",
        )

        with pytest.raises(CalendarApiError):
            await CreateEventHandler(calendar_client).execute(args)

    @pytest.mark.asyncio
    async def test_update_whole_event(self, calendar_client, mock_service):
        patch_call = mock_service.events.return_value.patch
        patch_call.return_value = api_request({"id": "e1", "summary": "Renamed"})
        args = UpdateEventArgs(calendar_id="primary", event_id="e1", summary="Renamed", send_updates="none")

        text = await UpdateEventHandler(calendar_client).execute(args)

        patch_call.assert_called_once_with(
            calendarId="primary", eventId="e1", body={"summary": "Renamed"}, sendUpdates="none"
        )
        assert text.startswith("✅ Event updated successfully!")
        assert "Renamed (e1)" in text

    @pytest.mark.asyncio
    async def test_update_split_output(self, calendar_client, mock_service):
        events = mock_service.events.return_value
        events.get.return_value = api_request(
            {
                "id": "s1",
                "summary": "Sync",
                "start": {"dateTime": "2099-01-01T10:00:00Z"},
                "end": {"dateTime": "2099-01-01T11:00:00Z"},
                "recurrence": ["RRULE:FREQ=WEEKLY"],
            }
        )
        events.patch.return_value = api_request({"id": "s1", "summary": "Sync"})
        events.insert.return_value = api_request({"id": "s2", "summary": "Sync v2"})
        args = UpdateEventArgs(
            calendar_id="primary", event_id="s1", summary="Sync v2",
            modification_scope="thisAndFollowing", future_start_date="2099-02-05T10:00:00Z",
        )

        text = await UpdateEventHandler(calendar_client).execute(args)

        assert text.startswith("✅ Recurring series split at 2099-02-05T10:00:00Z.")
        assert "Original series (now ends before 2099-02-05T10:00:00Z):\nSync (s1)" in text
        assert "New series:\nSync v2 (s2)" in text

    @pytest.mark.asyncio
    async def test_delete_event(self, calendar_client, mock_service):
        delete = mock_service.events.return_value.delete
        delete.return_value = api_request("")
        args = DeleteEventArgs(calendar_id="primary", event_id="e1")

        text = await DeleteEventHandler(calendar_client).execute(args)

        delete.assert_called_once_with(calendarId="primary", eventId="e1", sendUpdates="all")
        assert text == "✅ Event e1 deleted successfully from primary."

    @pytest.mark.asyncio
    async def test_delete_missing_event(self, calendar_client, mock_service):
        mock_service.events.return_value.delete.return_value = api_request(error=http_error(404, "Not Found"))

        with pytest.raises(NotFoundError) as exc_info:
            await DeleteEventHandler(calendar_client).execute(DeleteEventArgs(calendar_id="primary", event_id="gone"))
        assert exc_info.value.resource_id == "gone"


class TestGetCurrentTimeHandler:
    @pytest.mark.asyncio
    async def test_utc_and_requested_zone(self):
        fixed = datetime.datetime(2099, 7, 1, 16, 30, tzinfo=timezone.utc)

        with patch("gcalendar.handlers.utc_now", return_value=fixed):
            text = await GetCurrentTimeHandler().execute(GetCurrentTimeArgs(time_zone="America/New_York"))

        lines = text.splitlines()
        assert lines[0] == "Current time:"
        assert lines[1] == "UTC: 2099-07-01T16:30:00Z"
        assert lines[2] == f"Timestamp: {int(fixed.timestamp())}"
        assert lines[3].startswith("System timezone: ")
        assert lines[4] == "America/New_York: 2099-07-01T12:30:00-04:00 (UTC-0400)"

    @pytest.mark.asyncio
    async def test_invalid_zone(self):
        with pytest.raises(ValidationError):
            await GetCurrentTimeHandler().execute(GetCurrentTimeArgs(time_zone="Mars/Base"))

    def test_needs_no_client(self):
        assert GetCurrentTimeHandler.requires_client is False
