"""Tests for multi-calendar event aggregation."""

from unittest.mock import AsyncMock

import pytest

from calendar_fakes import api_request, http_error, timed_event
from gcalendar.aggregator import (
    AggregatedEvents,
    MultiCalendarAggregator,
    build_events_path,
    format_aggregated_events,
    process_batch_responses,
    sort_events_by_start_time,
    validate_calendar_ids,
)
from gcalendar.batch import BatchResponse
from gcalendar.errors import NotFoundError, ValidationError

WEEK_MIN = "2099-01-05T00:00:00Z"
WEEK_MAX = "2099-01-12T00:00:00Z"


class TestValidateCalendarIds:
    """Normalising calendarId input before any call is made."""

    def test_single_string(self):
        assert validate_calendar_ids("primary") == ["primary"]

    def test_list_keeps_order(self):
        assert validate_calendar_ids(["work@x.com", "primary"]) == ["work@x.com", "primary"]

    def test_json_array_string(self):
        assert validate_calendar_ids('["primary", "work@x.com"]') == ["primary", "work@x.com"]

    def test_invalid_json_array_string(self):
        with pytest.raises(ValidationError, match="Invalid JSON format for calendarId"):
            validate_calendar_ids('["primary",]')

    def test_json_string_must_be_an_array(self):
        with pytest.raises(ValidationError):
            validate_calendar_ids('["a"] trailing]')

    def test_empty_list(self):
        with pytest.raises(ValidationError, match="At least one calendar ID"):
            validate_calendar_ids([])

    @pytest.mark.parametrize("ids", [["primary", ""], ["primary", 7], ["   "]])
    def test_entries_must_be_non_empty_strings(self, ids):
        with pytest.raises(ValidationError, match="non-empty strings"):
            validate_calendar_ids(ids)

    def test_duplicates_are_rejected(self):
        with pytest.raises(ValidationError, match="Duplicate calendar IDs.*primary"):
            validate_calendar_ids(["primary", "work@x.com", "primary"])

    def test_more_than_fifty(self):
        with pytest.raises(ValidationError, match="Maximum 50 calendars") as exc_info:
            validate_calendar_ids([f"cal{i}@x.com" for i in range(51)])
        assert exc_info.value.field == "calendarId"


class TestHelpers:
    """Path building, sorting and batch outcome processing."""

    def test_build_events_path_encodes_calendar_and_filters(self):
        path = build_events_path("work@x.com", WEEK_MIN, WEEK_MAX)

        assert path.startswith("/calendar/v3/calendars/work%40x.com/events?")
        assert "singleEvents=true" in path
        assert "orderBy=startTime" in path
        assert "timeMin=2099-01-05T00%3A00%3A00Z" in path
        assert "timeMax=2099-01-12T00%3A00%3A00Z" in path

    def test_build_events_path_without_range(self):
        assert build_events_path("primary") == (
            "/calendar/v3/calendars/primary/events?singleEvents=true&orderBy=startTime"
        )

    def test_sort_is_lexicographic_on_literal_start(self):
        events = [
            {"id": "late", "start": {"dateTime": "2099-01-06T09:00:00Z"}},
            {"id": "allday", "start": {"date": "2099-01-06"}},
            {"id": "early", "start": {"dateTime": "2099-01-05T09:00:00Z"}},
            {"id": "nostart"},
        ]

        assert [e["id"] for e in sort_events_by_start_time(events)] == [
            "nostart",
            "early",
            "allday",
            "late",
        ]

    def test_process_batch_responses_attributes_by_position(self):
        responses = [
            BatchResponse(200, body={"items": [{"id": "a1"}]}),
            BatchResponse(200, body={"items": [{"id": "b1"}, {"id": "b2"}]}),
            BatchResponse(403, body={"error": {"message": "Forbidden"}}, error="Forbidden"),
        ]

        events, failures = process_batch_responses(responses, ["a", "b", "c"])

        assert [(e["id"], e["calendarId"]) for e in events] == [("a1", "a"), ("b1", "b"), ("b2", "b")]
        assert failures == [{"calendarId": "c", "error": "Forbidden"}]


class TestMultiCalendarAggregator:
    """Strategy selection and result assembly."""

    @pytest.mark.asyncio
    async def test_single_calendar_uses_direct_call(self, mock_service):
        mock_service.events.return_value.list.return_value = api_request(
            {"items": [timed_event("e1", "2099-01-05T10:00:00Z", "2099-01-05T11:00:00Z")]}
        )
        batch_engine = AsyncMock()
        aggregator = MultiCalendarAggregator(mock_service, batch_engine)

        result = await aggregator.list_events(["primary"], WEEK_MIN, WEEK_MAX)

        batch_engine.execute_batch.assert_not_called()
        mock_service.events.return_value.list.assert_called_once_with(
            calendarId="primary",
            singleEvents=True,
            orderBy="startTime",
            timeMin=WEEK_MIN,
            timeMax=WEEK_MAX,
        )
        assert result.used_batch is False
        assert result.events[0]["calendarId"] == "primary"

    @pytest.mark.asyncio
    async def test_single_calendar_follows_pages(self, mock_service):
        pages = [
            {"items": [{"id": "e1"}], "nextPageToken": "p2"},
            {"items": [{"id": "e2"}]},
        ]
        mock_service.events.return_value.list.side_effect = [api_request(page) for page in pages]
        aggregator = MultiCalendarAggregator(mock_service)

        result = await aggregator.list_events(["primary"])

        assert [e["id"] for e in result.events] == ["e1", "e2"]
        second_call = mock_service.events.return_value.list.call_args_list[1]
        assert second_call.kwargs["pageToken"] == "p2"

    @pytest.mark.asyncio
    async def test_single_calendar_error_propagates(self, mock_service):
        mock_service.events.return_value.list.return_value = api_request(
            error=http_error(404, "Not Found")
        )
        aggregator = MultiCalendarAggregator(mock_service)

        with pytest.raises(NotFoundError) as exc_info:
            await aggregator.list_events(["missing@x.com"])
        assert exc_info.value.resource_id == "missing@x.com"

    @pytest.mark.asyncio
    async def test_many_calendars_use_exactly_one_batch(self, mock_service):
        ids = [f"cal{i}@x.com" for i in range(50)]
        batch_engine = AsyncMock()
        batch_engine.execute_batch.return_value = [BatchResponse(200, body={"items": []}) for _ in ids]
        aggregator = MultiCalendarAggregator(mock_service, batch_engine)

        await aggregator.list_events(ids, WEEK_MIN, WEEK_MAX)

        batch_engine.execute_batch.assert_awaited_once()
        requests = batch_engine.execute_batch.await_args.args[0]
        assert len(requests) == 50
        assert all(r.method == "GET" for r in requests)
        assert requests[3].path.startswith("/calendar/v3/calendars/cal3%40x.com/events?")
        mock_service.events.return_value.list.assert_not_called()

    @pytest.mark.asyncio
    async def test_more_than_fifty_fails_before_any_call(self, mock_service):
        batch_engine = AsyncMock()
        aggregator = MultiCalendarAggregator(mock_service, batch_engine)

        with pytest.raises(ValidationError):
            await aggregator.list_events([f"cal{i}" for i in range(51)])

        batch_engine.execute_batch.assert_not_called()
        mock_service.events.assert_not_called()

    @pytest.mark.asyncio
    async def test_partial_failure_is_reported_not_raised(self, mock_service):
        """primary returns two events, work@x.com returns 404."""
        batch_engine = AsyncMock()
        batch_engine.execute_batch.return_value = [
            BatchResponse(
                200,
                body={
                    "items": [
                        timed_event("p2", "2099-01-07T10:00:00Z", "2099-01-07T11:00:00Z", summary="Review"),
                        timed_event("p1", "2099-01-06T10:00:00Z", "2099-01-06T11:00:00Z", summary="Standup"),
                    ]
                },
            ),
            BatchResponse(404, body={"error": {"code": 404, "message": "Not Found"}}, error="Not Found"),
        ]
        aggregator = MultiCalendarAggregator(mock_service, batch_engine)

        result = await aggregator.list_events(["primary", "work@x.com"], WEEK_MIN, WEEK_MAX)

        assert result.used_batch is True
        assert [e["id"] for e in result.events] == ["p1", "p2"]
        assert {e["calendarId"] for e in result.events} == {"primary"}
        assert result.failures == [{"calendarId": "work@x.com", "error": "Not Found"}]

        text = format_aggregated_events(result)
        assert text.startswith("Found 2 events across 2 calendars:")
        assert "Calendar: primary" in text
        assert "Standup (p1)" in text
        assert "⚠️ Could not read 1 calendar(s):\n- work@x.com: Not Found" in text

    @pytest.mark.asyncio
    async def test_events_merge_in_start_order_across_calendars(self, mock_service):
        batch_engine = AsyncMock()
        batch_engine.execute_batch.return_value = [
            BatchResponse(200, body={"items": [{"id": "a", "start": {"dateTime": "2099-01-06T10:00:00Z"}}]}),
            BatchResponse(200, body={"items": [{"id": "b", "start": {"dateTime": "2099-01-05T10:00:00Z"}}]}),
        ]
        aggregator = MultiCalendarAggregator(mock_service, batch_engine)

        result = await aggregator.list_events(["one", "two"])

        assert [(e["id"], e["calendarId"]) for e in result.events] == [("b", "two"), ("a", "one")]


class TestFormatAggregatedEvents:
    """Text output for the list-events tool."""

    def test_no_events(self):
        result = AggregatedEvents(calendar_ids=["primary", "work@x.com"])
        assert format_aggregated_events(result) == "No events found in 2 calendar(s)."

    def test_single_calendar_is_flat(self):
        result = AggregatedEvents(
            calendar_ids=["primary"],
            events=[{"id": "e1", "summary": "Lunch", "start": {"date": "2099-01-05"}, "end": {"date": "2099-01-06"}, "calendarId": "primary"}],
        )

        text = format_aggregated_events(result)

        assert text.startswith("Lunch (e1)")
        assert "Calendar:" not in text
        assert "Start: 2099-01-05" in text

    def test_no_events_still_lists_failures(self):
        result = AggregatedEvents(
            calendar_ids=["a", "b"],
            failures=[{"calendarId": "b", "error": "Forbidden"}],
        )

        text = format_aggregated_events(result)

        assert text.startswith("No events found in 2 calendar(s).")
        assert "- b: Forbidden" in text
