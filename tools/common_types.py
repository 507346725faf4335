"""
Common parameter types for the calendar MCP tools.

Reusable Annotated aliases so every tool describes shared parameters the
same way in its generated JSON schema.
"""

from typing import Optional, Union

from pydantic import Field
from typing_extensions import Annotated, List, Literal

CalendarId = Annotated[
    str,
    Field(
        description="ID of the calendar (use 'primary' for the main calendar). Calendar IDs can be obtained using `list-calendars`",
    ),
]

CalendarIds = Annotated[
    Union[str, List[str]],
    Field(
        description=(
            "ID of the calendar(s) to list events from. Accepts a single calendar ID, "
            "an array of up to 50 calendar IDs, or a JSON array string "
            "(e.g. '[\"primary\", \"work@example.com\"]')"
        ),
    ),
]

EventId = Annotated[str, Field(description="ID of the event")]

RequiredTimeMin = Annotated[
    str,
    Field(
        description="Start of the time range, RFC3339 with timezone (e.g. '2024-01-01T00:00:00Z' or '2024-01-01T00:00:00-08:00')",
    ),
]

RequiredTimeMax = Annotated[
    str,
    Field(
        description="End of the time range, RFC3339 with timezone (e.g. '2024-12-31T23:59:59Z')",
    ),
]

OptionalTimeMin = Annotated[
    Optional[str],
    Field(
        description="Start of the time range, RFC3339 with timezone (e.g. '2024-01-01T00:00:00Z'). If omitted, the range is open",
    ),
]

OptionalTimeMax = Annotated[
    Optional[str],
    Field(
        description="End of the time range, RFC3339 with timezone (e.g. '2024-12-31T23:59:59Z'). If omitted, the range is open",
    ),
]

EventBoundary = Annotated[
    str,
    Field(
        description="RFC3339 date-time with timezone (e.g. '2024-08-15T10:00:00-07:00'), or a date 'YYYY-MM-DD' for an all-day event",
    ),
]

OptionalEventBoundary = Annotated[
    Optional[str],
    Field(
        description="New RFC3339 date-time with timezone, or a date 'YYYY-MM-DD' for an all-day event",
    ),
]

TimeZone = Annotated[
    Optional[str],
    Field(
        description="IANA time zone name (e.g. 'America/Los_Angeles'). Date-only (all-day) boundaries ignore it",
    ),
]

SendUpdates = Annotated[
    Literal["all", "externalOnly", "none"],
    Field(
        description="Whether to send notifications about the change to attendees",
    ),
]

ColorId = Annotated[
    Optional[str],
    Field(
        description="Color ID for the event (use `list-colors` to see the available IDs)",
    ),
]

Recurrence = Annotated[
    Optional[List[str]],
    Field(
        description="RFC 5545 recurrence lines (e.g. ['RRULE:FREQ=WEEKLY;COUNT=5'])",
    ),
]
