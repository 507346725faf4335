"""
Argument models and structured value types for the Google Calendar tools.

The pydantic models are the structural validation layer: types, shapes and
formats. Cross-field business rules live beside the engines that own them
(validate_calendar_ids, validate_modification_request, validate_time_range).
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from typing_extensions import (
    Any,
    Dict,
    List,
    Literal,
    NotRequired,
    Optional,
    Type,
    TypedDict,
    TypeVar,
    Union,
)

from .datetime_utils import has_timezone, is_date_only, parse_rfc3339
from .errors import ValidationError

RFC3339_MESSAGE = (
    "must be RFC3339 with a timezone (e.g. '2024-01-01T10:00:00Z' or '2024-01-01T10:00:00-08:00')"
)
BOUNDARY_MESSAGE = (
    "must be RFC3339 with a timezone (e.g. '2024-01-01T10:00:00-08:00') "
    "or a date (YYYY-MM-DD) for an all-day event"
)

SendUpdates = Literal["all", "externalOnly", "none"]
ModificationScopeName = Literal["all", "thisEventOnly", "thisAndFollowing"]


class CalendarFailure(TypedDict):
    """A calendar that could not be read during aggregation."""
    calendarId: str
    error: str


class FreeBusyCalendar(TypedDict):
    """One calendar entry of a freebusy.query response."""
    busy: List[Dict[str, str]]
    errors: NotRequired[List[Dict[str, str]]]


class UpdateEventResponse(TypedDict):
    """Outcome of an update-event call."""
    scope: str
    calendarId: str
    event: Dict[str, Any]
    originalEvent: NotRequired[Dict[str, Any]]  # truncated master after a split
    newEvent: NotRequired[Dict[str, Any]]       # series created by a split


def _check_rfc3339(value: Optional[str]) -> Optional[str]:
    if value is not None and not has_timezone(value):
        raise ValueError(RFC3339_MESSAGE)
    return value


def _check_boundary(value: Optional[str]) -> Optional[str]:
    if value is not None and not (has_timezone(value) or is_date_only(value)):
        raise ValueError(BOUNDARY_MESSAGE)
    return value


class CalendarArgs(BaseModel):
    """Base for tool arguments: snake_case fields, camelCase wire names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Attendee(CalendarArgs):
    email: str = Field(min_length=1, description="Email address of the attendee")


class ReminderOverride(CalendarArgs):
    method: Literal["email", "popup"] = Field("popup", description="Reminder method")
    minutes: int = Field(ge=0, description="Minutes before the event to trigger the reminder")


class Reminders(CalendarArgs):
    use_default: bool = Field(description="Whether to use the default reminders")
    overrides: Optional[List[ReminderOverride]] = Field(
        None, description="Custom reminders (up to 5)", max_length=5
    )


class ListEventsArgs(CalendarArgs):
    calendar_id: Union[str, List[str]] = Field(
        description="Calendar ID(s): a single ID, a list of IDs, or a JSON array string"
    )
    time_min: Optional[str] = None
    time_max: Optional[str] = None

    check_rfc3339 = field_validator("time_min", "time_max")(_check_rfc3339)

    @model_validator(mode="after")
    def check_time_range(self):
        if self.time_min and self.time_max:
            if parse_rfc3339(self.time_min) >= parse_rfc3339(self.time_max):
                raise ValueError("timeMin must be before timeMax")
        return self


class SearchEventsArgs(CalendarArgs):
    calendar_id: str = Field(min_length=1)
    query: str = Field(min_length=1, description="Free text search query")
    time_min: str
    time_max: str

    check_rfc3339 = field_validator("time_min", "time_max")(_check_rfc3339)


class EventFields(CalendarArgs):
    """Writable event fields shared by create and update."""

    summary: Optional[str] = None
    description: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    time_zone: Optional[str] = None
    location: Optional[str] = None
    attendees: Optional[List[Attendee]] = None
    color_id: Optional[str] = None
    reminders: Optional[Reminders] = None
    recurrence: Optional[List[str]] = None

    check_boundary = field_validator("start", "end")(_check_boundary)

    @model_validator(mode="after")
    def check_boundary_kind(self):
        if self.start and self.end and is_date_only(self.start) != is_date_only(self.end):
            raise ValueError("start and end must both be dates or both be date-times")
        return self


class CreateEventArgs(EventFields):
    calendar_id: str = Field(min_length=1)
    summary: str = Field(min_length=1)
    start: str
    end: str


class UpdateEventArgs(EventFields):
    calendar_id: str = Field(min_length=1)
    event_id: str = Field(min_length=1)
    send_updates: SendUpdates = "all"
    modification_scope: Optional[ModificationScopeName] = None
    original_start_time: Optional[str] = None
    future_start_date: Optional[str] = None

    check_scope_times = field_validator("original_start_time", "future_start_date")(_check_rfc3339)


class DeleteEventArgs(CalendarArgs):
    calendar_id: str = Field(min_length=1)
    event_id: str = Field(min_length=1)
    send_updates: SendUpdates = "all"


class FreeBusyItem(CalendarArgs):
    id: str = Field(min_length=1, description="Calendar ID or email address")


class FreeBusyArgs(CalendarArgs):
    calendars: List[FreeBusyItem] = Field(min_length=1)
    time_min: str
    time_max: str
    time_zone: Optional[str] = None
    group_expansion_max: Optional[int] = Field(None, ge=1, le=100)
    calendar_expansion_max: Optional[int] = Field(None, ge=1, le=50)

    check_rfc3339 = field_validator("time_min", "time_max")(_check_rfc3339)


class GetCurrentTimeArgs(CalendarArgs):
    time_zone: Optional[str] = None


class NoArgs(CalendarArgs):
    pass


ArgsT = TypeVar("ArgsT", bound=CalendarArgs)


def _error_field(loc) -> Optional[str]:
    parts = [
        to_camel(part) if "_" in part else part
        for part in (str(item) for item in loc if not isinstance(item, int))
    ]
    return ".".join(parts) or None


def parse_arguments(model: Type[ArgsT], raw_args: Optional[Dict[str, Any]]) -> ArgsT:
    """
    Validate raw tool arguments against a model.

    Raises:
        ValidationError: with the first offending field and every problem found.
    """
    try:
        return model.model_validate(raw_args or {})
    except PydanticValidationError as e:
        problems = []
        first_field = None
        for error in e.errors():
            field = _error_field(error.get("loc", ()))
            first_field = first_field or field
            message = error.get("msg", "invalid value").removeprefix("Value error, ")
            problems.append(f"{field}: {message}" if field else message)
        raise ValidationError("; ".join(problems), field=first_field) from e
