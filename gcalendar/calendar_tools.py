"""
Google Calendar MCP tools for FastMCP.

TOOL_REGISTRY is the static table of the nine calendar tools. run_tool()
validates arguments, opens a calendar client and dispatches to the tool's
handler; setup_calendar_tools() exposes every entry as a FastMCP tool.
"""

from dataclasses import dataclass, field

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import Field
from typing_extensions import Annotated, Any, Awaitable, Callable, Dict, List, Optional, Type

from auth.google_auth import GoogleAuthError
from auth.service_helpers import CalendarClient, GoogleServiceError, get_calendar_client
from config.enhanced_logging import setup_logger
from config.settings import settings
from tools.common_types import (
    CalendarId,
    CalendarIds,
    ColorId,
    EventBoundary,
    EventId,
    OptionalEventBoundary,
    OptionalTimeMax,
    OptionalTimeMin,
    Recurrence,
    RequiredTimeMax,
    RequiredTimeMin,
    SendUpdates,
    TimeZone,
)

from .calendar_types import (
    Attendee,
    CalendarArgs,
    CreateEventArgs,
    DeleteEventArgs,
    FreeBusyArgs,
    FreeBusyItem,
    GetCurrentTimeArgs,
    ListEventsArgs,
    NoArgs,
    Reminders,
    SearchEventsArgs,
    UpdateEventArgs,
    parse_arguments,
)
from .errors import (
    REAUTH_GUIDANCE,
    AuthenticationError,
    CalendarApiError,
    CalendarToolError,
    ValidationError,
    format_error_message,
    translate_http_error,
)
from .handlers import (
    BaseToolHandler,
    CreateEventHandler,
    DeleteEventHandler,
    FreeBusyHandler,
    GetCurrentTimeHandler,
    ListCalendarsHandler,
    ListColorsHandler,
    ListEventsHandler,
    SearchEventsHandler,
    UpdateEventHandler,
)

logger = setup_logger()

ClientFactory = Callable[[], Awaitable[CalendarClient]]

READ_ONLY = {
    "readOnlyHint": True,
    "destructiveHint": False,
    "idempotentHint": True,
    "openWorldHint": True,
}


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    args_model: Type[CalendarArgs]
    handler: Type[BaseToolHandler]
    tags: frozenset = frozenset()
    annotations: Dict[str, Any] = field(default_factory=dict)


_TOOLS = [
    ToolDefinition(
        name="list-calendars",
        description="List all available calendars",
        args_model=NoArgs,
        handler=ListCalendarsHandler,
        tags=frozenset({"calendar", "list", "google"}),
        annotations={"title": "List Google Calendars", **READ_ONLY},
    ),
    ToolDefinition(
        name="list-events",
        description=(
            "List events from one or more calendars. Each event includes a clickable URL for "
            "easy viewing in Google Calendar - always present these URLs to users for convenient access."
        ),
        args_model=ListEventsArgs,
        handler=ListEventsHandler,
        tags=frozenset({"calendar", "events", "list", "google"}),
        annotations={"title": "List Calendar Events", **READ_ONLY},
    ),
    ToolDefinition(
        name="search-events",
        description=(
            "Search for events in a calendar by text query. Each result includes a clickable URL "
            "for easy viewing in Google Calendar - always present these URLs to users for convenient access."
        ),
        args_model=SearchEventsArgs,
        handler=SearchEventsHandler,
        tags=frozenset({"calendar", "events", "search", "google"}),
        annotations={"title": "Search Calendar Events", **READ_ONLY},
    ),
    ToolDefinition(
        name="list-colors",
        description="List available color IDs and their meanings for calendar events",
        args_model=NoArgs,
        handler=ListColorsHandler,
        tags=frozenset({"calendar", "colors", "google"}),
        annotations={"title": "List Event Colors", **READ_ONLY},
    ),
    ToolDefinition(
        name="create-event",
        description=(
            "Create a new calendar event. Returns event details with a clickable URL for immediate "
            "viewing in Google Calendar - always share this URL with users so they can easily access their new event."
        ),
        args_model=CreateEventArgs,
        handler=CreateEventHandler,
        tags=frozenset({"calendar", "event", "create", "google"}),
        annotations={
            "title": "Create Calendar Event",
            "readOnlyHint": False,
            "destructiveHint": False,
            "idempotentHint": False,
            "openWorldHint": True,
        },
    ),
    ToolDefinition(
        name="update-event",
        description=(
            "Update an existing calendar event with recurring event modification scope support. "
            "Returns updated event details with a clickable URL for immediate viewing in Google Calendar - "
            "always share this URL with users so they can easily access their updated event."
        ),
        args_model=UpdateEventArgs,
        handler=UpdateEventHandler,
        tags=frozenset({"calendar", "event", "update", "google"}),
        annotations={
            "title": "Update Calendar Event",
            "readOnlyHint": False,
            "destructiveHint": True,
            "idempotentHint": False,
            "openWorldHint": True,
        },
    ),
    ToolDefinition(
        name="delete-event",
        description="Delete a calendar event",
        args_model=DeleteEventArgs,
        handler=DeleteEventHandler,
        tags=frozenset({"calendar", "event", "delete", "google"}),
        annotations={
            "title": "Delete Calendar Event",
            "readOnlyHint": False,
            "destructiveHint": True,
            "idempotentHint": True,
            "openWorldHint": True,
        },
    ),
    ToolDefinition(
        name="get-freebusy",
        description=(
            "Query free/busy information for calendars. Note: Time range is limited to a maximum "
            "of 3 months between timeMin and timeMax."
        ),
        args_model=FreeBusyArgs,
        handler=FreeBusyHandler,
        tags=frozenset({"calendar", "freebusy", "google"}),
        annotations={"title": "Query Free/Busy", **READ_ONLY},
    ),
    ToolDefinition(
        name="get-current-time",
        description=(
            "Get current system time and timezone information. Only use when explicitly asked for "
            "current time/date, not for event scheduling or calendar operations."
        ),
        args_model=GetCurrentTimeArgs,
        handler=GetCurrentTimeHandler,
        tags=frozenset({"time", "utility"}),
        annotations={"title": "Get Current Time", **READ_ONLY, "openWorldHint": False},
    ),
]

TOOL_REGISTRY: Dict[str, ToolDefinition] = {tool.name: tool for tool in _TOOLS}


async def open_client(client_factory: ClientFactory) -> CalendarClient:
    """Build the calendar client, translating auth and service failures."""
    try:
        return await client_factory()
    except GoogleAuthError as e:
        raise AuthenticationError(f"{e} {REAUTH_GUIDANCE}") from e
    except GoogleServiceError as e:
        raise CalendarApiError(str(e)) from e
    except Exception as e:
        raise translate_http_error(e, "Connecting to Google Calendar") from e


async def run_tool(
    name: str,
    raw_args: Optional[Dict[str, Any]] = None,
    client_factory: Optional[ClientFactory] = None,
    timeout: Optional[float] = None,
) -> str:
    """
    Validate arguments and execute one tool.

    Structural validation happens before any client is created, so invalid
    input never triggers authentication or API traffic.

    Raises:
        CalendarToolError: any failure, already mapped to the taxonomy.
    """
    definition = TOOL_REGISTRY.get(name)
    if definition is None:
        raise ValidationError(
            f"Unknown tool '{name}'. Available tools: {', '.join(TOOL_REGISTRY)}", field="name"
        )

    args = parse_arguments(definition.args_model, raw_args)
    client = None
    if definition.handler.requires_client:
        client = await open_client(client_factory or get_calendar_client)
    handler = definition.handler(client, timeout or settings.request_timeout_seconds)

    logger.info(f"[{name}] Executing tool")
    return await handler.execute(args)


async def call_tool(name: str, **arguments: Any) -> str:
    """Entry point for the FastMCP wrappers: taxonomy errors become ToolError."""
    try:
        return await run_tool(name, {key: value for key, value in arguments.items() if value is not None})
    except CalendarToolError as e:
        logger.error(f"[{name}] ❌ {e.kind}: {e.message}")
        raise ToolError(format_error_message(e)) from e


def _register(mcp: FastMCP, name: str):
    definition = TOOL_REGISTRY[name]
    return mcp.tool(
        name=definition.name,
        description=definition.description,
        tags=set(definition.tags),
        annotations=definition.annotations,
    )


def setup_calendar_tools(mcp: FastMCP) -> None:
    """
    Register all Google Calendar tools with the MCP server.

    Args:
        mcp: The FastMCP server instance to register tools with
    """
    logger.info("Setting up Google Calendar tools")

    @_register(mcp, "list-calendars")
    async def list_calendars() -> str:
        return await call_tool("list-calendars")

    @_register(mcp, "list-events")
    async def list_events(
        calendar_id: CalendarIds,
        time_min: OptionalTimeMin = None,
        time_max: OptionalTimeMax = None,
    ) -> str:
        return await call_tool(
            "list-events", calendar_id=calendar_id, time_min=time_min, time_max=time_max
        )

    @_register(mcp, "search-events")
    async def search_events(
        calendar_id: CalendarId,
        query: Annotated[
            str,
            Field(description="Free text search query (searches summary, description, location, attendees, etc.)"),
        ],
        time_min: RequiredTimeMin,
        time_max: RequiredTimeMax,
    ) -> str:
        return await call_tool(
            "search-events",
            calendar_id=calendar_id,
            query=query,
            time_min=time_min,
            time_max=time_max,
        )

    @_register(mcp, "list-colors")
    async def list_colors() -> str:
        return await call_tool("list-colors")

    @_register(mcp, "create-event")
    async def create_event(
        calendar_id: CalendarId,
        summary: Annotated[str, Field(description="Title of the event")],
        start: EventBoundary,
        end: EventBoundary,
        description: Annotated[Optional[str], Field(description="Description/notes for the event")] = None,
        time_zone: TimeZone = None,
        location: Annotated[Optional[str], Field(description="Location of the event")] = None,
        attendees: Annotated[
            Optional[List[Attendee]],
            Field(description="List of attendees, each with an email address"),
        ] = None,
        color_id: ColorId = None,
        reminders: Annotated[
            Optional[Reminders],
            Field(description="Reminder settings for the event"),
        ] = None,
        recurrence: Recurrence = None,
    ) -> str:
        return await call_tool(
            "create-event",
            calendar_id=calendar_id,
            summary=summary,
            start=start,
            end=end,
            description=description,
            time_zone=time_zone,
            location=location,
            attendees=attendees,
            color_id=color_id,
            reminders=reminders,
            recurrence=recurrence,
        )

    @_register(mcp, "update-event")
    async def update_event(
        calendar_id: CalendarId,
        event_id: EventId,
        summary: Annotated[Optional[str], Field(description="Updated title of the event")] = None,
        description: Annotated[Optional[str], Field(description="Updated description/notes")] = None,
        start: OptionalEventBoundary = None,
        end: OptionalEventBoundary = None,
        time_zone: TimeZone = None,
        location: Annotated[Optional[str], Field(description="Updated location")] = None,
        attendees: Annotated[
            Optional[List[Attendee]],
            Field(description="Updated attendee list (replaces the existing one)"),
        ] = None,
        color_id: ColorId = None,
        reminders: Annotated[
            Optional[Reminders],
            Field(description="Updated reminder settings"),
        ] = None,
        recurrence: Recurrence = None,
        send_updates: SendUpdates = "all",
        modification_scope: Annotated[
            Optional[str],
            Field(
                description=(
                    "Scope for recurring events: 'all' (whole series, the default), "
                    "'thisEventOnly' (requires originalStartTime) or "
                    "'thisAndFollowing' (requires futureStartDate)"
                ),
            ),
        ] = None,
        original_start_time: Annotated[
            Optional[str],
            Field(
                description="Original start time of the instance to modify (RFC3339 with timezone). Required for 'thisEventOnly'",
            ),
        ] = None,
        future_start_date: Annotated[
            Optional[str],
            Field(
                description="Start of the following instances to modify (RFC3339 with timezone, in the future). Required for 'thisAndFollowing'",
            ),
        ] = None,
    ) -> str:
        return await call_tool(
            "update-event",
            calendar_id=calendar_id,
            event_id=event_id,
            summary=summary,
            description=description,
            start=start,
            end=end,
            time_zone=time_zone,
            location=location,
            attendees=attendees,
            color_id=color_id,
            reminders=reminders,
            recurrence=recurrence,
            send_updates=send_updates,
            modification_scope=modification_scope,
            original_start_time=original_start_time,
            future_start_date=future_start_date,
        )

    @_register(mcp, "delete-event")
    async def delete_event(
        calendar_id: CalendarId,
        event_id: EventId,
        send_updates: SendUpdates = "all",
    ) -> str:
        return await call_tool(
            "delete-event", calendar_id=calendar_id, event_id=event_id, send_updates=send_updates
        )

    @_register(mcp, "get-freebusy")
    async def get_freebusy(
        calendars: Annotated[
            List[FreeBusyItem],
            Field(description="Calendars to query, each as {'id': <calendar id or email>}"),
        ],
        time_min: RequiredTimeMin,
        time_max: RequiredTimeMax,
        time_zone: TimeZone = None,
        group_expansion_max: Annotated[
            Optional[int],
            Field(description="Maximum number of calendars to expand per group (max 100)"),
        ] = None,
        calendar_expansion_max: Annotated[
            Optional[int],
            Field(description="Maximum number of calendars to return busy information for (max 50)"),
        ] = None,
    ) -> str:
        return await call_tool(
            "get-freebusy",
            calendars=calendars,
            time_min=time_min,
            time_max=time_max,
            time_zone=time_zone,
            group_expansion_max=group_expansion_max,
            calendar_expansion_max=calendar_expansion_max,
        )

    @_register(mcp, "get-current-time")
    async def get_current_time(time_zone: TimeZone = None) -> str:
        return await call_tool("get-current-time", time_zone=time_zone)

    logger.info(f"✅ Registered {len(TOOL_REGISTRY)} Google Calendar tools")
