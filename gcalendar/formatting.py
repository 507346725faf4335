"""Plain-text rendering of Calendar API records for tool results."""

from urllib.parse import quote

from typing_extensions import Any, Dict, List, Optional, Sequence

from .datetime_utils import boundary_value

EVENT_URL_BASE = "https://calendar.google.com/calendar/event"
LINK_PREFIX = "🔗 View in Google Calendar: "


def generate_event_url(calendar_id: str, event_id: str) -> str:
    """Deep link to an event in the Google Calendar web UI."""
    return f"{EVENT_URL_BASE}?eid={quote(event_id, safe='')}&cid={quote(calendar_id, safe='')}"


def _format_reminders(reminders: Dict[str, Any]) -> str:
    if reminders.get("useDefault"):
        return "Using default"
    overrides = reminders.get("overrides") or []
    rendered = ", ".join(
        f"{item.get('method', 'popup')} {item.get('minutes')} minutes before" for item in overrides
    )
    return rendered or "None"


def format_event_with_url(event: Dict[str, Any], calendar_id: Optional[str] = None) -> str:
    """
    Render one event.

    Start/End show the API's literal dateTime or date value, so all-day
    events keep their bare YYYY-MM-DD boundaries.
    """
    lines = [f"{event.get('summary') or 'Untitled'} ({event.get('id') or 'no-id'})"]

    if event.get("location"):
        lines.append(f"Location: {event['location']}")
    if event.get("description"):
        lines.append(f"Description: {event['description']}")

    calendar_id = calendar_id or event.get("calendarId")
    if event.get("htmlLink"):
        lines.append(f"{LINK_PREFIX}{event['htmlLink']}")
    elif calendar_id and event.get("id"):
        lines.append(f"{LINK_PREFIX}{generate_event_url(calendar_id, event['id'])}")

    lines.append(f"Start: {boundary_value(event.get('start')) or 'unspecified'}")
    lines.append(f"End: {boundary_value(event.get('end')) or 'unspecified'}")

    if event.get("attendees"):
        attendees = ", ".join(
            f"{a.get('email') or 'no-email'} ({a.get('responseStatus') or 'unknown'})"
            for a in event["attendees"]
        )
        lines.append(f"Attendees: {attendees}")
    if event.get("colorId"):
        lines.append(f"Color ID: {event['colorId']}")
    if event.get("reminders"):
        lines.append(f"Reminders: {_format_reminders(event['reminders'])}")
    if event.get("recurrence"):
        lines.append(f"Recurrence: {'; '.join(event['recurrence'])}")

    return "\n".join(lines) + "\n"


def format_event_list(events: Sequence[Dict[str, Any]], calendar_id: Optional[str] = None) -> str:
    return "\n".join(format_event_with_url(event, calendar_id) for event in events)


def format_calendar_failures(failures: Sequence[Dict[str, str]]) -> str:
    if not failures:
        return ""
    lines = [f"⚠️ Could not read {len(failures)} calendar(s):"]
    lines.extend(f"- {failure['calendarId']}: {failure['error']}" for failure in failures)
    return "\n".join(lines)


def format_multi_calendar_events(
    events: Sequence[Dict[str, Any]], calendar_ids: Sequence[str]
) -> str:
    """
    Group events by source calendar under a count header.

    Groups appear in the order each calendar first occurs in the sorted
    event list.
    """
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for event in events:
        grouped.setdefault(event["calendarId"], []).append(event)

    output = f"Found {len(events)} events across {len(calendar_ids)} calendars:\n\n"
    for calendar_id, calendar_events in grouped.items():
        output += f"Calendar: {calendar_id}\n"
        output += format_event_list(calendar_events, calendar_id)
        output += "\n"
    return output


def format_free_busy_summary(response: Dict[str, Any], calendar_order: Sequence[str] = ()) -> str:
    """
    Summarize a freebusy.query response per calendar.

    Calendars print in calendar_order first, then any extra ids the API
    returned (expanded groups) in sorted order.
    """
    calendars = response.get("calendars") or {}
    ordered = [cid for cid in calendar_order if cid in calendars]
    ordered += sorted(cid for cid in calendars if cid not in ordered)

    blocks = []
    for calendar_id in ordered:
        info = calendars[calendar_id] or {}
        errors = info.get("errors") or []
        if any(error.get("reason") == "notFound" for error in errors):
            blocks.append(f"Cannot check availability for {calendar_id} (account not found)\n")
            continue
        if errors:
            reasons = ", ".join(error.get("reason", "unknown") for error in errors)
            blocks.append(f"Cannot check availability for {calendar_id} ({reasons})\n")
            continue
        busy = info.get("busy") or []
        if not busy:
            blocks.append(
                f"{calendar_id} is available during {response.get('timeMin')} to {response.get('timeMax')}\n"
            )
            continue
        slots = "\n".join(f"- From {slot.get('start')} to {slot.get('end')}" for slot in busy)
        blocks.append(f"{calendar_id} is busy during:\n{slots}\n")

    return "\n".join(blocks).strip()


def format_calendar_list(calendars: Sequence[Dict[str, Any]]) -> str:
    if not calendars:
        return "No calendars found."
    lines = []
    for calendar in calendars:
        marker = " [primary]" if calendar.get("primary") else ""
        line = f"{calendar.get('summary') or 'Untitled'} ({calendar.get('id')}){marker}"
        if calendar.get("timeZone"):
            line += f" - {calendar['timeZone']}"
        lines.append(line)
    return "\n".join(lines)


def format_colors(colors: Dict[str, Any]) -> str:
    event_colors = colors.get("event") or {}
    lines = ["Available event colors:"]
    for color_id in sorted(event_colors, key=lambda key: int(key) if str(key).isdigit() else 0):
        color = event_colors[color_id]
        lines.append(
            f"Color ID: {color_id} - {color.get('background')} (background) / {color.get('foreground')} (foreground)"
        )
    return "\n".join(lines)
