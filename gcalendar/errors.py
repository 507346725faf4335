"""
Error taxonomy for the Google Calendar tools.

Handlers and engines raise these; only the FastMCP wrapper layer turns them
into tool errors via format_error_message().
"""

import json

import httpx
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError
from typing_extensions import Any, Dict, List, Optional

QUOTA_REASONS = {"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"}

REAUTH_GUIDANCE = (
    "Please re-authenticate with Google (the saved token is invalid or expired)."
)


class CalendarToolError(Exception):
    """Base class for every error surfaced by the calendar tools."""

    kind = "Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CalendarToolError):
    """Malformed, missing or contradictory input. No API call was made."""

    kind = "Validation error"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class AuthenticationError(CalendarToolError):
    kind = "Authentication error"


class NotFoundError(CalendarToolError):
    kind = "Not found"

    def __init__(self, message: str, resource_id: Optional[str] = None):
        super().__init__(message)
        self.resource_id = resource_id


class RateLimitError(CalendarToolError):
    kind = "Rate limit exceeded"


class TransientNetworkError(CalendarToolError):
    kind = "Network error"


class CalendarApiError(CalendarToolError):
    """API failure that fits none of the more specific kinds."""

    kind = "Calendar API error"

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class PartialFailure(CalendarToolError):
    """
    Some sub-operations succeeded and others failed.

    succeeded / failed hold human-readable descriptions of each
    sub-operation so the caller can tell exactly what was applied.
    """

    kind = "Partial failure"

    def __init__(
        self,
        message: str,
        succeeded: Optional[List[str]] = None,
        failed: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.succeeded = succeeded or []
        self.failed = failed or []


def extract_error_details(body: Any) -> Dict[str, Any]:
    """
    Pull message and reason out of a Google API error payload.

    Accepts the decoded JSON body, raw bytes/str, or None.
    """
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            return {"message": body.strip() or None, "reason": None}
    if not isinstance(body, dict):
        return {"message": None, "reason": None}

    error = body.get("error")
    if isinstance(error, dict):
        reason = None
        errors = error.get("errors") or []
        if errors and isinstance(errors[0], dict):
            reason = errors[0].get("reason")
        return {"message": error.get("message"), "reason": reason}
    if isinstance(error, str):
        return {"message": body.get("error_description") or error, "reason": error}
    return {"message": body.get("message"), "reason": None}


def error_for_status(
    status: int, body: Any = None, context: str = "", resource_id: Optional[str] = None
) -> CalendarToolError:
    """Map an HTTP status plus error body to a taxonomy error."""
    details = extract_error_details(body)
    detail = details["message"] or f"HTTP {status}"
    prefix = f"{context}: " if context else ""

    if status == 400:
        return ValidationError(f"{prefix}Invalid request: {detail}")
    if status == 401:
        return AuthenticationError(f"{prefix}{detail}. {REAUTH_GUIDANCE}")
    if status == 403:
        if details["reason"] in QUOTA_REASONS:
            return RateLimitError(f"{prefix}API quota exceeded ({details['reason']}). Please try again later.")
        return CalendarApiError(f"{prefix}Permission denied: {detail}", status=status)
    if status in (404, 410):
        target = f" '{resource_id}'" if resource_id else ""
        return NotFoundError(f"{prefix}Resource{target} not found: {detail}", resource_id=resource_id)
    if status == 429:
        return RateLimitError(f"{prefix}Rate limit exceeded. Please try again later.")
    if 500 <= status < 600:
        return TransientNetworkError(f"{prefix}Server error (status {status}): {detail}")
    return CalendarApiError(f"{prefix}HTTP {status}: {detail}", status=status)


def translate_http_error(
    error: Exception, context: str = "", resource_id: Optional[str] = None
) -> CalendarToolError:
    """
    Translate an exception raised by an external call into the taxonomy.

    Taxonomy errors pass through unchanged.
    """
    if isinstance(error, CalendarToolError):
        return error
    if isinstance(error, HttpError):
        return error_for_status(error.resp.status, error.content, context, resource_id)
    if isinstance(error, RefreshError):
        prefix = f"{context}: " if context else ""
        return AuthenticationError(f"{prefix}Unable to refresh credentials ({error}). {REAUTH_GUIDANCE}")
    if isinstance(error, (httpx.TransportError, TimeoutError, ConnectionError)):
        prefix = f"{context}: " if context else ""
        return TransientNetworkError(f"{prefix}{type(error).__name__}: {error}")
    prefix = f"{context}: " if context else ""
    return CalendarApiError(f"{prefix}Unexpected error: {error}")


def format_error_message(error: CalendarToolError) -> str:
    """Render an error as user-facing text starting with a failure marker."""
    lines = [f"❌ {error.kind}: {error.message}"]
    if isinstance(error, ValidationError) and error.field:
        lines.append(f"Field: {error.field}")
    if isinstance(error, PartialFailure):
        if error.succeeded:
            lines.append("Succeeded:")
            lines.extend(f"  - {item}" for item in error.succeeded)
        if error.failed:
            lines.append("Failed:")
            lines.extend(f"  - {item}" for item in error.failed)
    return "\n".join(lines)
