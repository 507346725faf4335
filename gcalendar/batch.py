"""
Batch request engine for the Google Calendar API.

Packs up to 50 independent sub-requests into one multipart/mixed HTTP call
to the batch endpoint and splits the multipart/mixed reply back into one
outcome per sub-request, in request order.

encode_batch_body() and decode_batch_response() are pure functions; the
BatchRequestEngine adds authentication, the single network call, and
whole-batch retry with exponential backoff.

Retrying the whole batch after a transport failure can replay writes that
the server had already applied. Callers that batch writes must tolerate
duplicates.
"""

import asyncio
import json
import re
import uuid
from dataclasses import dataclass, field

import httpx
from google.auth.transport.requests import Request
from typing_extensions import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from config.enhanced_logging import setup_logger
from config.settings import settings

from .errors import (
    AuthenticationError,
    CalendarApiError,
    CalendarToolError,
    RateLimitError,
    TransientNetworkError,
    ValidationError,
    error_for_status,
    translate_http_error,
)

logger = setup_logger()

MAX_BATCH_SIZE = 50

_BOUNDARY_PATTERN = re.compile(r'boundary="?([^";]+)"?', re.IGNORECASE)
_STATUS_LINE_PATTERN = re.compile(r"^HTTP/\d(?:\.\d)?\s+(\d{3})(?:\s+(.*))?$")
_CONTENT_ID_PATTERN = re.compile(r"(\d+)>?\s*$")


@dataclass
class BatchRequest:
    """One sub-request: method, path relative to the API host, optional JSON body."""

    method: str
    path: str
    body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class BatchResponse:
    """
    Outcome of one sub-request.

    status_code is 0 when the part could not be read at all; error is set
    whenever the part failed to parse or carried a non-2xx status.
    """

    status_code: int
    body: Any = None
    error: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300 and self.error is None

    @property
    def error_message(self) -> str:
        """Best human-readable description of a failed outcome."""
        if isinstance(self.body, dict):
            error = self.body.get("error")
            if isinstance(error, dict) and error.get("message"):
                return error["message"]
            if self.body.get("message"):
                return self.body["message"]
        if self.error:
            return self.error
        return f"HTTP {self.status_code}"


def new_boundary() -> str:
    return f"batch_{uuid.uuid4().hex}"


def content_id_for(index: int) -> str:
    """Content-ID of the part at zero-based index (Google echoes it as response-itemN)."""
    return f"<item{index + 1}>"


def validate_batch_size(requests: Sequence[BatchRequest]) -> None:
    if not requests:
        raise ValidationError("Batch requires at least one request")
    if len(requests) > MAX_BATCH_SIZE:
        raise ValidationError(
            f"Batch size {len(requests)} exceeds the maximum of {MAX_BATCH_SIZE} requests"
        )


def encode_batch_body(requests: Sequence[BatchRequest], boundary: str) -> bytes:
    """
    Encode sub-requests as a multipart/mixed body.

    Each part is an application/http message tagged with a Content-ID that
    encodes its position.
    """
    validate_batch_size(requests)

    chunks: List[str] = []
    for index, request in enumerate(requests):
        part = [
            f"--{boundary}",
            "Content-Type: application/http",
            "Content-Transfer-Encoding: binary",
            f"Content-ID: {content_id_for(index)}",
            "",
            f"{request.method.upper()} {request.path} HTTP/1.1",
        ]
        for name, value in request.headers.items():
            part.append(f"{name}: {value}")
        if request.body is not None:
            payload = json.dumps(request.body)
            part.append("Content-Type: application/json; charset=UTF-8")
            part.append(f"Content-Length: {len(payload.encode('utf-8'))}")
            part.append("")
            part.append(payload)
        else:
            part.append("")
        chunks.append("\r\n".join(part))

    chunks.append(f"--{boundary}--")
    return ("\r\n".join(chunks) + "\r\n").encode("utf-8")


def extract_boundary(content_type: str) -> str:
    match = _BOUNDARY_PATTERN.search(content_type or "")
    if not match or "multipart/mixed" not in (content_type or "").lower():
        raise CalendarApiError(
            f"Batch response is not multipart/mixed with a boundary (Content-Type: {content_type!r})"
        )
    return match.group(1).strip()


def _split_head(text: str):
    """Split a message at its first blank line into (header lines, remainder)."""
    if text.startswith("\n"):
        return [], text[1:]
    head, sep, rest = text.partition("\n\n")
    if not sep:
        return head.split("\n") if head else [], ""
    return head.split("\n"), rest


def _parse_headers(lines: List[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for line in lines:
        name, sep, value = line.partition(":")
        if sep and name.strip():
            headers[name.strip().lower()] = value.strip()
    return headers


def parse_part(part: str) -> "tuple[Optional[int], BatchResponse]":
    """
    Parse one multipart segment.

    Returns the position encoded in its Content-ID (None when absent or
    unreadable) and the outcome.
    """
    text = part.replace("\r\n", "\n").strip("\n")
    outer_lines, inner = _split_head(text)
    outer_headers = _parse_headers(outer_lines)

    position = None
    id_match = _CONTENT_ID_PATTERN.search(outer_headers.get("content-id", ""))
    if id_match:
        position = int(id_match.group(1)) - 1

    inner = inner.lstrip("\n")
    status_line, _, inner_rest = inner.partition("\n")
    status_match = _STATUS_LINE_PATTERN.match(status_line.strip())
    if not status_match:
        return position, BatchResponse(
            status_code=0,
            error=f"Malformed batch part: missing HTTP status line ({status_line.strip()[:80]!r})",
        )

    status_code = int(status_match.group(1))
    header_lines, raw_body = _split_head(inner_rest)
    headers = _parse_headers(header_lines)
    raw_body = raw_body.strip()

    if not raw_body:
        return position, BatchResponse(status_code=status_code, body=None, headers=headers)

    try:
        body = json.loads(raw_body)
    except ValueError:
        if "json" in headers.get("content-type", "json"):
            return position, BatchResponse(
                status_code=status_code,
                body=raw_body,
                error="Malformed batch part: body is not valid JSON",
                headers=headers,
            )
        body = raw_body

    response = BatchResponse(status_code=status_code, body=body, headers=headers)
    if not 200 <= status_code < 300:
        response.error = response.error_message
    return position, response


def decode_batch_response(
    body: bytes, content_type: str, expected: int
) -> List[BatchResponse]:
    """
    Decode a multipart/mixed batch reply into exactly `expected` outcomes.

    Parts are matched to requests by Content-ID and fall back to their order
    in the body. A request with no matching part gets an error outcome.
    """
    boundary = extract_boundary(content_type)
    text = body.decode("utf-8", errors="replace") if isinstance(body, (bytes, bytearray)) else body

    delimiter = f"--{boundary}"
    segments = text.split(delimiter)[1:]
    parts: List[str] = []
    for segment in segments:
        if segment.startswith("--"):
            break
        parts.append(segment)

    results: List[Optional[BatchResponse]] = [None] * expected
    for order, part in enumerate(parts):
        position, response = parse_part(part)
        if position is None or not 0 <= position < expected or results[position] is not None:
            position = order
        if 0 <= position < expected and results[position] is None:
            results[position] = response
        else:
            logger.warning(f"[decode_batch_response] Dropping unmatched batch part #{order + 1}")

    return [
        result
        if result is not None
        else BatchResponse(status_code=0, error="No response part returned for this request")
        for result in results
    ]


class BatchRequestEngine:
    """
    Executes batches against the Calendar batch endpoint.

    Only whole-batch failures (transport errors, 429, 5xx) are retried.
    Sub-request failures inside a successful reply are returned as-is.
    """

    def __init__(
        self,
        credentials,
        endpoint: Optional[str] = None,
        max_retries: Optional[int] = None,
        initial_backoff: Optional[float] = None,
        max_backoff: Optional[float] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.credentials = credentials
        self.endpoint = endpoint or settings.batch_endpoint
        self.max_retries = settings.batch_max_retries if max_retries is None else max_retries
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {self.max_retries}")
        self.initial_backoff = (
            settings.batch_initial_backoff_seconds if initial_backoff is None else initial_backoff
        )
        self.max_backoff = settings.batch_max_backoff_seconds if max_backoff is None else max_backoff
        self.timeout = settings.request_timeout_seconds if timeout is None else timeout
        self._http_client = http_client
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based): initial * 2^(attempt-1), capped."""
        return min(self.initial_backoff * (2 ** (attempt - 1)), self.max_backoff)

    async def _authorization_header(self) -> Dict[str, str]:
        if not getattr(self.credentials, "valid", False):
            if not getattr(self.credentials, "refresh_token", None):
                raise AuthenticationError(
                    "Saved Google token is expired and has no refresh token. Please re-authenticate."
                )
            try:
                await asyncio.to_thread(self.credentials.refresh, Request())
            except Exception as e:
                raise translate_http_error(e, "Refreshing credentials for batch request") from e
        return {"Authorization": f"Bearer {self.credentials.token}"}

    async def _post(self, client: httpx.AsyncClient, body: bytes, boundary: str) -> httpx.Response:
        headers = await self._authorization_header()
        headers["Content-Type"] = f"multipart/mixed; boundary={boundary}"
        return await client.post(self.endpoint, content=body, headers=headers, timeout=self.timeout)

    async def execute_batch(
        self, requests: Sequence[BatchRequest], boundary: Optional[str] = None
    ) -> List[BatchResponse]:
        """
        Send all requests in a single HTTP call and return one outcome per request.

        Raises:
            ValidationError: Empty batch or more than 50 requests.
            AuthenticationError: Credentials rejected (never retried).
            RateLimitError / TransientNetworkError: Retries exhausted.
        """
        validate_batch_size(requests)
        boundary = boundary or new_boundary()
        body = encode_batch_body(requests, boundary)

        logger.info(
            f"[execute_batch] Sending {len(requests)} sub-requests to {self.endpoint}"
        )

        if self._http_client is not None:
            return await self._execute_with_retry(self._http_client, requests, body, boundary)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._execute_with_retry(client, requests, body, boundary)

    async def _execute_with_retry(
        self,
        client: httpx.AsyncClient,
        requests: Sequence[BatchRequest],
        body: bytes,
        boundary: str,
    ) -> List[BatchResponse]:
        last_error: Optional[CalendarToolError] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._post(client, body, boundary)
            except httpx.TransportError as e:
                last_error = translate_http_error(e, "Batch request")
                logger.warning(
                    f"[execute_batch] Attempt {attempt}/{self.max_retries} failed: {last_error.message}"
                )
            else:
                if response.status_code == 429 or 500 <= response.status_code < 600:
                    last_error = error_for_status(response.status_code, response.content, "Batch request")
                    logger.warning(
                        f"[execute_batch] Attempt {attempt}/{self.max_retries} got HTTP {response.status_code}"
                    )
                elif response.status_code >= 400:
                    error = error_for_status(response.status_code, response.content, "Batch request")
                    logger.error(f"[execute_batch] ❌ {error.message}")
                    raise error
                else:
                    outcomes = decode_batch_response(
                        response.content,
                        response.headers.get("content-type", ""),
                        len(requests),
                    )
                    failed = sum(1 for outcome in outcomes if not outcome.ok)
                    logger.info(
                        f"[execute_batch] ✅ Batch completed: {len(outcomes) - failed} succeeded, {failed} failed"
                    )
                    return outcomes

            if attempt < self.max_retries:
                await self._sleep(self.backoff_delay(attempt))

        logger.error(f"[execute_batch] ❌ Giving up after {self.max_retries} attempts")
        if isinstance(last_error, (RateLimitError, TransientNetworkError)):
            raise last_error
        raise TransientNetworkError(f"Batch request failed after {self.max_retries} attempts")
