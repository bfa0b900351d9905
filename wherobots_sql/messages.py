# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Message shapes exchanged with the session service and over the channel.

HTTP responses and channel messages are validated with pydantic models;
anything that fails validation is rejected rather than guessed at.

Outbound channel messages are always JSON text.  Inbound frames are decoded
by frame type: text frames as JSON, binary frames as CBOR.  This keeps both
encodings usable whichever protocol version the server speaks.
"""

from __future__ import annotations

import json
from typing import Any, Literal

import cbor2
import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from wherobots_sql.constants import (
    IN_PROGRESS_SESSION_STATUSES,
    DataCompression,
    GeometryRepresentation,
    ResultsFormat,
    SessionStatus,
)
from wherobots_sql.errors import HttpRequestError, ProtocolError

__all__ = [
    "AppMeta",
    "CancelEvent",
    "ErrorEvent",
    "ExecuteSQLEvent",
    "ExecutionResultEvent",
    "ExecutionResults",
    "RetrieveResultsEvent",
    "SessionResponse",
    "StateUpdatedEvent",
    "decode_frame",
    "encode_event",
    "parse_session_response",
]


# ---------------------------------------------------------------------------
# Session service (HTTP)
# ---------------------------------------------------------------------------


class AppMeta(BaseModel):
    """Application metadata of a ready session."""

    url: str


class SessionResponse(BaseModel):
    """A session as reported by ``/sql/session`` endpoints."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: SessionStatus
    app_meta: AppMeta | None = Field(default=None, alias="appMeta")
    traces: dict[str, Any] | None
    message: str | None

    @property
    def is_terminal(self) -> bool:
        """Whether polling should stop at this status."""
        return self.status not in IN_PROGRESS_SESSION_STATUSES


def _body_preview(content: bytes) -> str:
    """Return a truncated, decoded preview of a response body."""
    return content[:200].decode(errors="replace") if content else ""


def parse_session_response(response: httpx.Response) -> SessionResponse:
    """Validate an HTTP response from the session service.

    Raises:
        HttpRequestError: If the response status is not a success.
        ProtocolError: If the body is not a valid session payload.

    """
    if not response.is_success:
        raise HttpRequestError(response.status_code, _body_preview(response.content), url=str(response.url))
    try:
        return SessionResponse.model_validate_json(response.content)
    except ValidationError as exc:
        count = exc.error_count()
        raise ProtocolError(f"Invalid API response from {response.url}: {count} validation error(s)") from exc


# ---------------------------------------------------------------------------
# Channel events
# ---------------------------------------------------------------------------


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    execution_id: str


class ExecuteSQLEvent(_Event):
    """Asks the server to execute a statement."""

    kind: Literal["execute_sql"] = "execute_sql"
    statement: str


class RetrieveResultsEvent(_Event):
    """Asks the server for the results of a succeeded execution."""

    kind: Literal["retrieve_results"] = "retrieve_results"
    geometry: GeometryRepresentation


class CancelEvent(_Event):
    """Asks the server to stop an execution (protocol 1.1.0 and later)."""

    kind: Literal["cancel"] = "cancel"


class StateUpdatedEvent(_Event):
    """Reports that an execution succeeded.

    Only the ``succeeded`` state validates; other states are ignored because
    failures arrive as a dedicated ``error`` event.
    """

    kind: Literal["state_updated"]
    state: Literal["succeeded"]


class ErrorEvent(_Event):
    """Reports that an execution failed."""

    kind: Literal["error"]
    message: str


class ExecutionResults(BaseModel):
    """Encoded result payload of an execution."""

    model_config = ConfigDict(frozen=True)

    result_bytes: bytes
    compression: DataCompression
    format: ResultsFormat
    geometry: GeometryRepresentation | None = None
    geo_columns: list[str] = Field(default_factory=list)


class ExecutionResultEvent(_Event):
    """Carries the results requested by ``retrieve_results``."""

    kind: Literal["execution_result"]
    state: Literal["succeeded"]
    results: ExecutionResults


def encode_event(event: ExecuteSQLEvent | RetrieveResultsEvent | CancelEvent) -> str:
    """Serialize an outbound event as JSON text."""
    return event.model_dump_json()


def decode_frame(data: str | bytes | bytearray) -> Any:
    """Decode one inbound frame: JSON for text, CBOR for binary.

    Raises:
        ProtocolError: If the frame cannot be decoded.

    """
    try:
        if isinstance(data, str):
            return json.loads(data)
        return cbor2.loads(bytes(data))
    except (ValueError, cbor2.CBORDecodeError) as exc:
        raise ProtocolError(f"Undecodable channel frame: {exc}") from exc
