# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Exception hierarchy for the driver.

Every error raised by ``wherobots_sql`` derives from :class:`WherobotsError`,
so callers can catch the whole family with one ``except`` clause.

KEY CLASSES
-----------
ConfigurationError : invalid or missing connection options
HttpRequestError : non-retryable HTTP failure from the session service
HttpTransientError : retryable HTTP failure that exhausted its retry budget
AttemptTimeoutError : a single attempt exceeded its timeout
ProtocolError : a payload did not match the expected message shape
SessionError : the session service reported a terminal failure status
ChannelError : the WebSocket channel failed after it was opened
ChannelConnectError : the WebSocket channel failed before it was opened
ExecutionError : the server reported an error for one execution
ExecutionAborted : an execution was cancelled, by the caller or by the connection going away
ConnectionClosedError : the connection is closed or was never opened
UnsupportedPayloadError : unknown result compression or format
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

__all__ = [
    "AttemptTimeoutError",
    "ChannelConnectError",
    "ChannelError",
    "ConfigurationError",
    "ConnectionClosedError",
    "ExecutionAborted",
    "ExecutionError",
    "HttpRequestError",
    "HttpTransientError",
    "ProtocolError",
    "SessionError",
    "UnsupportedPayloadError",
    "WherobotsError",
]


class WherobotsError(Exception):
    """Base class for all driver errors."""


class ConfigurationError(WherobotsError):
    """Raised when connection options are missing or invalid."""


class HttpRequestError(WherobotsError):
    """Raised when the session service answers with a non-success status.

    Attributes:
        status_code: The HTTP status code of the failed response.
        body_preview: The first 200 characters of the response body.

    """

    def __init__(self, status_code: int, body_preview: str, *, url: str = "") -> None:
        """Initialize with HTTP status code and response body preview."""
        self.status_code = status_code
        self.body_preview = body_preview
        self.url = url
        super().__init__(f"Request failed: HTTP {status_code} (body: {body_preview!r})")


class HttpTransientError(HttpRequestError):
    """Raised when a retryable HTTP status persists after all retries."""


class AttemptTimeoutError(WherobotsError, TimeoutError):
    """Raised when a single attempt does not finish within its timeout."""

    def __init__(self, timeout: float) -> None:
        """Initialize with the timeout that elapsed, in seconds."""
        self.timeout = timeout
        super().__init__(f"The operation timed out after {timeout:g}s")


class ProtocolError(WherobotsError):
    """Raised when a response does not match the expected message shape.

    Protocol errors signal a client/server mismatch and are never retried.
    """


class SessionError(WherobotsError):
    """Raised when the session service reports a terminal failure status.

    Attributes:
        session_id: Identifier of the failed session.
        status: The terminal status reported by the server.
        server_message: Diagnostic message from the server, if any.
        traces: Diagnostic traces from the server, if any.

    """

    def __init__(
        self,
        session_id: str,
        status: str,
        server_message: str | None = None,
        traces: Mapping[str, Any] | None = None,
    ) -> None:
        """Initialize with the session id, status and server diagnostics."""
        self.session_id = session_id
        self.status = status
        self.server_message = server_message
        self.traces = traces
        detail = f": {server_message}" if server_message else ""
        super().__init__(f"Session {session_id} failed with status {status}{detail}")


class ChannelError(WherobotsError):
    """Raised when the WebSocket channel errors or closes unexpectedly."""


class ChannelConnectError(ChannelError):
    """Raised when the WebSocket channel fails before it is opened."""


class ExecutionError(WherobotsError):
    """Raised when the server reports an error for a specific execution."""

    def __init__(self, execution_id: str, server_message: str) -> None:
        """Initialize with the execution id and the server's error message."""
        self.execution_id = execution_id
        self.server_message = server_message
        super().__init__(f"Execution {execution_id} failed: {server_message}")


class ExecutionAborted(WherobotsError):
    """Raised when an execution is cancelled.

    Either the caller cancelled it, or the connection was closed or its
    channel failed while it was pending; in that case ``__cause__`` is the
    ``ConnectionClosedError`` or ``ChannelError`` that ended the session.
    """

    def __init__(self, execution_id: str = "") -> None:
        """Initialize with the id of the aborted execution, if known."""
        self.execution_id = execution_id
        super().__init__(f"Execution {execution_id} was aborted" if execution_id else "Execution was aborted")


class ConnectionClosedError(WherobotsError):
    """Raised when a closed or unopened connection is used."""


class UnsupportedPayloadError(WherobotsError):
    """Raised when a result payload uses an unknown compression or format."""
