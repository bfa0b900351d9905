# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""In-process stand-ins for the session service and the WebSocket channel.

No network is needed: :class:`SessionServiceStub` plugs into
``httpx.AsyncClient`` through ``httpx.MockTransport`` and
:class:`FakeChannelFactory` replaces :class:`~wherobots_sql.channel.AiohttpChannel`::

    service = SessionServiceStub(default=session_response(SessionStatus.READY))
    factory = FakeChannelFactory(responder=auto_responder(table))
    async with httpx.AsyncClient(transport=service.transport) as client:
        conn = await Connection.connect(
            api_key="test", runtime=Runtime.SEDONA, http_client=client, channel_factory=factory
        )
"""

from __future__ import annotations

import asyncio
import inspect
import json
from collections.abc import Awaitable, Callable, Iterable, Mapping
from io import BytesIO
from typing import Any, Literal

import brotli
import cbor2
import httpx
import pyarrow as pa
from pyarrow import ipc

from wherobots_sql.channel import ChannelEvent, ChannelEventName, ChannelListener, _ListenerSet
from wherobots_sql.constants import DataCompression, GeometryRepresentation, ResultsFormat, SessionStatus
from wherobots_sql.errors import ChannelError

__all__ = [
    "TEST_APP_URL",
    "TEST_SESSION_ID",
    "FakeChannel",
    "FakeChannelFactory",
    "SessionServiceStub",
    "auto_responder",
    "encode_arrow_payload",
    "error_message",
    "execution_result_message",
    "raise_timeout",
    "session_payload",
    "session_response",
    "state_updated_message",
]

TEST_SESSION_ID = "test-session-id"
TEST_APP_URL = "https://test-session-url"

# ---------------------------------------------------------------------------
# Session service
# ---------------------------------------------------------------------------

ScriptedResponse = httpx.Response | Callable[[httpx.Request], httpx.Response | Awaitable[httpx.Response]]


def session_payload(
    status: SessionStatus | str,
    *,
    session_id: str = TEST_SESSION_ID,
    app_url: str | None = TEST_APP_URL,
    message: str | None = None,
    traces: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a session body as returned by the session service."""
    return {
        "id": session_id,
        "status": str(status),
        "appMeta": {"url": app_url} if app_url is not None else None,
        "traces": traces,
        "message": message,
    }


def session_response(status: SessionStatus | str, **kwargs: Any) -> httpx.Response:
    """Build a 200 response carrying :func:`session_payload`."""
    return httpx.Response(200, json=session_payload(status, **kwargs))


def raise_timeout(request: httpx.Request) -> httpx.Response:
    """Scripted response that fails the request with a read timeout."""
    raise httpx.ReadTimeout("The operation timed out.", request=request)


class SessionServiceStub:
    """Scripted session service for ``httpx.MockTransport``.

    Scripted responses are consumed in order; once exhausted every request
    gets *default*.  Each entry is either an ``httpx.Response`` or a
    callable receiving the request (which may raise, or be async to
    simulate a slow server).
    """

    def __init__(self, responses: Iterable[ScriptedResponse] = (), *, default: ScriptedResponse | None = None) -> None:
        """Initialize with scripted responses and an optional fallback."""
        self._script: list[ScriptedResponse] = list(responses)
        self._default = default
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        """A transport routing every request to this stub."""
        return httpx.MockTransport(self._handle)

    @property
    def call_count(self) -> int:
        """Number of requests received."""
        return len(self.requests)

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self._script:
            entry = self._script.pop(0)
        elif self._default is not None:
            entry = self._default
        else:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")
        if isinstance(entry, httpx.Response):
            # Responses are single-use once read by a client.
            return httpx.Response(entry.status_code, headers=entry.headers, content=entry.content)
        result = entry(request)
        if inspect.isawaitable(result):
            result = await result
        return result


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------

FakeBehaviour = Literal["open", "error", "hang"]


class FakeChannel:
    """Channel double recording what is sent and who listens.

    Depending on *behaviour* the channel emits ``open`` or ``error`` on the
    next loop iteration, or stays silent (``"hang"``) so connect attempts
    time out.  A *responder* sees every decoded outbound message and can
    schedule replies with :meth:`reply`.
    """

    def __init__(
        self,
        url: str,
        headers: Mapping[str, str],
        *,
        behaviour: FakeBehaviour = "open",
        responder: Responder | None = None,
    ) -> None:
        """Create the channel; requires a running event loop."""
        self.url = url
        self.headers = dict(headers)
        self.sent: list[str] = []
        self.closed = False
        self.add_listener_calls = 0
        self.remove_listener_calls = 0
        self._listeners = _ListenerSet()
        self._responder = responder
        self._loop = asyncio.get_running_loop()
        if behaviour == "open":
            self._loop.call_soon(self._emit_unless_closed, ChannelEvent("open"))
        elif behaviour == "error":
            self._loop.call_soon(self._emit_unless_closed, ChannelEvent("error", message="Connection refused"))

    @property
    def sent_messages(self) -> list[dict[str, Any]]:
        """Outbound messages, decoded."""
        return [json.loads(data) for data in self.sent]

    def add_listener(self, event: ChannelEventName, listener: ChannelListener) -> None:
        self.add_listener_calls += 1
        self._listeners.add(event, listener)

    def remove_listener(self, event: ChannelEventName, listener: ChannelListener) -> None:
        self.remove_listener_calls += 1
        self._listeners.remove(event, listener)

    async def send(self, data: str) -> None:
        if self.closed:
            raise ChannelError("WebSocket is not open")
        self.sent.append(data)
        if self._responder is not None:
            self._responder(self, json.loads(data))

    async def close(self) -> None:
        self.closed = True

    def emit(self, event: ChannelEvent) -> None:
        """Deliver *event* to the registered listeners right away."""
        self._listeners.emit(event)

    def reply(self, payload: Mapping[str, Any], *, delay: float = 0.0, binary: bool = False) -> None:
        """Schedule an inbound message: CBOR when *binary*, else JSON text."""
        data: str | bytes = cbor2.dumps(dict(payload)) if binary else json.dumps(payload)
        self._loop.call_later(delay, self._emit_unless_closed, ChannelEvent("message", data=data))

    async def wait_sent(self, count: int, timeout: float = 1.0) -> None:
        """Wait until at least *count* messages were sent."""
        async with asyncio.timeout(timeout):
            while len(self.sent) < count:
                await asyncio.sleep(0)

    def _emit_unless_closed(self, event: ChannelEvent) -> None:
        if not self.closed:
            self.emit(event)


Responder = Callable[[FakeChannel, dict[str, Any]], None]


class FakeChannelFactory:
    """``ChannelFactory`` creating :class:`FakeChannel` instances.

    *behaviours* apply to the first channels created, in order; later
    channels use *default*.
    """

    def __init__(
        self,
        behaviours: Iterable[FakeBehaviour] = (),
        *,
        default: FakeBehaviour = "open",
        responder: Responder | None = None,
    ) -> None:
        """Initialize with per-channel behaviours and a shared responder."""
        self._behaviours = list(behaviours)
        self._default = default
        self.responder = responder
        self.channels: list[FakeChannel] = []

    def __call__(self, url: str, headers: Mapping[str, str]) -> FakeChannel:
        behaviour = self._behaviours.pop(0) if self._behaviours else self._default
        channel = FakeChannel(url, headers, behaviour=behaviour, responder=self.responder)
        self.channels.append(channel)
        return channel

    @property
    def last(self) -> FakeChannel:
        """The most recently created channel."""
        return self.channels[-1]


# ---------------------------------------------------------------------------
# Execution messages
# ---------------------------------------------------------------------------


def encode_arrow_payload(table: pa.Table) -> bytes:
    """Serialize *table* as a brotli-compressed Arrow IPC stream."""
    sink = BytesIO()
    with ipc.new_stream(sink, table.schema) as writer:
        writer.write_table(table)
    return brotli.compress(sink.getvalue())


def state_updated_message(execution_id: str, state: str = "succeeded") -> dict[str, Any]:
    return {"kind": "state_updated", "execution_id": execution_id, "state": state}


def error_message(execution_id: str, message: str = "Error executing SQL") -> dict[str, Any]:
    return {"kind": "error", "execution_id": execution_id, "message": message}


def execution_result_message(
    execution_id: str,
    table: pa.Table,
    *,
    geometry: GeometryRepresentation = GeometryRepresentation.EWKT,
) -> dict[str, Any]:
    """Build an ``execution_result`` message; send it with ``binary=True``."""
    return {
        "kind": "execution_result",
        "execution_id": execution_id,
        "state": "succeeded",
        "results": {
            "result_bytes": encode_arrow_payload(table),
            "compression": DataCompression.BROTLI.value,
            "format": ResultsFormat.ARROW.value,
            "geometry": geometry.value,
            "geo_columns": [],
        },
    }


def auto_responder(
    tables: pa.Table | Mapping[str, pa.Table],
    *,
    delays: Mapping[str, float] | None = None,
) -> Responder:
    """Answer every execution like a healthy server would.

    ``execute_sql`` gets a ``running`` then a ``succeeded`` state update;
    ``retrieve_results`` gets the result table.  *tables* is either one
    table for every statement or a mapping from statement to table, and
    *delays* optionally postpones the results of given statements.
    """
    statements: dict[str, str] = {}

    def respond(channel: FakeChannel, message: dict[str, Any]) -> None:
        execution_id = message["execution_id"]
        if message["kind"] == "execute_sql":
            statements[execution_id] = message["statement"]
            channel.reply(state_updated_message(execution_id, "running"))
            channel.reply(state_updated_message(execution_id))
        elif message["kind"] == "retrieve_results":
            statement = statements[execution_id]
            table = tables if isinstance(tables, pa.Table) else tables[statement]
            delay = (delays or {}).get(statement, 0.0)
            channel.reply(execution_result_message(execution_id, table), delay=delay, binary=True)

    return respond
