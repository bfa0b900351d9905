# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Connection lifecycle: provision a session, open its channel, execute SQL.

A :class:`Connection` moves strictly forward through
``UNESTABLISHED → PROVISIONING → CHANNEL_CONNECTING → READY → CLOSED`` and
may jump to ``CLOSED`` from any state.  It exclusively owns the channel and
tracks every listener registered on it, so :meth:`Connection.close` can
remove all of them before closing the channel.

Usage::

    async with await connect(runtime=Runtime.SEDONA) as conn:
        table = await conn.execute("SHOW SCHEMAS IN wherobots_open_data")

Logger: ``wherobots_sql.connection``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from enum import IntEnum
from types import TracebackType
from typing import Any, TypeVar, cast

import httpx
import pyarrow as pa
from packaging.version import InvalidVersion, Version

from wherobots_sql._multiplexer import ExecutionMultiplexer
from wherobots_sql._retry import ResiliencyConfig, Sleep
from wherobots_sql._signal import CancellationSignal
from wherobots_sql.channel import (
    AiohttpChannel,
    Channel,
    ChannelEvent,
    ChannelEventName,
    ChannelFactory,
    ChannelListener,
    connect_channel,
    to_ws_url,
)
from wherobots_sql.config import ConnectionOptions, resolve_options
from wherobots_sql.constants import DEFAULT_PROTOCOL_VERSION
from wherobots_sql.errors import ChannelError, ConfigurationError, ConnectionClosedError
from wherobots_sql.messages import AppMeta, SessionResponse
from wherobots_sql.session import SessionProvisioner

__all__ = ["Connection", "ConnectionState", "connect"]

_logger = logging.getLogger("wherobots_sql.connection")

_T = TypeVar("_T")


class ConnectionState(IntEnum):
    """Lifecycle states of a connection, in the only order they can occur."""

    UNESTABLISHED = 0
    PROVISIONING = 1
    CHANNEL_CONNECTING = 2
    READY = 3
    CLOSED = 4


class Connection:
    """A session-backed connection that executes SQL statements.

    Create instances with :meth:`connect` or :meth:`connect_direct`; the
    constructor only resolves options and performs no I/O.
    """

    def __init__(
        self,
        options: ConnectionOptions | Mapping[str, Any] | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        channel_factory: ChannelFactory | None = None,
        protocol_version: str = DEFAULT_PROTOCOL_VERSION,
        resiliency: ResiliencyConfig | None = None,
        _sleep: Sleep = asyncio.sleep,
        **option_fields: Any,
    ) -> None:
        """Resolve options and prepare the connection.

        Args:
            options: Connection options, or a mapping of their fields.
            http_client: Client for the session service; one is created
                (and closed after provisioning) when omitted.
            channel_factory: Creates channels; defaults to
                :class:`~wherobots_sql.channel.AiohttpChannel`.
            protocol_version: Channel protocol version to request.
            resiliency: Retry budget and timeouts.
            _sleep: Backoff sleep function (injectable for tests).
            **option_fields: Individual option fields overriding *options*.

        Raises:
            ConfigurationError: If the options or protocol version are
                invalid, or no credential is available.

        """
        self._options = resolve_options(options, **option_fields)
        try:
            Version(protocol_version)
        except InvalidVersion:
            raise ConfigurationError(f"Invalid protocol version: {protocol_version!r}") from None
        self._protocol_version = protocol_version
        self._http_client = http_client
        self._channel_factory: ChannelFactory = channel_factory or AiohttpChannel
        self._resiliency = resiliency or ResiliencyConfig()
        self._sleep = _sleep
        self._state = ConnectionState.UNESTABLISHED
        self._session_id: str | None = None
        self._session_signal = CancellationSignal()
        self._channel: Channel | None = None
        self._listeners: list[tuple[ChannelEventName, ChannelListener]] = []
        self._multiplexer: ExecutionMultiplexer | None = None
        self._teardown: asyncio.Task[None] | None = None
        _logger.debug("Creating connection", extra={"options": self._options.loggable()})

    # -- Construction --------------------------------------------------------

    @classmethod
    async def connect(
        cls,
        options: ConnectionOptions | Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> Connection:
        """Provision a session and open its channel.

        Accepts the same arguments as the constructor.

        Raises:
            ConfigurationError: Before any network call, on invalid options.
            WherobotsError: If provisioning or connecting fails.

        """
        connection = cls(options, **kwargs)
        await connection._establish()
        return connection

    @classmethod
    async def connect_direct(
        cls,
        ws_url: str,
        options: ConnectionOptions | Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> Connection:
        """Open a channel to an already-running session at *ws_url*."""
        connection = cls(options, **kwargs)
        connection._advance(ConnectionState.PROVISIONING)
        await connection._guarded(connection._open_channel(ws_url))
        return connection

    async def _establish(self) -> None:
        self._advance(ConnectionState.PROVISIONING)
        session = await self._guarded(self._provision())
        self._session_id = session.id
        # The provisioner only returns READY sessions that carry an app URL.
        app_meta = cast(AppMeta, session.app_meta)
        await self._guarded(self._open_channel(to_ws_url(app_meta.url)))

    async def _provision(self) -> SessionResponse:
        client = self._http_client or httpx.AsyncClient()
        try:
            provisioner = SessionProvisioner(client, self._options, self._resiliency, sleep=self._sleep)
            return await self._session_signal.guard(provisioner.provision())
        finally:
            if self._http_client is None:
                await client.aclose()

    async def _open_channel(self, ws_url: str) -> None:
        self._advance(ConnectionState.CHANNEL_CONNECTING)
        url = f"{ws_url.rstrip('/')}/{self._protocol_version}"
        channel = await connect_channel(
            url,
            {"X-API-Key": self._options.api_key},
            self._channel_factory,
            signal=self._session_signal,
            resiliency=self._resiliency,
            sleep=self._sleep,
        )
        if self._state == ConnectionState.CLOSED:
            await channel.close()
            raise ConnectionClosedError("Connection was closed while connecting")
        self._channel = channel
        self._add_listener("error", self._on_channel_error)
        self._add_listener("close", self._on_channel_close)
        self._multiplexer = ExecutionMultiplexer(
            channel,
            self._add_listener,
            self._session_signal,
            self._options,
            self._protocol_version,
        )
        self._advance(ConnectionState.READY)
        _logger.info("Connection ready", extra={"session_id": self._session_id, "ws_url": url})

    async def _guarded(self, coro: Awaitable[_T]) -> _T:
        """Run a connect phase, closing the connection if it fails."""
        try:
            return await coro
        except BaseException:
            await self.close()
            raise

    # -- Public API ----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current lifecycle state."""
        return self._state

    @property
    def session_id(self) -> str | None:
        """Identifier of the provisioned session, if any."""
        return self._session_id

    @property
    def protocol_version(self) -> str:
        """Channel protocol version in use."""
        return self._protocol_version

    @property
    def options(self) -> ConnectionOptions:
        """Resolved connection options."""
        return self._options

    async def execute(self, statement: str, *, signal: CancellationSignal | None = None) -> pa.Table:
        """Execute *statement* and return the results as a ``pyarrow.Table``.

        Args:
            statement: SQL statement to execute.
            signal: Optional signal aborting this execution.  The server is
                notified when the protocol version supports cancellation.

        Raises:
            ConnectionClosedError: Immediately, if the channel is not open.
            ExecutionError: If the server reports an error.
            ExecutionAborted: If *signal* fires first, or the connection is
                closed or its channel fails while waiting; ``__cause__`` holds
                the ``ConnectionClosedError`` or ``ChannelError``.

        """
        if self._multiplexer is None or self._state != ConnectionState.READY:
            raise ConnectionClosedError("WebSocket is not open")
        return await self._multiplexer.execute(statement, signal)

    async def close(self, reason: BaseException | None = None) -> None:
        """Close the connection; calling it again has no effect.

        Pending executions are rejected with *reason* (a
        ``ConnectionClosedError`` by default), every tracked listener is
        removed and the channel is closed.
        """
        if self._state == ConnectionState.CLOSED:
            return
        _logger.debug("Closing connection", extra={"session_id": self._session_id})
        self._state = ConnectionState.CLOSED
        self._session_signal.cancel(reason or ConnectionClosedError("Connection closed"))
        channel, self._channel = self._channel, None
        listeners, self._listeners = self._listeners, []
        self._multiplexer = None
        if channel is not None:
            for event, listener in listeners:
                channel.remove_listener(event, listener)
            await channel.close()

    async def __aenter__(self) -> Connection:
        """Enter the async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit the async context manager, closing the connection."""
        await self.close()

    # -- Internals -----------------------------------------------------------

    def _advance(self, state: ConnectionState) -> None:
        if state <= self._state:
            raise ConnectionClosedError(f"Cannot move connection from {self._state.name} to {state.name}")
        self._state = state

    def _add_listener(self, event: ChannelEventName, listener: ChannelListener) -> Callable[[], None]:
        """Register *listener* on the channel and track it for ``close()``."""
        if self._channel is None:
            raise ConnectionClosedError("WebSocket is not open")
        channel = self._channel
        self._listeners.append((event, listener))
        channel.add_listener(event, listener)
        return lambda: channel.remove_listener(event, listener)

    def _on_channel_error(self, event: ChannelEvent) -> None:
        _logger.error("WebSocket error: %s", event.message, extra={"session_id": self._session_id})
        self._fail(ChannelError(f"WebSocket error: {event.message or 'unknown error'}"))

    def _on_channel_close(self, event: ChannelEvent) -> None:
        _logger.error(
            "WebSocket closed unexpectedly",
            extra={"session_id": self._session_id, "code": event.code, "reason": event.reason},
        )
        self._fail(ChannelError(f"WebSocket closed unexpectedly (code={event.code})"))

    def _fail(self, error: ChannelError) -> None:
        """Tear the connection down from a synchronous channel callback."""
        if self._teardown is not None or self._state == ConnectionState.CLOSED:
            return
        # Reject pending executions now; the channel close itself is async.
        self._session_signal.cancel(error)
        self._teardown = asyncio.get_running_loop().create_task(self.close(error))


async def connect(
    options: ConnectionOptions | Mapping[str, Any] | None = None,
    **kwargs: Any,
) -> Connection:
    """Provision a session and return a ready :class:`Connection`."""
    return await Connection.connect(options, **kwargs)
