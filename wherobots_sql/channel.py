# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""The WebSocket channel a ready session is driven over.

A :class:`Channel` is an event-emitting duplex connection: listeners are
registered per event name (``open``, ``message``, ``error``, ``close``) and
receive a :class:`ChannelEvent`.  :class:`AiohttpChannel` is the production
implementation; tests substitute :class:`wherobots_sql.testing.FakeChannel`
through a :data:`ChannelFactory`.

:func:`connect_channel` opens a channel with a per-attempt timeout and
retries connection failures and timeouts a bounded number of times.

Logger: ``wherobots_sql.channel``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Literal, Protocol

import aiohttp

from wherobots_sql._retry import ResiliencyConfig, Sleep, run_with_retry
from wherobots_sql._signal import CancellationSignal
from wherobots_sql.errors import AttemptTimeoutError, ChannelConnectError

__all__ = [
    "AiohttpChannel",
    "Channel",
    "ChannelEvent",
    "ChannelEventName",
    "ChannelFactory",
    "ChannelListener",
    "connect_channel",
    "to_ws_url",
]

_logger = logging.getLogger("wherobots_sql.channel")

ChannelEventName = Literal["open", "message", "error", "close"]

# Strong references to fire-and-forget close tasks.
_background_tasks: set[asyncio.Task[None]] = set()


@dataclass(frozen=True)
class ChannelEvent:
    """An event emitted by a channel.

    Attributes:
        type: Event name.
        data: Frame payload for ``message`` events (``str`` for text frames,
            ``bytes`` for binary frames).
        message: Human-readable description for ``error`` events.
        code: Close code for ``close`` events.
        reason: Close reason for ``close`` events.

    """

    type: ChannelEventName
    data: str | bytes | None = None
    message: str | None = None
    code: int | None = None
    reason: str | None = None


ChannelListener = Callable[[ChannelEvent], None]


class Channel(Protocol):
    """Minimal duplex channel interface the connection relies on."""

    def add_listener(self, event: ChannelEventName, listener: ChannelListener) -> None: ...

    def remove_listener(self, event: ChannelEventName, listener: ChannelListener) -> None: ...

    async def send(self, data: str) -> None: ...

    async def close(self) -> None: ...


ChannelFactory = Callable[[str, Mapping[str, str]], Channel]
"""Creates an unopened channel for a URL and connection headers."""


class _ListenerSet:
    """Per-event listener lists shared by channel implementations."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[ChannelListener]] = {}

    def add(self, event: str, listener: ChannelListener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def remove(self, event: str, listener: ChannelListener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event: ChannelEvent) -> None:
        # Copy: listeners commonly deregister themselves while handling.
        for listener in list(self._listeners.get(event.type, ())):
            try:
                listener(event)
            except Exception:
                _logger.exception("Channel listener for %r failed", event.type)


class AiohttpChannel:
    """WebSocket channel backed by ``aiohttp``.

    Connecting starts on construction (an event loop must be running).  The
    channel emits ``open`` once the handshake completes, then one
    ``message`` event per text or binary frame, and finally either ``error``
    or ``close``.
    """

    def __init__(self, url: str, headers: Mapping[str, str], *, session: aiohttp.ClientSession | None = None) -> None:
        """Start connecting to *url* with *headers*.

        Args:
            url: ``ws://`` or ``wss://`` URL to connect to.
            headers: Extra handshake headers (the credential).
            session: Optional ``aiohttp.ClientSession``; when omitted the
                channel creates and owns one.

        """
        self._url = url
        self._headers = dict(headers)
        self._session = session
        self._owns_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._listeners = _ListenerSet()
        self._closing = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    def add_listener(self, event: ChannelEventName, listener: ChannelListener) -> None:
        """Register *listener* for *event*."""
        self._listeners.add(event, listener)

    def remove_listener(self, event: ChannelEventName, listener: ChannelListener) -> None:
        """Deregister *listener*; unknown listeners are ignored."""
        self._listeners.remove(event, listener)

    async def send(self, data: str) -> None:
        """Send a text frame.

        Raises:
            ChannelConnectError: If the channel is not open.

        """
        if self._ws is None or self._ws.closed:
            raise ChannelConnectError("WebSocket is not open")
        await self._ws.send_str(data)

    async def close(self) -> None:
        """Close the WebSocket and release the HTTP session."""
        self._closing = True
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _run(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            # compress=0 disables permessage-deflate negotiation.
            self._ws = await self._session.ws_connect(self._url, headers=self._headers, compress=0)
        except (aiohttp.ClientError, OSError) as exc:
            self._listeners.emit(ChannelEvent("error", message=str(exc)))
            return
        self._listeners.emit(ChannelEvent("open"))
        await self._pump(self._ws)

    async def _pump(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    self._listeners.emit(ChannelEvent("message", data=msg.data))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self._listeners.emit(ChannelEvent("error", message=str(ws.exception())))
                    return
        except Exception as exc:
            # Every pump exit ends in an error or close event.
            _logger.debug("WebSocket receive failed: %s", exc, exc_info=True)
            if not self._closing:
                self._listeners.emit(ChannelEvent("error", message=str(exc) or type(exc).__name__))
            return
        if not self._closing:
            self._listeners.emit(ChannelEvent("close", code=ws.close_code, reason="Connection closed by server"))


def to_ws_url(url: str) -> str:
    """Convert an application URL into a WebSocket URL.

    ``https:`` becomes ``wss:`` and ``http:`` becomes ``ws:``; any other
    value is treated as scheme-less and prefixed with ``wss:``.
    """
    if url.startswith("https:"):
        return "wss:" + url[len("https:") :]
    if url.startswith("http:"):
        return "ws:" + url[len("http:") :]
    return f"wss:{url}"


async def _open_once(
    url: str,
    headers: Mapping[str, str],
    factory: ChannelFactory,
    attempt_signal: CancellationSignal,
) -> Channel:
    """Create one channel and wait for it to open, error or close."""
    loop = asyncio.get_running_loop()
    opened: asyncio.Future[None] = loop.create_future()
    channel = factory(url, headers)

    def on_open(_event: ChannelEvent) -> None:
        if not opened.done():
            opened.set_result(None)

    def on_error(event: ChannelEvent) -> None:
        if not opened.done():
            message = event.message or "unknown error"
            opened.set_exception(ChannelConnectError(f"Error connecting to WebSocket: {message}"))

    def on_close(event: ChannelEvent) -> None:
        if not opened.done():
            opened.set_exception(ChannelConnectError(f"WebSocket closed before opening (code={event.code})"))

    def on_abandon(_reason: BaseException | None) -> None:
        # Timed out or cancelled: do not leave a half-open socket behind.
        task = loop.create_task(channel.close())
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)

    listeners: list[tuple[ChannelEventName, ChannelListener]] = [
        ("open", on_open),
        ("error", on_error),
        ("close", on_close),
    ]
    for event, listener in listeners:
        channel.add_listener(event, listener)
    remove_abandon = attempt_signal.add_callback(on_abandon)
    try:
        await opened
    except ChannelConnectError:
        await channel.close()
        raise
    finally:
        remove_abandon()
        for event, listener in listeners:
            channel.remove_listener(event, listener)
    return channel


async def connect_channel(
    url: str,
    headers: Mapping[str, str],
    factory: ChannelFactory,
    *,
    signal: CancellationSignal | None = None,
    resiliency: ResiliencyConfig | None = None,
    sleep: Sleep = asyncio.sleep,
) -> Channel:
    """Open a channel, retrying connection failures and timeouts.

    Args:
        url: WebSocket URL including the protocol-version path suffix.
        headers: Handshake headers.
        factory: Creates unopened channels.
        signal: Cancels the whole connect, including pending retries.
        resiliency: Retry budget and per-attempt timeout.
        sleep: Sleep function (injectable for tests).

    Returns:
        An open channel with no listeners left registered by this function.

    Raises:
        ChannelConnectError: If every attempt failed to open.
        AttemptTimeoutError: If the last attempt timed out.
        BaseException: The reason of *signal* when it fires.

    """
    config = resiliency or ResiliencyConfig()
    outer = signal or CancellationSignal()
    _logger.debug("Opening WebSocket connection", extra={"ws_url": url})

    async def attempt(attempt_signal: CancellationSignal) -> Channel:
        linked = CancellationSignal.linked(attempt_signal, outer)
        try:
            return await _open_once(url, headers, factory, linked)
        finally:
            linked.detach()

    def retry_on(attempt_index: int, error: BaseException | None, _result: Channel | None) -> bool:
        if outer.cancelled or attempt_index >= config.max_retries:
            return False
        if isinstance(error, (ChannelConnectError, AttemptTimeoutError)):
            _logger.debug(
                "Retrying WebSocket connection (attempt %d/%d): %s",
                attempt_index + 1,
                config.max_retries + 1,
                error,
                extra={"attempt": attempt_index},
            )
            return True
        return False

    channel = await outer.guard(
        run_with_retry(attempt, timeout=config.connect_timeout, retry_on=retry_on, sleep=sleep),
    )
    _logger.debug("WebSocket connection is open", extra={"ws_url": url})
    return channel
