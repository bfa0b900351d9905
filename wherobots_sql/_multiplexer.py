# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Concurrent SQL executions over one shared channel.

Every execution is identified by a fresh ``execution_id`` and takes two
round-trips:

1. send ``execute_sql`` and wait for ``state_updated`` (``succeeded``);
2. send ``retrieve_results`` and wait for ``execution_result``.

Waits live in a registry keyed by execution id.  A single ``message``
listener decodes each inbound frame once and hands it to the wait with the
matching id, which accepts it only if it validates against the model the
wait expects.  An ``error`` event for an id rejects that wait instead.
Everything else is ignored, so unrelated traffic and intermediate states
interleave freely.

Logger: ``wherobots_sql.execution``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import pyarrow as pa
from packaging.version import Version
from pydantic import BaseModel, ValidationError

from wherobots_sql._signal import CancellationSignal
from wherobots_sql.channel import Channel, ChannelEvent, ChannelEventName, ChannelListener
from wherobots_sql.config import ConnectionOptions
from wherobots_sql.constants import MIN_PROTOCOL_VERSION_FOR_CANCEL
from wherobots_sql.errors import ExecutionAborted, ExecutionError, ProtocolError
from wherobots_sql.messages import (
    CancelEvent,
    ErrorEvent,
    ExecuteSQLEvent,
    ExecutionResultEvent,
    RetrieveResultsEvent,
    StateUpdatedEvent,
    decode_frame,
    encode_event,
)
from wherobots_sql.results import read_results

__all__ = ["ExecutionMultiplexer"]

_logger = logging.getLogger("wherobots_sql.execution")

_M = TypeVar("_M", bound=BaseModel)

AddListener = Callable[[ChannelEventName, ChannelListener], Callable[[], None]]


@dataclass
class _PendingWait(Generic[_M]):
    """Bookkeeping for one execution waiting on one response kind."""

    execution_id: str
    expected: type[_M]
    future: asyncio.Future[_M]
    cleanup: Callable[[], None] = field(default=lambda: None)

    def resolve(self, event: _M) -> None:
        if not self.future.done():
            self.future.set_result(event)
        self.cleanup()

    def reject(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)
        self.cleanup()


class ExecutionMultiplexer:
    """Runs executions concurrently on a channel owned by someone else.

    The multiplexer never closes the channel: it only sends on it and
    receives through the listener registered with *add_listener*.
    """

    def __init__(
        self,
        channel: Channel,
        add_listener: AddListener,
        session_signal: CancellationSignal,
        options: ConnectionOptions,
        protocol_version: str,
    ) -> None:
        """Initialize and start listening for responses.

        Args:
            channel: Open channel to send on.
            add_listener: Registers a channel listener and returns its
                remover; lets the owner track every registration.
            session_signal: Fires when the whole connection goes away.
            options: Connection options (geometry representation).
            protocol_version: Negotiated protocol version.

        """
        self._channel = channel
        self._session_signal = session_signal
        self._options = options
        self._supports_cancel = Version(protocol_version) >= Version(MIN_PROTOCOL_VERSION_FOR_CANCEL)
        self._waits: dict[str, _PendingWait[Any]] = {}
        self._background: set[asyncio.Task[None]] = set()
        add_listener("message", self._on_message)

    @property
    def pending(self) -> int:
        """Number of registered waits."""
        return len(self._waits)

    async def execute(self, statement: str, signal: CancellationSignal | None = None) -> pa.Table:
        """Execute *statement* and return its results.

        Args:
            statement: SQL to execute.
            signal: Optional caller signal that aborts this execution.

        Raises:
            ExecutionError: If the server reports an error for the execution.
            ExecutionAborted: If *signal* fires first, or the connection
                closes or fails while waiting (the cause is chained).
            ProtocolError: If the result payload cannot be decoded.

        """
        execution_id = str(uuid.uuid4())
        log_extra = {"execution_id": execution_id}
        if signal is not None and signal.cancelled:
            # Nothing was sent, so there is nothing to cancel server-side.
            raise signal.reason or ExecutionAborted(execution_id)
        scope = CancellationSignal.linked(signal, self._session_signal)
        try:
            _logger.debug("Executing statement", extra=log_extra)
            await self._round_trip(
                ExecuteSQLEvent(execution_id=execution_id, statement=statement),
                StateUpdatedEvent,
                scope,
            )
            _logger.debug("Execution succeeded, retrieving results", extra=log_extra)
            result = await self._round_trip(
                RetrieveResultsEvent(execution_id=execution_id, geometry=self._options.geometry_representation),
                ExecutionResultEvent,
                scope,
            )
        except ExecutionError:
            raise
        except Exception:
            if signal is not None and signal.cancelled:
                self._notify_cancel(execution_id)
                if signal.reason is None:
                    raise ExecutionAborted(execution_id) from None
            elif self._session_signal.cancelled:
                # Close or channel failure; the reason stays on __cause__.
                raise ExecutionAborted(execution_id) from self._session_signal.reason
            raise
        except asyncio.CancelledError:
            self._notify_cancel(execution_id)
            raise
        finally:
            scope.detach()
        table = read_results(result.results)
        _logger.debug("Execution results decoded", extra={**log_extra, "num_rows": table.num_rows})
        return table

    async def _round_trip(
        self,
        event: ExecuteSQLEvent | RetrieveResultsEvent,
        expected: type[_M],
        scope: CancellationSignal,
    ) -> _M:
        """Register a wait, send *event*, and await the matching response."""
        scope.raise_if_cancelled()
        wait: _PendingWait[_M] = _PendingWait(
            event.execution_id,
            expected,
            asyncio.get_running_loop().create_future(),
        )
        self._waits[event.execution_id] = wait
        wait.cleanup = lambda: self._release(wait)
        try:
            await self._channel.send(encode_event(event))
            return await scope.guard(wait.future)
        finally:
            wait.cleanup()

    def _release(self, wait: _PendingWait[Any]) -> None:
        if self._waits.get(wait.execution_id) is wait:
            del self._waits[wait.execution_id]

    def _on_message(self, event: ChannelEvent) -> None:
        if event.data is None or not self._waits:
            return
        try:
            payload = decode_frame(event.data)
        except ProtocolError:
            _logger.debug("Ignoring undecodable frame")
            return
        if not isinstance(payload, dict):
            return
        wait = self._waits.get(str(payload.get("execution_id")))
        if wait is None:
            return
        try:
            error = ErrorEvent.model_validate(payload)
        except ValidationError:
            pass
        else:
            _logger.error(
                "Error event received: %s",
                error.message,
                extra={"execution_id": error.execution_id, "server_message": error.message},
            )
            wait.reject(ExecutionError(error.execution_id, error.message))
            return
        try:
            wait.resolve(wait.expected.model_validate(payload))
        except ValidationError:
            # Intermediate states (e.g. "running") or a different message kind.
            _logger.debug("Ignoring message for %s", wait.execution_id, extra={"kind": payload.get("kind")})

    def _notify_cancel(self, execution_id: str) -> None:
        """Send a best-effort ``cancel`` notice without awaiting it."""
        if not self._supports_cancel or self._session_signal.cancelled:
            return
        task = asyncio.get_running_loop().create_task(self._send_cancel(execution_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_cancel(self, execution_id: str) -> None:
        try:
            await self._channel.send(encode_event(CancelEvent(execution_id=execution_id)))
        except Exception as exc:
            _logger.warning("Failed to send cancel notice: %s", exc, extra={"execution_id": execution_id})
        else:
            _logger.debug("Cancel notice sent", extra={"execution_id": execution_id})
