# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Provisioning of SQL sessions through the HTTP session service.

A session is created with ``POST /sql/session`` and then polled with
``GET /sql/session/{id}`` until it reaches a terminal status.  Both calls
go through :func:`~wherobots_sql._retry.run_with_retry`:

- the create call is retried only for transient transport trouble
  (retryable status, timeout, connection error);
- the poll call is retried for the same reasons, with its own budget, and
  additionally for as long as the session is still starting up.

Anything else (authentication failures, malformed payloads, failure
statuses) ends provisioning with an exception.

Logger: ``wherobots_sql.session``.  Every observed session state is logged
at DEBUG level with the session id and status as extra fields.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import quote

import httpx

from wherobots_sql._retry import ResiliencyConfig, Sleep, run_with_retry, should_retry_for_resiliency
from wherobots_sql._signal import CancellationSignal
from wherobots_sql.config import ConnectionOptions
from wherobots_sql.constants import SessionStatus
from wherobots_sql.errors import HttpTransientError, ProtocolError, SessionError, WherobotsError
from wherobots_sql.logging_utils import session_log_extra
from wherobots_sql.messages import SessionResponse, parse_session_response

__all__ = ["SessionProvisioner"]

_logger = logging.getLogger("wherobots_sql.session")


class SessionProvisioner:
    """Drives the create → poll-until-ready handshake for one session."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        options: ConnectionOptions,
        resiliency: ResiliencyConfig | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize with an HTTP client, resolved options and retry policy."""
        self._client = client
        self._options = options
        self._resiliency = resiliency or ResiliencyConfig()
        self._sleep = sleep
        self._base_url = options.api_url.rstrip("/")

    async def provision(self) -> SessionResponse:
        """Create a session and wait for it to become ready.

        Returns:
            The ready session; ``app_meta.url`` is guaranteed to be set.

        Raises:
            HttpRequestError: If the service rejects a request.
            HttpTransientError: If a retryable status outlasts the budget.
            AttemptTimeoutError: If timeouts outlast the budget.
            ProtocolError: If a response is malformed.
            SessionError: If the session ends in a failure status.

        """
        session = await self.create()
        if not session.is_terminal:
            session = await self.poll(session.id)
        return self._require_ready(session)

    async def create(self) -> SessionResponse:
        """Issue the create call, retrying only transient failures."""
        url = f"{self._base_url}/sql/session?region={quote(self._options.region.value)}"
        payload = {"runtimeId": self._options.runtime.value}

        async def send(_signal: CancellationSignal) -> httpx.Response:
            return await self._client.post(url, json=payload, headers=self._options.headers)

        response = await run_with_retry(
            send,
            timeout=self._resiliency.request_timeout,
            retry_on=lambda attempt, error, result: should_retry_for_resiliency(
                attempt, error, result, self._resiliency
            ),
            sleep=self._sleep,
        )
        session = self._parse(response)
        _logger.debug("Session created", extra=session_log_extra(session))
        return session

    async def poll(self, session_id: str) -> SessionResponse:
        """Poll the session until it reaches a terminal status.

        Resiliency retries are counted separately from polling: a session
        that takes minutes to start never exhausts the transient-failure
        budget, and transient failures are still capped.
        """
        url = f"{self._base_url}/sql/session/{quote(session_id, safe='')}"
        resiliency_retries = 0

        async def fetch(_signal: CancellationSignal) -> httpx.Response:
            return await self._client.get(url, headers=self._options.headers)

        def retry_on(attempt: int, error: BaseException | None, response: httpx.Response | None) -> bool:
            nonlocal resiliency_retries
            if should_retry_for_resiliency(resiliency_retries, error, response, self._resiliency):
                resiliency_retries += 1
                return True
            if error is not None or response is None or not response.is_success:
                return False
            try:
                session = parse_session_response(response)
            except WherobotsError:
                # Settle and let the final parse raise the error.
                return False
            _logger.debug("Checked session state", extra=session_log_extra(session))
            return not session.is_terminal

        response = await run_with_retry(
            fetch,
            timeout=self._resiliency.request_timeout,
            retry_on=retry_on,
            sleep=self._sleep,
        )
        return self._parse(response)

    def _parse(self, response: httpx.Response) -> SessionResponse:
        if response.status_code in self._resiliency.retryable_status_codes:
            preview = response.content[:200].decode(errors="replace")
            raise HttpTransientError(response.status_code, preview, url=str(response.url))
        return parse_session_response(response)

    def _require_ready(self, session: SessionResponse) -> SessionResponse:
        if session.status != SessionStatus.READY:
            _logger.error("Session failed", extra=session_log_extra(session))
            raise SessionError(session.id, session.status.value, session.message, session.traces)
        if session.app_meta is None:
            raise ProtocolError(f"Session {session.id} is ready but has no application URL")
        _logger.debug("Session established", extra=session_log_extra(session))
        return session
