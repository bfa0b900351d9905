# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Tests for the wherobots-sql CLI tool."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from typing import Any

import httpx
import pyarrow as pa
import pytest
from typer.testing import CliRunner

from wherobots_sql import Connection, SessionStatus
from wherobots_sql.cli import _format_table, app
from wherobots_sql.testing import (
    FakeChannelFactory,
    SessionServiceStub,
    auto_responder,
    error_message,
    session_response,
)

runner = CliRunner()


def _error(output: str) -> dict[str, Any]:
    """Return the JSON error object written on stderr."""
    for line in reversed(output.splitlines()):
        if line.startswith('{"error"'):
            return json.loads(line)["error"]
    raise AssertionError(f"no error line in output: {output!r}")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


class _Backend:
    """Stub session service plus fake channels wired into ``Connection.connect``."""

    def __init__(self, table: pa.Table) -> None:
        self.service = SessionServiceStub(default=session_response(SessionStatus.READY))
        self.factory = FakeChannelFactory(responder=auto_responder(table))
        self.connect_kwargs: list[dict[str, Any]] = []
        self.initial_handlers: list[logging.Handler] = []


@pytest.fixture
def backend(monkeypatch: pytest.MonkeyPatch) -> Iterator[_Backend]:
    """Route the CLI's connections to in-process stubs."""
    stub = _Backend(pa.table({"id": [1, 2], "name": ["alpha", None]}))
    original = Connection.connect.__func__  # type: ignore[attr-defined]

    async def connect(cls: type[Connection], options: Any = None, **kwargs: Any) -> Connection:
        stub.connect_kwargs.append(kwargs)

        async def no_sleep(_delay: float) -> None:
            return None

        return await original(
            cls,
            options,
            http_client=httpx.AsyncClient(transport=stub.service.transport),
            channel_factory=stub.factory,
            _sleep=no_sleep,
            **kwargs,
        )

    monkeypatch.setattr(Connection, "connect", classmethod(connect))
    logger = logging.getLogger("wherobots_sql")
    level = logger.level
    stub.initial_handlers = list(logger.handlers)
    yield stub
    logger.handlers[:] = stub.initial_handlers
    logger.setLevel(level)


# ---------------------------------------------------------------------------
# Output formatting
# ---------------------------------------------------------------------------


class TestFormatTable:
    """Column-aligned table output."""

    def test_aligned(self) -> None:
        output = _format_table([{"id": 1, "name": "alpha"}, {"id": 22, "name": None}])
        assert output.splitlines() == [
            "id  name ",
            "--  -----",
            "1   alpha",
            "22       ",
        ]

    def test_empty(self) -> None:
        assert _format_table([]) == "(empty)"


# ---------------------------------------------------------------------------
# execute
# ---------------------------------------------------------------------------


class TestExecute:
    """The execute command end to end against stubs."""

    def test_json_output(self, backend: _Backend) -> None:
        result = runner.invoke(app, ["--api-key", "k", "--format", "json", "execute", "SELECT * FROM t"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == [{"id": 1, "name": "alpha"}, {"id": 2, "name": None}]
        assert backend.factory.last.sent_messages[0]["statement"] == "SELECT * FROM t"

    def test_table_output(self, backend: _Backend) -> None:
        result = runner.invoke(app, ["--api-key", "k", "--format", "table", "execute", "SELECT * FROM t"])
        assert result.exit_code == 0, result.output
        lines = result.stdout.splitlines()
        assert lines[0].split() == ["id", "name"]
        assert lines[2].split() == ["1", "alpha"]

    def test_options_forwarded(self, backend: _Backend) -> None:
        result = runner.invoke(
            app,
            [
                "--api-key",
                "k",
                "--runtime",
                "tokyo-himem",
                "--geometry",
                "wkb",
                "--protocol-version",
                "1.1.0",
                "--format",
                "json",
                "execute",
                "SELECT 1",
            ],
        )
        assert result.exit_code == 0, result.output
        (kwargs,) = backend.connect_kwargs
        assert kwargs["runtime"] == "2x-large-himem"
        assert kwargs["geometry_representation"] == "wkb"
        assert kwargs["protocol_version"] == "1.1.0"
        assert backend.factory.last.url.endswith("/1.1.0")
        assert backend.factory.last.sent_messages[1]["geometry"] == "wkb"

    def test_runtime_by_wire_value(self, backend: _Backend) -> None:
        result = runner.invoke(app, ["--api-key", "k", "-r", "LARGE", "-f", "json", "execute", "SELECT 1"])
        assert result.exit_code == 0, result.output
        assert backend.connect_kwargs[0]["runtime"] == "LARGE"

    def test_unknown_runtime(self, backend: _Backend) -> None:
        result = runner.invoke(app, ["--api-key", "k", "--runtime", "gigantic", "execute", "SELECT 1"])
        assert result.exit_code != 0
        assert backend.service.call_count == 0

    def test_api_key_from_environment(self, backend: _Backend, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WHEROBOTS_API_KEY", "env-key")
        result = runner.invoke(app, ["--format", "json", "execute", "SELECT 1"])
        assert result.exit_code == 0, result.output
        assert backend.service.requests[0].headers["X-API-Key"] == "env-key"

    def test_missing_api_key(self, backend: _Backend) -> None:
        result = runner.invoke(app, ["execute", "SELECT 1"])
        assert result.exit_code == 1
        error = _error(result.output)
        assert error["type"] == "ConfigurationError"
        assert backend.service.call_count == 0

    def test_session_failure(self, backend: _Backend) -> None:
        backend.service = SessionServiceStub(
            default=session_response(SessionStatus.DEPLOY_FAILED, message="no capacity"),
        )
        result = runner.invoke(app, ["--api-key", "k", "execute", "SELECT 1"])
        assert result.exit_code == 1
        error = _error(result.output)
        assert error["type"] == "SessionError"
        assert error["status"] == "DEPLOY_FAILED"
        assert "no capacity" in error["message"]

    def test_execution_error(self, backend: _Backend) -> None:
        def fail(channel: Any, message: dict[str, Any]) -> None:
            channel.reply(error_message(message["execution_id"], "Table not found"))

        backend.factory.responder = fail
        result = runner.invoke(app, ["--api-key", "k", "execute", "SELECT * FROM missing"])
        assert result.exit_code == 1
        error = _error(result.output)
        assert error["type"] == "ExecutionError"
        assert "Table not found" in error["message"]
        assert error["execution_id"]

    def test_verbose_json_logs(self, backend: _Backend) -> None:
        args = ["--api-key", "secret-key-123", "-v", "--log-format", "json", "-f", "json", "execute", "SELECT 1"]
        result = runner.invoke(app, args)
        assert result.exit_code == 0, result.output
        log_lines = [json.loads(line) for line in result.output.splitlines() if line.startswith("{")]
        assert any(line["message"] == "Connection ready" for line in log_lines)
        assert "secret-key-123" not in result.output
        assert logging.getLogger("wherobots_sql").handlers == backend.initial_handlers

    def test_no_args_shows_help(self) -> None:
        result = runner.invoke(app, [])
        assert "execute" in result.output
