# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Shared test fixtures for wherobots-sql tests."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import pyarrow as pa
import pytest

from wherobots_sql import Connection, ResiliencyConfig, Runtime
from wherobots_sql.testing import FakeChannelFactory, SessionServiceStub

TEST_API_KEY = "test-api-key"

ConnectFactory = Callable[..., Awaitable[Connection]]
"""Type alias for the ``connect_with`` fixture return type."""


class SleepRecorder:
    """Backoff sleep that records requested delays and only yields to the loop."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's real credentials out of the tests."""
    monkeypatch.delenv("WHEROBOTS_API_KEY", raising=False)
    monkeypatch.delenv("WHEROBOTS_API_URL", raising=False)


@pytest.fixture
def no_sleep() -> SleepRecorder:
    """Sleep function that skips backoff delays."""
    return SleepRecorder()


@pytest.fixture
def fast_resiliency() -> ResiliencyConfig:
    """Default retry budget with short per-attempt timeouts."""
    return ResiliencyConfig(request_timeout=0.05, connect_timeout=0.05)


@pytest.fixture
def schemas_table() -> pa.Table:
    """Result table for ``SHOW SCHEMAS``."""
    return pa.table({"namespace": ["overture", "overture_maps_foundation", "wherobots_open_data"]})


@pytest.fixture
def tables_table() -> pa.Table:
    """Result table for ``SHOW TABLES``."""
    return pa.table(
        {
            "namespace": ["overture_maps_foundation", "overture_maps_foundation"],
            "tableName": ["places_place", "buildings_building"],
            "isTemporary": [False, False],
        }
    )


@pytest.fixture
def connect_with(no_sleep: SleepRecorder, fast_resiliency: ResiliencyConfig) -> ConnectFactory:
    """Connect against a stub session service and fake channels."""

    async def _connect(
        service: SessionServiceStub,
        factory: FakeChannelFactory,
        **kwargs: Any,
    ) -> Connection:
        client = httpx.AsyncClient(transport=service.transport)
        kwargs.setdefault("api_key", TEST_API_KEY)
        kwargs.setdefault("runtime", Runtime.SEDONA)
        kwargs.setdefault("resiliency", fast_resiliency)
        return await Connection.connect(
            http_client=client,
            channel_factory=factory,
            _sleep=no_sleep,
            **kwargs,
        )

    return _connect
