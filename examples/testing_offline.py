"""Exercise the driver without a Wherobots account.

``wherobots_sql.testing`` ships a scripted session service (served through
``httpx.MockTransport``) and a fake channel factory, so the full connect,
execute and close path runs in-process with zero network I/O.

Run::

    python examples/testing_offline.py
"""

from __future__ import annotations

import asyncio

import httpx
import pyarrow as pa

from wherobots_sql import Connection, Runtime, SessionStatus
from wherobots_sql.testing import (
    FakeChannelFactory,
    SessionServiceStub,
    auto_responder,
    session_response,
)

# ---------------------------------------------------------------------------
# 1. Script the backend
# ---------------------------------------------------------------------------

CITIES = pa.table(
    {
        "name": ["Lisbon", "Sedona"],
        "geom": ["SRID=4326;POINT (-9.14 38.72)", "SRID=4326;POINT (-111.76 34.87)"],
    }
)


async def run() -> None:
    """Connect against stubs and run two statements concurrently."""
    # The session is created in PENDING and becomes READY on the first poll.
    service = SessionServiceStub(
        [session_response(SessionStatus.PENDING, app_url=None)],
        default=session_response(SessionStatus.READY),
    )
    factory = FakeChannelFactory(
        responder=auto_responder({"SELECT * FROM cities": CITIES, "SELECT 1 AS one": pa.table({"one": [1]})}),
    )

    # -----------------------------------------------------------------------
    # 2. Connect and execute
    # -----------------------------------------------------------------------

    async with httpx.AsyncClient(transport=service.transport) as client:
        conn = await Connection.connect(
            api_key="offline-key",
            runtime=Runtime.SEDONA,
            http_client=client,
            channel_factory=factory,
        )
        async with conn:
            cities, one = await asyncio.gather(
                conn.execute("SELECT * FROM cities"),
                conn.execute("SELECT 1 AS one"),
            )

    for row in cities.to_pylist():
        print(f"{row['name']}: {row['geom']}")
    print(f"one={one.column('one')[0].as_py()}")
    print(f"session service calls: {service.call_count}")
    print(f"messages sent: {len(factory.last.sent)}")


def main() -> None:
    """Run the example."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
