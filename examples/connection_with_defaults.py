"""Connect with default options and list the open-data schemas.

Needs a real Wherobots API key in the environment.

Run::

    WHEROBOTS_API_KEY=<api key> python examples/connection_with_defaults.py

Add ``--verbose`` to see the driver's log output on stderr.
"""

from __future__ import annotations

import asyncio
import sys

from wherobots_sql import Connection, Runtime
from wherobots_sql.logging_utils import configure_logging


async def run() -> None:
    """Provision a session and print one result."""
    async with await Connection.connect(runtime=Runtime.SEDONA) as conn:
        results = await conn.execute("SHOW SCHEMAS IN wherobots_open_data")
        for row in results.to_pylist():
            print(row["namespace"])


def main() -> None:
    """Run the example."""
    if "--verbose" in sys.argv:
        configure_logging(verbose=True)
    asyncio.run(run())


if __name__ == "__main__":
    main()
