# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Async driver for running spatial SQL on Wherobots sessions."""

import logging

from wherobots_sql._retry import ResiliencyConfig, backoff_delay, run_with_retry
from wherobots_sql._signal import CancellationSignal
from wherobots_sql.channel import AiohttpChannel, Channel, ChannelEvent, ChannelFactory, connect_channel
from wherobots_sql.config import ConnectionOptions, resolve_options
from wherobots_sql.connection import Connection, ConnectionState, connect
from wherobots_sql.constants import (
    DEFAULT_PROTOCOL_VERSION,
    DataCompression,
    GeometryRepresentation,
    Region,
    ResultsFormat,
    Runtime,
    SessionStatus,
)
from wherobots_sql.errors import (
    AttemptTimeoutError,
    ChannelConnectError,
    ChannelError,
    ConfigurationError,
    ConnectionClosedError,
    ExecutionAborted,
    ExecutionError,
    HttpRequestError,
    HttpTransientError,
    ProtocolError,
    SessionError,
    UnsupportedPayloadError,
    WherobotsError,
)
from wherobots_sql.session import SessionProvisioner

__all__ = [
    # Core
    "Connection",
    "ConnectionState",
    "ConnectionOptions",
    "connect",
    "resolve_options",
    # Enumerations
    "DataCompression",
    "GeometryRepresentation",
    "Region",
    "ResultsFormat",
    "Runtime",
    "SessionStatus",
    "DEFAULT_PROTOCOL_VERSION",
    # Building blocks
    "CancellationSignal",
    "ResiliencyConfig",
    "SessionProvisioner",
    "backoff_delay",
    "run_with_retry",
    # Channel
    "AiohttpChannel",
    "Channel",
    "ChannelEvent",
    "ChannelFactory",
    "connect_channel",
    # Errors
    "WherobotsError",
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
]

# Library users get no "No handler found" warnings; the CLI installs its own
# handler through wherobots_sql.logging_utils.configure_logging.
logging.getLogger("wherobots_sql").addHandler(logging.NullHandler())
