# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Decompression and decoding of execution result payloads."""

from __future__ import annotations

import json
from io import BytesIO

import brotli
import pyarrow as pa
from pyarrow import ipc

from wherobots_sql.constants import DataCompression, ResultsFormat
from wherobots_sql.errors import ProtocolError, UnsupportedPayloadError
from wherobots_sql.messages import ExecutionResults

__all__ = ["decode_results", "decompress_payload", "read_results"]


def decompress_payload(payload: bytes, compression: DataCompression | str) -> bytes:
    """Decompress a result payload.

    Raises:
        UnsupportedPayloadError: If *compression* is not supported.
        ProtocolError: If the payload is corrupt.

    """
    if compression == DataCompression.BROTLI:
        try:
            return brotli.decompress(payload)
        except brotli.error as exc:
            raise ProtocolError(f"Corrupt brotli payload: {exc}") from exc
    raise UnsupportedPayloadError(f"Unsupported compression: {compression}")


def decode_results(data: bytes, results_format: ResultsFormat | str) -> pa.Table:
    """Decode a decompressed payload into a ``pyarrow.Table``.

    Arrow payloads are read as an IPC stream.  JSON payloads are expected
    to hold a list of row objects.

    Raises:
        UnsupportedPayloadError: If *results_format* is not supported.
        ProtocolError: If the payload cannot be decoded.

    """
    if results_format == ResultsFormat.ARROW:
        try:
            return ipc.open_stream(BytesIO(data)).read_all()
        except pa.ArrowException as exc:
            raise ProtocolError(f"Result payload is not a valid Arrow IPC stream: {exc}") from exc
    if results_format == ResultsFormat.JSON:
        try:
            rows = json.loads(data)
        except ValueError as exc:
            raise ProtocolError(f"Result payload is not valid JSON: {exc}") from exc
        if not isinstance(rows, list):
            raise ProtocolError("JSON result payload must be a list of rows")
        return pa.Table.from_pylist(rows)
    raise UnsupportedPayloadError(f"Unsupported encoding: {results_format}")


def read_results(results: ExecutionResults) -> pa.Table:
    """Decompress and decode the payload of an ``execution_result`` event."""
    return decode_results(decompress_payload(results.result_bytes, results.compression), results.format)
