# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Tests for message models, frame decoding and result payloads."""

from __future__ import annotations

import json

import brotli
import cbor2
import httpx
import pyarrow as pa
import pytest
from pydantic import ValidationError

from wherobots_sql import (
    GeometryRepresentation,
    HttpRequestError,
    ProtocolError,
    SessionStatus,
    UnsupportedPayloadError,
)
from wherobots_sql.messages import (
    CancelEvent,
    ErrorEvent,
    ExecuteSQLEvent,
    ExecutionResultEvent,
    RetrieveResultsEvent,
    StateUpdatedEvent,
    decode_frame,
    encode_event,
    parse_session_response,
)
from wherobots_sql.results import decode_results, decompress_payload, read_results
from wherobots_sql.testing import encode_arrow_payload, execution_result_message, session_payload


def _http(status: int, body: object) -> httpx.Response:
    request = httpx.Request("GET", "https://api.example.test/sql/session/abc")
    if isinstance(body, str):
        return httpx.Response(status, text=body, request=request)
    return httpx.Response(status, json=body, request=request)


# ---------------------------------------------------------------------------
# Session responses
# ---------------------------------------------------------------------------


class TestParseSessionResponse:
    """Validation of session service payloads."""

    def test_ready(self) -> None:
        session = parse_session_response(_http(200, session_payload(SessionStatus.READY)))
        assert session.status == SessionStatus.READY
        assert session.app_meta is not None
        assert session.app_meta.url == "https://test-session-url"
        assert session.is_terminal

    @pytest.mark.parametrize(
        "status",
        ["PENDING", "PREPARING", "REQUESTED", "DEPLOYING", "DEPLOYED", "INITIALIZING"],
    )
    def test_in_progress_statuses(self, status: str) -> None:
        assert not parse_session_response(_http(200, session_payload(status))).is_terminal

    @pytest.mark.parametrize(
        "status",
        ["PREPARE_FAILED", "DEPLOY_FAILED", "INIT_FAILED", "DESTROY_REQUESTED", "DESTROYING", "DESTROY_FAILED"],
    )
    def test_terminal_statuses(self, status: str) -> None:
        assert parse_session_response(_http(200, session_payload(status))).is_terminal

    def test_unknown_status(self) -> None:
        with pytest.raises(ProtocolError, match="Invalid API response"):
            parse_session_response(_http(200, session_payload("invalid")))

    def test_missing_required_field(self) -> None:
        payload = session_payload(SessionStatus.READY)
        del payload["message"]
        with pytest.raises(ProtocolError):
            parse_session_response(_http(200, payload))

    def test_not_json(self) -> None:
        with pytest.raises(ProtocolError):
            parse_session_response(_http(200, "<html>hello</html>"))

    def test_error_status_carries_body_preview(self) -> None:
        with pytest.raises(HttpRequestError) as exc_info:
            parse_session_response(_http(403, "x" * 500))
        assert exc_info.value.status_code == 403
        assert exc_info.value.body_preview == "x" * 200
        assert exc_info.value.url.endswith("/sql/session/abc")


# ---------------------------------------------------------------------------
# Channel events
# ---------------------------------------------------------------------------


class TestEvents:
    """Outbound encoding and inbound validation."""

    def test_encode_execute(self) -> None:
        data = json.loads(encode_event(ExecuteSQLEvent(execution_id="e1", statement="SELECT 1")))
        assert data == {"execution_id": "e1", "kind": "execute_sql", "statement": "SELECT 1"}

    def test_encode_retrieve(self) -> None:
        event = RetrieveResultsEvent(execution_id="e1", geometry=GeometryRepresentation.WKB)
        assert json.loads(encode_event(event)) == {"execution_id": "e1", "kind": "retrieve_results", "geometry": "wkb"}

    def test_encode_cancel(self) -> None:
        assert json.loads(encode_event(CancelEvent(execution_id="e1"))) == {"execution_id": "e1", "kind": "cancel"}

    def test_state_updated_only_accepts_succeeded(self) -> None:
        StateUpdatedEvent.model_validate({"kind": "state_updated", "execution_id": "e1", "state": "succeeded"})
        with pytest.raises(ValidationError):
            StateUpdatedEvent.model_validate({"kind": "state_updated", "execution_id": "e1", "state": "running"})

    def test_error_event_requires_kind(self) -> None:
        with pytest.raises(ValidationError):
            ErrorEvent.model_validate({"kind": "state_updated", "execution_id": "e1", "message": "x"})

    def test_execution_result_from_cbor(self) -> None:
        table = pa.table({"a": [1, 2]})
        payload = decode_frame(cbor2.dumps(execution_result_message("e1", table)))
        event = ExecutionResultEvent.model_validate(payload)
        assert event.results.geometry == GeometryRepresentation.EWKT
        assert event.results.geo_columns == []
        assert read_results(event.results).equals(table)


class TestDecodeFrame:
    """Frame type picks the decoder."""

    def test_text_is_json(self) -> None:
        assert decode_frame('{"kind": "error"}') == {"kind": "error"}

    def test_binary_is_cbor(self) -> None:
        assert decode_frame(cbor2.dumps({"kind": "error", "blob": b"\x01"})) == {"kind": "error", "blob": b"\x01"}

    def test_bytearray_is_cbor(self) -> None:
        assert decode_frame(bytearray(cbor2.dumps([1, 2]))) == [1, 2]

    @pytest.mark.parametrize("frame", ["{not json", b""])
    def test_undecodable(self, frame: str | bytes) -> None:
        with pytest.raises(ProtocolError):
            decode_frame(frame)


# ---------------------------------------------------------------------------
# Result payloads
# ---------------------------------------------------------------------------


class TestResults:
    """Decompression and decoding of result payloads."""

    def test_arrow_round_trip_preserves_types(self) -> None:
        table = pa.table(
            {
                "name": pa.array(["a", None], type=pa.string()),
                "geom": pa.array(["SRID=4326;POINT (1 2)", "SRID=4326;POINT (3 4)"]),
                "n": pa.array([1, 2], type=pa.int32()),
            }
        )
        decoded = decode_results(decompress_payload(encode_arrow_payload(table), "brotli"), "arrow")
        assert decoded.schema == table.schema
        assert decoded.equals(table)

    def test_json_rows(self) -> None:
        data = json.dumps([{"a": 1, "b": "x"}, {"a": 2, "b": "y"}]).encode()
        table = decode_results(data, "json")
        assert table.to_pylist() == [{"a": 1, "b": "x"}, {"a": 2, "b": "y"}]

    def test_json_must_be_rows(self) -> None:
        with pytest.raises(ProtocolError):
            decode_results(b'{"a": 1}', "json")

    def test_unsupported_compression(self) -> None:
        with pytest.raises(UnsupportedPayloadError, match="Unsupported compression: zstd"):
            decompress_payload(b"", "zstd")

    def test_unsupported_format(self) -> None:
        with pytest.raises(UnsupportedPayloadError, match="Unsupported encoding: parquet"):
            decode_results(b"", "parquet")

    def test_corrupt_brotli(self) -> None:
        with pytest.raises(ProtocolError):
            decompress_payload(b"definitely not brotli", "brotli")

    def test_corrupt_arrow(self) -> None:
        with pytest.raises(ProtocolError):
            decode_results(brotli.decompress(brotli.compress(b"garbage")), "arrow")
