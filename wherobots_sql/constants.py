# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Enumerations and protocol constants shared across the driver."""

from __future__ import annotations

from enum import StrEnum
from typing import Final

__all__ = [
    "API_KEY_ENV_VAR",
    "API_URL_ENV_VAR",
    "DEFAULT_API_URL",
    "DEFAULT_PROTOCOL_VERSION",
    "IN_PROGRESS_SESSION_STATUSES",
    "MIN_PROTOCOL_VERSION_FOR_CANCEL",
    "DataCompression",
    "GeometryRepresentation",
    "Region",
    "ResultsFormat",
    "Runtime",
    "SessionStatus",
]

API_KEY_ENV_VAR: Final = "WHEROBOTS_API_KEY"
API_URL_ENV_VAR: Final = "WHEROBOTS_API_URL"
DEFAULT_API_URL: Final = "https://api.cloud.wherobots.com"

DEFAULT_PROTOCOL_VERSION: Final = "1.0.0"
MIN_PROTOCOL_VERSION_FOR_CANCEL: Final = "1.1.0"


class Region(StrEnum):
    """Regions a SQL session can be provisioned in."""

    AWS_US_WEST_2 = "aws-us-west-2"


class Runtime(StrEnum):
    """Runtime sizes accepted by the session service."""

    SEDONA = "TINY"
    SAN_FRANCISCO = "SMALL"
    NEW_YORK = "MEDIUM"
    CAIRO = "LARGE"
    DELHI = "XLARGE"
    TOKYO = "XXLARGE"
    ATLANTIS = "4x-large"

    NEW_YORK_HIMEM = "medium-himem"
    CAIRO_HIMEM = "large-himem"
    DELHI_HIMEM = "x-large-himem"
    TOKYO_HIMEM = "2x-large-himem"
    ATLANTIS_HIMEM = "4x-large-himem"

    SEDONA_GPU = "tiny-a10-gpu"
    SAN_FRANCISCO_GPU = "small-a10-gpu"
    NEW_YORK_GPU = "medium-a10-gpu"


class ResultsFormat(StrEnum):
    """Encodings the server can use for result payloads."""

    JSON = "json"
    ARROW = "arrow"


class DataCompression(StrEnum):
    """Compression codecs the server can apply to result payloads."""

    BROTLI = "brotli"


class GeometryRepresentation(StrEnum):
    """How geometry columns are rendered in results."""

    WKT = "wkt"
    WKB = "wkb"
    EWKT = "ewkt"
    EWKB = "ewkb"
    GEOJSON = "geojson"


class SessionStatus(StrEnum):
    """Lifecycle states reported by the session service."""

    PENDING = "PENDING"
    PREPARING = "PREPARING"
    PREPARE_FAILED = "PREPARE_FAILED"
    REQUESTED = "REQUESTED"
    DEPLOYING = "DEPLOYING"
    DEPLOY_FAILED = "DEPLOY_FAILED"
    DEPLOYED = "DEPLOYED"
    INITIALIZING = "INITIALIZING"
    INIT_FAILED = "INIT_FAILED"
    READY = "READY"
    DESTROY_REQUESTED = "DESTROY_REQUESTED"
    DESTROYING = "DESTROYING"
    DESTROY_FAILED = "DESTROY_FAILED"
    DESTROYED = "DESTROYED"


# Anything outside this set ends polling.
IN_PROGRESS_SESSION_STATUSES: Final[frozenset[SessionStatus]] = frozenset(
    {
        SessionStatus.PENDING,
        SessionStatus.PREPARING,
        SessionStatus.REQUESTED,
        SessionStatus.DEPLOYING,
        SessionStatus.DEPLOYED,
        SessionStatus.INITIALIZING,
    }
)
