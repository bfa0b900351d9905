# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Connection options and their one-time resolution against the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from wherobots_sql.constants import (
    API_KEY_ENV_VAR,
    API_URL_ENV_VAR,
    DEFAULT_API_URL,
    DataCompression,
    GeometryRepresentation,
    Region,
    ResultsFormat,
    Runtime,
)
from wherobots_sql.errors import ConfigurationError

__all__ = ["ConnectionOptions", "resolve_options"]


class ConnectionOptions(BaseModel):
    """Normalized options for a connection.

    Attributes:
        api_key: Credential sent as ``X-API-Key`` on every request.
        runtime: Size of the runtime backing the session.
        region: Region the session is provisioned in.
        results_format: Encoding requested for result payloads.
        data_compression: Compression requested for result payloads.
        geometry_representation: Rendering of geometry columns in results.
        api_url: Base URL of the session service.

    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    api_key: str = Field(min_length=1, max_length=255, repr=False)
    runtime: Runtime
    region: Region = Region.AWS_US_WEST_2
    results_format: Literal[ResultsFormat.ARROW] = ResultsFormat.ARROW
    data_compression: Literal[DataCompression.BROTLI] = DataCompression.BROTLI
    geometry_representation: GeometryRepresentation = GeometryRepresentation.EWKT
    api_url: str = DEFAULT_API_URL

    @property
    def headers(self) -> dict[str, str]:
        """HTTP headers carrying the credential."""
        return {"Content-Type": "application/json", "X-API-Key": self.api_key}

    def loggable(self) -> dict[str, Any]:
        """Return the options as a dict with the credential removed."""
        return self.model_dump(mode="json", exclude={"api_key"})


def resolve_options(
    options: ConnectionOptions | Mapping[str, Any] | None = None,
    /,
    *,
    environ: Mapping[str, str] | None = None,
    **fields: Any,
) -> ConnectionOptions:
    """Build ``ConnectionOptions`` from explicit values and the environment.

    The environment is consulted exactly once here: ``WHEROBOTS_API_KEY``
    fills in a missing ``api_key`` and ``WHEROBOTS_API_URL`` a missing
    ``api_url``.  Explicit values always win.

    Args:
        options: An existing ``ConnectionOptions`` or a mapping of fields.
        environ: Environment to read from (defaults to ``os.environ``).
        **fields: Individual option fields, overriding *options*.

    Returns:
        Validated, fully defaulted options.

    Raises:
        ConfigurationError: If the credential is missing or any option is
            invalid.

    """
    env = os.environ if environ is None else environ
    if isinstance(options, ConnectionOptions):
        merged: dict[str, Any] = options.model_dump()
    else:
        merged = dict(options or {})
    merged.update({k: v for k, v in fields.items() if v is not None})

    if not merged.get("api_key"):
        env_key = env.get(API_KEY_ENV_VAR)
        if not env_key:
            raise ConfigurationError(f"An API key is required: pass api_key or set {API_KEY_ENV_VAR}")
        merged["api_key"] = env_key
    if not merged.get("api_url"):
        merged["api_url"] = env.get(API_URL_ENV_VAR) or DEFAULT_API_URL

    try:
        return ConnectionOptions.model_validate(merged)
    except ValidationError as exc:
        # Error details only; input values could echo the credential.
        details = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in exc.errors())
        raise ConfigurationError(f"Invalid connection options: {details}") from None
