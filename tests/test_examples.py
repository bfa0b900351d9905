# © Copyright 2025-2026, Wherobots Inc. - https://wherobots.com
# SPDX-License-Identifier: Apache-2.0

"""Tests that verify the self-contained examples run successfully."""

from __future__ import annotations

import pytest


class TestSelfContainedExamples:
    """Examples that run entirely in-process against stubs."""

    def test_testing_offline(self, capsys: pytest.CaptureFixture[str]) -> None:
        """testing_offline.py: connect, run two statements, close."""
        from examples.testing_offline import main

        main()
        out = capsys.readouterr().out
        assert "Lisbon: SRID=4326;POINT (-9.14 38.72)" in out
        assert "Sedona: SRID=4326;POINT (-111.76 34.87)" in out
        assert "one=1" in out
        assert "session service calls: 2" in out
        assert "messages sent: 4" in out

    def test_connection_with_defaults_importable(self) -> None:
        """connection_with_defaults.py needs credentials; check it at least imports."""
        from examples import connection_with_defaults

        assert callable(connection_with_defaults.main)
