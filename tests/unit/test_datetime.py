# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for datetime helpers."""

from datetime import datetime, timedelta, timezone

from src.utils.datetime import ensure_utc


class TestEnsureUtc:
    def test_naive_is_taken_as_utc(self) -> None:
        value = ensure_utc(datetime(2025, 3, 4, 8, 30))

        assert value == datetime(2025, 3, 4, 8, 30, tzinfo=timezone.utc)

    def test_aware_is_converted(self) -> None:
        kigali = timezone(timedelta(hours=2))

        value = ensure_utc(datetime(2025, 3, 4, 10, 30, tzinfo=kigali))

        assert value.tzinfo == timezone.utc
        assert value.hour == 8
