from __future__ import annotations

from datetime import datetime

import pytest

from depot_cli.utils.formatting import format_duration, format_size, format_timestamp


@pytest.mark.parametrize(
    ("size", "expected"),
    [(0, "0 B"), (-5, "0 B"), (512, "512.0 B"), (1536, "1.5 KB"), (3 * 1024**3, "3.0 GB")],
)
def test_format_size(size, expected):
    assert format_size(size) == expected


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(0, "0s"), (59.9, "59s"), (60, "1m"), (3725, "1h 2m 5s"), (7200, "2h")],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_format_timestamp():
    assert format_timestamp(datetime(2025, 3, 4, 5, 6, 7)) == "2025-03-04 05:06"
