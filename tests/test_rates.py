from __future__ import annotations

import pytest

from state_rate_compare.config import RatesConfig
from state_rate_compare.features.aggregates import normalize_rate
from state_rate_compare.preprocess.rates import format_rate, normalize_unit, parse_rate


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("$10.00", 10.0),
        ("$1,012.50", 1012.5),
        (" 7.25 ", 7.25),
        ("$0.00", 0.0),
        (12, 12.0),
        ("call for rate", None),
        ("", None),
        ("$", None),
        (None, None),
        ("nan", None),
        (True, None),
    ],
)
def test_parse_rate(raw: object, expected: float | None) -> None:
    assert parse_rate(raw) == expected


def test_normalize_unit_collapses_whitespace_and_case() -> None:
    assert normalize_unit("  15   minutes ") == "15 MINUTES"
    assert normalize_unit(None) == ""


def test_format_rate() -> None:
    assert format_rate(1012.5) == "$1,012.50"
    assert format_rate(None) == "-"


@pytest.mark.parametrize(
    ("unit", "expected"),
    [
        ("15 MINUTES", 40.0),
        ("15 minutes", 40.0),
        ("30 MINUTES", 20.0),
        ("PER HOUR", 10.0),
        ("PER SESSION", 10.0),
        ("PER DAY", 0.0),
        ("", 0.0),
    ],
)
def test_normalize_rate_per_hour(unit: str, expected: float) -> None:
    assert normalize_rate(10.0, unit, "per_hour") == expected


def test_normalize_rate_per_unit_is_identity() -> None:
    assert normalize_rate(10.0, "15 MINUTES", "per_unit") == 10.0
    assert normalize_rate(None, "15 MINUTES", "per_hour") is None


def test_normalize_rate_uses_configured_units() -> None:
    config = RatesConfig(unit_multipliers={"PER DAY": 0.125}, passthrough_units=[])

    assert normalize_rate(80.0, "per day", "per_hour", config) == 10.0
    assert normalize_rate(80.0, "PER SESSION", "per_hour", config) == 0.0
