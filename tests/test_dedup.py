from __future__ import annotations

from datetime import date

import numpy as np
import pandas as pd

from state_rate_compare.features.dedup import (
    add_dedup_keys,
    dedup_key,
    dedup_summary,
    deduplicate_records,
)
from state_rate_compare.io.schema import normalize_records
from state_rate_compare.preprocess.dates import parse_effective_date


def _records(rows: list[dict]) -> pd.DataFrame:
    return normalize_records(pd.DataFrame(rows))


def _quarter_hour(state: str, code: str, rate: str, effective: str) -> dict:
    return {
        "state_name": state,
        "service_code": code,
        "duration_unit": "15 MINUTES",
        "rate": rate,
        "rate_effective_date": effective,
    }


def test_latest_effective_record_wins() -> None:
    raw = _records(
        [
            _quarter_hour("TEXAS", "S5116", "$10.00", "2023-01-01"),
            _quarter_hour("TEXAS", "S5116", "$12.00", "2024-01-01"),
        ]
    )

    canonical = deduplicate_records(raw)

    assert len(canonical) == 1
    assert canonical.loc[0, "rate"] == "$12.00"
    assert canonical.loc[0, "effective_date"] == date(2024, 1, 1)
    assert canonical.loc[0, "effective_date_display"] == "01/01/2024"
    assert canonical.loc[0, "group_size"] == 2


def test_equal_dates_keep_first_encountered_row() -> None:
    raw = _records(
        [
            {"state_name": "OHIO", "rate": "$5.00", "rate_effective_date": "07/01/2024"},
            {"state_name": "OHIO", "rate": "$6.00", "rate_effective_date": "2024-07-01"},
        ]
    )

    assert deduplicate_records(raw)["rate"].tolist() == ["$5.00"]


def test_unparseable_dates_rank_oldest_but_are_kept() -> None:
    raw = _records(
        [
            {"state_name": "OHIO", "rate": "$9.00", "rate_effective_date": "N/A"},
            {"state_name": "OHIO", "rate": "$7.00", "rate_effective_date": "2020-01-01"},
            {"state_name": "UTAH", "rate": "$3.00", "rate_effective_date": "soon"},
            {"state_name": "UTAH", "rate": "$4.00", "rate_effective_date": "2024-02-30"},
        ]
    )

    canonical = deduplicate_records(raw)

    assert canonical["state_name"].tolist() == ["OHIO", "UTAH"]
    assert canonical["rate"].tolist() == ["$7.00", "$3.00"]
    assert canonical.loc[1, "effective_date_display"] == "soon"
    assert dedup_summary(raw, canonical) == {
        "n_raw_records": 4,
        "n_canonical_records": 2,
        "n_superseded_records": 2,
        "n_canonical_unparseable_dates": 1,
    }


def test_output_follows_first_appearance_of_each_key() -> None:
    raw = _records(
        [
            {"state_name": "UTAH", "rate": "$1.00", "rate_effective_date": "2020-01-01"},
            {"state_name": "OHIO", "rate": "$2.00", "rate_effective_date": "2020-01-01"},
            {"state_name": "UTAH", "rate": "$3.00", "rate_effective_date": "2022-01-01"},
        ]
    )

    canonical = deduplicate_records(raw)

    assert canonical["state_name"].tolist() == ["UTAH", "OHIO"]
    assert canonical["rate"].tolist() == ["$3.00", "$2.00"]


def test_dedup_key_treats_missing_values_as_empty() -> None:
    key = dedup_key({"state_name": "TEXAS", "service_code": None, "duration_unit": float("nan")})

    assert key.split("|")[0] == "TEXAS"
    assert key.count("|") == 15
    assert key == "TEXAS" + "|" * 15

    keyed = add_dedup_keys(pd.DataFrame({"state_name": ["TEXAS"]}))
    assert keyed.loc[0, "dedup_key"] == key


def test_empty_input_produces_empty_output() -> None:
    canonical = deduplicate_records(
        normalize_records(pd.DataFrame(columns=["state_name", "rate", "rate_effective_date"]))
    )

    assert canonical.empty
    assert "group_size" in canonical.columns
    assert "dedup_key" in canonical.columns


def test_randomized_cardinality_and_latest_date() -> None:
    rng = np.random.default_rng(7)
    states = ["ALABAMA", "OHIO", "TEXAS"]
    codes = ["97153", "97155", "H2019", "S5116"]
    units = ["15 MINUTES", "PER HOUR"]
    dates = ["2021-03-01", "2022-07-15", "2024-01-01", "06/30/2023", "unknown", ""]
    rows = [
        {
            "state_name": str(rng.choice(states)),
            "service_code": str(rng.choice(codes)),
            "duration_unit": str(rng.choice(units)),
            "rate": f"${rng.integers(1, 100)}.00",
            "rate_effective_date": str(rng.choice(dates)),
        }
        for _ in range(300)
    ]
    raw = _records(rows)

    canonical = deduplicate_records(raw)
    keyed = add_dedup_keys(raw)

    assert len(canonical) == keyed["dedup_key"].nunique()
    assert canonical["dedup_key"].is_unique
    parsed = keyed["rate_effective_date"].map(parse_effective_date)
    for _, row in canonical.iterrows():
        in_group = parsed[keyed["dedup_key"] == row["dedup_key"]]
        group_dates = [value for value in in_group if isinstance(value, date)]
        if group_dates:
            assert row["effective_date"] == max(group_dates)
        assert row["group_size"] == int((keyed["dedup_key"] == row["dedup_key"]).sum())
