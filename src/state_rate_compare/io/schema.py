from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import pandas as pd

from state_rate_compare.config import ColumnsConfig


@dataclass(frozen=True)
class CanonicalColumns:
    state: str = "state_name"
    service_category: str = "service_category"
    service_code: str = "service_code"
    service_description: str = "service_description"
    program: str = "program"
    location_region: str = "location_region"
    duration_unit: str = "duration_unit"
    provider_type: str = "provider_type"
    rate: str = "rate"
    effective_date: str = "rate_effective_date"


MODIFIER_COLUMNS = ["modifier_1", "modifier_2", "modifier_3", "modifier_4"]

# Identity of a billable item; everything except rate and effective date.
DEDUP_KEY_COLUMNS = [
    CanonicalColumns.state,
    CanonicalColumns.service_category,
    CanonicalColumns.service_code,
    CanonicalColumns.service_description,
    CanonicalColumns.program,
    CanonicalColumns.location_region,
    "modifier_1",
    "modifier_1_details",
    "modifier_2",
    "modifier_2_details",
    "modifier_3",
    "modifier_3_details",
    "modifier_4",
    "modifier_4_details",
    CanonicalColumns.duration_unit,
    CanonicalColumns.provider_type,
]

RECORD_COLUMNS = [*DEDUP_KEY_COLUMNS, CanonicalColumns.rate, CanonicalColumns.effective_date]

# Column spellings seen in exports of the rate database.
KNOWN_ALIASES = {
    "state": CanonicalColumns.state,
    "serviceCategory": CanonicalColumns.service_category,
    "serviceCode": CanonicalColumns.service_code,
    "serviceDescription": CanonicalColumns.service_description,
    "locationRegion": CanonicalColumns.location_region,
    "durationUnit": CanonicalColumns.duration_unit,
    "providerType": CanonicalColumns.provider_type,
    "effectiveDate": CanonicalColumns.effective_date,
    "effective_date": CanonicalColumns.effective_date,
}


def _rename_map(df: pd.DataFrame, columns: ColumnsConfig | None) -> dict[str, str]:
    rename_map = {
        source: target
        for source, target in KNOWN_ALIASES.items()
        if source in df.columns and target not in df.columns
    }
    if columns is not None:
        missing = [source for source in columns.renames if source not in df.columns]
        if missing:
            missing_str = ", ".join(missing)
            raise ValueError(f"Missing configured source columns: {missing_str}")
        rename_map.update(columns.renames)
    return rename_map


def _clean_text(series: pd.Series) -> pd.Series:
    return series.fillna("").astype(str).str.strip()


def normalize_columns(
    df: pd.DataFrame,
    columns: ColumnsConfig | None = None,
    *,
    required: list[str] | None = None,
    expected: Sequence[str] = tuple(RECORD_COLUMNS),
) -> pd.DataFrame:
    """Rename source columns to canonical names and blank-fill optional ones."""
    working = df.rename(columns=_rename_map(df, columns))
    for column in required or []:
        if column not in working.columns:
            raise ValueError(f"Normalized data missing column: {column}")
    for column in expected:
        if column in working.columns:
            working[column] = _clean_text(working[column])
        else:
            working[column] = ""
    return working.reset_index(drop=True)


def normalize_records(df: pd.DataFrame, columns: ColumnsConfig | None = None) -> pd.DataFrame:
    return normalize_columns(
        df,
        columns,
        required=[CanonicalColumns.state, CanonicalColumns.rate, CanonicalColumns.effective_date],
        expected=RECORD_COLUMNS,
    )


def normalize_combinations(
    df: pd.DataFrame, columns: ColumnsConfig | None = None
) -> pd.DataFrame:
    normalized = normalize_columns(df, columns, expected=[])
    return normalized.map(lambda value: "" if pd.isna(value) else str(value).strip())
