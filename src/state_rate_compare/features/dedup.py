from __future__ import annotations

import logging
from typing import Any, Mapping

import numpy as np
import pandas as pd

from state_rate_compare.io.schema import DEDUP_KEY_COLUMNS
from state_rate_compare.preprocess.dates import add_effective_dates

LOGGER = logging.getLogger(__name__)

KEY_SEPARATOR = "|"
UNPARSEABLE_ORDINAL = -1


def dedup_key(row: Mapping[str, Any]) -> str:
    parts = []
    for column in DEDUP_KEY_COLUMNS:
        value = row.get(column)
        parts.append("" if value is None or pd.isna(value) else str(value))
    return KEY_SEPARATOR.join(parts)


def add_dedup_keys(df: pd.DataFrame) -> pd.DataFrame:
    working = df.copy()
    for column in DEDUP_KEY_COLUMNS:
        if column not in working.columns:
            working[column] = ""
    key_frame = working[DEDUP_KEY_COLUMNS].fillna("").astype(str)
    working["dedup_key"] = [
        KEY_SEPARATOR.join(parts) for parts in key_frame.itertuples(index=False, name=None)
    ]
    return working


def deduplicate_records(df: pd.DataFrame) -> pd.DataFrame:
    """Keep the most recently effective record per dedup key.

    Ties on the effective date keep the first-encountered row. Rows whose
    date cannot be parsed rank below every parseable date but are never
    dropped from their group's count; such a row is canonical only when its
    whole group is unparseable. Output rows follow first appearance of
    their key in the input.
    """
    working = add_effective_dates(add_dedup_keys(df))
    if working.empty:
        working["group_size"] = pd.Series(dtype="int64")
        return working.reset_index(drop=True)

    working["_order"] = np.arange(len(working))
    working["_date_ordinal"] = [
        value.toordinal() if pd.notna(value) else UNPARSEABLE_ORDINAL
        for value in working["effective_date"]
    ]
    grouped = working.groupby("dedup_key", sort=False)
    working["group_size"] = grouped["_order"].transform("size").astype("int64")
    working["_first_seen"] = grouped["_order"].transform("min")

    canonical = working.sort_values(
        ["dedup_key", "_date_ordinal", "_order"],
        ascending=[True, False, True],
        kind="mergesort",
    ).drop_duplicates(subset=["dedup_key"], keep="first")
    canonical = canonical.sort_values("_first_seen", kind="mergesort")
    canonical = canonical.drop(columns=["_order", "_date_ordinal", "_first_seen"])
    canonical = canonical.reset_index(drop=True)

    LOGGER.debug(
        "Deduplicated %d raw records into %d canonical records",
        len(working),
        len(canonical),
    )
    return canonical


def dedup_summary(raw: pd.DataFrame, canonical: pd.DataFrame) -> dict[str, int]:
    unparseable = 0
    if "effective_date" in canonical.columns:
        unparseable = int(canonical["effective_date"].isna().sum())
    return {
        "n_raw_records": int(len(raw)),
        "n_canonical_records": int(len(canonical)),
        "n_superseded_records": int(len(raw) - len(canonical)),
        "n_canonical_unparseable_dates": unparseable,
    }
