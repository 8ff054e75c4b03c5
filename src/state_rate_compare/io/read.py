from __future__ import annotations

import json
from pathlib import Path

import pandas as pd

from state_rate_compare.config import AppConfig
from state_rate_compare.io.schema import normalize_combinations, normalize_records


def _read_frame(path: Path) -> pd.DataFrame:
    if path.suffix == ".parquet":
        return pd.read_parquet(path)
    if path.suffix == ".csv":
        # utf-8-sig strips BOM-prefixed headers commonly found in exported CSV files.
        # Codes such as 0362T or 90837 must stay text.
        return pd.read_csv(path, encoding="utf-8-sig", dtype=str, keep_default_na=False)
    if path.suffix == ".json":
        payload = json.loads(path.read_text(encoding="utf-8"))
        # Accept a bare list of rows or a saved service response with a data list.
        rows = payload.get("data", []) if isinstance(payload, dict) else payload
        if not isinstance(rows, list):
            raise ValueError(f"JSON records file must hold a list of rows: {path}")
        return pd.DataFrame(rows, dtype=object)
    raise ValueError(f"Unsupported table file type: {path.suffix}")


def load_records(path: Path, config: AppConfig) -> pd.DataFrame:
    """Load raw rate records and return canonical columns."""
    return normalize_records(_read_frame(path), columns=config.columns)


def load_combinations(path: Path, config: AppConfig) -> pd.DataFrame:
    """Load a plain combinations table, e.g. before encoding it as a catalog."""
    return normalize_combinations(_read_frame(path), columns=config.columns)
