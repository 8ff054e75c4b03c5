from __future__ import annotations

import re
from datetime import date, datetime

import pandas as pd

# Dates are read field by field; generic timestamp parsing would shift
# midnight UTC values to the previous day in western timezones.
ISO_DATE_PATTERN = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
US_DATE_PATTERN = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def parse_effective_date(raw: object) -> date | None:
    if raw is None or raw is pd.NaT:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    iso_match = ISO_DATE_PATTERN.match(text)
    if iso_match:
        year, month, day = (int(part) for part in iso_match.groups())
    else:
        us_match = US_DATE_PATTERN.match(text)
        if not us_match:
            return None
        month, day, year = (int(part) for part in us_match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def format_effective_date(raw: object) -> str:
    parsed = parse_effective_date(raw)
    if parsed is None:
        return "" if raw is None else str(raw)
    return f"{parsed.month:02d}/{parsed.day:02d}/{parsed.year}"


def add_effective_dates(df: pd.DataFrame, column: str = "rate_effective_date") -> pd.DataFrame:
    working = df.copy()
    working["effective_date"] = working[column].map(parse_effective_date)
    working["effective_date_display"] = working[column].map(format_effective_date)
    return working
