from __future__ import annotations

import math
import re

_CURRENCY_NOISE = re.compile(r"[\s$,]")


def parse_rate(raw: object) -> float | None:
    """Parse a currency string such as ``"$1,012.50"``; None when not numeric."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = _CURRENCY_NOISE.sub("", str(raw))
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    return value if math.isfinite(value) else None


def normalize_unit(raw: object) -> str:
    if raw is None:
        return ""
    return " ".join(str(raw).split()).upper()


def format_rate(value: float | None) -> str:
    if value is None:
        return "-"
    return f"${value:,.2f}"
