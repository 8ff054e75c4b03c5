from __future__ import annotations

import math
from typing import Any, Literal

StatusTag = Literal["all-included", "some-included", "none-included", "single-override"]
SortMode = Literal["default", "ascending", "descending"]

STATUS_ALL_INCLUDED: StatusTag = "all-included"
STATUS_SOME_INCLUDED: StatusTag = "some-included"
STATUS_NONE_INCLUDED: StatusTag = "none-included"
STATUS_SINGLE_OVERRIDE: StatusTag = "single-override"

ALLOWED_STATUS_TAGS = frozenset(
    {STATUS_ALL_INCLUDED, STATUS_SOME_INCLUDED, STATUS_NONE_INCLUDED, STATUS_SINGLE_OVERRIDE}
)
ALLOWED_SORT_MODES = frozenset({"default", "ascending", "descending"})

STATUS_COLORS: dict[str, str] = {
    STATUS_ALL_INCLUDED: "#36A2EB",
    STATUS_SOME_INCLUDED: "#FFB347",
    STATUS_NONE_INCLUDED: "#A0AEC0",
    STATUS_SINGLE_OVERRIDE: "#2E8B57",
}
STATUS_LABELS: dict[str, str] = {
    STATUS_ALL_INCLUDED: "All selected",
    STATUS_SOME_INCLUDED: "Partial selection",
    STATUS_NONE_INCLUDED: "None selected",
    STATUS_SINGLE_OVERRIDE: "Selected entry",
}

UNIT_LABELS = {"per_hour": "per hour", "per_unit": "per base unit"}
Y_AXIS_NAMES = {"per_hour": "Rate ($ per hour)", "per_unit": "Rate ($ per base unit)"}

CHART_ITEM_KEYS = frozenset(
    {"category", "value", "style", "color", "included_count", "total_count"}
)


def normalize_sort_mode(mode: str | None, *, default: SortMode = "default") -> SortMode:
    if isinstance(mode, str):
        normalized = mode.strip().lower()
        if normalized in ALLOWED_SORT_MODES:
            return normalized  # type: ignore[return-value]
    return default


def validate_chart_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Check the payload handed to chart renderers; returns it unchanged."""
    for key in ("series", "axis", "sort_mode", "omitted"):
        if key not in payload:
            raise ValueError(f"chart payload missing key: {key}")
    if payload["sort_mode"] not in ALLOWED_SORT_MODES:
        raise ValueError(f"unsupported sort_mode: {payload['sort_mode']!r}")

    axis = payload["axis"]
    if not isinstance(axis, dict) or not {"unit_label", "y_axis_name"} <= set(axis):
        raise ValueError("chart axis must define unit_label and y_axis_name")

    categories: set[str] = set()
    for item in payload["series"]:
        missing = CHART_ITEM_KEYS - set(item)
        if missing:
            raise ValueError(f"chart item missing keys: {', '.join(sorted(missing))}")
        if item["style"] not in ALLOWED_STATUS_TAGS:
            raise ValueError(f"unsupported chart style: {item['style']!r}")
        value = item["value"]
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ValueError(f"chart value for {item['category']!r} must be a finite number")
        if item["category"] in categories:
            raise ValueError(f"duplicate chart category: {item['category']!r}")
        categories.add(item["category"])

    overlap = categories & set(payload["omitted"])
    if overlap:
        raise ValueError(f"categories both charted and omitted: {', '.join(sorted(overlap))}")
    return payload
