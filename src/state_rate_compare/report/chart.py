from __future__ import annotations

from typing import Any, Iterable

from state_rate_compare.config import RateMode
from state_rate_compare.features.aggregates import AggregatedPoint
from state_rate_compare.report.contracts import (
    STATUS_COLORS,
    UNIT_LABELS,
    Y_AXIS_NAMES,
    SortMode,
    normalize_sort_mode,
)


def order_points(points: list[AggregatedPoint], sort_mode: SortMode) -> list[AggregatedPoint]:
    # sorted() is stable, so equal values keep their input order.
    if sort_mode == "ascending":
        return sorted(points, key=lambda point: point.value or 0.0)
    if sort_mode == "descending":
        return sorted(points, key=lambda point: point.value or 0.0, reverse=True)
    return list(points)


def chart_item(point: AggregatedPoint) -> dict[str, Any]:
    return {
        "category": point.label,
        "value": float(point.value) if point.value is not None else None,
        "style": point.status_tag,
        "color": STATUS_COLORS[point.status_tag],
        "included_count": point.included_count,
        "total_count": point.total_count,
    }


def assemble_chart(
    points: Iterable[AggregatedPoint],
    sort_mode: str = "default",
    rate_mode: RateMode = "per_hour",
) -> dict[str, Any]:
    """Order the charted points and attach style tags and axis metadata.

    Groups without a value are left out of ``series`` entirely and listed
    under ``omitted`` instead of being drawn as zero-height bars.
    """
    mode = normalize_sort_mode(sort_mode)
    all_points = list(points)
    charted = [point for point in all_points if point.value is not None]
    omitted = [point.label for point in all_points if point.value is None]
    ordered = order_points(charted, mode)
    return {
        "series": [chart_item(point) for point in ordered],
        "axis": {
            "unit_label": UNIT_LABELS[rate_mode],
            "y_axis_name": Y_AXIS_NAMES[rate_mode],
        },
        "sort_mode": mode,
        "omitted": omitted,
    }


def series_values(payload: dict[str, Any]) -> tuple[list[str], list[float]]:
    series = payload.get("series", [])
    return (
        [str(item["category"]) for item in series],
        [float(item["value"]) for item in series],
    )
