from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Iterable, Mapping

import pandas as pd

from state_rate_compare.config import RateMode, RatesConfig
from state_rate_compare.features.inclusion import InclusionTracker
from state_rate_compare.preprocess.rates import normalize_unit, parse_rate
from state_rate_compare.report.contracts import (
    STATUS_ALL_INCLUDED,
    STATUS_NONE_INCLUDED,
    STATUS_SINGLE_OVERRIDE,
    STATUS_SOME_INCLUDED,
    StatusTag,
)

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregatedPoint:
    label: str
    value: float | None
    included_count: int
    total_count: int
    status_tag: StatusTag
    contributing_count: int = 0
    pinned_key: str | None = None
    server_average: float | None = None

    @property
    def has_value(self) -> bool:
        return self.value is not None


def normalize_rate(
    rate: float | None,
    duration_unit: str,
    mode: RateMode,
    config: RatesConfig | None = None,
) -> float | None:
    """Convert a rate to the display basis.

    ``per_unit`` leaves the rate alone. ``per_hour`` scales by the unit's
    multiplier, passes pass-through units unchanged and maps every other
    unit to 0.0, which later drops it from averages.
    """
    if rate is None:
        return None
    if mode == "per_unit":
        return rate
    rates = config or RatesConfig()
    unit = normalize_unit(duration_unit)
    multipliers = {normalize_unit(name): factor for name, factor in rates.unit_multipliers.items()}
    if unit in multipliers:
        return rate * multipliers[unit]
    if unit in {normalize_unit(name) for name in rates.passthrough_units}:
        return rate
    return 0.0


def add_normalized_rates(
    canonical: pd.DataFrame,
    mode: RateMode,
    config: RatesConfig | None = None,
) -> pd.DataFrame:
    working = canonical.copy()
    rate_values = [parse_rate(value) for value in working.get("rate", pd.Series(dtype=object))]
    units = working.get("duration_unit", pd.Series("", index=working.index)).tolist()
    working["rate_value"] = pd.Series(rate_values, index=working.index, dtype=float)
    working["normalized_rate"] = pd.Series(
        [
            normalize_rate(rate, unit, mode, config)
            for rate, unit in zip(rate_values, units)
        ],
        index=working.index,
        dtype=float,
    )
    return working


def _contributing_rates(normalized: pd.Series) -> pd.Series:
    # Non-positive and unparseable rates never enter the mean.
    return normalized[normalized.notna() & (normalized > 0.0)]


def aggregate_group(
    group_records: pd.DataFrame,
    included_keys: Iterable[str],
    mode: RateMode,
    config: RatesConfig | None = None,
) -> tuple[float | None, int]:
    """Mean normalized rate of the included records and how many contributed."""
    if group_records.empty:
        return None, 0
    included = group_records[group_records["dedup_key"].isin(set(included_keys))]
    if included.empty:
        return None, 0
    if "normalized_rate" not in included.columns:
        included = add_normalized_rates(included, mode, config)
    rates = _contributing_rates(included["normalized_rate"])
    if rates.empty:
        return None, 0
    return float(rates.mean()), int(len(rates))


def status_for(included_count: int, total_count: int, pinned: bool) -> StatusTag:
    if pinned:
        return STATUS_SINGLE_OVERRIDE
    if included_count == 0:
        return STATUS_NONE_INCLUDED
    if included_count == total_count:
        return STATUS_ALL_INCLUDED
    return STATUS_SOME_INCLUDED


class RateAggregator:
    """Computes one AggregatedPoint per group from the currently included records.

    One point is cached per ``(group, mode)`` together with the tracker version
    it was computed at; any tracker mutation of a group changes its version,
    and the next lookup recomputes and replaces the entry.
    """

    def __init__(
        self,
        canonical: pd.DataFrame,
        tracker: InclusionTracker,
        *,
        group_column: str = "state_name",
        config: RatesConfig | None = None,
        server_averages: Mapping[str, float] | None = None,
    ) -> None:
        self.tracker = tracker
        self.group_column = group_column
        self.config = config or RatesConfig()
        self.server_averages = dict(server_averages or {})
        self._canonical = canonical
        self._by_mode: dict[str, dict[str, pd.DataFrame]] = {}
        self._cache: dict[tuple[str, str], tuple[int, AggregatedPoint]] = {}

    def _groups_for_mode(self, mode: RateMode) -> dict[str, pd.DataFrame]:
        if mode not in self._by_mode:
            normalized = add_normalized_rates(self._canonical, mode, self.config)
            if normalized.empty:
                self._by_mode[mode] = {}
            else:
                self._by_mode[mode] = {
                    str(group): frame
                    for group, frame in normalized.groupby(self.group_column, sort=False)
                }
        return self._by_mode[mode]

    def _pinned_value(self, records: pd.DataFrame, key: str) -> float | None:
        if "normalized_rate" not in records.columns:
            return None
        matched = records.loc[records["dedup_key"] == key, "normalized_rate"]
        if matched.empty:
            return None
        rates = _contributing_rates(matched)
        return float(rates.iloc[0]) if not rates.empty else None

    def point(self, group: str, mode: RateMode) -> AggregatedPoint:
        version = self.tracker.version(group)
        cached = self._cache.get((group, mode))
        if cached is not None and cached[0] == version:
            return cached[1]

        records = self._groups_for_mode(mode).get(group, pd.DataFrame(columns=["dedup_key"]))
        universe = self.tracker.all_keys(group)
        included = self.tracker.included_keys(group)
        pinned_key = self.tracker.pinned(group)
        if pinned_key is not None:
            value = self._pinned_value(records, pinned_key)
            contributing = 1 if value is not None else 0
        else:
            value, contributing = aggregate_group(records, included, mode, self.config)

        point = AggregatedPoint(
            label=group,
            value=value,
            included_count=len(included & universe),
            total_count=len(universe),
            status_tag=status_for(len(included & universe), len(universe), pinned_key is not None),
            contributing_count=contributing,
            pinned_key=pinned_key,
            server_average=self.server_averages.get(group),
        )
        self._cache[(group, mode)] = (version, point)
        return point

    def points(
        self,
        mode: RateMode,
        groups: Iterable[str] | None = None,
    ) -> list[AggregatedPoint]:
        """Points for ``groups`` (default: every tracked group, alphabetically)."""
        labels = list(groups) if groups is not None else sorted(self.tracker.groups())
        return [self.point(group, mode) for group in labels]


def build_group_table(points: Iterable[AggregatedPoint]) -> pd.DataFrame:
    rows = [asdict(point) for point in points]
    columns = list(AggregatedPoint.__dataclass_fields__)
    return pd.DataFrame(rows, columns=columns)
