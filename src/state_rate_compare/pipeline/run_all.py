"""Batch comparison: records in, tables, chart payload, figure and report out."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import pandas as pd

from state_rate_compare.config import AppConfig, RateMode
from state_rate_compare.features.aggregates import RateAggregator, build_group_table
from state_rate_compare.features.dedup import deduplicate_records, dedup_summary
from state_rate_compare.features.filter_state import FilterState, filter_records
from state_rate_compare.features.inclusion import InclusionTracker
from state_rate_compare.io.rate_query import RateQuery, RateQueryClient, RateQueryError
from state_rate_compare.io.read import load_records
from state_rate_compare.io.write import write_summary, write_table
from state_rate_compare.paths import build_output_paths
from state_rate_compare.report.chart import assemble_chart
from state_rate_compare.report.render import render_report
from state_rate_compare.viz.bars import plot_rate_comparison

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComparisonArtifacts:
    report_path: Path
    chart_payload_path: Path
    summary_path: Path
    figure_path: Path | None
    chart_payload: dict[str, Any]


def fetch_records(
    state: FilterState,
    config: AppConfig,
    client: RateQueryClient | None = None,
) -> tuple[pd.DataFrame, dict[str, float]]:
    """Fetch every matching record, plus server state averages when pages omit them."""
    query = RateQuery.from_filter_state(state, config.query.items_per_page)
    owned = client is None
    active = client or RateQueryClient(config.query)
    try:
        response = active.fetch_all(query)
        records = response.records_frame()
        averages = dict(response.state_averages)
        if not averages and not records.empty:
            try:
                averages = active.fetch_state_averages(query)
            except RateQueryError as exc:
                LOGGER.warning("Server state averages unavailable: %s", exc)
    finally:
        if owned:
            active.close()
    return records, averages


def compare_records(
    records: pd.DataFrame,
    state: FilterState,
    config: AppConfig,
    *,
    rate_mode: RateMode | None = None,
    sort_mode: str | None = None,
    server_averages: Mapping[str, float] | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame, dict[str, Any], dict[str, Any]]:
    """Filter, deduplicate and aggregate ``records``.

    Returns the canonical records, the per-group table, the chart payload
    and a run summary.
    """
    mode = rate_mode or config.rates.mode
    group_column = config.chart.group_column
    filtered = filter_records(records, state)
    canonical = deduplicate_records(filtered)
    tracker = InclusionTracker.from_canonical(canonical, group_column)
    aggregator = RateAggregator(
        canonical,
        tracker,
        group_column=group_column,
        config=config.rates,
        server_averages=server_averages,
    )
    points = aggregator.points(mode)
    payload = assemble_chart(points, sort_mode or config.chart.sort_mode, mode)
    summary = {
        **dedup_summary(filtered, canonical),
        "n_input_records": int(len(records)),
        "n_groups": len(points),
        "n_charted_groups": len(payload["series"]),
        "rate_mode": mode,
        "sort_mode": payload["sort_mode"],
        "selections": state.as_dict(),
    }
    LOGGER.info(
        "Compared %d canonical records across %d groups (%d charted)",
        len(canonical),
        len(points),
        len(payload["series"]),
    )
    return canonical, build_group_table(points), payload, summary


def run_all(
    records_path: Path | None,
    out_dir: Path,
    config: AppConfig,
    state: FilterState | None = None,
    *,
    rate_mode: RateMode | None = None,
    sort_mode: str | None = None,
    client: RateQueryClient | None = None,
) -> ComparisonArtifacts:
    selections = state or FilterState()
    server_averages: dict[str, float] = {}
    if records_path is not None:
        records = load_records(records_path, config)
    else:
        records, server_averages = fetch_records(selections, config, client)

    canonical, groups, payload, summary = compare_records(
        records,
        selections,
        config,
        rate_mode=rate_mode,
        sort_mode=sort_mode,
        server_averages=server_averages,
    )

    paths = build_output_paths(out_dir)
    fmt = config.outputs.tables_format
    table_columns = [column for column in canonical.columns if column != "effective_date"]
    write_table(canonical.loc[:, table_columns], paths.tables / f"canonical_records.{fmt}", fmt)
    write_table(groups, paths.tables / f"group_averages.{fmt}", fmt)
    chart_path = write_summary(payload, paths.summary / "chart_payload.json")
    summary_path = write_summary(summary, paths.summary / "run_summary.json")

    figure_path = plot_rate_comparison(
        payload,
        paths.figures / f"rate_comparison.{config.outputs.figures_format}",
    )
    report_path = render_report(
        payload,
        canonical,
        out_dir,
        selections=summary["selections"],
        summary=summary,
        figure_file=figure_path.name if figure_path is not None else None,
    )
    return ComparisonArtifacts(
        report_path=report_path,
        chart_payload_path=chart_path,
        summary_path=summary_path,
        figure_path=figure_path,
        chart_payload=payload,
    )
