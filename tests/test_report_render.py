from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from state_rate_compare.features.aggregates import AggregatedPoint
from state_rate_compare.report.chart import assemble_chart
from state_rate_compare.report.render import render_report
from state_rate_compare.viz.bars import plot_rate_comparison


def _payload() -> dict:
    points = [
        AggregatedPoint("TEXAS", 48.0, 1, 1, "all-included"),
        AggregatedPoint("OHIO", 20.0, 1, 2, "some-included"),
        AggregatedPoint("UTAH", None, 0, 1, "none-included"),
    ]
    return assemble_chart(points, "ascending")


def test_plot_rate_comparison_writes_figure(tmp_path: Path) -> None:
    path = plot_rate_comparison(_payload(), tmp_path / "figures" / "rates.png")

    assert path is not None
    assert path.exists()
    assert path.stat().st_size > 0


def test_plot_rate_comparison_skips_empty_series(tmp_path: Path) -> None:
    payload = assemble_chart([])
    assert plot_rate_comparison(payload, tmp_path / "rates.png") is None
    assert not (tmp_path / "rates.png").exists()


def test_render_report_escapes_record_text(tmp_path: Path) -> None:
    canonical = pd.DataFrame(
        {
            "state_name": ["TEXAS"],
            "service_description": ["<b>Adaptive</b> behavior"],
            "rate": ["$12.00"],
        }
    )

    path = render_report(
        _payload(),
        canonical,
        tmp_path,
        selections={"state_name": ["TEXAS"], "modifier_1": "blank"},
        summary={"n_canonical_records": 1},
    )

    html = path.read_text(encoding="utf-8")
    assert path.name == "report.html"
    assert "&lt;b&gt;Adaptive&lt;/b&gt;" in html
    assert "Without data: UTAH" in html
    assert "Partial selection" in html
    assert "$20.00" in html
    assert '<script id="chart-payload"' in html


def test_render_report_rejects_invalid_payload(tmp_path: Path) -> None:
    payload = _payload()
    payload["series"][0]["style"] = "unknown"

    with pytest.raises(ValueError):
        render_report(payload, pd.DataFrame(), tmp_path)
