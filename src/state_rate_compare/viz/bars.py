from __future__ import annotations

from pathlib import Path
from typing import Any

import matplotlib.pyplot as plt

from state_rate_compare.preprocess.rates import format_rate
from state_rate_compare.report.contracts import STATUS_COLORS, STATUS_LABELS
from state_rate_compare.viz.common import save_figure


def plot_rate_comparison(
    payload: dict[str, Any],
    output_path: Path,
    title: str = "Average rate by state",
) -> Path | None:
    """Bar chart of a chart payload; returns None when nothing is charted."""
    series = payload.get("series", [])
    if not series:
        return None

    categories = [str(item["category"]) for item in series]
    values = [float(item["value"]) for item in series]
    colors = [item.get("color") or STATUS_COLORS[item["style"]] for item in series]

    plt.figure(figsize=(max(6.0, 0.5 * len(categories) + 2.0), 5))
    bars = plt.bar(categories, values, color=colors)
    for bar, value in zip(bars, values):
        plt.annotate(
            format_rate(value),
            (bar.get_x() + bar.get_width() / 2, bar.get_height()),
            ha="center",
            va="bottom",
            fontsize=8,
        )

    styles = list(dict.fromkeys(item["style"] for item in series))
    if len(styles) > 1:
        handles = [plt.Rectangle((0, 0), 1, 1, color=STATUS_COLORS[style]) for style in styles]
        plt.legend(handles, [STATUS_LABELS[style] for style in styles], loc="upper right")

    plt.title(title)
    plt.ylabel(payload["axis"]["y_axis_name"])
    plt.xticks(rotation=45, ha="right")
    return save_figure(output_path)
