from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd
from jinja2 import Environment, FileSystemLoader, select_autoescape

from state_rate_compare.io.write import json_safe
from state_rate_compare.report.contracts import STATUS_COLORS, STATUS_LABELS, validate_chart_payload

LOGGER = logging.getLogger(__name__)

RECORD_PREVIEW_COLUMNS = [
    "state_name",
    "service_code",
    "service_description",
    "program",
    "location_region",
    "provider_type",
    "modifier_1",
    "duration_unit",
    "rate",
    "effective_date_display",
]


def _template_env() -> Environment:
    templates_path = Path(__file__).resolve().parent / "templates"
    return Environment(
        loader=FileSystemLoader(str(templates_path)),
        autoescape=select_autoescape(enabled_extensions=("html", "xml", "j2")),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def _record_preview(canonical: pd.DataFrame, max_rows: int) -> dict[str, Any]:
    columns = [column for column in RECORD_PREVIEW_COLUMNS if column in canonical.columns]
    preview = canonical.loc[:, columns].head(max_rows)
    return {
        "columns": columns,
        "rows": json_safe(preview.to_dict(orient="records")),
        "total_rows": int(len(canonical)),
    }


def render_report(
    chart_payload: dict[str, Any],
    canonical: pd.DataFrame,
    out_dir: Path,
    *,
    selections: dict[str, Any] | None = None,
    summary: dict[str, Any] | None = None,
    figure_file: str | None = None,
    max_rows: int = 200,
) -> Path:
    """Write ``report.html`` for one comparison run."""
    validate_chart_payload(chart_payload)
    template = _template_env().get_template("comparison.html.j2")
    rendered = template.render(
        generated_at=datetime.now(timezone.utc).isoformat(),
        chart=json_safe(chart_payload),
        chart_json=json.dumps(json_safe(chart_payload), sort_keys=True).replace("</", "<\\/"),
        selections=json_safe(selections or {}),
        summary=json_safe(summary or {}),
        records=_record_preview(canonical, max_rows),
        status_colors=STATUS_COLORS,
        status_labels=STATUS_LABELS,
        figure_file=figure_file,
    )
    report_path = out_dir / "report.html"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(rendered, encoding="utf-8")
    LOGGER.info("Wrote comparison report to %s", report_path)
    return report_path
