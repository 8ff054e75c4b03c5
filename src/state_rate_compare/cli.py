from __future__ import annotations

from pathlib import Path

import typer

from state_rate_compare.config import DEFAULT_CONFIG_PATH, AppConfig, load_config
from state_rate_compare.features.facets import FacetSelection
from state_rate_compare.features.filter_state import FilterState, missing_required
from state_rate_compare.io.catalog import write_catalog
from state_rate_compare.io.rate_query import RateQuery, RateQueryError
from state_rate_compare.io.read import load_combinations
from state_rate_compare.io.write import write_table
from state_rate_compare.logging import configure_logging
from state_rate_compare.pipeline.run_all import fetch_records, run_all
from state_rate_compare.pipeline.session import ComparisonSession
from state_rate_compare.report.contracts import ALLOWED_SORT_MODES

app = typer.Typer(no_args_is_help=True, add_completion=False)

SELECT_HELP = "Facet selection as facet=value[,value]; use facet=- for blank. Repeatable."


def _load_app_config(config_path: Path | None) -> AppConfig:
    if config_path is None:
        return load_config(DEFAULT_CONFIG_PATH) if DEFAULT_CONFIG_PATH.exists() else AppConfig()
    return load_config(config_path)


def _parse_select(items: list[str] | None) -> list[tuple[str, FacetSelection]]:
    parsed: list[tuple[str, FacetSelection]] = []
    for item in items or []:
        facet, sep, raw_value = item.partition("=")
        facet = facet.strip()
        if not sep or not facet:
            raise typer.BadParameter(f"Expected facet=value, got {item!r}", param_hint="--select")
        raw_value = raw_value.strip()
        if raw_value == "-":
            selection = FacetSelection.blank()
        else:
            selection = FacetSelection.of(*raw_value.split(","))
        parsed.append((facet, selection))
    return parsed


def _state_from_select(items: list[str] | None) -> FilterState:
    return FilterState(dict(_parse_select(items)))


def _require_searchable(state: FilterState) -> None:
    missing = missing_required(state)
    if missing:
        raise typer.BadParameter(
            f"Searching needs selections for: {', '.join(missing)}", param_hint="--select"
        )
    try:
        RateQuery.from_filter_state(state)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--select") from exc


def _check_rate_mode(rate_mode: str | None) -> str | None:
    if rate_mode is not None and rate_mode not in ("per_hour", "per_unit"):
        raise typer.BadParameter("Use per_hour or per_unit.", param_hint="--rate-mode")
    return rate_mode


def _check_sort_mode(sort_mode: str | None) -> str | None:
    if sort_mode is not None and sort_mode not in ALLOWED_SORT_MODES:
        raise typer.BadParameter(
            f"Use one of: {', '.join(sorted(ALLOWED_SORT_MODES))}.", param_hint="--sort"
        )
    return sort_mode


@app.command()
def options(
    catalog: Path | None = typer.Option(None, exists=True, readable=True, resolve_path=True),
    config: Path | None = typer.Option(None, exists=True, readable=True, resolve_path=True),
    select: list[str] | None = typer.Option(None, "--select", "-s", help=SELECT_HELP),
    facet: list[str] | None = typer.Option(None, help="Only print these facets."),
) -> None:
    """Print the legal values of each facet under the given selections."""
    configure_logging()
    cfg = _load_app_config(config)
    catalog_path = catalog or (Path(cfg.catalog.path) if cfg.catalog.path else None)
    if catalog_path is None:
        raise typer.BadParameter("Pass --catalog or set catalog.path.", param_hint="--catalog")

    session = ComparisonSession(cfg)
    if not session.load_catalog_file(catalog_path):
        typer.echo(session.status_message(), err=True)
        raise typer.Exit(code=1)
    for name, selection in _parse_select(select):
        session.select(name, selection)

    wanted = facet or cfg.facets.dependency_chain
    all_options = session.options()
    for name in wanted:
        entry = all_options.get(name)
        if entry is None:
            raise typer.BadParameter(f"Unknown facet: {name}", param_hint="--facet")
        blank = " [+blank]" if entry.has_blank else ""
        chosen = session.state.get(name)
        marker = "" if chosen.is_unset else f" (selected: {chosen.describe()})"
        typer.echo(f"{name}{marker}{blank}: {', '.join(entry.values)}")


@app.command("build-catalog")
def build_catalog(
    combinations: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True),
    out: Path = typer.Option(Path("catalog.json.gz"), resolve_path=True),
    config: Path | None = typer.Option(None, exists=True, readable=True, resolve_path=True),
) -> None:
    """Encode a combinations table (CSV or parquet) as a compressed facet catalog."""
    configure_logging()
    cfg = _load_app_config(config)
    try:
        frame = load_combinations(combinations, cfg)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="COMBINATIONS") from exc
    path = write_catalog(frame, out)
    typer.echo(f"Catalog written: {path} ({len(frame)} combinations)")


@app.command()
def compare(
    records: Path | None = typer.Option(None, exists=True, readable=True, resolve_path=True),
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path | None = typer.Option(None, exists=True, readable=True, resolve_path=True),
    select: list[str] | None = typer.Option(None, "--select", "-s", help=SELECT_HELP),
    sort: str | None = typer.Option(None, help="default, ascending or descending."),
    rate_mode: str | None = typer.Option(None, help="per_hour or per_unit."),
) -> None:
    """Compare average rates per state from a records file or the record service."""
    configure_logging()
    cfg = _load_app_config(config)
    state = _state_from_select(select)
    if records is None:
        if not cfg.query.base_url:
            raise typer.BadParameter(
                "Pass --records or configure query.base_url.", param_hint="--records"
            )
        _require_searchable(state)
    try:
        artifacts = run_all(
            records,
            out,
            cfg,
            state,
            rate_mode=_check_rate_mode(rate_mode),  # type: ignore[arg-type]
            sort_mode=_check_sort_mode(sort),
        )
    except RateQueryError as exc:
        typer.echo(f"Record query failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    series = artifacts.chart_payload["series"]
    typer.echo(
        f"Comparison complete. Charted groups: {len(series)}. Report: {artifacts.report_path}"
    )


@app.command()
def fetch(
    out: Path = typer.Option(Path("records.csv"), resolve_path=True),
    config: Path | None = typer.Option(None, exists=True, readable=True, resolve_path=True),
    select: list[str] | None = typer.Option(None, "--select", "-s", help=SELECT_HELP),
    api_url: str | None = typer.Option(None, help="Override query.base_url."),
) -> None:
    """Query the record service and save the raw records (CSV or parquet)."""
    configure_logging()
    cfg = _load_app_config(config)
    if api_url:
        cfg.query.base_url = api_url
    if not cfg.query.base_url:
        raise typer.BadParameter(
            "Pass --api-url or configure query.base_url.", param_hint="--api-url"
        )
    state = _state_from_select(select)
    _require_searchable(state)
    fmt = "parquet" if out.suffix == ".parquet" else "csv"
    try:
        frame, _ = fetch_records(state, cfg)
    except RateQueryError as exc:
        typer.echo(f"Record query failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    write_table(frame, out, fmt)
    typer.echo(f"Fetched {len(frame)} records into {out}")


if __name__ == "__main__":
    app()
