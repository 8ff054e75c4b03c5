from __future__ import annotations

import json
from pathlib import Path

import pandas as pd
from typer.testing import CliRunner

from state_rate_compare.cli import app
from state_rate_compare.io.catalog import load_catalog


def _write_config(tmp_path: Path, extra: str = "") -> Path:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f"outputs:\n  tables_format: csv\n{extra}", encoding="utf-8")
    return config_path


def _write_combinations(tmp_path: Path) -> Path:
    path = tmp_path / "combinations.csv"
    path.write_text(
        "\n".join(
            [
                "service_category,state_name,service_code,duration_unit,modifier_1",
                "APPLIED BEHAVIOR ANALYSIS,TEXAS,97153,15 MINUTES,",
                "APPLIED BEHAVIOR ANALYSIS,OHIO,97155,15 MINUTES,HN",
                "BEHAVIORAL HEALTH,OHIO,H2019,PER HOUR,",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    return path


def test_cli_help() -> None:
    runner = CliRunner()
    result = runner.invoke(app, ["--help"])

    assert result.exit_code == 0
    assert "options" in result.stdout
    assert "build-catalog" in result.stdout
    assert "compare" in result.stdout
    assert "fetch" in result.stdout


def test_build_catalog_then_list_options(tmp_path: Path) -> None:
    runner = CliRunner()
    config_path = _write_config(tmp_path)
    catalog_path = tmp_path / "catalog.json.gz"

    built = runner.invoke(
        app,
        [
            "build-catalog",
            str(_write_combinations(tmp_path)),
            "--out",
            str(catalog_path),
            "--config",
            str(config_path),
        ],
    )
    assert built.exit_code == 0, built.output
    assert len(load_catalog(catalog_path)) == 3

    listed = runner.invoke(
        app,
        [
            "options",
            "--catalog",
            str(catalog_path),
            "--config",
            str(config_path),
            "--select",
            "service_category=APPLIED BEHAVIOR ANALYSIS",
            "--facet",
            "state_name",
            "--facet",
            "modifier_1",
        ],
    )
    assert listed.exit_code == 0, listed.output
    assert "state_name: OHIO, TEXAS" in listed.stdout
    assert "modifier_1 [+blank]: HN" in listed.stdout


def test_options_reports_unreadable_catalog(tmp_path: Path) -> None:
    catalog_path = tmp_path / "catalog.json.gz"
    catalog_path.write_bytes(b"\x1f\x8b\x08\x00broken")

    result = CliRunner().invoke(
        app, ["options", "--catalog", str(catalog_path), "--config", str(_write_config(tmp_path))]
    )

    assert result.exit_code == 1


def test_options_rejects_malformed_selection(tmp_path: Path) -> None:
    catalog_path = tmp_path / "catalog.json.gz"
    document = {"c": ["state_name"], "m": {"state_name": ["OHIO"]}, "v": [[0]]}
    catalog_path.write_bytes(json.dumps(document).encode("utf-8"))

    result = CliRunner().invoke(
        app,
        [
            "options",
            "--catalog",
            str(catalog_path),
            "--config",
            str(_write_config(tmp_path)),
            "--select",
            "state_name",
        ],
    )

    assert result.exit_code == 2


def test_compare_writes_report_from_records_file(tmp_path: Path) -> None:
    records_path = tmp_path / "records.csv"
    records_path.write_text(
        "\n".join(
            [
                "state_name,service_category,service_code,duration_unit,rate,rate_effective_date",
                "TEXAS,APPLIED BEHAVIOR ANALYSIS,S5116,15 MINUTES,$10.00,2023-01-01",
                "TEXAS,APPLIED BEHAVIOR ANALYSIS,S5116,15 MINUTES,$12.00,2024-01-01",
                "OHIO,APPLIED BEHAVIOR ANALYSIS,S5116,PER HOUR,$30.00,2024-01-01",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    out_dir = tmp_path / "out"

    result = CliRunner().invoke(
        app,
        [
            "compare",
            "--records",
            str(records_path),
            "--out",
            str(out_dir),
            "--config",
            str(_write_config(tmp_path)),
            "--sort",
            "ascending",
        ],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads((out_dir / "summary" / "chart_payload.json").read_text(encoding="utf-8"))
    assert [(item["category"], item["value"]) for item in payload["series"]] == [
        ("OHIO", 30.0),
        ("TEXAS", 48.0),
    ]
    assert (out_dir / "report.html").exists()


def test_compare_rejects_unknown_sort(tmp_path: Path) -> None:
    records_path = tmp_path / "records.csv"
    records_path.write_text(
        "state_name,rate,rate_effective_date\nTEXAS,$1.00,2024-01-01\n", encoding="utf-8"
    )

    result = CliRunner().invoke(
        app,
        [
            "compare",
            "--records",
            str(records_path),
            "--out",
            str(tmp_path / "out"),
            "--config",
            str(_write_config(tmp_path)),
            "--sort",
            "sideways",
        ],
    )

    assert result.exit_code == 2


def test_fetch_requires_service_url(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("STATE_RATE_COMPARE_API_URL", raising=False)

    result = CliRunner().invoke(
        app,
        ["fetch", "--config", str(_write_config(tmp_path)), "--out", str(tmp_path / "r.csv")],
    )

    assert result.exit_code == 2


def test_fetch_saves_records(monkeypatch, tmp_path: Path) -> None:
    captured: dict[str, object] = {}

    def _fake_fetch(state, cfg, client=None):
        captured["state"] = state.as_dict()
        captured["base_url"] = cfg.query.base_url
        return pd.DataFrame({"state_name": ["TEXAS"], "rate": ["$1.00"]}), {}

    monkeypatch.setattr("state_rate_compare.cli.fetch_records", _fake_fetch)
    out_path = tmp_path / "records.csv"

    result = CliRunner().invoke(
        app,
        [
            "fetch",
            "--config",
            str(_write_config(tmp_path)),
            "--api-url",
            "https://rates.example.org",
            "--out",
            str(out_path),
            "-s",
            "service_category=APPLIED BEHAVIOR ANALYSIS",
            "-s",
            "service_code=97153,97155",
            "-s",
            "duration_unit=15 MINUTES",
            "-s",
            "modifier_1=-",
        ],
    )

    assert result.exit_code == 0, result.output
    assert captured["base_url"] == "https://rates.example.org"
    assert captured["state"]["service_code"] == ["97153", "97155"]
    assert captured["state"]["modifier_1"] == "blank"
    assert out_path.read_text(encoding="utf-8").startswith("state_name,rate")


def test_fetch_rejects_several_service_categories(monkeypatch, tmp_path: Path) -> None:
    def _fake_fetch(state, cfg, client=None):
        raise AssertionError("the record service must not be queried")

    monkeypatch.setattr("state_rate_compare.cli.fetch_records", _fake_fetch)

    result = CliRunner().invoke(
        app,
        [
            "fetch",
            "--config",
            str(_write_config(tmp_path)),
            "--api-url",
            "https://rates.example.org",
            "--out",
            str(tmp_path / "records.csv"),
            "-s",
            "service_category=APPLIED BEHAVIOR ANALYSIS,BEHAVIORAL HEALTH",
            "-s",
            "service_code=97153",
            "-s",
            "duration_unit=15 MINUTES",
        ],
    )

    assert result.exit_code == 2
    assert not (tmp_path / "records.csv").exists()
