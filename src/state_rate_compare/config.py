from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_DEPENDENCY_CHAIN = [
    "service_category",
    "state_name",
    "service_code",
    "service_description",
    "program",
    "location_region",
    "provider_type",
    "duration_unit",
    "modifier_1",
]
DEFAULT_CORE_REQUIRED = ["service_category", "duration_unit"]
DEFAULT_UNIT_MULTIPLIERS = {
    "15 MINUTES": 4.0,
    "30 MINUTES": 2.0,
    "PER HOUR": 1.0,
}
DEFAULT_PASSTHROUGH_UNITS = ["PER SESSION"]

RateMode = Literal["per_hour", "per_unit"]
SortMode = Literal["default", "ascending", "descending"]


class ColumnsConfig(BaseModel):
    """Source column name -> canonical column name overrides."""

    renames: dict[str, str] = Field(default_factory=dict)


class CatalogConfig(BaseModel):
    path: str | None = None


class FacetsConfig(BaseModel):
    debounce_ms: int = Field(default=100, ge=0)
    dependency_chain: list[str] = Field(default_factory=lambda: list(DEFAULT_DEPENDENCY_CHAIN))
    core_required: list[str] = Field(default_factory=lambda: list(DEFAULT_CORE_REQUIRED))


class RatesConfig(BaseModel):
    mode: RateMode = "per_hour"
    unit_multipliers: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_UNIT_MULTIPLIERS)
    )
    passthrough_units: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PASSTHROUGH_UNITS)
    )


class QueryConfig(BaseModel):
    base_url: str | None = None
    endpoint: str = "/api/state-payment-comparison"
    items_per_page: int = Field(default=1000, ge=1)
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_retries: int = Field(default=3, ge=0)
    max_pages: int = Field(default=50, ge=1)


class ChartConfig(BaseModel):
    sort_mode: SortMode = "default"
    group_column: str = "state_name"


class OutputsConfig(BaseModel):
    tables_format: Literal["parquet", "csv"] = "parquet"
    figures_format: str = "png"


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    columns: ColumnsConfig = Field(default_factory=ColumnsConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    facets: FacetsConfig = Field(default_factory=FacetsConfig)
    rates: RatesConfig = Field(default_factory=RatesConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    chart: ChartConfig = Field(default_factory=ChartConfig)
    outputs: OutputsConfig = Field(default_factory=OutputsConfig)


DEFAULT_CONFIG_PATH = Path("configs/default.yaml")


def _resolve_optional_path(path_value: str | None, base_dir: Path) -> str | None:
    if not path_value:
        return None
    candidate = Path(path_value)
    if candidate.is_absolute():
        return str(candidate)
    return str((base_dir / candidate).resolve())


def load_config(path: Path) -> AppConfig:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    config = AppConfig.model_validate(data)
    base_dir = path.resolve().parent

    config.catalog.path = _resolve_optional_path(
        config.catalog.path or os.getenv("STATE_RATE_COMPARE_CATALOG"),
        base_dir,
    )
    config.query.base_url = config.query.base_url or os.getenv("STATE_RATE_COMPARE_API_URL")
    return config
