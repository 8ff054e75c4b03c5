"""Request/response contract of the rate record service and a client for it."""

from __future__ import annotations

import logging
import math
from typing import Any

import pandas as pd
import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from state_rate_compare.config import QueryConfig
from state_rate_compare.features.filter_state import FilterState, is_all_states
from state_rate_compare.io.schema import normalize_records
from state_rate_compare.preprocess.rates import parse_rate

LOGGER = logging.getLogger(__name__)

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class RateQueryError(ValueError):
    """Raised when the record service fails or breaks its response contract."""


class RateQuery(BaseModel):
    model_config = ConfigDict(extra="forbid")

    service_category: str
    states: list[str] = Field(default_factory=list)
    service_codes: list[str] = Field(default_factory=list)
    service_description: str | None = None
    program: str | None = None
    location_region: str | None = None
    provider_type: str | None = None
    modifier: str | None = None
    duration_units: list[str] = Field(default_factory=list)
    page: int = Field(default=1, ge=1)
    items_per_page: int = Field(default=1000, ge=1)

    @property
    def all_states(self) -> bool:
        return not self.states

    def to_params(self, *, page: int | None = None) -> list[tuple[str, str]]:
        """Wire parameters; several codes travel in one comma-joined value."""
        params: list[tuple[str, str]] = [("serviceCategory", self.service_category)]
        if self.states:
            params.append(("state", ",".join(self.states)))
        if self.service_codes:
            params.append(("serviceCode", ",".join(self.service_codes)))
        optional = (
            ("serviceDescription", self.service_description),
            ("program", self.program),
            ("locationRegion", self.location_region),
            ("providerType", self.provider_type),
            ("modifier", self.modifier),
        )
        params.extend((name, value) for name, value in optional if value)
        params.extend(("durationUnit", unit) for unit in self.duration_units)
        params.append(("page", str(page or self.page)))
        params.append(("itemsPerPage", str(self.items_per_page)))
        return params

    @classmethod
    def from_filter_state(cls, state: FilterState, items_per_page: int = 1000) -> RateQuery:
        """Build the wire query for a search-ready selection.

        The service takes exactly one category, and a description only narrows
        the server side when it is the sole choice. Both are rejected when the
        selection cannot be expressed, rather than widening the fetch.
        """

        def single(facet: str) -> str | None:
            # Blank and multi-value choices on optional facets are applied client-side.
            values = state.values(facet)
            return values[0] if len(values) == 1 else None

        service_categories = state.values("service_category")
        if not service_categories:
            raise ValueError("service_category must be selected before searching")
        if len(service_categories) > 1:
            raise ValueError(
                "search takes one service_category at a time, got "
                + ", ".join(service_categories)
            )
        service_codes = list(state.values("service_code"))
        descriptions = state.values("service_description")
        if not service_codes and len(descriptions) > 1:
            raise ValueError(
                "select a service_code, or a single service_description, before searching"
            )
        return cls(
            service_category=service_categories[0],
            states=[] if is_all_states(state) else list(state.values("state_name")),
            service_codes=service_codes,
            service_description=single("service_description"),
            program=single("program"),
            location_region=single("location_region"),
            provider_type=single("provider_type"),
            modifier=single("modifier_1"),
            duration_units=list(state.values("duration_unit")),
            items_per_page=items_per_page,
        )


class Pagination(BaseModel):
    page: int = Field(default=1, ge=1)
    total_pages: int = Field(default=1, ge=0, alias="totalPages")

    model_config = ConfigDict(populate_by_name=True)


class RateQueryResponse(BaseModel):
    data: list[dict[str, Any]] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)
    state_averages: dict[str, float] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> RateQueryResponse:
        if not isinstance(payload, dict):
            raise RateQueryError("record service response must be a JSON object")
        data = payload.get("data", [])
        if not isinstance(data, list):
            raise RateQueryError("record service response 'data' must be a list")

        raw_pagination = payload.get("pagination")
        if isinstance(raw_pagination, dict):
            pagination = raw_pagination
        else:
            try:
                page = int(payload.get("currentPage") or 1)
                total_count = int(payload.get("totalCount") or len(data))
                per_page = int(payload.get("itemsPerPage") or max(len(data), 1))
            except (TypeError, ValueError) as exc:
                raise RateQueryError("record service pagination fields must be integers") from exc
            if per_page < 1:
                raise RateQueryError("record service itemsPerPage must be positive")
            pagination = {"page": page, "totalPages": max(1, math.ceil(total_count / per_page))}

        averages: dict[str, float] = {}
        for row in payload.get("stateAverages") or []:
            if not isinstance(row, dict):
                continue
            state = str(row.get("state_name") or "").strip()
            value = parse_rate(row.get("avg_rate"))
            if state and value is not None:
                averages[state] = value

        try:
            return cls(data=data, pagination=pagination, state_averages=averages)
        except ValidationError as exc:
            raise RateQueryError("record service response failed validation") from exc

    def records_frame(self) -> pd.DataFrame:
        if not self.data:
            return normalize_records(
                pd.DataFrame(columns=["state_name", "rate", "rate_effective_date"])
            )
        try:
            return normalize_records(pd.DataFrame(self.data, dtype=object))
        except ValueError as exc:
            raise RateQueryError(f"record service rows are malformed: {exc}") from exc


def _build_session(max_retries: int) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=max_retries,
        backoff_factor=1.0,
        status_forcelist=RETRY_STATUS_CODES,
        allowed_methods=["GET"],
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class RateQueryClient:
    def __init__(self, config: QueryConfig, session: requests.Session | None = None) -> None:
        if not config.base_url:
            raise ValueError("query.base_url must be set to fetch rate records")
        self.config = config
        self.url = config.base_url.rstrip("/") + "/" + config.endpoint.lstrip("/")
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = _build_session(self.config.max_retries)
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> RateQueryClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _get(self, params: list[tuple[str, str]]) -> Any:
        try:
            response = self.session.get(
                self.url,
                params=params,
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            raise RateQueryError(f"record service request failed: {exc}") from exc
        except ValueError as exc:
            raise RateQueryError("record service returned invalid JSON") from exc

    def fetch_page(self, query: RateQuery, page: int = 1) -> RateQueryResponse:
        return RateQueryResponse.from_payload(self._get(query.to_params(page=page)))

    def fetch_state_averages(self, query: RateQuery) -> dict[str, float]:
        params = [("mode", "stateAverages"), *query.to_params()]
        return RateQueryResponse.from_payload(self._get(params)).state_averages

    def fetch_all(self, query: RateQuery) -> RateQueryResponse:
        """Fetch every page of ``query`` (up to ``max_pages``) into one response."""
        first = self.fetch_page(query, page=1)
        rows = list(first.data)
        total_pages = min(first.pagination.total_pages, self.config.max_pages)
        for page in range(2, total_pages + 1):
            rows.extend(self.fetch_page(query, page=page).data)
        if first.pagination.total_pages > self.config.max_pages:
            LOGGER.warning(
                "Record query truncated at %d of %d pages",
                self.config.max_pages,
                first.pagination.total_pages,
            )
        LOGGER.info("Fetched %d raw rate records across %d page(s)", len(rows), max(total_pages, 1))
        return RateQueryResponse(
            data=rows,
            pagination=Pagination(page=1, total_pages=total_pages),
            state_averages=first.state_averages,
        )
