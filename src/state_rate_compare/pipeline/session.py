"""Stateful comparison session: selections, searches, inclusion and chart output."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Literal

import pandas as pd

from state_rate_compare.config import AppConfig, RateMode
from state_rate_compare.features.aggregates import AggregatedPoint, RateAggregator
from state_rate_compare.features.dedup import deduplicate_records, dedup_summary
from state_rate_compare.features.facets import FacetOptions, FacetSelection, facet_options
from state_rate_compare.features.filter_state import (
    FilterState,
    apply_selection,
    clear_selection,
    filter_records,
    is_search_ready,
    missing_required,
)
from state_rate_compare.features.inclusion import InclusionTracker
from state_rate_compare.io.catalog import CatalogDecodeError, decode_catalog
from state_rate_compare.io.rate_query import (
    RateQuery,
    RateQueryClient,
    RateQueryError,
    RateQueryResponse,
)
from state_rate_compare.io.schema import normalize_records
from state_rate_compare.report.chart import assemble_chart

LOGGER = logging.getLogger(__name__)

SessionStatus = Literal["idle", "loading", "ready", "no_data", "error", "catalog_unavailable"]

STATUS_MESSAGES: dict[str, str] = {
    "idle": "Select a service category, a service code or description and a duration unit.",
    "loading": "Loading rate records...",
    "ready": "",
    "no_data": "No rate records match the current selections.",
    "error": "The rate search failed. Adjust the selections or search again.",
    "catalog_unavailable": "Filter options could not be loaded. Reload to try again.",
}


class ComparisonSession:
    """Single-threaded owner of every piece of mutable comparison state.

    Searches are split into ``begin_search`` and ``apply_search_result`` /
    ``apply_search_error`` so that a caller running the query elsewhere can
    hand back results late; only the latest generation is ever applied.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        catalog: pd.DataFrame | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or AppConfig()
        self.catalog = catalog
        self.state = FilterState()
        self.rate_mode: RateMode = self.config.rates.mode
        self.tracker = InclusionTracker()
        self.records: pd.DataFrame | None = None
        self.canonical: pd.DataFrame | None = None
        self.server_averages: dict[str, float] = {}
        self.last_error: str | None = None
        self.last_summary: dict[str, int] = {}

        self._clock = clock
        self._status: SessionStatus = "idle"
        self._aggregator: RateAggregator | None = None
        self._options: dict[str, FacetOptions] = {}
        self._options_dirty = True
        self._last_change: float | None = None
        self._generation = 0
        self._pending_state: FilterState | None = None

    @property
    def group_column(self) -> str:
        return self.config.chart.group_column

    # Catalog

    def load_catalog_bytes(self, payload: bytes) -> bool:
        """Decode the facet catalog once; a failure leaves every facet empty."""
        try:
            self.catalog = decode_catalog(payload)
        except CatalogDecodeError as exc:
            LOGGER.error("Facet catalog unavailable: %s", exc)
            self._catalog_failed(exc)
            return False
        self._options_dirty = True
        if self._status == "catalog_unavailable":
            self._status = "idle"
            self.last_error = None
        return True

    def load_catalog_file(self, path: Path) -> bool:
        try:
            payload = Path(path).read_bytes()
        except OSError as exc:
            LOGGER.error("Could not read facet catalog %s: %s", path, exc)
            self._catalog_failed(exc)
            return False
        return self.load_catalog_bytes(payload)

    def _catalog_failed(self, error: BaseException) -> None:
        # Searches still in flight belong to a catalog that is gone.
        self.catalog = None
        self.last_error = str(error)
        self._status = "catalog_unavailable"
        self._options_dirty = True
        self._generation += 1
        self._pending_state = None

    # Selections and options

    def select(self, facet: str, selection: FacetSelection | str | list[str] | None) -> FilterState:
        self.state = apply_selection(
            self.state,
            self.catalog,
            facet,
            FacetSelection.parse(selection),
            self.config.facets.dependency_chain,
        )
        self._mark_options_dirty()
        return self.state

    def clear(self, facet: str) -> FilterState:
        self.state = clear_selection(self.state, facet)
        self._mark_options_dirty()
        return self.state

    def reset(self) -> FilterState:
        self.state = FilterState()
        self._mark_options_dirty()
        return self.state

    def _mark_options_dirty(self) -> None:
        self._options_dirty = True
        self._last_change = self._clock()

    def _recompute_options(self) -> dict[str, FacetOptions]:
        self._options = facet_options(
            self.catalog,
            self.state.selections,
            self.config.facets.dependency_chain,
            self.config.facets.core_required,
        )
        self._options_dirty = False
        return self._options

    def refresh_options(self, now: float | None = None, *, force: bool = False) -> bool:
        """Recompute option lists once the selection has been quiet long enough.

        Returns True when the lists were recomputed.
        """
        if not self._options_dirty:
            return False
        if not force and self._last_change is not None:
            current = self._clock() if now is None else now
            elapsed_ms = (current - self._last_change) * 1000.0
            if elapsed_ms < self.config.facets.debounce_ms:
                return False
        self._recompute_options()
        return True

    def options(self) -> dict[str, FacetOptions]:
        if self._options_dirty:
            return self._recompute_options()
        return self._options

    def cached_options(self) -> dict[str, FacetOptions]:
        """Last computed option lists, possibly older than the current selection."""
        return self._options

    def missing_required(self) -> list[str]:
        return missing_required(self.state)

    def is_search_ready(self) -> bool:
        return is_search_ready(self.state)

    # Searches

    @property
    def generation(self) -> int:
        return self._generation

    def build_query(self) -> RateQuery:
        return RateQuery.from_filter_state(self.state, self.config.query.items_per_page)

    def begin_search(self) -> int:
        if self._status == "catalog_unavailable":
            raise ValueError("search is unavailable until the facet catalog loads")
        missing = self.missing_required()
        if missing:
            raise ValueError(f"search requires selections for: {', '.join(missing)}")
        self.build_query()
        self._generation += 1
        self._pending_state = self.state
        self._status = "loading"
        LOGGER.info("Search generation %d started: %s", self._generation, self.state.as_dict())
        return self._generation

    def _is_stale(self, token: int) -> bool:
        if token != self._generation:
            LOGGER.debug("Ignoring stale search generation %d (latest %d)", token, self._generation)
            return True
        return False

    def apply_search_result(
        self,
        token: int,
        response: RateQueryResponse | pd.DataFrame,
    ) -> bool:
        """Replace the record set with a search result; stale tokens are ignored.

        Rows that cannot be normalized turn the search into an error and the
        previous record set stays in place.
        """
        if self._is_stale(token):
            return False

        try:
            if isinstance(response, RateQueryResponse):
                raw = response.records_frame()
                server_averages = dict(response.state_averages)
            else:
                raw = normalize_records(response)
                server_averages = {}
        except ValueError as exc:
            self.apply_search_error(token, exc)
            return False

        filtered = filter_records(raw, self._pending_state or self.state)
        canonical = deduplicate_records(filtered)
        self.records = filtered
        self.canonical = canonical
        self.server_averages = server_averages
        self.tracker = InclusionTracker.from_canonical(canonical, self.group_column)
        self._aggregator = RateAggregator(
            canonical,
            self.tracker,
            group_column=self.group_column,
            config=self.config.rates,
            server_averages=server_averages,
        )
        self.last_error = None
        self.last_summary = dedup_summary(filtered, canonical)
        self._status = "no_data" if canonical.empty else "ready"
        LOGGER.info(
            "Search generation %d: %d raw records, %d canonical, %d groups",
            token,
            len(filtered),
            len(canonical),
            len(self.tracker.groups()),
        )
        return True

    def apply_search_error(self, token: int, error: BaseException | str) -> bool:
        """Record a failed search; the previous record set stays on display."""
        if self._is_stale(token):
            return False
        self.last_error = str(error)
        self._status = "error"
        LOGGER.warning("Search generation %d failed: %s", token, self.last_error)
        return True

    def run_search(self, client: RateQueryClient) -> bool:
        token = self.begin_search()
        query = self.build_query()
        try:
            response = client.fetch_all(query)
        except RateQueryError as exc:
            self.apply_search_error(token, exc)
            return False
        return self.apply_search_result(token, response)

    # Status

    def status(self) -> SessionStatus:
        return self._status

    def status_message(self) -> str:
        status = self.status()
        if status == "error" and self.last_error:
            return f"{STATUS_MESSAGES['error']} ({self.last_error})"
        return STATUS_MESSAGES[status]

    # Inclusion

    def toggle(self, group: str, key: str) -> bool:
        return self.tracker.toggle(group, key)

    def pin(self, group: str, key: str) -> str | None:
        return self.tracker.pin(group, key)

    def unpin(self, group: str) -> None:
        self.tracker.unpin(group)

    def group_records(self, group: str) -> pd.DataFrame:
        """Canonical records of one group with their current inclusion flag."""
        if self.canonical is None or self.canonical.empty:
            return pd.DataFrame()
        rows = self.canonical.loc[self.canonical[self.group_column] == group].copy()
        rows["included"] = [self.tracker.is_included(group, key) for key in rows["dedup_key"]]
        rows["pinned"] = rows["dedup_key"] == self.tracker.pinned(group)
        return rows.reset_index(drop=True)

    # Output

    def set_rate_mode(self, mode: str) -> RateMode:
        if mode not in ("per_hour", "per_unit"):
            raise ValueError(f"unsupported rate mode: {mode!r}")
        self.rate_mode = mode  # type: ignore[assignment]
        return self.rate_mode

    def points(self) -> list[AggregatedPoint]:
        if self._aggregator is None:
            return []
        return self._aggregator.points(self.rate_mode)

    def chart(self, sort_mode: str | None = None) -> dict[str, Any]:
        return assemble_chart(
            self.points(),
            sort_mode or self.config.chart.sort_mode,
            self.rate_mode,
        )
