"""Facet selections as one immutable state transitioned by pure reducers."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Sequence

import numpy as np
import pandas as pd

from state_rate_compare.config import DEFAULT_DEPENDENCY_CHAIN
from state_rate_compare.features.facets import (
    FacetSelection,
    available_values,
    has_blank_option,
)
from state_rate_compare.io.schema import MODIFIER_COLUMNS

MODIFIER_FACET = "modifier_1"
CODE_OR_DESCRIPTION = "service_code|service_description"
SEARCH_REQUIRED = ("service_category", "duration_unit")


@dataclass(frozen=True)
class FilterState:
    selections: Mapping[str, FacetSelection] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        active = {
            facet: selection
            for facet, selection in self.selections.items()
            if not selection.is_unset
        }
        object.__setattr__(self, "selections", MappingProxyType(active))

    def get(self, facet: str) -> FacetSelection:
        return self.selections.get(facet, FacetSelection.unset())

    def values(self, facet: str) -> tuple[str, ...]:
        return self.get(facet).values

    def with_selection(self, facet: str, selection: FacetSelection) -> FilterState:
        updated = dict(self.selections)
        updated[facet] = selection
        return FilterState(updated)

    def as_dict(self) -> dict[str, object]:
        return {
            facet: (list(selection.values) if selection.kind == "values" else selection.kind)
            for facet, selection in self.selections.items()
        }


def _prune(
    catalog: pd.DataFrame,
    facet: str,
    current: FacetSelection,
    selections: Mapping[str, FacetSelection],
) -> FacetSelection:
    if current.is_blank:
        if has_blank_option(catalog, facet, selections, core_required=()):
            return current
        return FacetSelection.unset()
    legal = set(available_values(catalog, facet, selections))
    kept = [value for value in current.values if value in legal]
    if len(kept) == len(current.values):
        return current
    return FacetSelection.of(*kept)


def apply_selection(
    state: FilterState,
    catalog: pd.DataFrame | None,
    facet: str,
    selection: FacetSelection,
    dependency_chain: Sequence[str] = DEFAULT_DEPENDENCY_CHAIN,
) -> FilterState:
    """Set one facet and clear only downstream choices that became illegal.

    Downstream facets keep every value still present in their recomputed
    option list; a multi-value choice loses only its illegal members. With
    no catalog nothing can be verified, so nothing is cleared.
    """
    updated = dict(state.selections)
    updated[facet] = selection
    if catalog is None or facet not in dependency_chain:
        return FilterState(updated)

    chain = list(dependency_chain)
    position = chain.index(facet)
    for index in range(position + 1, len(chain)):
        downstream = chain[index]
        current = updated.get(downstream, FacetSelection.unset())
        if current.is_unset:
            continue
        # Legality is judged against upstream choices only; later facets are pruned after.
        later = set(chain[index:])
        context = {name: value for name, value in updated.items() if name not in later}
        updated[downstream] = _prune(catalog, downstream, current, context)
    return FilterState(updated)


def clear_selection(state: FilterState, facet: str) -> FilterState:
    # Removing a constraint only widens option lists; nothing downstream can become illegal.
    return state.with_selection(facet, FacetSelection.unset())


def missing_required(state: FilterState) -> list[str]:
    missing = [facet for facet in SEARCH_REQUIRED if state.get(facet).kind != "values"]
    if (
        state.get("service_code").kind != "values"
        and state.get("service_description").kind != "values"
    ):
        missing.append(CODE_OR_DESCRIPTION)
    return missing


def is_search_ready(state: FilterState) -> bool:
    return not missing_required(state)


def is_all_states(state: FilterState) -> bool:
    return state.get("state_name").is_unset


def filter_records(records: pd.DataFrame, state: FilterState) -> pd.DataFrame:
    """Apply every selection to fetched records.

    The modifier facet matches a record when any of its four modifier
    columns matches; blank requires all four to be empty.
    """
    mask = np.ones(len(records), dtype=bool)
    for facet, selection in state.selections.items():
        if facet == MODIFIER_FACET:
            columns = [column for column in MODIFIER_COLUMNS if column in records.columns]
            if not columns:
                continue
            if selection.is_blank:
                facet_mask = np.logical_and.reduce(
                    [selection.mask(records[column]) for column in columns]
                )
            else:
                facet_mask = np.logical_or.reduce(
                    [selection.mask(records[column]) for column in columns]
                )
            mask &= facet_mask
        elif facet in records.columns:
            mask &= selection.mask(records[facet])
    return records.loc[mask].reset_index(drop=True)
