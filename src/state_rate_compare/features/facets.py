from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Literal, Mapping, Sequence

import numpy as np
import pandas as pd

from state_rate_compare.config import DEFAULT_CORE_REQUIRED, DEFAULT_DEPENDENCY_CHAIN

SelectionKind = Literal["unset", "blank", "values"]

# Wire/CLI spelling of "records whose value is empty".
BLANK_TOKEN = "-"

_NUMERIC_CODE = re.compile(r"^\d+$")
_NUMBER_LETTER_CODE = re.compile(r"^(\d+)([A-Za-z])$")


@dataclass(frozen=True)
class FacetSelection:
    """One facet's choice: unset, blank (must be empty), or one or more values."""

    kind: SelectionKind = "unset"
    values: tuple[str, ...] = ()

    @classmethod
    def unset(cls) -> FacetSelection:
        return cls()

    @classmethod
    def blank(cls) -> FacetSelection:
        return cls(kind="blank")

    @classmethod
    def of(cls, *values: str) -> FacetSelection:
        cleaned = tuple(dict.fromkeys(str(v).strip() for v in values if v and str(v).strip()))
        if not cleaned:
            return cls()
        return cls(kind="values", values=cleaned)

    @classmethod
    def parse(cls, raw: FacetSelection | str | Sequence[str] | None) -> FacetSelection:
        if isinstance(raw, FacetSelection):
            return raw
        if raw is None:
            return cls()
        if isinstance(raw, str):
            if raw.strip() == BLANK_TOKEN:
                return cls.blank()
            return cls.of(raw)
        return cls.of(*raw)

    @property
    def is_unset(self) -> bool:
        return self.kind == "unset"

    @property
    def is_blank(self) -> bool:
        return self.kind == "blank"

    def matches(self, value: str) -> bool:
        if self.kind == "unset":
            return True
        if self.kind == "blank":
            return value == ""
        return value in self.values

    def mask(self, column: pd.Series) -> np.ndarray:
        if self.kind == "unset":
            return np.ones(len(column), dtype=bool)
        if self.kind == "blank":
            return (column == "").to_numpy(dtype=bool)
        return column.isin(self.values).to_numpy(dtype=bool)

    def describe(self) -> str:
        if self.kind == "unset":
            return "(any)"
        if self.kind == "blank":
            return "(blank)"
        return ", ".join(self.values)


Selections = Mapping[str, FacetSelection]


@dataclass(frozen=True)
class FacetOptions:
    facet: str
    values: list[str]
    has_blank: bool


def service_code_sort_key(code: str) -> tuple[int, int, str, str]:
    """Numeric codes first, then number+letter codes (e.g. 0362T), then the rest."""
    if _NUMERIC_CODE.match(code):
        return (0, int(code), "", code)
    number_letter = _NUMBER_LETTER_CODE.match(code)
    if number_letter:
        return (1, int(number_letter.group(1)), number_letter.group(2), code)
    return (2, 0, code, code)


def sort_facet_values(facet: str, values: Iterable[str]) -> list[str]:
    if facet == "service_code":
        return sorted(values, key=service_code_sort_key)
    return sorted(values)


def _surviving_rows(
    catalog: pd.DataFrame,
    selections: Selections,
    exclude: str,
) -> pd.DataFrame:
    mask = np.ones(len(catalog), dtype=bool)
    for facet, selection in selections.items():
        # A facet never narrows its own option list.
        if facet == exclude or selection.is_unset or facet not in catalog.columns:
            continue
        mask &= selection.mask(catalog[facet])
    return catalog.loc[mask]


def available_values(
    catalog: pd.DataFrame | None,
    facet: str,
    selections: Selections,
) -> list[str]:
    """Distinct non-empty values of ``facet`` legal under every other selection."""
    if catalog is None or facet not in catalog.columns:
        return []
    surviving = _surviving_rows(catalog, selections, exclude=facet)
    values = {value for value in surviving[facet].tolist() if value}
    return sort_facet_values(facet, values)


def has_blank_option(
    catalog: pd.DataFrame | None,
    facet: str,
    selections: Selections,
    core_required: Sequence[str] = DEFAULT_CORE_REQUIRED,
) -> bool:
    if catalog is None or facet in core_required or facet not in catalog.columns:
        return False
    surviving = _surviving_rows(catalog, selections, exclude=facet)
    return bool((surviving[facet] == "").any())


def facet_options(
    catalog: pd.DataFrame | None,
    selections: Selections,
    facets: Sequence[str] = DEFAULT_DEPENDENCY_CHAIN,
    core_required: Sequence[str] = DEFAULT_CORE_REQUIRED,
) -> dict[str, FacetOptions]:
    return {
        facet: FacetOptions(
            facet=facet,
            values=available_values(catalog, facet, selections),
            has_blank=has_blank_option(catalog, facet, selections, core_required),
        )
        for facet in facets
    }
