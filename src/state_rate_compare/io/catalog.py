"""Dictionary-encoded facet catalog.

The catalog file is a gzip-compressed JSON document::

    {"c": [column, ...], "m": {column: [value, ...]}, "v": [[code, ...], ...]}

``v`` holds one code array per column, all of the same length (the row
count). A code of ``-1`` means an empty value; any other code indexes the
column's dictionary in ``m``.
"""

from __future__ import annotations

import gzip
import json
import logging
import zlib
from pathlib import Path
from typing import Any, Mapping

import pandas as pd

LOGGER = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
EMPTY_CODE = -1


class CatalogDecodeError(ValueError):
    """Raised when a catalog payload cannot be decoded into combinations."""


def _decompress(payload: bytes) -> bytes:
    if not payload.startswith(GZIP_MAGIC):
        return payload
    try:
        return gzip.decompress(payload)
    except (OSError, EOFError, zlib.error) as exc:
        raise CatalogDecodeError("catalog payload is not valid gzip data") from exc


def _require_columns(document: Mapping[str, Any]) -> list[str]:
    columns = document["c"]
    if not isinstance(columns, list) or not columns:
        raise CatalogDecodeError("catalog 'c' must be a non-empty list of column names")
    if not all(isinstance(column, str) and column for column in columns):
        raise CatalogDecodeError("catalog column names must be non-empty strings")
    if len(set(columns)) != len(columns):
        raise CatalogDecodeError("catalog column names must be unique")
    return columns


def _require_dictionary(mappings: Mapping[str, Any], column: str) -> list[str]:
    dictionary = mappings.get(column)
    if not isinstance(dictionary, list):
        raise CatalogDecodeError(f"catalog dictionary missing for column '{column}'")
    return [str(value) for value in dictionary]


def _decode_column(column: str, codes: Any, dictionary: list[str], row_count: int) -> list[str]:
    if not isinstance(codes, list):
        raise CatalogDecodeError(f"catalog codes for column '{column}' must be a list")
    if len(codes) != row_count:
        raise CatalogDecodeError(
            f"catalog codes for column '{column}' have length {len(codes)}, expected {row_count}"
        )
    values: list[str] = []
    size = len(dictionary)
    for code in codes:
        if isinstance(code, bool) or not isinstance(code, int):
            raise CatalogDecodeError(f"catalog code {code!r} in column '{column}' is not an integer")
        if code == EMPTY_CODE:
            values.append("")
        elif 0 <= code < size:
            values.append(dictionary[code])
        else:
            raise CatalogDecodeError(
                f"catalog code {code} in column '{column}' is outside its dictionary (size {size})"
            )
    return values


def parse_catalog_document(document: Any) -> pd.DataFrame:
    """Expand a decoded ``{c, m, v}`` document into one row per combination."""
    if not isinstance(document, Mapping):
        raise CatalogDecodeError("catalog document must be a JSON object")
    missing = [key for key in ("c", "m", "v") if key not in document]
    if missing:
        raise CatalogDecodeError(f"catalog document missing keys: {', '.join(missing)}")

    columns = _require_columns(document)
    mappings = document["m"]
    code_arrays = document["v"]
    if not isinstance(mappings, Mapping):
        raise CatalogDecodeError("catalog 'm' must map column names to dictionaries")
    if not isinstance(code_arrays, list) or len(code_arrays) != len(columns):
        raise CatalogDecodeError("catalog 'v' must hold one code array per column")

    first = code_arrays[0]
    row_count = len(first) if isinstance(first, list) else 0
    data = {
        column: _decode_column(
            column,
            codes,
            _require_dictionary(mappings, column),
            row_count,
        )
        for column, codes in zip(columns, code_arrays)
    }
    return pd.DataFrame(data, columns=columns, dtype=object)


def decode_catalog(payload: bytes) -> pd.DataFrame:
    body = _decompress(payload)
    try:
        document = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CatalogDecodeError("catalog payload is not valid JSON") from exc
    catalog = parse_catalog_document(document)
    LOGGER.info(
        "Decoded facet catalog: %d combinations across %d columns",
        len(catalog),
        len(catalog.columns),
    )
    return catalog


def load_catalog(path: Path) -> pd.DataFrame:
    return decode_catalog(Path(path).read_bytes())


def encode_catalog(frame: pd.DataFrame) -> dict[str, Any]:
    """Dictionary-encode combinations; empty or null values become ``-1``."""
    columns = [str(column) for column in frame.columns]
    mappings: dict[str, list[str]] = {}
    code_arrays: list[list[int]] = []
    for column in columns:
        values = ["" if pd.isna(value) else str(value) for value in frame[column].tolist()]
        dictionary = sorted({value for value in values if value})
        index = {value: position for position, value in enumerate(dictionary)}
        mappings[column] = dictionary
        code_arrays.append([index[value] if value else EMPTY_CODE for value in values])
    return {"c": columns, "m": mappings, "v": code_arrays}


def write_catalog(frame: pd.DataFrame, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    body = json.dumps(encode_catalog(frame), separators=(",", ":")).encode("utf-8")
    path.write_bytes(gzip.compress(body))
    return path


def catalog_filters(catalog: pd.DataFrame) -> dict[str, list[str]]:
    return {
        str(column): sorted({str(value) for value in catalog[column] if value})
        for column in catalog.columns
    }
