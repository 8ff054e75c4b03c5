from __future__ import annotations

import logging
from typing import Iterable

import pandas as pd

LOGGER = logging.getLogger(__name__)


class InclusionTracker:
    """Per-group sets of canonical record keys that count toward the group average.

    Every mutation bumps the group's version so cached aggregates keyed by
    ``version(group)`` go stale. Besides re-initialization, ``toggle`` is the
    only way to change membership.
    """

    def __init__(self) -> None:
        self._universe: dict[str, frozenset[str]] = {}
        self._included: dict[str, set[str]] = {}
        self._pinned: dict[str, str] = {}
        self._versions: dict[str, int] = {}

    @classmethod
    def from_canonical(
        cls,
        canonical: pd.DataFrame,
        group_column: str = "state_name",
    ) -> InclusionTracker:
        tracker = cls()
        if canonical.empty:
            return tracker
        for group, keys in canonical.groupby(group_column, sort=False)["dedup_key"]:
            tracker.initialize(str(group), keys.tolist())
        return tracker

    def _bump(self, group: str) -> None:
        self._versions[group] = self._versions.get(group, 0) + 1

    def _require_member(self, group: str, key: str) -> None:
        if group not in self._universe:
            raise ValueError(f"unknown group: {group}")
        if key not in self._universe[group]:
            raise ValueError(f"record key is not part of group {group}: {key}")

    def initialize(self, group: str, keys: Iterable[str]) -> None:
        universe = frozenset(keys)
        self._universe[group] = universe
        self._included[group] = set(universe)
        self._pinned.pop(group, None)
        self._bump(group)

    def toggle(self, group: str, key: str) -> bool:
        """Flip ``key`` in or out of the group's set; returns the new membership."""
        self._require_member(group, key)
        included = self._included[group]
        if key in included:
            included.remove(key)
        else:
            included.add(key)
        self._bump(group)
        LOGGER.debug("Toggled %s in group %s (included=%s)", key, group, key in included)
        return key in included

    def is_included(self, group: str, key: str) -> bool:
        return key in self._included.get(group, ())

    def included_keys(self, group: str) -> frozenset[str]:
        return frozenset(self._included.get(group, ()))

    def all_keys(self, group: str) -> frozenset[str]:
        return self._universe.get(group, frozenset())

    def groups(self) -> list[str]:
        return list(self._universe)

    def pin(self, group: str, key: str) -> str | None:
        """Pin one record as the group's value; pinning the pinned key unpins it."""
        self._require_member(group, key)
        if self._pinned.get(group) == key:
            del self._pinned[group]
        else:
            self._pinned[group] = key
        self._bump(group)
        return self._pinned.get(group)

    def unpin(self, group: str) -> None:
        if self._pinned.pop(group, None) is not None:
            self._bump(group)

    def pinned(self, group: str) -> str | None:
        return self._pinned.get(group)

    def version(self, group: str) -> int:
        return self._versions.get(group, 0)
