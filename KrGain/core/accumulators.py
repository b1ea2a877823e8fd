from typing import Optional

from .datatypes import GroupId


class GroupAccumulator:
    """Online mean of channel responses per sector group."""

    def __init__(self):
        self._counts: dict[GroupId, int] = {}
        self._means: dict[GroupId, float] = {}

    def add_value(self, group: GroupId, value: float) -> None:
        n = self._counts.get(group, 0) + 1
        mean = self._means.get(group, 0.0)
        self._counts[group] = n
        self._means[group] = mean + (value - mean) / n

    def average(self, group: GroupId) -> Optional[float]:
        """Running mean, or None if the group never received a value."""
        return self._means.get(group)

    def count(self, group: GroupId) -> int:
        return self._counts.get(group, 0)

    def groups(self) -> list[GroupId]:
        return sorted(self._means)

    def __len__(self):
        return len(self._means)
