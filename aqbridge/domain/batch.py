from __future__ import annotations
from typing import Optional

from .errors import BatchFullError


class BatchAggregator:
    """Fixed-capacity buffer of converted values, averaged on flush."""

    def __init__(self, capacity: int = 10) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._values: list[float] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def values(self) -> tuple[float, ...]:
        return tuple(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def is_full(self) -> bool:
        return len(self._values) >= self._capacity

    def append(self, value: float) -> None:
        if self.is_full():
            raise BatchFullError(f"batch already holds {self._capacity} values")
        self._values.append(float(value))

    def flush(self) -> Optional[float]:
        if not self._values:
            return None
        mean = sum(self._values) / float(len(self._values))
        self._values.clear()
        return mean

    def clear(self) -> None:
        self._values.clear()
