"""Fixed-capacity observation window."""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, List, Optional

import numpy as np


@dataclass
class ObservationRecord:
    observation: np.ndarray
    timestamp: datetime
    embedding: Optional[np.ndarray] = None


class ObservationWindow:
    """Ring buffer of the most recent observations.

    Slots are preallocated; appending to a full window overwrites the
    oldest record. Iteration always yields records oldest first.

    Parameters
    ----------
    capacity : int
        Maximum number of records kept
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._slots: List[Optional[ObservationRecord]] = [None] * capacity
        self._head = 0  # index of the oldest record
        self._size = 0

    def append(self, record: ObservationRecord) -> None:
        tail = (self._head + self._size) % self.capacity
        self._slots[tail] = record
        if self._size < self.capacity:
            self._size += 1
        else:
            self._head = (self._head + 1) % self.capacity

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[ObservationRecord]:
        for offset in range(self._size):
            yield self._slots[(self._head + offset) % self.capacity]

    def __getitem__(self, index: int) -> ObservationRecord:
        if index < 0:
            index += self._size
        if not 0 <= index < self._size:
            raise IndexError("window index out of range")
        return self._slots[(self._head + index) % self.capacity]

    @property
    def is_full(self) -> bool:
        return self._size == self.capacity

    def last(self) -> Optional[ObservationRecord]:
        return self[-1] if self._size else None

    def records(self) -> List[ObservationRecord]:
        return list(self)

    def observations(self) -> np.ndarray:
        """Stacked observations, shape (len, obs_dim)."""
        return np.array([r.observation for r in self])

    def copy(self) -> 'ObservationWindow':
        """Shallow copy: records are shared, slots are not."""
        clone = ObservationWindow(self.capacity)
        for record in self:
            clone.append(record)
        return clone
