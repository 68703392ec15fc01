"""Rolling window of recent time-series samples."""

from collections import deque

DEFAULT_CHART_CAPACITY = 50


class ChartWindow:
    """Bounded FIFO of (tick, value) pairs.

    Labels and values are kept as parallel sequences of equal length; once
    the window exceeds its capacity the oldest pair is evicted.

    Attributes:
        capacity: Maximum number of pairs retained.

    """

    def __init__(self, capacity: int = DEFAULT_CHART_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._labels: deque[float] = deque(maxlen=capacity)
        self._values: deque[float] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._labels)

    def append(self, label: float, value: float) -> None:
        """Add a sample, evicting the oldest one when full."""
        self._labels.append(label)
        self._values.append(value)

    @property
    def labels(self) -> list[float]:
        """Ticks, oldest first."""
        return list(self._labels)

    @property
    def values(self) -> list[float]:
        """Sampled values, oldest first."""
        return list(self._values)

    def points(self) -> list[tuple[float, float]]:
        """(tick, value) pairs, oldest first."""
        return list(zip(self._labels, self._values, strict=True))

    def latest(self) -> tuple[float, float] | None:
        """Most recent pair, or None when empty."""
        if not self._labels:
            return None
        return self._labels[-1], self._values[-1]

    def clear(self) -> None:
        self._labels.clear()
        self._values.clear()
