"""Classified log view with a scrollable viewport.

Each appended message is classified into at most one category by testing
the rules below in order and stopping at the first match:

    1. starts with "--- Tick"              → tick
    2. mentions "Task 0" or "VitalSigns"   → task-0
    3. mentions "Task 1" or "DrugDelivery" → task-1
    4. mentions "Task 2" or "Display"      → task-2
    5. mentions "Scheduler"                → scheduler
    6. mentions "Mutex"                    → mutex
    otherwise uncategorized

Positions are measured in rows. The view follows new output (autoscroll)
only while the viewport is within ``tolerance`` rows of the bottom.
"""

from dataclasses import dataclass
from enum import StrEnum

TICK_MARKER = "--- Tick"

DEFAULT_VIEWPORT_HEIGHT = 20
DEFAULT_SCROLL_TOLERANCE = 1


class LogCategory(StrEnum):
    """Log line categories, used as style keys by renderers."""

    TICK = "tick"
    TASK_0 = "task-0"
    TASK_1 = "task-1"
    TASK_2 = "task-2"
    SCHEDULER = "scheduler"
    MUTEX = "mutex"


# Substring rules checked after the tick prefix; first match wins
CATEGORY_RULES: tuple[tuple[LogCategory, tuple[str, ...]], ...] = (
    (LogCategory.TASK_0, ("Task 0", "VitalSigns")),
    (LogCategory.TASK_1, ("Task 1", "DrugDelivery")),
    (LogCategory.TASK_2, ("Task 2", "Display")),
    (LogCategory.SCHEDULER, ("Scheduler",)),
    (LogCategory.MUTEX, ("Mutex",)),
)


def classify(message: str) -> LogCategory | None:
    """Classify a log message.

    Args:
        message: Log text.

    Returns:
        First matching category, or None if uncategorized.

    """
    if message.startswith(TICK_MARKER):
        return LogCategory.TICK
    for category, needles in CATEGORY_RULES:
        if any(needle in message for needle in needles):
            return category
    return None


@dataclass(frozen=True)
class LogLine:
    """One rendered log line."""

    message: str
    category: LogCategory | None


class LogView:
    """Append-only list of classified log lines with a viewport.

    Attributes:
        viewport_height: Rows visible at once.
        tolerance: Rows from the bottom still counted as "at bottom".
        scroll_top: Index of the first visible row.
        auto_scroll: True while the viewport sits at the bottom; updated by
            every manual scroll.

    """

    def __init__(
        self,
        viewport_height: int = DEFAULT_VIEWPORT_HEIGHT,
        tolerance: int = DEFAULT_SCROLL_TOLERANCE,
    ) -> None:
        if viewport_height < 1:
            raise ValueError("viewport_height must be at least 1")
        self.viewport_height = viewport_height
        self.tolerance = tolerance
        self.scroll_top = 0
        self.auto_scroll = True
        self._lines: list[LogLine] = []

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def lines(self) -> list[LogLine]:
        return list(self._lines)

    @property
    def max_scroll(self) -> int:
        return max(0, len(self._lines) - self.viewport_height)

    def is_near_bottom(self) -> bool:
        """Check whether the viewport is within tolerance of the bottom."""
        return self.scroll_top + self.viewport_height >= len(self._lines) - self.tolerance

    def scroll_to(self, offset: int) -> None:
        """Move the viewport and refresh the autoscroll flag.

        Args:
            offset: Requested first visible row (clamped to the content).

        """
        self.scroll_top = min(max(0, offset), self.max_scroll)
        self.auto_scroll = self.is_near_bottom()

    def scroll_by(self, delta: int) -> None:
        self.scroll_to(self.scroll_top + delta)

    def append(self, message: str) -> LogLine:
        """Classify and append a message.

        Scrolls to the bottom afterwards only if the viewport was at the
        bottom before the append.

        Args:
            message: Log text.

        Returns:
            The appended line.

        """
        follow = self.auto_scroll
        line = LogLine(message=message, category=classify(message))
        self._lines.append(line)
        if follow:
            self.scroll_top = self.max_scroll
        return line

    def visible_lines(self) -> list[LogLine]:
        """Lines currently inside the viewport, top to bottom."""
        return self._lines[self.scroll_top : self.scroll_top + self.viewport_height]
