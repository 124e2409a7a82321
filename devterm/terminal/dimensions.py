"""Terminal geometry measurement and change detection."""

from dataclasses import dataclass
from typing import Callable, Optional


class MeasurementUnavailable(Exception):
    """The display layer cannot measure the terminal yet (not mounted/visible)."""


@dataclass(frozen=True)
class Dimensions:
    """Terminal geometry in character cells."""

    rows: int
    cols: int


class DimensionTracker:
    """Polls the display layer for terminal geometry.

    The tracker holds no geometry of its own; the session keeps the last
    negotiated dimensions and asks the tracker whether they changed.
    """

    def __init__(self, measure: Callable[[], Dimensions]) -> None:
        self._measure = measure

    def current_dimensions(self) -> Dimensions:
        """Measure the terminal.

        Raises
        ------
        MeasurementUnavailable
            If the widget cannot be measured, or reports a degenerate size.
        """
        try:
            dims = self._measure()
        except MeasurementUnavailable:
            raise
        except (OSError, ValueError) as e:
            raise MeasurementUnavailable(str(e)) from e

        if dims is None or dims.rows <= 0 or dims.cols <= 0:
            raise MeasurementUnavailable(f"Invalid terminal size: {dims!r}")
        return dims

    @staticmethod
    def has_changed(previous: Optional[Dimensions], current: Dimensions) -> bool:
        if previous is None:
            return True
        return previous.rows != current.rows or previous.cols != current.cols
