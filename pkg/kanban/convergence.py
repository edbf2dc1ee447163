"""
Convergence detector: notices when repeated midpoint inserts have squeezed
adjacent keys too close together, so the group is rebalanced before a
collision is possible.
"""
from typing import Optional, Sequence
from .schema import PositionedItem

MIN_GAP = 10


class ConvergenceDetector:
    """Flags sibling groups whose smallest adjacent gap fell below min_gap."""

    def __init__(self, min_gap: int = MIN_GAP):
        self.min_gap = min_gap

    def smallest_gap(self, siblings: Sequence[PositionedItem]) -> Optional[int]:
        """Smallest difference between adjacent keys, or None for <2 items."""
        if len(siblings) < 2:
            return None
        ordered = sorted(s.position for s in siblings)
        return min(nxt - prev for prev, nxt in zip(ordered, ordered[1:]))

    def is_converged(self, siblings: Sequence[PositionedItem]) -> bool:
        gap = self.smallest_gap(siblings)
        return gap is not None and gap < self.min_gap
