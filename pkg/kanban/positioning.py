"""
Position calculator: pure functions that pick an integer sort key.

No I/O. Callers hand in the siblings/anchors they already loaded inside
their transaction and write whatever key comes back.
"""
from typing import Optional, Sequence
from .errors import InvalidAnchors, NeedsRebalance
from .schema import PositionedItem

GAP = 1000


class PositionCalculator:
    """Computes candidate keys for append, insert-between and the two ends."""

    def __init__(self, gap: int = GAP):
        if gap < 2:
            raise ValueError(f"gap must be at least 2, got {gap}")
        self.gap = gap

    def append(self, siblings: Sequence[PositionedItem]) -> int:
        """Key strictly greater than every existing sibling's key."""
        if not siblings:
            return self.gap
        return max(s.position for s in siblings) + self.gap

    def between(
        self,
        before: Optional[PositionedItem] = None,
        after: Optional[PositionedItem] = None,
        siblings: Sequence[PositionedItem] = (),
    ) -> int:
        """
        Key for a slot described by its neighbours.

        before: the item that will sit directly ahead of the new key
        after:  the item that will sit directly behind it
        siblings: the group the slot lives in, only consulted when both
                  anchors are missing

        Raises NeedsRebalance when the only candidate collides with a
        neighbour, and InvalidAnchors when no anchor was given for a
        non-empty group.
        """
        if before is not None and after is not None:
            if before.position >= after.position:
                raise InvalidAnchors(
                    f"Anchor {before.id} (position {before.position}) does not "
                    f"sort before anchor {after.id} (position {after.position})"
                )
            key = (before.position + after.position) // 2
            if key == before.position or key == after.position:
                raise NeedsRebalance(before.position, after.position)
            return key

        if after is not None:
            # Front of the list; never go negative
            key = max(0, after.position - self.gap)
            if key >= after.position:
                raise NeedsRebalance(None, after.position)
            return key

        if before is not None:
            return before.position + self.gap

        if siblings:
            raise InvalidAnchors(
                "before_id or after_id is required for a non-empty list"
            )
        return self.gap
