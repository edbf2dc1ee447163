"""
Rebalance engine: renumbers a whole sibling group to evenly spaced keys.

Runs inside the caller's transaction, so a failed rebalance leaves every
position untouched. Relative order is never changed.
"""
import logging
import sqlite3
from typing import List
from .convergence import ConvergenceDetector
from .positioning import GAP
from .schema import PositionedItem, SiblingTable, utc_now

logger = logging.getLogger(__name__)


class RebalanceEngine:
    """Renumbers one hierarchy level's sibling groups."""

    def __init__(
        self,
        spec: SiblingTable,
        detector: ConvergenceDetector,
        gap: int = GAP,
    ):
        self.spec = spec
        self.detector = detector
        self.gap = gap

    def load_siblings(self, conn: sqlite3.Connection, parent_id: int) -> List[PositionedItem]:
        """Current (id, position) pairs of a group, ascending."""
        rows = conn.execute(
            f"SELECT id, position FROM {self.spec.table} "
            f"WHERE {self.spec.parent_column} = ? ORDER BY position ASC, id ASC",
            (parent_id,),
        ).fetchall()
        return [PositionedItem(row[0], row[1]) for row in rows]

    def rebalance(self, conn: sqlite3.Connection, parent_id: int, force: bool = False) -> bool:
        """
        Renumber the group to (index + 1) * gap.

        Returns True if any row was rewritten. Without force, a healthy group
        (or one with <=1 item) is left alone. With force, only a group that is
        already evenly spaced is left alone, which keeps repeated calls free.
        """
        siblings = self.load_siblings(conn, parent_id)
        if len(siblings) <= 1:
            return False

        if not force and not self.detector.is_converged(siblings):
            return False

        targets = [(index + 1) * self.gap for index in range(len(siblings))]
        if [s.position for s in siblings] == targets:
            return False

        smallest = self.detector.smallest_gap(siblings)
        # Park every row below the current minimum first: the unique
        # (parent, position) index is checked row by row.
        floor = min(0, siblings[0].position)
        conn.executemany(
            f"UPDATE {self.spec.table} SET position = ? WHERE id = ?",
            [(floor - (index + 1), s.id) for index, s in enumerate(siblings)],
        )
        now = utc_now()
        conn.executemany(
            f"UPDATE {self.spec.table} SET position = ?, updated_at = ? WHERE id = ?",
            [(target, now, s.id) for target, s in zip(targets, siblings)],
        )
        logger.info(
            f"Rebalanced {len(siblings)} {self.spec.table} under "
            f"{self.spec.parent_column}={parent_id} (smallest gap {smallest}, force={force})"
        )
        return True
