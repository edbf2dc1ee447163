"""
Kanban data model: boards, and the ordered items that live under them.

Hierarchy:
  Board → Column (ordered by position) → Card (ordered by position)

Columns and cards are both Items: the ordering engine only ever sees
(id, parent_id, position). Everything else on the row is payload.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any
import sqlite3


def utc_now() -> str:
    """ISO-8601 UTC timestamp, as stored in the *_at columns."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SiblingTable:
    """
    Describes one hierarchy level to the ordering engine.

    table:          table holding the ordered rows (e.g. "cards")
    parent_column:  foreign key naming the sibling group (e.g. "column_id")
    parent_table:   table the foreign key points at (e.g. "columns")
    payload_fields: domain columns the store may write on insert/update
    """
    table: str
    parent_column: str
    parent_table: str
    payload_fields: tuple = ()


BOARD_COLUMNS = SiblingTable(
    table="columns",
    parent_column="board_id",
    parent_table="boards",
    payload_fields=("name",),
)

COLUMN_CARDS = SiblingTable(
    table="cards",
    parent_column="column_id",
    parent_table="columns",
    payload_fields=("title", "description", "color", "archived_at"),
)


@dataclass(frozen=True)
class PositionedItem:
    """The minimum the position calculator needs: an id and a sort key."""
    id: int
    position: int


@dataclass
class Item:
    """One row in a sibling group."""

    id: int
    parent_id: int
    position: int
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def anchor(self) -> PositionedItem:
        return PositionedItem(self.id, self.position)

    def to_dict(self, parent_key: str = "parent_id") -> Dict[str, Any]:
        """Flatten to the JSON shape the API returns."""
        data = {"id": self.id, parent_key: self.parent_id, "position": self.position}
        data.update(self.payload)
        return data

    @classmethod
    def from_row(cls, row: sqlite3.Row, spec: SiblingTable) -> "Item":
        """Build an Item from a full table row."""
        data = dict(row)
        item_id = data.pop("id")
        parent_id = data.pop(spec.parent_column)
        position = data.pop("position")
        return cls(id=item_id, parent_id=parent_id, position=position, payload=data)


@dataclass
class Board:
    """Top-level container. Boards are not ordered, they list by creation date."""

    id: int
    name: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Board":
        """Deserialize from a dict (or a sqlite3.Row turned into one)."""
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
