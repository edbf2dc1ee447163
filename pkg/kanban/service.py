"""
Board service: the CRUD layer the API talks to.

One PositionCalculator and one ConvergenceDetector are shared by both
hierarchy levels; each level gets its own OrderedListStore bound to a
SiblingTable. Archived cards stay in their column's sibling group (they
keep their key) and are filtered out here, never inside the engine.
"""
import logging
from typing import Optional, List, Dict, Any

from .convergence import ConvergenceDetector
from .errors import ItemNotFound, ValidationError
from .positioning import PositionCalculator
from .schema import BOARD_COLUMNS, COLUMN_CARDS, Board, Item
from .store import KanbanStore, OrderedListStore

logger = logging.getLogger(__name__)

CARD_FIELDS = ("title", "description", "color")


def _clean_name(value: Optional[str], what: str) -> str:
    """Trim a name/title; empty after trimming is a validation error."""
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{what} must be a string")
    trimmed = (value or "").strip()
    if not trimmed:
        raise ValidationError(f"{what} cannot be empty")
    return trimmed


def _clean_text(value: Optional[str], what: str) -> Optional[str]:
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{what} must be a string")
    return value or None


def is_active(card: Item) -> bool:
    return card.payload.get("archived_at") is None


class BoardService:
    """Boards, ordered columns and ordered cards over one KanbanStore."""

    def __init__(
        self,
        store: KanbanStore,
        calculator: Optional[PositionCalculator] = None,
        detector: Optional[ConvergenceDetector] = None,
    ):
        self.store = store
        self.calculator = calculator or PositionCalculator()
        self.detector = detector or ConvergenceDetector()
        self.columns = OrderedListStore(store, BOARD_COLUMNS, self.calculator, self.detector)
        self.cards = OrderedListStore(store, COLUMN_CARDS, self.calculator, self.detector)

    # ──────────────────────────────────────────
    # Boards
    # ──────────────────────────────────────────

    def create_board(self, name: str) -> Board:
        board = self.store.create_board(_clean_name(name, "Board name"))
        logger.info(f"Created board {board.id} ({board.name})")
        return board

    def get_board(self, board_id: int) -> Board:
        board = self.store.get_board(board_id)
        if board is None:
            raise ItemNotFound("boards", board_id)
        return board

    def list_boards(self) -> List[Board]:
        return self.store.list_boards()

    def rename_board(self, board_id: int, name: str) -> Board:
        return self.store.rename_board(board_id, _clean_name(name, "Board name"))

    def delete_board(self, board_id: int) -> None:
        self.store.delete_board(board_id)
        logger.info(f"Deleted board {board_id}")

    def get_board_view(self, board_id: int) -> Dict[str, Any]:
        """Board with its ordered columns, each with its ordered active cards."""
        board = self.get_board(board_id)
        columns = []
        for column in self.columns.list_ordered(board_id):
            data = column.to_dict("board_id")
            data["cards"] = [c.to_dict("column_id") for c in self.list_cards(column.id)]
            columns.append(data)
        view = board.to_dict()
        view["columns"] = columns
        return view

    # ──────────────────────────────────────────
    # Columns
    # ──────────────────────────────────────────

    def create_column(self, board_id: int, name: str) -> Item:
        return self.columns.append(board_id, {"name": _clean_name(name, "Column name")})

    def list_columns(self, board_id: int) -> List[Item]:
        return self.columns.list_ordered(board_id)

    def rename_column(self, column_id: int, name: str) -> Item:
        return self.columns.update_payload(column_id, name=_clean_name(name, "Column name"))

    def reorder_column(
        self,
        column_id: int,
        before_id: Optional[int] = None,
        after_id: Optional[int] = None,
    ) -> Item:
        return self.columns.reorder(column_id, before_id=before_id, after_id=after_id)

    def delete_column(self, column_id: int) -> None:
        """Delete a column and (by cascade) its cards."""
        self.columns.delete(column_id)

    def rebalance_column(self, column_id: int) -> bool:
        """Explicit maintenance hook for a column's cards."""
        return self.cards.rebalance(column_id)

    # ──────────────────────────────────────────
    # Cards
    # ──────────────────────────────────────────

    def create_card(
        self,
        column_id: int,
        title: str,
        description: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Item:
        return self.cards.append(column_id, {
            "title": _clean_name(title, "Card title"),
            "description": _clean_text(description, "Card description"),
            "color": _clean_text(color, "Card color"),
        })

    def get_card(self, card_id: int) -> Item:
        return self.cards.get(card_id)

    def update_card(self, card_id: int, **updates) -> Item:
        """Update title/description/color. Unknown fields are rejected."""
        unknown = set(updates) - set(CARD_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update card field(s): {', '.join(sorted(unknown))}")
        if "title" in updates:
            updates["title"] = _clean_name(updates["title"], "Card title")
        for name in ("description", "color"):
            if name in updates:
                updates[name] = _clean_text(updates[name], f"Card {name}")
        return self.cards.update_payload(card_id, **updates)

    def list_cards(self, column_id: int) -> List[Item]:
        """Active cards in a column, in display order."""
        return [c for c in self.cards.list_ordered(column_id) if is_active(c)]

    def reorder_card(
        self,
        card_id: int,
        before_id: Optional[int] = None,
        after_id: Optional[int] = None,
    ) -> Item:
        return self.cards.reorder(card_id, before_id=before_id, after_id=after_id)

    def move_card(
        self,
        card_id: int,
        column_id: int,
        before_id: Optional[int] = None,
        after_id: Optional[int] = None,
    ) -> Item:
        return self.cards.move_across_parent(
            card_id, column_id, before_id=before_id, after_id=after_id
        )

    def archive_card(self, card_id: int) -> Item:
        card = self.store.set_card_archived(card_id, True)
        logger.info(f"Archived card {card_id}")
        return card

    def restore_card(self, card_id: int) -> Item:
        """Bring an archived card back; it keeps its old key in its column."""
        return self.store.set_card_archived(card_id, False)

    def list_archived_cards(self, board_id: int) -> List[Dict[str, Any]]:
        self.get_board(board_id)
        return self.store.list_archived_cards(board_id)

    def delete_card(self, card_id: int) -> None:
        self.cards.delete(card_id)

    def search_cards(self, board_id: int, query: str = "") -> List[Dict[str, Any]]:
        self.get_board(board_id)
        return self.store.search_cards(board_id, (query or "").strip())
