"""
Error taxonomy for the ordering engine and the board service.

Every error is raised inside the owning transaction, so raising it rolls the
transaction back. The HTTP layer maps each kind to a status code.
"""


class KanbanError(Exception):
    """Base class for every error the kanban package raises on purpose."""
    pass


class ParentNotFound(KanbanError):
    """Raised when a referenced parent (board or column) does not exist."""

    def __init__(self, table: str, parent_id: int):
        self.table = table
        self.parent_id = parent_id
        super().__init__(f"{table} {parent_id} not found")


class ItemNotFound(KanbanError):
    """Raised when a target item or an anchor item does not exist."""

    def __init__(self, table: str, item_id: int):
        self.table = table
        self.item_id = item_id
        super().__init__(f"{table} {item_id} not found")


class AnchorNotSibling(KanbanError):
    """Raised when an anchor belongs to a different parent (stale client view)."""

    def __init__(self, anchor_id: int, expected_parent: int, actual_parent: int):
        self.anchor_id = anchor_id
        self.expected_parent = expected_parent
        self.actual_parent = actual_parent
        super().__init__(
            f"Anchor {anchor_id} belongs to parent {actual_parent}, "
            f"not {expected_parent}"
        )


class InvalidAnchors(KanbanError):
    """Raised when the anchors cannot describe a slot in the sibling list."""
    pass


class TransactionAborted(KanbanError):
    """
    Raised when the underlying transaction failed to commit.

    Transient: no partial state is ever visible, so the call is safe to retry.
    """
    pass


class ValidationError(KanbanError):
    """Raised when a name, title or payload field fails validation."""
    pass


class InvalidState(KanbanError):
    """Raised when an archive/restore request does not match the card's state."""
    pass


class NeedsRebalance(Exception):
    """
    Raised by the position calculator when the only free key would collide
    with a neighbour. Internal to the engine; the store rebalances and retries.
    """

    def __init__(self, before_position=None, after_position=None):
        self.before_position = before_position
        self.after_position = after_position
        super().__init__(
            f"No free key between {before_position} and {after_position}"
        )
