"""
Kanban storage backend (SQLite).

KanbanStore owns the database file, the schema and the transaction
boundaries. OrderedListStore is the ordering engine for one hierarchy
level: every mutating call is exactly one write transaction
(load siblings → compute key → write → maintenance check).
"""
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Dict, Any, Tuple

from .convergence import ConvergenceDetector
from .errors import (
    ParentNotFound,
    ItemNotFound,
    AnchorNotSibling,
    InvalidAnchors,
    InvalidState,
    NeedsRebalance,
    TransactionAborted,
    ValidationError,
)
from .positioning import PositionCalculator
from .rebalance import RebalanceEngine
from .schema import COLUMN_CARDS, Board, Item, PositionedItem, SiblingTable, utc_now

logger = logging.getLogger(__name__)


def _connect(db_path: str, timeout: float = 5.0) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode, autocommit off by hand."""
    conn = sqlite3.connect(db_path, timeout=timeout, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK")


class KanbanStore:
    """SQLite-backed store for boards, columns and cards."""

    def __init__(self, db_path: str, busy_timeout: float = 5.0):
        """Initialize store and create tables if needed."""
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    # ──────────────────────────────────────────
    # Connections and transactions
    # ──────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        One serializable write transaction.

        BEGIN IMMEDIATE takes the write lock up front, so two writers never
        interleave their read-compute-write steps. Any error rolls back;
        SQLite errors (including failing to open the file) surface as
        TransactionAborted.
        """
        conn = None
        try:
            conn = _connect(self.db_path, self.busy_timeout)
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn is not None:
                _rollback(conn)
            logger.error(f"Transaction aborted on {self.db_path}: {e}")
            raise TransactionAborted(str(e)) from e
        except Exception:
            if conn is not None:
                _rollback(conn)
            raise
        finally:
            if conn is not None:
                conn.close()

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Read-only access. Every statement in the block sees one committed snapshot."""
        conn = None
        try:
            conn = _connect(self.db_path, self.busy_timeout)
            conn.execute("BEGIN")
            yield conn
        except sqlite3.Error as e:
            logger.error(f"Read failed on {self.db_path}: {e}")
            raise TransactionAborted(str(e)) from e
        finally:
            if conn is not None:
                _rollback(conn)
                conn.close()

    # ──────────────────────────────────────────
    # Schema
    # ──────────────────────────────────────────

    def _init_schema(self):
        """Create tables if they don't exist."""
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS boards (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS columns (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    board_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (board_id) REFERENCES boards(id) ON DELETE CASCADE
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cards (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    column_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    color TEXT,
                    position INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    archived_at TEXT DEFAULT NULL,
                    FOREIGN KEY (column_id) REFERENCES columns(id) ON DELETE CASCADE
                )
            """)
            # Migrate: add new columns to existing databases
            self._migrate_columns(conn)
            # One key per position inside a sibling group
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_columns_position ON columns(board_id, position)"
            )
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_cards_position ON cards(column_id, position)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_cards_archived_at ON cards(archived_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_boards_created_at ON boards(created_at)")

    def _migrate_columns(self, conn):
        """Add columns introduced after the first release to existing databases."""
        new_columns = [
            ("cards", "archived_at", "TEXT DEFAULT NULL"),
        ]
        for table, col_name, col_type in new_columns:
            existing = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}
            if col_name not in existing:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {col_name} {col_type}")
                logger.info(f"Migrated {table}: added {col_name}")

    # ──────────────────────────────────────────
    # Boards (unordered)
    # ──────────────────────────────────────────

    def create_board(self, name: str) -> Board:
        now = utc_now()
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO boards (name, created_at, updated_at) VALUES (?, ?, ?)",
                (name, now, now),
            )
            row = conn.execute("SELECT * FROM boards WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return Board.from_dict(dict(row))

    def get_board(self, board_id: int) -> Optional[Board]:
        """Retrieve a board by ID, or None."""
        with self.read() as conn:
            row = conn.execute("SELECT * FROM boards WHERE id = ?", (board_id,)).fetchone()
        return Board.from_dict(dict(row)) if row else None

    def list_boards(self) -> List[Board]:
        """All boards, newest first."""
        with self.read() as conn:
            rows = conn.execute("SELECT * FROM boards ORDER BY created_at DESC, id DESC").fetchall()
        return [Board.from_dict(dict(r)) for r in rows]

    def rename_board(self, board_id: int, name: str) -> Board:
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE boards SET name = ?, updated_at = ? WHERE id = ?",
                (name, utc_now(), board_id),
            )
            if cursor.rowcount == 0:
                raise ItemNotFound("boards", board_id)
            row = conn.execute("SELECT * FROM boards WHERE id = ?", (board_id,)).fetchone()
        return Board.from_dict(dict(row))

    def delete_board(self, board_id: int) -> None:
        """Delete a board; columns and cards go with it (ON DELETE CASCADE)."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM boards WHERE id = ?", (board_id,))
            if cursor.rowcount == 0:
                raise ItemNotFound("boards", board_id)

    # ──────────────────────────────────────────
    # Card queries spanning a whole board
    # ──────────────────────────────────────────

    def search_cards(self, board_id: int, query: str) -> List[Dict[str, Any]]:
        """
        Active cards on a board matching query (case-insensitive) in title,
        description or color. Ordered by column position, then card position.
        An empty query returns every active card on the board.
        """
        sql = """
            SELECT c.* FROM cards c
            JOIN columns col ON c.column_id = col.id
            WHERE col.board_id = ? AND c.archived_at IS NULL
        """
        params: Tuple = (board_id,)
        if query:
            pattern = f"%{query.lower()}%"
            sql += """
              AND (
                LOWER(c.title) LIKE ?
                OR LOWER(COALESCE(c.description, '')) LIKE ?
                OR LOWER(COALESCE(c.color, '')) LIKE ?
              )
            """
            params += (pattern, pattern, pattern)
        sql += " ORDER BY col.position ASC, c.position ASC"
        with self.read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [dict(r) for r in rows]

    def list_archived_cards(self, board_id: int) -> List[Dict[str, Any]]:
        """Archived cards on a board with their column name, most recent first."""
        with self.read() as conn:
            rows = conn.execute("""
                SELECT c.*, col.name AS column_name
                FROM cards c
                JOIN columns col ON c.column_id = col.id
                WHERE col.board_id = ? AND c.archived_at IS NOT NULL
                ORDER BY c.archived_at DESC, c.id DESC
            """, (board_id,)).fetchall()
        return [dict(r) for r in rows]

    def set_card_archived(self, card_id: int, archived: bool) -> Item:
        """
        Archive or restore a card with one conditional UPDATE.

        The state check is part of the WHERE clause, so of two concurrent
        archives exactly one matches. When nothing matched, the row decides
        between ItemNotFound and InvalidState.
        """
        now = utc_now()
        if archived:
            sql = ("UPDATE cards SET archived_at = ?, updated_at = ? "
                   "WHERE id = ? AND archived_at IS NULL")
            params = (now, now, card_id)
        else:
            sql = ("UPDATE cards SET archived_at = NULL, updated_at = ? "
                   "WHERE id = ? AND archived_at IS NOT NULL")
            params = (now, card_id)
        with self.transaction() as conn:
            cursor = conn.execute(sql, params)
            if cursor.rowcount == 0:
                row = conn.execute("SELECT id FROM cards WHERE id = ?", (card_id,)).fetchone()
                if row is None:
                    raise ItemNotFound("cards", card_id)
                state = "already archived" if archived else "not archived"
                raise InvalidState(f"Card {card_id} is {state}")
            row = conn.execute("SELECT * FROM cards WHERE id = ?", (card_id,)).fetchone()
            return Item.from_row(row, COLUMN_CARDS)


class OrderedListStore:
    """
    Ordering engine for one hierarchy level (columns-in-board or
    cards-in-column), parameterized by a SiblingTable.
    """

    def __init__(
        self,
        store: KanbanStore,
        spec: SiblingTable,
        calculator: Optional[PositionCalculator] = None,
        detector: Optional[ConvergenceDetector] = None,
    ):
        self.store = store
        self.spec = spec
        self.calculator = calculator or PositionCalculator()
        self.detector = detector or ConvergenceDetector()
        self.engine = RebalanceEngine(spec, self.detector, self.calculator.gap)

    # ──────────────────────────────────────────
    # Row helpers (caller holds the connection)
    # ──────────────────────────────────────────

    def _require_parent(self, conn: sqlite3.Connection, parent_id: int) -> None:
        row = conn.execute(
            f"SELECT 1 FROM {self.spec.parent_table} WHERE id = ?", (parent_id,)
        ).fetchone()
        if row is None:
            raise ParentNotFound(self.spec.parent_table, parent_id)

    def _get_item(self, conn: sqlite3.Connection, item_id: int) -> Item:
        row = conn.execute(
            f"SELECT * FROM {self.spec.table} WHERE id = ?", (item_id,)
        ).fetchone()
        if row is None:
            raise ItemNotFound(self.spec.table, item_id)
        return Item.from_row(row, self.spec)

    def _check_payload(self, payload: Dict[str, Any]) -> None:
        unknown = set(payload) - set(self.spec.payload_fields)
        if unknown:
            raise ValidationError(
                f"Unknown {self.spec.table} field(s): {', '.join(sorted(unknown))}"
            )

    def _resolve_slot(
        self,
        conn: sqlite3.Connection,
        parent_id: int,
        item_id: int,
        before_id: Optional[int],
        after_id: Optional[int],
    ) -> Tuple[Optional[PositionedItem], Optional[PositionedItem], List[PositionedItem]]:
        """
        Turn client anchors into the two neighbours of the target slot.

        The moving item is left out of the group. A single anchor is
        completed with its current neighbour. Two anchors that are not
        adjacent (the client cannot see archived cards) resolve to the slot
        directly after `before`, as long as `before` sorts ahead of `after`.
        """
        others = [s for s in self.engine.load_siblings(conn, parent_id) if s.id != item_id]
        index = {s.id: i for i, s in enumerate(others)}

        for anchor_id in (before_id, after_id):
            if anchor_id is None:
                continue
            if anchor_id == item_id:
                raise InvalidAnchors(f"Item {item_id} cannot be its own anchor")
            if anchor_id not in index:
                anchor = self._get_item(conn, anchor_id)
                raise AnchorNotSibling(anchor_id, parent_id, anchor.parent_id)

        before = others[index[before_id]] if before_id is not None else None
        after = others[index[after_id]] if after_id is not None else None

        if before is not None and after is not None:
            if index[after.id] <= index[before.id]:
                raise InvalidAnchors(
                    f"Anchor {before.id} does not sort before anchor {after.id}"
                )
            after = others[index[before.id] + 1]
        elif before is not None:
            nxt = index[before.id] + 1
            after = others[nxt] if nxt < len(others) else None
        elif after is not None:
            prev = index[after.id] - 1
            before = others[prev] if prev >= 0 else None

        logger.debug(
            f"{self.spec.table} {item_id} → {self.spec.parent_column}={parent_id} "
            f"between {before} and {after}"
        )
        return before, after, others

    def _place(
        self,
        conn: sqlite3.Connection,
        parent_id: int,
        item_id: int,
        before_id: Optional[int],
        after_id: Optional[int],
    ) -> int:
        """Key for the slot; rebalances and retries once when the slot is full."""
        before, after, others = self._resolve_slot(conn, parent_id, item_id, before_id, after_id)
        try:
            return self.calculator.between(before, after, others)
        except NeedsRebalance as e:
            logger.info(f"No room in {self.spec.table} under {parent_id} ({e}), rebalancing")
            self.engine.rebalance(conn, parent_id, force=True)
        before, after, others = self._resolve_slot(conn, parent_id, item_id, before_id, after_id)
        return self.calculator.between(before, after, others)

    def _maintain(self, conn: sqlite3.Connection, parent_id: int) -> bool:
        """Trailing maintenance: leave the group healthy for the next call."""
        return self.engine.rebalance(conn, parent_id)

    # ──────────────────────────────────────────
    # Public operations
    # ──────────────────────────────────────────

    def append(self, parent_id: int, payload: Optional[Dict[str, Any]] = None) -> Item:
        """Insert a new item after every existing sibling."""
        payload = dict(payload or {})
        self._check_payload(payload)
        with self.store.transaction() as conn:
            self._require_parent(conn, parent_id)
            position = self.calculator.append(self.engine.load_siblings(conn, parent_id))
            now = utc_now()
            names = [self.spec.parent_column, "position", *payload.keys(), "created_at", "updated_at"]
            values = [parent_id, position, *payload.values(), now, now]
            cursor = conn.execute(
                f"INSERT INTO {self.spec.table} ({', '.join(names)}) "
                f"VALUES ({', '.join('?' for _ in names)})",
                values,
            )
            return self._get_item(conn, cursor.lastrowid)

    def reorder(
        self,
        item_id: int,
        before_id: Optional[int] = None,
        after_id: Optional[int] = None,
    ) -> Item:
        """Move an item to a new slot inside its current sibling group."""
        with self.store.transaction() as conn:
            item = self._get_item(conn, item_id)
            position = self._place(conn, item.parent_id, item_id, before_id, after_id)
            conn.execute(
                f"UPDATE {self.spec.table} SET position = ?, updated_at = ? WHERE id = ?",
                (position, utc_now(), item_id),
            )
            self._maintain(conn, item.parent_id)
            return self._get_item(conn, item_id)

    def move_across_parent(
        self,
        item_id: int,
        new_parent_id: int,
        before_id: Optional[int] = None,
        after_id: Optional[int] = None,
    ) -> Item:
        """
        Move an item into another sibling group. Anchors resolve against the
        new parent; parent and position change in the same UPDATE. The old
        group only loses a member, so it needs no maintenance.
        """
        with self.store.transaction() as conn:
            self._get_item(conn, item_id)
            self._require_parent(conn, new_parent_id)
            position = self._place(conn, new_parent_id, item_id, before_id, after_id)
            conn.execute(
                f"UPDATE {self.spec.table} "
                f"SET {self.spec.parent_column} = ?, position = ?, updated_at = ? WHERE id = ?",
                (new_parent_id, position, utc_now(), item_id),
            )
            self._maintain(conn, new_parent_id)
            return self._get_item(conn, item_id)

    def rebalance(self, parent_id: int) -> bool:
        """Rebalance a group if it has converged. Returns True if rows were rewritten."""
        with self.store.transaction() as conn:
            self._require_parent(conn, parent_id)
            return self.engine.rebalance(conn, parent_id)

    def list_ordered(self, parent_id: int) -> List[Item]:
        """Siblings ascending by position. Pure read."""
        with self.store.read() as conn:
            self._require_parent(conn, parent_id)
            rows = conn.execute(
                f"SELECT * FROM {self.spec.table} "
                f"WHERE {self.spec.parent_column} = ? ORDER BY position ASC, id ASC",
                (parent_id,),
            ).fetchall()
        return [Item.from_row(row, self.spec) for row in rows]

    def get(self, item_id: int) -> Item:
        with self.store.read() as conn:
            return self._get_item(conn, item_id)

    def update_payload(self, item_id: int, **fields) -> Item:
        """Write domain fields. Never touches parent or position."""
        self._check_payload(fields)
        with self.store.transaction() as conn:
            self._get_item(conn, item_id)
            if fields:
                assignments = ", ".join(f"{name} = ?" for name in fields)
                conn.execute(
                    f"UPDATE {self.spec.table} SET {assignments}, updated_at = ? WHERE id = ?",
                    (*fields.values(), utc_now(), item_id),
                )
            return self._get_item(conn, item_id)

    def delete(self, item_id: int) -> None:
        """Remove an item. Survivors keep their keys; gaps are harmless."""
        with self.store.transaction() as conn:
            cursor = conn.execute(f"DELETE FROM {self.spec.table} WHERE id = ?", (item_id,))
            if cursor.rowcount == 0:
                raise ItemNotFound(self.spec.table, item_id)
