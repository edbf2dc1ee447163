"""Shared test fixtures for the Kanban ordering engine tests."""

import sys
from pathlib import Path

import pytest

# Ensure the repo root (pkg/, kanban_server.py) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from pkg.kanban.service import BoardService
from pkg.kanban.store import KanbanStore


@pytest.fixture
def store(tmp_path):
    return KanbanStore(str(tmp_path / "kanban.db"))


@pytest.fixture
def service(store):
    return BoardService(store)


@pytest.fixture
def board(service):
    return service.create_board("Test board")


@pytest.fixture
def column(service, board):
    return service.create_column(board.id, "To do")


def set_positions(store, table, positions):
    """Force raw keys onto rows: {item_id: position}. Applied in the given order."""
    with store.transaction() as conn:
        for item_id, position in positions.items():
            conn.execute(f"UPDATE {table} SET position = ? WHERE id = ?", (position, item_id))
