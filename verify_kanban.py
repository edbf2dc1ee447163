#!/usr/bin/env python3
"""
Quick verification that the Kanban ordering engine works end-to-end.
"""
import logging
import sys
import tempfile
from pathlib import Path

from pkg.kanban.service import BoardService
from pkg.kanban.store import KanbanStore


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [verify] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    print("=" * 60)
    print("Kanban Ordering Engine Verification")
    print("=" * 60)

    db_path = Path(tempfile.mkdtemp()) / "verify_kanban.db"

    print("\n[1/5] Creating SQLite store...")
    service = BoardService(KanbanStore(str(db_path)))
    print(f"✅ Store created at {db_path}")

    print("\n[2/5] Creating board with two columns...")
    board = service.create_board("Verification board")
    todo = service.create_column(board.id, "To do")
    done = service.create_column(board.id, "Done")
    print(f"✅ Board {board.id}: columns {todo.id} @ {todo.position}, {done.id} @ {done.position}")

    print("\n[3/5] Appending five cards...")
    cards = [service.create_card(todo.id, f"Card {i}") for i in range(1, 6)]
    print("✅ Positions: " + ", ".join(str(c.position) for c in cards))

    print("\n[4/5] Moving the last card to the front 50 times...")
    for _ in range(50):
        ordered = service.list_cards(todo.id)
        service.reorder_card(ordered[-1].id, after_id=ordered[0].id)
    ordered = service.list_cards(todo.id)
    titles = [c.payload["title"] for c in ordered]
    positions = [c.position for c in ordered]
    gaps = [b - a for a, b in zip(positions, positions[1:])]
    ok = titles == [f"Card {i}" for i in range(1, 6)] and min(gaps) >= service.detector.min_gap
    print(f"{'✅' if ok else '❌'} Order: {titles}")
    print(f"   Positions: {positions}")

    print("\n[5/5] Moving 'Card 3' into 'Done'...")
    moved = service.move_card(ordered[2].id, done.id)
    remaining = [c.payload["title"] for c in service.list_cards(todo.id)]
    print(f"✅ Card {moved.id} now in column {moved.parent_id} @ {moved.position}")
    print(f"   To do: {remaining}")

    print("\n" + "=" * 60)
    print("✅ Verification complete" if ok else "❌ Verification failed")
    print("=" * 60)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
