#!/usr/bin/env python3
"""
Kanban Server
-------------
JSON API over the board service: boards, ordered columns, ordered cards.
Every reorder/move is computed server-side inside one SQLite transaction;
clients only send the ids of the neighbours they dropped an item between.

Usage:
    python kanban_server.py --port 3000 --db ~/.local/share/kanban/kanban.db

API (mutating routes require the X-API-Key header):
    GET    /api/boards                      → { boards }
    POST   /api/boards                      { name } → { board }
    GET    /api/boards/<id>                 → { board, columns[cards] }
    PUT    /api/boards/<id>                 { name }
    DELETE /api/boards/<id>
    GET    /api/boards/<id>/columns         → { columns }
    POST   /api/boards/<id>/columns         { name } → { column }
    PUT    /api/columns/<id>                { name }
    DELETE /api/columns/<id>
    POST   /api/columns/<id>/reorder        { before_id?, after_id? }
    POST   /api/columns/<id>/rebalance      → { rebalanced }
    GET    /api/columns/<id>/cards          → { cards }
    POST   /api/columns/<id>/cards          { title, description?, color? }
    PUT    /api/cards/<id>                  { title?, description?, color? }
    DELETE /api/cards/<id>
    POST   /api/cards/<id>/reorder          { before_id?, after_id? }
    POST   /api/cards/<id>/move             { column_id, before_id?, after_id? }
    POST   /api/cards/<id>/archive
    POST   /api/cards/<id>/restore
    GET    /api/boards/<id>/archived        → { cards }
    GET    /api/boards/<id>/search?q=       → { cards, count }
    GET    /health
"""

import hmac
import logging
import os
import sys
from functools import wraps

from flask import Flask, jsonify, request

from pkg.kanban.config import Config
from pkg.kanban.convergence import ConvergenceDetector
from pkg.kanban.errors import (
    KanbanError,
    ParentNotFound,
    ItemNotFound,
    AnchorNotSibling,
    InvalidAnchors,
    InvalidState,
    TransactionAborted,
    ValidationError,
)
from pkg.kanban.positioning import PositionCalculator
from pkg.kanban.service import BoardService
from pkg.kanban.store import KanbanStore

app = Flask(__name__)

ERROR_STATUS = {
    ParentNotFound: 404,
    ItemNotFound: 404,
    AnchorNotSibling: 409,
    InvalidAnchors: 409,
    InvalidState: 409,
    ValidationError: 400,
    TransactionAborted: 503,
}

# Loaded once: "config" and the "service" built from it
_runtime = {}


# ── Auth ─────────────────────────────────────────────────────────────────────

def require_api_key(f):
    """Decorator: reject requests without a valid X-API-Key header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = os.environ.get("KANBAN_API_SECRET", "")
        if not secret:
            return jsonify({"error": "KANBAN_API_SECRET not set"}), 503
        provided = request.headers.get("X-API-Key", "").strip()
        if not hmac.compare_digest(provided, secret):
            code = 401 if not provided else 403
            return jsonify({"error": "Unauthorized"}), code
        return f(*args, **kwargs)
    return decorated


# ── Config ───────────────────────────────────────────────────────────────────

def get_config() -> Config:
    cfg = _runtime.get("config")
    if cfg is None:
        cfg = _runtime["config"] = Config.load()
    return cfg


def get_service() -> BoardService:
    service = _runtime.get("service")
    if service is None:
        cfg = get_config()
        store = KanbanStore(cfg.db_path, busy_timeout=cfg.busy_timeout)
        service = _runtime["service"] = BoardService(
            store,
            calculator=PositionCalculator(cfg.gap),
            detector=ConvergenceDetector(cfg.min_gap),
        )
    return service


def _json_body() -> dict:
    data = request.get_json(force=True, silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _optional_id(data: dict, key: str):
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{key} must be an integer")
    return value


# ── Errors ───────────────────────────────────────────────────────────────────

@app.errorhandler(KanbanError)
def handle_kanban_error(e):
    status = ERROR_STATUS.get(type(e), 500)
    if status >= 500:
        app.logger.warning(f"{type(e).__name__}: {e}")
    return jsonify({"error": str(e), "kind": type(e).__name__}), status


# ── Boards ───────────────────────────────────────────────────────────────────

@app.route("/api/boards", methods=["GET"])
def api_boards():
    boards = get_service().list_boards()
    return jsonify({"boards": [b.to_dict() for b in boards]})


@app.route("/api/boards", methods=["POST"])
@require_api_key
def api_create_board():
    board = get_service().create_board(_json_body().get("name", ""))
    return jsonify({"board": board.to_dict()}), 201


@app.route("/api/boards/<int:board_id>", methods=["GET"])
def api_board(board_id):
    return jsonify({"board": get_service().get_board_view(board_id)})


@app.route("/api/boards/<int:board_id>", methods=["PUT"])
@require_api_key
def api_rename_board(board_id):
    board = get_service().rename_board(board_id, _json_body().get("name", ""))
    return jsonify({"board": board.to_dict()})


@app.route("/api/boards/<int:board_id>", methods=["DELETE"])
@require_api_key
def api_delete_board(board_id):
    get_service().delete_board(board_id)
    return jsonify({"deleted": board_id})


@app.route("/api/boards/<int:board_id>/archived")
def api_archived_cards(board_id):
    cards = get_service().list_archived_cards(board_id)
    return jsonify({"cards": cards, "count": len(cards)})


@app.route("/api/boards/<int:board_id>/search")
def api_search_cards(board_id):
    cards = get_service().search_cards(board_id, request.args.get("q", ""))
    return jsonify({"cards": cards, "count": len(cards)})


# ── Columns ──────────────────────────────────────────────────────────────────

@app.route("/api/boards/<int:board_id>/columns", methods=["GET"])
def api_columns(board_id):
    columns = get_service().list_columns(board_id)
    return jsonify({"columns": [c.to_dict("board_id") for c in columns]})


@app.route("/api/boards/<int:board_id>/columns", methods=["POST"])
@require_api_key
def api_create_column(board_id):
    column = get_service().create_column(board_id, _json_body().get("name", ""))
    return jsonify({"column": column.to_dict("board_id")}), 201


@app.route("/api/columns/<int:column_id>", methods=["PUT"])
@require_api_key
def api_rename_column(column_id):
    column = get_service().rename_column(column_id, _json_body().get("name", ""))
    return jsonify({"column": column.to_dict("board_id")})


@app.route("/api/columns/<int:column_id>", methods=["DELETE"])
@require_api_key
def api_delete_column(column_id):
    get_service().delete_column(column_id)
    return jsonify({"deleted": column_id})


@app.route("/api/columns/<int:column_id>/reorder", methods=["POST"])
@require_api_key
def api_reorder_column(column_id):
    data = _json_body()
    column = get_service().reorder_column(
        column_id,
        before_id=_optional_id(data, "before_id"),
        after_id=_optional_id(data, "after_id"),
    )
    return jsonify({"column": column.to_dict("board_id")})


@app.route("/api/columns/<int:column_id>/rebalance", methods=["POST"])
@require_api_key
def api_rebalance_column(column_id):
    return jsonify({"rebalanced": get_service().rebalance_column(column_id)})


# ── Cards ────────────────────────────────────────────────────────────────────

@app.route("/api/columns/<int:column_id>/cards", methods=["GET"])
def api_cards(column_id):
    cards = get_service().list_cards(column_id)
    return jsonify({"cards": [c.to_dict("column_id") for c in cards], "count": len(cards)})


@app.route("/api/columns/<int:column_id>/cards", methods=["POST"])
@require_api_key
def api_create_card(column_id):
    data = _json_body()
    card = get_service().create_card(
        column_id,
        data.get("title", ""),
        description=data.get("description"),
        color=data.get("color"),
    )
    return jsonify({"card": card.to_dict("column_id")}), 201


@app.route("/api/cards/<int:card_id>", methods=["PUT"])
@require_api_key
def api_update_card(card_id):
    data = _json_body()
    updates = {k: data[k] for k in ("title", "description", "color") if k in data}
    card = get_service().update_card(card_id, **updates)
    return jsonify({"card": card.to_dict("column_id")})


@app.route("/api/cards/<int:card_id>", methods=["DELETE"])
@require_api_key
def api_delete_card(card_id):
    get_service().delete_card(card_id)
    return jsonify({"deleted": card_id})


@app.route("/api/cards/<int:card_id>/reorder", methods=["POST"])
@require_api_key
def api_reorder_card(card_id):
    data = _json_body()
    card = get_service().reorder_card(
        card_id,
        before_id=_optional_id(data, "before_id"),
        after_id=_optional_id(data, "after_id"),
    )
    return jsonify({"card": card.to_dict("column_id")})


@app.route("/api/cards/<int:card_id>/move", methods=["POST"])
@require_api_key
def api_move_card(card_id):
    data = _json_body()
    column_id = _optional_id(data, "column_id")
    if column_id is None:
        return jsonify({"error": "column_id is required"}), 400
    card = get_service().move_card(
        card_id,
        column_id,
        before_id=_optional_id(data, "before_id"),
        after_id=_optional_id(data, "after_id"),
    )
    return jsonify({"card": card.to_dict("column_id")})


@app.route("/api/cards/<int:card_id>/archive", methods=["POST"])
@require_api_key
def api_archive_card(card_id):
    card = get_service().archive_card(card_id)
    return jsonify({"card": card.to_dict("column_id")})


@app.route("/api/cards/<int:card_id>/restore", methods=["POST"])
@require_api_key
def api_restore_card(card_id):
    card = get_service().restore_card(card_id)
    return jsonify({"card": card.to_dict("column_id")})


@app.route("/health")
def health():
    return jsonify({"status": "ok", "db": get_config().db_path})


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Kanban Server")
    parser.add_argument("--config", help="Path to kanban.yaml (overrides KANBAN_CONFIG)")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--db", help="Path to kanban.db (overrides KANBAN_DB env var)")
    args = parser.parse_args()

    if args.config:
        os.environ["KANBAN_CONFIG"] = args.config
    if args.db:
        os.environ["KANBAN_DB"] = args.db

    cfg = _runtime["config"] = Config.load()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [kanban] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    host = args.host or cfg.host
    port = args.port or cfg.port

    print(f"""
╔═══════════════════════════════════════╗
║  Kanban Server                        ║
╠═══════════════════════════════════════╣
║  URL:  http://{host}:{port:<20}║
║  DB:   {cfg.db_path:<31}║
╚═══════════════════════════════════════╝
""")

    app.run(host=host, port=port, debug=False, threaded=True)
