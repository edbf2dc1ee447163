# Kanban system: boards, ordered columns, ordered cards
#
# Components:
#   schema.py      - Data model (Board, Item, PositionedItem, SiblingTable)
#   positioning.py - PositionCalculator: pure key computation (append / between)
#   convergence.py - ConvergenceDetector: flags groups whose gaps got too small
#   rebalance.py   - RebalanceEngine: order-preserving renumbering of a group
#   store.py       - SQLite persistence, transactions, OrderedListStore
#   service.py     - BoardService: CRUD layer used by kanban_server.py
#   config.py      - YAML / environment configuration
#   errors.py      - Error taxonomy
