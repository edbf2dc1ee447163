# Kanban — configuration
# Override values via kanban.yaml (or $KANBAN_CONFIG) and environment variables.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Optional

from .convergence import MIN_GAP
from .positioning import GAP

CONFIG_PATH = Path(__file__).parent / "kanban.yaml"
DEFAULT_DB = "~/.local/share/kanban/kanban.db"


@dataclass
class Config:
    """Runtime configuration for the store and the HTTP server."""

    # Storage
    db_path: str = DEFAULT_DB
    busy_timeout: float = 5.0  # seconds to wait for the SQLite write lock

    # Ordering engine
    gap: int = GAP
    min_gap: int = MIN_GAP

    # HTTP server
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    def resolve_paths(self):
        """Apply environment overrides and expand ~."""
        env_db = os.environ.get("KANBAN_DB")
        if env_db:
            self.db_path = env_db
        self.db_path = str(Path(self.db_path).expanduser())

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        path = path or os.environ.get("KANBAN_CONFIG")
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            with open(cfg_path, "r") as f:
                data = yaml.safe_load(f) or {}
            known = {f.name for f in fields(cls)}
            cfg = cls(**{k: v for k, v in data.items() if k in known})
        else:
            cfg = cls()
        if cfg.min_gap >= cfg.gap:
            raise ValueError(
                f"min_gap ({cfg.min_gap}) must be smaller than gap ({cfg.gap})"
            )
        cfg.resolve_paths()
        return cfg
