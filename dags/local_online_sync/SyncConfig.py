from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from local_online_sync.registry import TableOrderRegistry

# ============================== Config model ===============================

@dataclass(frozen=True)
class SyncConfig:
    local_conn_id: str = "local_db"
    online_conn_id: str = "online_db"
    batch_size: int = 100                  # rows per bulk-upsert round-trip
    itersize: int = 2000                   # rows per server-side cursor fetch
    schedule: Optional[str] = "*/15 * * * *"
    verify: bool = True
    alert: bool = True
    tables: Tuple[Any, ...] = field(default=())   # empty -> built-in registry

    def registry(self) -> TableOrderRegistry:
        if not self.tables:
            return TableOrderRegistry.default()
        return TableOrderRegistry.from_entries(self.tables)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["tables"] = list(self.tables)
        return json.loads(json.dumps(d, default=str))

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SyncConfig":
        return cls(**{**d, "tables": tuple(d.get("tables") or ())})

# ------------------------ Catalog parsing ------------------------

def _flag(catalog: Dict[str, Any], key: str, default: bool) -> bool:
    value = catalog.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"Catalog '{key}' must be true or false, got {value!r}")
    return value


def config_from_catalog(catalog: Dict[str, Any]) -> SyncConfig:
    """Build a SyncConfig from a parsed catalog; the table order is validated eagerly."""
    if not isinstance(catalog, dict):
        raise ValueError("Catalog must be a JSON object")
    defaults = SyncConfig()
    tables = catalog.get("tables") or ()
    if not isinstance(tables, (list, tuple)):
        raise ValueError("Catalog 'tables' must be a list")
    cfg = SyncConfig(
        local_conn_id=str(catalog.get("local_conn_id", defaults.local_conn_id)),
        online_conn_id=str(catalog.get("online_conn_id", defaults.online_conn_id)),
        batch_size=int(catalog.get("batch_size", defaults.batch_size)),
        itersize=int(catalog.get("itersize", defaults.itersize)),
        schedule=catalog.get("schedule", defaults.schedule),
        verify=_flag(catalog, "verify", defaults.verify),
        alert=_flag(catalog, "alert", defaults.alert),
        tables=tuple(tables),
    )
    if cfg.batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {cfg.batch_size}")
    if cfg.local_conn_id == cfg.online_conn_id:
        raise ValueError("local_conn_id and online_conn_id must differ")
    cfg.registry()
    return cfg


def load_catalog_file(path: str | Path) -> Dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")
    raw = path.read_text(encoding="utf-8").strip()
    if not raw:
        raise ValueError(f"Catalog file {path} is empty")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in catalog file {path}: {e}") from e
