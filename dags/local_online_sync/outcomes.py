from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def _json_sanitize(value: Any) -> Any:
    """Round-trip through JSON so the value is safe for Airflow XCom."""
    return json.loads(json.dumps(value, default=str))


class SyncDirection(str, Enum):
    LOCAL_TO_ONLINE = "local_to_online"
    ONLINE_TO_LOCAL = "online_to_local"

    @property
    def source(self) -> str:
        return "local" if self is SyncDirection.LOCAL_TO_ONLINE else "online"

    @property
    def target(self) -> str:
        return "online" if self is SyncDirection.LOCAL_TO_ONLINE else "local"

    @property
    def label(self) -> str:
        return "Local → Online" if self is SyncDirection.LOCAL_TO_ONLINE else "Online → Local"

    @property
    def arrow(self) -> str:
        return "➡️" if self is SyncDirection.LOCAL_TO_ONLINE else "⬅️"


@dataclass
class SyncOutcome:
    table: str
    direction: SyncDirection
    rows_processed: int = 0
    rows_inserted: int = 0          # reconciliation only
    rows_updated: int = 0           # reconciliation only
    rows_already_synced: int = 0    # reconciliation only (duplicate key on insert)
    batches: int = 0                # bulk only
    succeeded: bool = False
    error: Optional[str] = None
    elapsed: float = 0.0


@dataclass
class SyncResult:
    strategy: str                   # "bulk_upsert" | "reconcile"
    directions: Tuple[SyncDirection, ...]
    outcomes: List[SyncOutcome] = field(default_factory=list)
    succeeded: bool = False
    error: Optional[str] = None
    elapsed: float = 0.0

    @property
    def rows_processed(self) -> int:
        return sum(o.rows_processed for o in self.outcomes)

    def outcome(self, table: str, direction: SyncDirection) -> SyncOutcome:
        for o in self.outcomes:
            if o.table == table and o.direction is direction:
                return o
        raise KeyError((table, direction))

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["rows_processed"] = self.rows_processed
        return _json_sanitize(d)
