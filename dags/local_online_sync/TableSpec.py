from dataclasses import dataclass, field
from typing import Tuple

# ============================== Table / column model ===============================

@dataclass(frozen=True)
class TableSpec:
    name: str
    ordinal: int                                      # 1-based position in sync order
    depends_on: Tuple[str, ...] = field(default=())   # FK parents, must come earlier


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    position: int                                     # 1-based, as in the result set
