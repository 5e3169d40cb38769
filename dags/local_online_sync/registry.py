from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Sequence, Tuple

from local_online_sync.TableSpec import TableSpec
from local_online_sync.errors import RegistryError

LOG = logging.getLogger(__name__)

# Parent tables first, then child tables.
DEFAULT_TABLES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("role", ()),
    ("type", ()),
    ("user", ("role",)),
    ("employee", ("role",)),
    ("stock", ("type",)),
    ("accesories", ("type",)),
    ("attendence", ("employee",)),
    ("monthly_payment", ("role",)),
    ("per_day_salary", ()),
)


class TableOrderRegistry:
    """
    Immutable, dependency-ordered list of the tables to synchronize.

    The order is validated once at construction: every table must come after
    all of the tables listed in its ``depends_on``, and ordinals must be
    strictly increasing.
    """

    def __init__(self, tables: Iterable[TableSpec]):
        self._tables: Tuple[TableSpec, ...] = tuple(tables)
        self.validate()
        LOG.debug("Table order registry: %s", self.names())

    # ------------------------ Constructors ------------------------

    @classmethod
    def default(cls) -> "TableOrderRegistry":
        return cls(
            TableSpec(name=name, ordinal=i, depends_on=deps)
            for i, (name, deps) in enumerate(DEFAULT_TABLES, start=1)
        )

    @classmethod
    def from_entries(cls, entries: Sequence[Any]) -> "TableOrderRegistry":
        """
        Build from catalog entries: either plain table names or
        ``{"name": ..., "depends_on": [...]}`` objects. Ordinals follow list order.
        """
        specs: List[TableSpec] = []
        for i, entry in enumerate(entries, start=1):
            if isinstance(entry, str):
                name, deps = entry, ()
            elif isinstance(entry, dict) and entry.get("name"):
                name = str(entry["name"])
                deps = tuple(str(d) for d in (entry.get("depends_on") or ()))
            else:
                raise RegistryError(f"Invalid table entry at position {i}: {entry!r}")
            specs.append(TableSpec(name=name.strip(), ordinal=i, depends_on=deps))
        return cls(specs)

    # ------------------------ Invariant ------------------------

    def validate(self) -> None:
        if not self._tables:
            raise RegistryError("Table order registry is empty")
        ordinals: Dict[str, int] = {}
        last = 0
        for spec in self._tables:
            if not spec.name:
                raise RegistryError(f"Table with ordinal {spec.ordinal} has no name")
            if spec.name in ordinals:
                raise RegistryError(f"Table {spec.name!r} listed twice")
            if spec.ordinal <= last:
                raise RegistryError(
                    f"Ordinal of {spec.name!r} ({spec.ordinal}) is not greater than the previous one ({last})"
                )
            for parent in spec.depends_on:
                if parent not in ordinals:
                    raise RegistryError(
                        f"Table {spec.name!r} depends on {parent!r}, which is not listed before it"
                    )
            ordinals[spec.name] = spec.ordinal
            last = spec.ordinal

    # ------------------------ Access ------------------------

    def names(self) -> Tuple[str, ...]:
        return tuple(t.name for t in self._tables)

    def ordinal(self, name: str) -> int:
        for spec in self._tables:
            if spec.name == name:
                return spec.ordinal
        raise KeyError(name)

    def __iter__(self) -> Iterator[TableSpec]:
        return iter(self._tables)

    def __len__(self) -> int:
        return len(self._tables)

    def __repr__(self) -> str:
        return f"TableOrderRegistry({list(self.names())!r})"
