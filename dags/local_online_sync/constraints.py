from __future__ import annotations

import logging
from typing import List, Optional

from local_online_sync.progress import ProgressReporter

LOG = logging.getLogger(__name__)


class ConstraintScope:
    """
    Suspend referential-integrity checks on one or more stores for the
    duration of a ``with`` block.

    Every store that was disabled is re-enabled exactly once on exit, whether
    the block finished, raised, or was interrupted. If disabling fails part of
    the way through, the stores already disabled are restored before the
    error propagates.
    """

    def __init__(self, *stores, report: Optional[ProgressReporter] = None,
                 logger: logging.Logger | None = None):
        self.stores = stores
        self.report = report or ProgressReporter()
        self.log = logger or LOG
        self._acquired: List = []

    def acquire(self, store) -> None:
        store.set_referential_integrity(False)
        self._acquired.append(store)
        self.report(f"Foreign key checks disabled on {store.name} database")

    def release(self, store) -> None:
        self._acquired.remove(store)
        store.set_referential_integrity(True)
        self.report(f"Foreign key checks re-enabled on {store.name} database")

    def _release_all(self) -> Optional[BaseException]:
        first_error: Optional[BaseException] = None
        for store in list(reversed(self._acquired)):
            try:
                self.release(store)
            except Exception as e:
                self.log.error("Could not re-enable foreign key checks on %s", store.name, exc_info=True)
                if first_error is None:
                    first_error = e
        return first_error

    def __enter__(self) -> "ConstraintScope":
        try:
            for store in self.stores:
                self.acquire(store)
        except BaseException:
            self._release_all()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        release_error = self._release_all()
        if release_error is not None and exc_type is None:
            raise release_error
        return False
