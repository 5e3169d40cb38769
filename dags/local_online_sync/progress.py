from __future__ import annotations

import logging
from typing import Callable, Optional

ProgressSink = Callable[[str], None]


class ProgressReporter:
    """Sends human-readable status lines to an optional sink and to the log."""

    def __init__(self, sink: Optional[ProgressSink] = None, logger: logging.Logger | None = None):
        self.sink = sink
        self.log = logger or logging.getLogger(__name__)

    def __call__(self, message: str) -> None:
        self.log.info(message)
        if self.sink is not None:
            try:
                self.sink(message)
            except Exception:
                self.log.warning("Progress sink raised; message was %r", message, exc_info=True)
