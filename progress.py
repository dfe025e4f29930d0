import logging
from typing import Callable, Optional

ProgressHandler = Callable[[str], None]


class ProgressReporter:
    """Single-subscriber sink for human-readable progress messages.

    Reporting is fire-and-forget: a handler that raises is logged and
    otherwise ignored so it can never break a fetch.
    """

    def __init__(self, handler: Optional[ProgressHandler] = None):
        self._handler = handler

    def register(self, handler: Optional[ProgressHandler]) -> None:
        """Install the handler, replacing any previous one (last registration wins)."""
        self._handler = handler

    def report(self, message: str) -> None:
        logging.debug(message)
        if self._handler is None:
            return
        try:
            self._handler(message)
        except Exception as e:
            logging.warning(f"Progress handler failed: {e}")


NULL_PROGRESS = ProgressReporter()
