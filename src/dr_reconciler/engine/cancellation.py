"""Cooperative cancellation honoured at every suspension point."""

import signal
import threading
from typing import Optional

from dr_reconciler.utils.errors import CancelledError
from dr_reconciler.utils.logging import get_logger

logger = get_logger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag with an interruptible sleep."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            logger.warning(f"Cancellation requested: {reason}")
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise CancelledError if cancellation was requested."""
        if self._event.is_set():
            raise CancelledError(f"Run cancelled ({self.reason})")

    def sleep(self, seconds: float) -> bool:
        """Sleep for up to `seconds`, waking early on cancellation.

        Returns:
            True if the full interval elapsed, False if cancelled
        """
        if seconds <= 0:
            return not self._event.is_set()
        return not self._event.wait(seconds)


def install_signal_handlers(token: CancellationToken) -> None:
    """Cancel `token` on SIGINT/SIGTERM."""

    def _handler(signum, frame):
        token.cancel(f"received {signal.Signals(signum).name}")

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
