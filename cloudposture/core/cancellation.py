"""Cooperative cancellation shared by the fetch and every analyzer."""

import threading
from typing import Optional

import structlog

from cloudposture.core.exceptions import PipelineCancelledError

logger = structlog.get_logger(__name__)


class CancellationToken:
    """Thread-safe, one-way cancellation flag.

    Analyzers poll it between resources. Once cancelled it stays cancelled.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Signal cancellation to every holder of this token."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()
            logger.info("cancellation_requested", reason=reason)

    def raise_if_cancelled(self) -> None:
        """Raise PipelineCancelledError if cancellation has been requested."""
        if self._event.is_set():
            raise PipelineCancelledError(self._reason or "cancelled")


def is_cancelled(token: Optional[CancellationToken]) -> bool:
    """Return True when a token was supplied and has been cancelled."""
    return token is not None and token.cancelled
