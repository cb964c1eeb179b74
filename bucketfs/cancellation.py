"""Cooperative cancellation for multi-call operations.

Long operations (multipart finalization, recursive deletes, paginated
listings, batch uploads) check a :class:`CancellationToken` between backend
calls rather than interrupting threads, so that multipart sessions can be
aborted before the cancellation surfaces.
"""

from __future__ import annotations

import threading


class OperationCancelledError(RuntimeError):
    """Raised when an operation observes a cancelled token."""


class CancellationToken:
    """Thread-safe cancellation token.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.is_cancelled()
        True
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise OperationCancelledError("Operation was cancelled")


def check_cancelled(token: CancellationToken | None) -> None:
    """Raise if ``token`` is set; ``None`` means not cancellable."""
    if token is not None:
        token.raise_if_cancelled()
