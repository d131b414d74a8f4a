"""Cooperative cancellation shared by every blocking operation."""

from __future__ import annotations

import threading
from typing import Optional

from trakt_importer.backend.common.errors import OperationCancelled


class CancellationToken:
    """Thread-safe cancel flag whose waits wake up as soon as it is triggered."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("operation cancelled")

    def sleep(self, seconds: float) -> None:
        """Block for ``seconds`` or until cancelled, whichever comes first."""

        if seconds <= 0:
            self.raise_if_cancelled()
            return
        if self._event.wait(seconds):
            raise OperationCancelled("operation cancelled while waiting")


def ensure_token(cancel: Optional[CancellationToken]) -> CancellationToken:
    return cancel if cancel is not None else CancellationToken()


__all__ = ["CancellationToken", "ensure_token"]
