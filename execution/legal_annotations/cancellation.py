"""Cooperative cancellation for in-flight backend requests."""

from typing import Optional


class RequestCancelled(Exception):
    """Raised when a request's token was cancelled before its result was used."""

    def __init__(self, reason: str = "Request cancelled"):
        super().__init__(reason)
        self.reason = reason


class CancellationToken:
    """
    A flag shared between a request and whoever owns it.

    Child tokens are cancelled when their parent is, so closing a store
    cancels every request it started.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._parent = parent
        self._cancelled = False
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._parent is not None and self._parent.cancelled

    @property
    def reason(self) -> Optional[str]:
        if self._cancelled:
            return self._reason
        if self._parent is not None:
            return self._parent.reason
        return None

    def cancel(self, reason: str = "Request cancelled") -> None:
        if not self._cancelled:
            self._cancelled = True
            self._reason = reason

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RequestCancelled(self.reason or "Request cancelled")

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)
