# cancel.py
from __future__ import annotations

import threading
from typing import List, Optional


class CancelToken:
    """
    Cooperative cancellation signal passed Run -> Job -> Step.

    Cancelling a token cancels every child derived from it. Children can be
    cancelled on their own without touching the parent, which is how a
    fail-fast scheduler stops sibling jobs without marking the whole run
    as externally cancelled.
    """

    def __init__(self, parent: Optional["CancelToken"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: List[CancelToken] = []
        self._cause: Optional[str] = None
        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: "CancelToken") -> None:
        with self._lock:
            self._children.append(child)
            cause = self._cause
        if cause is not None:
            child.cancel(cause)

    def child(self) -> "CancelToken":
        return CancelToken(parent=self)

    def cancel(self, cause: str = "cancelled") -> bool:
        """Signal cancellation. Returns False if already cancelled (first cause wins)."""
        with self._lock:
            if self._cause is not None:
                return False
            self._cause = cause
            children = list(self._children)
        self._event.set()
        for c in children:
            c.cancel(cause)
        return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def cause(self) -> Optional[str]:
        return self._cause

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or `timeout` elapses. Returns the cancelled flag."""
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        state = f"cancelled({self._cause})" if self.cancelled else "active"
        return f"<CancelToken {state}>"
