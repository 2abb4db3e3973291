# registry.py
from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from .config import DEFAULT_HISTORY_SIZE
from .model import Cause, Run, RunResult


class RunRegistry:
    """
    Book-keeping for runs of one engine instance.

    Passed around explicitly (the CLI and server each own one). A run is
    active from `register()` until `complete()`, after which only its
    result is kept, in a bounded history.
    """

    def __init__(self, *, supersede: bool = True, history_size: int = DEFAULT_HISTORY_SIZE):
        self.supersede = supersede
        self.history_size = history_size
        self._lock = threading.Lock()
        self._active: Dict[str, Run] = {}
        self._by_ref: Dict[Tuple[str, str], str] = {}
        self._history: "OrderedDict[str, RunResult]" = OrderedDict()

    @staticmethod
    def _key(run: Run) -> Tuple[str, str]:
        return run.pipeline, run.event.ref

    def register(self, run: Run) -> Optional[Run]:
        """
        Track `run` as active. With `supersede`, an active run for the same
        pipeline and ref is cancelled and returned. Registering an already
        active run is a no-op.
        """
        with self._lock:
            if run.run_id in self._active:
                return None
            self._active[run.run_id] = run
            previous_id = self._by_ref.get(self._key(run))
            self._by_ref[self._key(run)] = run.run_id
            previous = self._active.get(previous_id) if previous_id not in (None, run.run_id) else None

        if previous is not None and self.supersede:
            previous.cancel(Cause.SUPERSEDED.value)
            return previous
        return None

    def _forget(self, run: Run) -> None:
        self._active.pop(run.run_id, None)
        if self._by_ref.get(self._key(run)) == run.run_id:
            del self._by_ref[self._key(run)]

    def discard(self, run: Run) -> None:
        with self._lock:
            self._forget(run)

    def complete(self, run: Run, result: RunResult) -> None:
        with self._lock:
            self._forget(run)
            self._history[run.run_id] = result
            while len(self._history) > self.history_size:
                self._history.popitem(last=False)

    def get(self, run_id: str) -> Optional[Run]:
        with self._lock:
            return self._active.get(run_id)

    def result(self, run_id: str) -> Optional[RunResult]:
        with self._lock:
            return self._history.get(run_id)

    def active(self) -> List[Run]:
        with self._lock:
            return list(self._active.values())

    def cancel(self, run_id: str, cause: str = Cause.CANCELLED.value) -> bool:
        """Cancel an active run. False if the id is unknown or already finished."""
        run = self.get(run_id)
        if run is None:
            return False
        return run.cancel(cause)

    def cancel_all(self, cause: str = Cause.CANCELLED.value) -> None:
        for run in self.active():
            run.cancel(cause)
