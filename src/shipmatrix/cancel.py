# cancel.py
from __future__ import annotations

import os
import threading
import uuid
from pathlib import Path
from typing import List, Optional

from .errors import Cancelled


class CancelToken:
    """
    Cooperative cancellation signal shared by the coordinator and job runners.

    Runners call `raise_if_cancelled()` (or `wait()`) at every suspension point.
    Child tokens fire when their parent fires, but can also be cancelled alone
    (used for per-invocation timeouts).
    """

    def __init__(self, parent: Optional["CancelToken"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: List[CancelToken] = []
        self.reason: Optional[str] = None
        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: "CancelToken") -> None:
        with self._lock:
            self._children.append(child)
            fired = self._event.is_set()
        if fired:
            child.cancel(self.reason or "cancelled")

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel(reason)

    def child(self) -> "CancelToken":
        return CancelToken(parent=self)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled(self.reason or "cancelled")

    def wait(self, timeout: float | None = None) -> bool:
        """Block up to `timeout` seconds; True if cancelled meanwhile."""
        return self._event.wait(timeout)


# ----------------------------------------------------------------------
# Superseding runs
# ----------------------------------------------------------------------

class SupersedeWatch:
    """
    Cancel-in-progress for a named concurrency group.

    Starting a run writes its id to `<state_dir>/groups/<group>`. A newer run in
    the same group overwrites the marker; the older run's watcher notices and
    cancels its token.
    """

    def __init__(
        self,
        group: str,
        token: CancelToken,
        state_dir: str | Path,
        *,
        run_id: str | None = None,
        interval: float = 1.0,
    ):
        self.group = group
        self.token = token
        self.run_id = run_id or uuid.uuid4().hex
        self.interval = interval
        self.marker = Path(state_dir) / "groups" / group
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _current_owner(self) -> Optional[str]:
        try:
            return self.marker.read_text(encoding="utf-8").strip() or None
        except FileNotFoundError:
            return None

    def start(self) -> "SupersedeWatch":
        self.marker.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.marker.parent / f".{self.marker.name}.{self.run_id}.tmp"
        tmp.write_text(self.run_id, encoding="utf-8")
        os.replace(tmp, self.marker)

        self._thread = threading.Thread(
            target=self._watch, name=f"supersede-{self.group}", daemon=True
        )
        self._thread.start()
        return self

    def check(self) -> bool:
        """Cancel the token if another run owns the group; True if superseded."""
        owner = self._current_owner()
        if owner is not None and owner != self.run_id:
            self.token.cancel(f"superseded by run {owner}")
            return True
        return False

    def _watch(self) -> None:
        while not self._stop.wait(self.interval):
            if self.token.cancelled or self.check():
                return

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval * 2)
        if self._current_owner() == self.run_id:
            self.marker.unlink(missing_ok=True)

    def __enter__(self) -> "SupersedeWatch":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
