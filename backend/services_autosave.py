"""
Debounced save scheduler for editor state.

Single-slot queue: at most one save in flight and at most one pending
snapshot. Newer snapshots replace the pending one, and a save requested while
another is running goes out right after it. Pending state is mirrored to a
JSON backup file until a save succeeds with nothing left to send.
"""
import json
import logging
import os
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from config import AUTOSAVE_BACKUP_PATH, AUTOSAVE_DELAY_SECONDS
from models import ClientEdge, ClientNode, ReconcileResult
from services_reconcile import reconcile

logger = logging.getLogger("casemap")

Snapshot = Dict[str, Any]


class SaveBackup:
    """Crash-recovery copy of the latest unsaved snapshot."""

    def __init__(self, path: str = AUTOSAVE_BACKUP_PATH):
        self.path = Path(path)

    def write(self, snapshot: Snapshot) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(snapshot, f)
        os.replace(tmp, self.path)

    def read(self) -> Optional[Snapshot]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring unreadable autosave backup {self.path}: {e}")
            return None

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class SaveScheduler:
    """Debounce, coalesce and serialize calls to `save_fn`."""

    def __init__(
        self,
        save_fn: Callable[[Snapshot], Any],
        delay_s: float = AUTOSAVE_DELAY_SECONDS,
        backup: Optional[SaveBackup] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self.save_fn = save_fn
        self.delay_s = delay_s
        self.backup = backup
        self.on_error = on_error

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._timer: Optional[threading.Timer] = None
        self._pending: Optional[Snapshot] = None
        self._in_flight = False
        self._rerun = False

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._in_flight

    def trigger(self, snapshot: Snapshot) -> None:
        """Record the latest state and (re)start the debounce timer."""
        with self._lock:
            self._pending = snapshot
            self._cancel_timer_locked()
            self._timer = threading.Timer(self.delay_s, self._run)
            self._timer.daemon = True
            self._timer.start()
            if self.backup is not None:
                self.backup.write(snapshot)

    def flush(self) -> None:
        """Save the pending snapshot now instead of waiting for the timer."""
        with self._lock:
            self._cancel_timer_locked()
        self._run()

    def cancel(self) -> None:
        """Drop the debounce timer. The pending snapshot and backup are kept."""
        with self._lock:
            self._cancel_timer_locked()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no save is running. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._in_flight, timeout=timeout)

    def _cancel_timer_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _run(self) -> None:
        with self._lock:
            if self._in_flight:
                self._rerun = True
                return
            snapshot = self._pending
            if snapshot is None:
                return
            self._pending = None
            self._in_flight = True

        while snapshot is not None:
            error: Optional[Exception] = None
            try:
                self.save_fn(snapshot)
            except Exception as e:
                error = e

            with self._lock:
                saved, snapshot = snapshot, None
                if error is not None and self._pending is None:
                    # Keep the failed snapshot unless a newer one replaced it
                    self._pending = saved
                elif self._rerun and self._pending is not None:
                    # Requested while this save ran; stays in flight
                    snapshot, self._pending = self._pending, None
                self._rerun = False
                self._in_flight = snapshot is not None
                nothing_left = self._pending is None and snapshot is None
                if nothing_left and error is None and self.backup is not None:
                    self.backup.clear()
                self._idle.notify_all()

            if error is not None:
                logger.error(f"Autosave failed: {error}")
                if self.on_error is not None:
                    self.on_error(error)
            elif nothing_left:
                logger.debug("Autosave complete")


def make_graph_saver(conn: sqlite3.Connection, graph_id: str) -> Callable[[Snapshot], ReconcileResult]:
    """save_fn that pushes a {"nodes": [...], "edges": [...]} snapshot through reconcile."""

    def save(snapshot: Snapshot) -> ReconcileResult:
        nodes = [ClientNode(**n) for n in snapshot.get("nodes", [])]
        edges = [ClientEdge(**e) for e in snapshot.get("edges", [])]
        return reconcile(conn, graph_id, nodes, edges)

    return save
