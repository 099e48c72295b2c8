"""Concurrency Coordinator.

Two guarantees:

- Writes on the same flag key are serialized by a per-key lock; writes on
  different keys run in parallel. Locks live in a weak-value table, so keys
  nobody is writing do not accumulate locks.
- Reads never lock. ``snapshot`` returns the currently published
  ``FlagSnapshot``; publishing replaces that reference in one assignment, so
  a reader sees either the old or the new snapshot, never a mix.

Publication happens only after the writer's transaction (mutation plus audit
entry) has committed, so a rolled-back mutation is never visible.

Usage:
    coordinator = ConcurrencyCoordinator()
    coordinator.reload()

    with coordinator.key_lock("dark-mode"):
        ...  # read, mutate, audit, commit
        coordinator.publish_flag(view)

    snapshot = coordinator.snapshot  # lock-free
"""

from __future__ import annotations

import threading
import weakref
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional

from flagengine.core.database import SessionLocal
from flagengine.core.logging import get_logger
from flagengine.core.metrics import snapshot_reloads_total, snapshot_version
from flagengine.models.feature_flag import FeatureFlag
from flagengine.models.kill_switch import KillSwitch
from flagengine.services.snapshot import FlagSnapshot, FlagView, KillSwitchView
from sqlalchemy.orm import Session

logger = get_logger(__name__)

# Listener signature: (kind, flag_key) where kind is "flag" or "kill_switch"
PublishListener = Callable[[str, str], None]


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _newer(current: Optional[datetime], candidate: Optional[datetime]) -> bool:
    if current is None or candidate is None:
        return False
    return _as_utc(current) > _as_utc(candidate)


class ConcurrencyCoordinator:
    """Per-key write serialization and lock-free snapshot reads."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()
        self._publish_lock = threading.Lock()
        self._snapshot = FlagSnapshot()
        self._listeners: List[PublishListener] = []
        self.logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> FlagSnapshot:
        """Latest published snapshot. Never blocks."""
        return self._snapshot

    # ------------------------------------------------------------------
    # Write serialization
    # ------------------------------------------------------------------

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def key_lock(self, key: str) -> Iterator[None]:
        """Hold the write lock of one flag key."""
        lock = self._lock_for(key)
        with lock:
            yield

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    def add_listener(self, listener: PublishListener) -> None:
        """Register a callback invoked after every local publication."""
        self._listeners.append(listener)

    def publish_flag(self, view: FlagView) -> FlagSnapshot:
        """Publish a committed flag state."""
        with self._publish_lock:
            current = self._snapshot.get_flag(view.key)
            if current is not None and current.id == view.id and current.version > view.version:
                # A reload already brought in a newer committed version
                return self._snapshot
            self._snapshot = self._snapshot.with_flag(view, self._snapshot.version + 1)
            published = self._snapshot
        snapshot_version.set(published.version)
        self._notify("flag", view.key)
        return published

    def publish_kill_switch(self, view: KillSwitchView) -> FlagSnapshot:
        """Publish a committed kill switch state."""
        with self._publish_lock:
            current = self._snapshot.kill_switches.get(view.flag_key)
            if current is not None and _newer(current.updated_at, view.updated_at):
                return self._snapshot
            self._snapshot = self._snapshot.with_kill_switch(view, self._snapshot.version + 1)
            published = self._snapshot
        snapshot_version.set(published.version)
        self._notify("kill_switch", view.flag_key)
        return published

    def _notify(self, kind: str, flag_key: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind, flag_key)
            except Exception as e:
                # Listeners run after commit; the mutation already succeeded
                self.logger.warning("publish_listener_failed", kind=kind, flag_key=flag_key, error=str(e))

    # ------------------------------------------------------------------
    # Reload from the store
    # ------------------------------------------------------------------

    def reload(self, trigger: str = "manual", db: Optional[Session] = None) -> FlagSnapshot:
        """Rebuild the snapshot from the store and publish it.

        Holds the publish lock across the read so a local write committed
        meanwhile is either contained in the reload or published after it.

        Args:
            trigger: Why the reload happened (startup, interval, notification)
            db: Optional database session

        Returns:
            The newly published snapshot
        """
        should_close_db = False
        if db is None:
            db = self._session_factory()
            should_close_db = True

        try:
            with self._publish_lock:
                flags = [FlagView.from_model(flag) for flag in db.query(FeatureFlag).all()]
                switches = [KillSwitchView.from_model(switch) for switch in db.query(KillSwitch).all()]
                self._snapshot = FlagSnapshot.build(self._snapshot.version + 1, flags, switches)
                published = self._snapshot
        finally:
            if should_close_db:
                db.close()

        snapshot_version.set(published.version)
        snapshot_reloads_total.labels(trigger=trigger).inc()
        self.logger.info(
            "snapshot_reloaded",
            trigger=trigger,
            snapshot_version=published.version,
            flags=len(published.flags),
            kill_switches=len(published.kill_switches),
        )
        return published
