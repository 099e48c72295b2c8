"""Evaluation & Governance Engine.

Wires the components around one coordinator and one session factory. The
REST layer holds a single ``FlagEngine`` on ``app.state``; tests build their
own over an in-memory database.

Usage:
    engine = FlagEngine.from_settings()
    engine.start()

    view = engine.registry.create(FlagCreate(key="dark-mode", name="Dark mode"), actor)
    result = engine.evaluator.evaluate("dark-mode", "alice")

    engine.stop()
"""

from __future__ import annotations

from typing import Callable, Optional

from flagengine.core.database import SessionLocal, check_database_connection, init_db
from flagengine.core.logging import get_logger
from flagengine.services.audit_ledger import AuditLedger
from flagengine.services.change_notifier import ChangeNotifier
from flagengine.services.coordinator import ConcurrencyCoordinator
from flagengine.services.evaluation import EvaluationEngine
from flagengine.services.flag_registry import FlagRegistry
from flagengine.services.kill_switch import KillSwitchController
from sqlalchemy.orm import Session

logger = get_logger(__name__)


class FlagEngine:
    """Container for the registry, kill switches, ledger and evaluator."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        notifier: Optional[ChangeNotifier] = None,
    ):
        self.session_factory = session_factory
        self.coordinator = ConcurrencyCoordinator(session_factory)
        self.ledger = AuditLedger(session_factory)
        self.registry = FlagRegistry(self.coordinator, self.ledger, session_factory)
        self.kill_switches = KillSwitchController(self.coordinator, self.ledger, session_factory)
        self.evaluator = EvaluationEngine(self.coordinator)
        self.notifier = notifier

        if self.notifier is not None:
            self.coordinator.add_listener(self.notifier.on_publish)

    @classmethod
    def from_settings(cls) -> "FlagEngine":
        engine = cls()
        engine.notifier = ChangeNotifier.from_settings(engine.coordinator)
        engine.coordinator.add_listener(engine.notifier.on_publish)
        return engine

    @property
    def snapshot(self):
        return self.coordinator.snapshot

    def database_ready(self) -> bool:
        """Whether the store behind the session factory answers."""
        db = self.session_factory()
        try:
            return check_database_connection(db.get_bind())
        finally:
            db.close()

    def start(self, create_schema: bool = True) -> None:
        """Create missing tables, load the first snapshot and start background propagation."""
        if create_schema:
            db = self.session_factory()
            try:
                init_db(db.get_bind())
            finally:
                db.close()
        self.coordinator.reload(trigger="startup")
        if self.notifier is not None:
            self.notifier.start()
        logger.info("flag_engine_started", snapshot_version=self.coordinator.snapshot.version)

    def stop(self) -> None:
        if self.notifier is not None:
            self.notifier.stop()
        logger.info("flag_engine_stopped")
