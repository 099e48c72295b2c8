"""Kill Switch Controller.

Per-flag emergency override. States: INACTIVE (implicit when no row exists)
and ACTIVE. Both transitions are idempotent and both always write an audit
entry, so operators can see that someone re-affirmed or re-cleared an
incident. The controller never touches the flag's own configuration:
deactivating restores exactly the rollout behaviour the flag had.
"""

from __future__ import annotations

from typing import Callable, List, Optional

from flagengine.core.actor import Actor
from flagengine.core.database import SessionLocal, transaction
from flagengine.core.errors import InvalidArgumentError, NotFoundError
from flagengine.core.logging import get_logger
from flagengine.core.metrics import flag_mutations_total
from flagengine.models.audit_log import AuditAction
from flagengine.models.feature_flag import FeatureFlag, utcnow
from flagengine.models.kill_switch import KillSwitch
from flagengine.services.audit_ledger import AuditLedger
from flagengine.services.coordinator import ConcurrencyCoordinator
from flagengine.services.snapshot import KillSwitchView
from sqlalchemy.orm import Session

logger = get_logger(__name__)


class KillSwitchController:
    """Owns KillSwitch records."""

    def __init__(
        self,
        coordinator: ConcurrencyCoordinator,
        ledger: AuditLedger,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self._coordinator = coordinator
        self._ledger = ledger
        self._session_factory = session_factory
        self.logger = get_logger(__name__)

    def activate(self, flag_key: str, reason: str, actor: Actor) -> KillSwitchView:
        """Force ``flag_key`` off for every user.

        Re-activating an active switch keeps it active, replaces ``reason`` and
        ``activated_by`` and is audited again.

        Raises:
            InvalidArgumentError: empty reason
            NotFoundError: unknown flag key
        """
        if reason is None or not reason.strip():
            raise InvalidArgumentError("A reason is required to activate a kill switch", field="reason")
        reason = reason.strip()

        with self._coordinator.key_lock(flag_key):
            db = self._session_factory()
            try:
                with transaction(db):
                    self._require_flag(db, flag_key)
                    switch = db.query(KillSwitch).filter(KillSwitch.flag_key == flag_key).first()
                    was_active = bool(switch and switch.active)
                    before = KillSwitchView.from_model(switch).to_dict() if switch else None
                    if switch is None:
                        switch = KillSwitch(flag_key=flag_key)
                        db.add(switch)

                    switch.active = True
                    switch.reason = reason
                    switch.activated_by = actor.actor_id
                    switch.updated_at = utcnow()
                    db.flush()

                    view = KillSwitchView.from_model(switch)
                    self._ledger.append(
                        db,
                        AuditAction.KILLSWITCH_ACTIVATE,
                        flag_key,
                        actor,
                        f"Kill switch {'re-affirmed' if was_active else 'activated'} for flag '{flag_key}'. "
                        f"Reason: {reason}",
                        old_value=before,
                        new_value=view.to_dict(),
                    )
            finally:
                db.close()

            self._coordinator.publish_kill_switch(view)

        flag_mutations_total.labels(action=AuditAction.KILLSWITCH_ACTIVATE.value).inc()
        self.logger.warning(
            "kill_switch_activated",
            flag_key=flag_key,
            reason=reason,
            performed_by=actor.actor_id,
            already_active=was_active,
        )
        return view

    def deactivate(self, flag_key: str, actor: Actor) -> KillSwitchView:
        """Lift the override. Deactivating an inactive switch is not an error.

        Raises:
            NotFoundError: unknown flag key
        """
        with self._coordinator.key_lock(flag_key):
            db = self._session_factory()
            try:
                with transaction(db):
                    self._require_flag(db, flag_key)
                    switch = db.query(KillSwitch).filter(KillSwitch.flag_key == flag_key).first()
                    was_active = bool(switch and switch.active)

                    if switch is None:
                        before = None
                        view = KillSwitchView.inactive(flag_key)
                    else:
                        before = KillSwitchView.from_model(switch).to_dict()
                        switch.active = False
                        switch.reason = None
                        switch.activated_by = None
                        switch.updated_at = utcnow()
                        db.flush()
                        view = KillSwitchView.from_model(switch)

                    self._ledger.append(
                        db,
                        AuditAction.KILLSWITCH_DEACTIVATE,
                        flag_key,
                        actor,
                        f"Kill switch {'deactivated' if was_active else 'already inactive'} for flag '{flag_key}'. "
                        f"Deactivated by {actor.actor_id}",
                        old_value=before,
                        new_value=view.to_dict(),
                    )
            finally:
                db.close()

            if switch is not None:
                self._coordinator.publish_kill_switch(view)

        flag_mutations_total.labels(action=AuditAction.KILLSWITCH_DEACTIVATE.value).inc()
        self.logger.info(
            "kill_switch_deactivated",
            flag_key=flag_key,
            performed_by=actor.actor_id,
            was_active=was_active,
        )
        return view

    def get(self, flag_key: str, db: Optional[Session] = None) -> KillSwitchView:
        """Switch state for a flag; implicitly inactive when never activated."""
        should_close_db = False
        if db is None:
            db = self._session_factory()
            should_close_db = True

        try:
            self._require_flag(db, flag_key)
            switch = db.query(KillSwitch).filter(KillSwitch.flag_key == flag_key).first()
            return KillSwitchView.from_model(switch) if switch else KillSwitchView.inactive(flag_key)
        finally:
            if should_close_db:
                db.close()

    def list_active(self, db: Optional[Session] = None) -> List[KillSwitchView]:
        """All currently active kill switches, ordered by flag key."""
        should_close_db = False
        if db is None:
            db = self._session_factory()
            should_close_db = True

        try:
            switches = (
                db.query(KillSwitch)
                .filter(KillSwitch.active == True)  # noqa: E712
                .order_by(KillSwitch.flag_key)
                .all()
            )
            return [KillSwitchView.from_model(switch) for switch in switches]
        finally:
            if should_close_db:
                db.close()

    @staticmethod
    def _require_flag(db: Session, flag_key: str) -> None:
        # Archived flags still accept kill switch operations
        if db.query(FeatureFlag.id).filter(FeatureFlag.key == flag_key).first() is None:
            raise NotFoundError(f"Feature flag '{flag_key}' not found")
