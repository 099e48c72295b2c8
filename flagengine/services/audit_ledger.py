"""Audit Ledger.

Append-only record of every configuration-changing action. ``append`` runs
inside the caller's transaction: the mutation and its entry are committed
together or not at all. A failed append raises ``AuditWriteError`` so the
enclosing ``transaction()`` rolls the mutation back.

There is deliberately no update or delete path; the model's ORM hooks reject
both.

Usage:
    from flagengine.services.audit_ledger import AuditLedger, AuditQuery

    ledger = AuditLedger()
    history = ledger.query(AuditQuery(entity_key="dark-mode"))
    latest = ledger.query(AuditQuery(limit=20))
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from flagengine.core.actor import Actor
from flagengine.core.config import settings
from flagengine.core.database import SessionLocal
from flagengine.core.errors import AuditWriteError, InvalidArgumentError
from flagengine.core.logging import get_logger
from flagengine.core.metrics import audit_write_failures_total
from flagengine.models.audit_log import ENTITY_FEATURE_FLAG, AuditAction, AuditLogEntry
from flagengine.models.feature_flag import utcnow
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuditEntryView:
    """Detached copy of an audit entry."""

    id: int
    action: str
    entity_type: str
    entity_key: str
    performed_by: str
    timestamp: datetime
    description: Optional[str] = None
    ip_address: Optional[str] = None
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None

    @classmethod
    def from_model(cls, entry: AuditLogEntry) -> "AuditEntryView":
        return cls(
            id=entry.id,
            action=entry.action,
            entity_type=entry.entity_type,
            entity_key=entry.entity_key,
            performed_by=entry.performed_by,
            timestamp=entry.timestamp,
            description=entry.description,
            ip_address=entry.ip_address,
            old_value=entry.old_value,
            new_value=entry.new_value,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_key": self.entity_key,
            "performed_by": self.performed_by,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "description": self.description,
            "ip_address": self.ip_address,
            "old_value": self.old_value,
            "new_value": self.new_value,
        }


@dataclass(frozen=True)
class AuditQuery:
    """Filter for audit lookups. Unset fields do not restrict the result."""

    entity_key: Optional[str] = None
    performed_by: Optional[str] = None
    since: Optional[datetime] = None
    limit: Optional[int] = None


class AuditLedger:
    """Append-only audit log over the ``audit_log_entries`` table."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory
        self.logger = get_logger(__name__)

    def append(
        self,
        db: Session,
        action: AuditAction,
        entity_key: str,
        actor: Actor,
        description: str,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        """Append one entry inside the caller's open transaction.

        Args:
            db: Session of the mutation being recorded
            action: Audit action
            entity_key: Key of the affected flag
            actor: Who performed the action
            description: Human-readable summary
            old_value: State before the mutation
            new_value: State after the mutation

        Returns:
            The flushed (not yet committed) entry

        Raises:
            AuditWriteError: if the entry could not be written
        """
        entry = AuditLogEntry(
            timestamp=utcnow(),
            action=AuditAction(action).value,
            entity_type=ENTITY_FEATURE_FLAG,
            entity_key=entity_key,
            performed_by=actor.actor_id,
            ip_address=actor.ip_address,
            description=description,
            old_value=old_value,
            new_value=new_value,
        )
        try:
            db.add(entry)
            db.flush()
        except SQLAlchemyError as e:
            audit_write_failures_total.inc()
            self.logger.error(
                "audit_append_failed",
                action=entry.action,
                entity_key=entity_key,
                performed_by=actor.actor_id,
                error=str(e),
            )
            raise AuditWriteError(f"Failed to record audit entry for '{entity_key}'") from e

        self.logger.info(
            "audit_entry_appended",
            audit_id=entry.id,
            action=entry.action,
            entity_key=entity_key,
            performed_by=actor.actor_id,
        )
        return entry

    def query(self, audit_filter: Optional[AuditQuery] = None, db: Optional[Session] = None) -> List[AuditEntryView]:
        """Look up entries, newest first (timestamp, then insertion sequence).

        Args:
            audit_filter: Optional filter
            db: Optional database session (creates new if not provided)

        Returns:
            Matching entries in reverse-chronological order
        """
        audit_filter = audit_filter or AuditQuery()
        limit = self._resolve_limit(audit_filter)

        should_close_db = False
        if db is None:
            db = self._session_factory()
            should_close_db = True

        try:
            query = db.query(AuditLogEntry)
            if audit_filter.entity_key is not None:
                query = query.filter(
                    AuditLogEntry.entity_type == ENTITY_FEATURE_FLAG,
                    AuditLogEntry.entity_key == audit_filter.entity_key,
                )
            if audit_filter.performed_by is not None:
                query = query.filter(AuditLogEntry.performed_by == audit_filter.performed_by)
            if audit_filter.since is not None:
                query = query.filter(AuditLogEntry.timestamp >= audit_filter.since)

            query = query.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
            if limit is not None:
                query = query.limit(limit)

            return [AuditEntryView.from_model(entry) for entry in query.all()]
        finally:
            if should_close_db:
                db.close()

    def for_flag(self, flag_key: str, limit: Optional[int] = None) -> List[AuditEntryView]:
        """Full history of one flag."""
        return self.query(AuditQuery(entity_key=flag_key, limit=limit))

    def recent(self, limit: Optional[int] = None, since: Optional[datetime] = None) -> List[AuditEntryView]:
        """Most recent entries across all flags."""
        if limit is None:
            limit = settings.AUDIT_DEFAULT_LIMIT
        return self.query(AuditQuery(since=since, limit=limit))

    def by_actor(self, actor_id: str, limit: Optional[int] = None) -> List[AuditEntryView]:
        """Entries performed by one actor."""
        return self.query(AuditQuery(performed_by=actor_id, limit=limit))

    @staticmethod
    def _resolve_limit(audit_filter: AuditQuery) -> Optional[int]:
        if audit_filter.limit is None:
            return None
        if audit_filter.limit < 1:
            raise InvalidArgumentError("limit must be a positive integer", field="limit")
        return min(audit_filter.limit, settings.AUDIT_MAX_LIMIT)
