"""
Audit log model for tracking every configuration-changing action.

Entries are immutable: ORM hooks reject any UPDATE or DELETE of a persisted
entry, so the only write path is an INSERT through the audit ledger.
"""

from __future__ import annotations

from enum import Enum

from flagengine.core.database import Base
from flagengine.models.feature_flag import utcnow
from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, event


class AuditAction(str, Enum):
    """Mutating actions recorded in the audit ledger."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    TOGGLE = "TOGGLE"
    KILLSWITCH_ACTIVATE = "KILLSWITCH_ACTIVATE"
    KILLSWITCH_DEACTIVATE = "KILLSWITCH_DEACTIVATE"


ENTITY_FEATURE_FLAG = "FEATURE_FLAG"


class ImmutableAuditEntryError(RuntimeError):
    """Raised when something tries to modify or remove an audit entry."""


class AuditLogEntry(Base):
    """
    Audit log entry.

    ``id`` is the insertion sequence and breaks ties between entries that
    share a timestamp.
    """

    __tablename__ = "audit_log_entries"

    __table_args__ = (
        Index("ix_audit_log_entries_entity", "entity_type", "entity_key", "timestamp"),
        Index("ix_audit_log_entries_timestamp_id", "timestamp", "id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False, default=ENTITY_FEATURE_FLAG)
    entity_key = Column(String(100), nullable=False)

    # Who performed the action
    performed_by = Column(String(255), nullable=False, index=True)
    ip_address = Column(String(45), nullable=True)  # IPv4 or IPv6

    description = Column(String(1000), nullable=True)
    old_value = Column(JSON, nullable=True)  # State before the mutation
    new_value = Column(JSON, nullable=True)  # State after the mutation

    def __repr__(self):
        return (
            f"<AuditLogEntry(id={self.id}, action={self.action}, "
            f"entity_key={self.entity_key}, performed_by={self.performed_by})>"
        )


@event.listens_for(AuditLogEntry, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise ImmutableAuditEntryError(f"Audit entry {target.id} is immutable")


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise ImmutableAuditEntryError(f"Audit entry {target.id} cannot be deleted")
