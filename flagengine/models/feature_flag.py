"""Feature Flag Model.

A flag is addressed by an immutable, globally unique ``key``. Its rollout
configuration (master switch, percentage, include/exclude lists) is what the
evaluation engine reads; ``name`` and ``description`` are display metadata.

``version`` is managed by SQLAlchemy as the mapper's version counter: it
starts at 0 on insert and every UPDATE is issued as
``... WHERE id = :id AND version = :expected``, so a concurrent writer in
another process that already bumped the row makes the flush fail with
``StaleDataError`` instead of silently overwriting.
"""

from __future__ import annotations

from datetime import datetime, timezone

from flagengine.core.database import Base
from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _next_version(current):
    return 0 if current is None else current + 1


class FeatureFlag(Base):
    """Feature flag configuration row.

    Attributes:
        id: Surrogate primary key (REST addresses flags by id or key)
        key: Unique lowercase/hyphen identifier (e.g., 'dark-mode')
        name: Human-readable name
        description: Human-readable description
        enabled: Master switch
        rollout_percentage: Percentage of users to include (0-100)
        target_user_ids: Explicit include-list (JSON array of user ids)
        excluded_user_ids: Explicit exclude-list (JSON array of user ids)
        archived: Soft delete marker
        version: Optimistic concurrency counter
        created_at: Timestamp when flag was created
        updated_at: Timestamp when flag was last updated
    """

    __tablename__ = "feature_flags"

    __table_args__ = (Index("ix_feature_flags_archived_key", "archived", "key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=False)
    rollout_percentage = Column(Integer, nullable=False, default=0)
    target_user_ids = Column(JSON, nullable=False, default=list)
    excluded_user_ids = Column(JSON, nullable=False, default=list)
    archived = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": _next_version,
    }

    def __repr__(self):
        return (
            f"<FeatureFlag(key='{self.key}', enabled={self.enabled}, "
            f"rollout={self.rollout_percentage}, version={self.version})>"
        )
