"""Kill Switch Model.

At most one row per flag key. The row is created on the first activation and
reused by every later activate/deactivate cycle.
"""

from __future__ import annotations

from flagengine.core.database import Base
from flagengine.models.feature_flag import utcnow
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text


class KillSwitch(Base):
    """Emergency override forcing a flag off for every user."""

    __tablename__ = "kill_switches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    flag_key = Column(String(100), nullable=False, unique=True, index=True)
    active = Column(Boolean, nullable=False, default=False, index=True)
    reason = Column(Text, nullable=True)
    activated_by = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<KillSwitch(flag_key='{self.flag_key}', active={self.active})>"
