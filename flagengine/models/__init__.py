"""Database models."""

from flagengine.models.audit_log import AuditAction, AuditLogEntry  # noqa: F401
from flagengine.models.feature_flag import FeatureFlag  # noqa: F401
from flagengine.models.kill_switch import KillSwitch  # noqa: F401
