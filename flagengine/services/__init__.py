"""Evaluation and governance services."""

from flagengine.services.engine import FlagEngine  # noqa: F401
