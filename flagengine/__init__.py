"""Feature flag evaluation and governance service."""

__version__ = "0.1.0"
