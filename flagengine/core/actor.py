"""Authenticated actor performing a mutation.

The engine never reads a "current user" from ambient state: the REST layer
builds an ``Actor`` from the headers set by the authenticating gateway and
passes it explicitly to every mutating call, which records it in the audit
entry's ``performed_by``.
"""

from dataclasses import dataclass
from typing import Optional

@dataclass(frozen=True)
class Actor:
    """Identity, role and origin of the caller."""

    actor_id: str
    role: str = "ADMIN"
    ip_address: Optional[str] = None
