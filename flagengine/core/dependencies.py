"""
FastAPI dependencies for actor identity and engine access

Authentication happens upstream: the gateway in front of this service
verifies credentials and forwards the caller as headers:

- X-Actor-Id: identity recorded as ``performed_by`` in the audit trail
- X-Actor-Role: role checked against ``ADMIN_ROLES``

Flag reads depend on ``get_actor`` (any identified caller). Mutating,
kill switch and audit endpoints depend on ``get_admin_actor``. Evaluation is
open to any caller.
"""

from typing import Optional

from flagengine.core.actor import Actor
from flagengine.core.config import settings
from flagengine.core.errors import AuthenticationError, PermissionDeniedError
from flagengine.core.logging import get_logger
from flagengine.services.engine import FlagEngine
from fastapi import Depends, Header, Request

logger = get_logger(__name__)


def _get_client_ip(request: Request) -> Optional[str]:
    """Extract client IP from request, handling proxies."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # First IP in the list is the original client
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def get_engine(request: Request) -> FlagEngine:
    """The engine instance owned by the application."""
    return request.app.state.flag_engine


def get_actor(
    request: Request,
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
    x_actor_role: Optional[str] = Header(default=None, alias="X-Actor-Role"),
) -> Actor:
    """
    Resolve the identified caller of the request, whatever its role.

    Raises:
        AuthenticationError: no actor id forwarded (401)
    """
    if not x_actor_id or not x_actor_id.strip():
        raise AuthenticationError("Missing actor identity")

    role = (x_actor_role or "").strip().upper()
    return Actor(actor_id=x_actor_id.strip(), role=role, ip_address=_get_client_ip(request))


def get_admin_actor(request: Request, actor: Actor = Depends(get_actor)) -> Actor:
    """
    Resolve the administrative actor of the request.

    Raises:
        AuthenticationError: no actor id forwarded (401)
        PermissionDeniedError: role not in ADMIN_ROLES (403)
    """
    if actor.role not in settings.admin_roles:
        logger.warning(
            "actor_forbidden",
            actor_id=actor.actor_id,
            role=actor.role or None,
            path=request.url.path,
        )
        raise PermissionDeniedError("Admin role required")

    return actor
