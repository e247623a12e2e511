# backend/app/api/dependencies/auth.py
"""
Acting-user dependencies.

Authentication is handled upstream by the identity service, which forwards
the verified user id and role in ``X-User-Id`` / ``X-User-Role``. These
values are trusted as given.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from ...core.actor import Actor
from ...core.enums import RoleName

logger = logging.getLogger(__name__)


def get_current_actor(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
) -> Actor:
    """Build the acting user from identity headers."""
    if not x_user_id or not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing identity headers",
        )
    try:
        role = RoleName(x_user_role.strip().lower())
    except ValueError:
        logger.warning("Rejected unknown role header", extra={"role": x_user_role})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role '{x_user_role}'",
        )
    return Actor(user_id=x_user_id.strip(), role=role)


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return actor


def require_tutor(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_tutor:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tutor access required")
    return actor
