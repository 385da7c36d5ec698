"""
Permission checks for commission operations.

Actors are User rows. Admins hold every permission; everyone else holds
exactly the keys listed in User.permissions.
"""

import logging
from typing import Optional

from commission_engine.errors import ForbiddenError, UnauthorizedError
from commission_engine.models import User

logger = logging.getLogger(__name__)

PERMISSION_PREFIX = "employeeCommissions"


class Permission:
    """Permission keys understood by the commission engine."""
    VIEW = f"{PERMISSION_PREFIX}:view"
    CREATE = f"{PERMISSION_PREFIX}:create"
    EDIT = f"{PERMISSION_PREFIX}:edit"
    APPROVE = f"{PERMISSION_PREFIX}:approve"
    PAY = f"{PERMISSION_PREFIX}:pay"
    DELETE = f"{PERMISSION_PREFIX}:delete"

    ALL = (VIEW, CREATE, EDIT, APPROVE, PAY, DELETE)


def require_current_user(actor: Optional[User]) -> User:
    """
    Ensure there is an active actor.

    Raises:
        UnauthorizedError: no actor
        ForbiddenError: actor account disabled
    """
    if actor is None:
        raise UnauthorizedError("Not authenticated")
    if not actor.is_active:
        raise ForbiddenError("User account is disabled")
    return actor


def require_permission(actor: Optional[User], key: str) -> User:
    """
    Ensure the actor holds the permission key.

    Raises:
        UnauthorizedError: no actor
        ForbiddenError: permission missing
    """
    actor = require_current_user(actor)
    if not actor.has_permission(key):
        logger.warning(f"User {actor.id} denied: missing permission {key}")
        raise ForbiddenError(f"Missing permission: {key}")
    return actor


def require_owner_or_admin(actor: Optional[User], owner_id: int) -> User:
    """
    Ensure the actor owns the record or is an administrator.

    Raises:
        UnauthorizedError: no actor
        ForbiddenError: neither owner nor admin
    """
    actor = require_current_user(actor)
    if actor.id != owner_id and not actor.is_admin:
        logger.warning(f"User {actor.id} denied: not owner of record owned by {owner_id}")
        raise ForbiddenError("Only the owner or an administrator can perform this action")
    return actor
