"""Authentication and authorization."""

from commission_engine.auth.dependencies import get_current_user
from commission_engine.auth.jwt import create_access_token, verify_token
from commission_engine.auth.permissions import (
    Permission,
    require_owner_or_admin,
    require_permission,
)

__all__ = [
    "create_access_token",
    "verify_token",
    "get_current_user",
    "Permission",
    "require_permission",
    "require_owner_or_admin",
]
