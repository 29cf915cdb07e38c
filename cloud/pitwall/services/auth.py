"""
Centralized authentication and authorization module.

Provides:
- require_role(): FastAPI dependency for route-level RBAC
- Role hierarchy: spectator < admin

Only the admin role may write the race record. Reads, the change feed and
the time authority are open to spectators.
"""
import hashlib
import hmac
from enum import IntEnum
from typing import Optional

from fastapi import Depends, Header, HTTPException

from pitwall.config import get_settings

settings = get_settings()


class Role(IntEnum):
    """
    Role hierarchy with numeric values for comparison.
    Higher value = more permissions.
    """
    SPECTATOR = 0   # Read-only viewers (web, companion display)
    ADMIN = 1       # The single race-control writer


class AuthInfo:
    """
    Authentication context for a request.
    Populated by auth dependencies.
    """
    def __init__(
        self,
        role: Role = Role.SPECTATOR,
        user_id: Optional[str] = None,
    ):
        self.role = role
        self.user_id = user_id

    def has_role(self, required: Role) -> bool:
        """Check if this auth has at least the required role."""
        return self.role >= required


def _verify_admin_token(token: str) -> bool:
    """
    Verify admin token against configured tokens.
    Supports both:
    1. Direct token match against ADMIN_TOKENS list
    2. sha256 comparison against ADMIN_TOKEN_HASH
    """
    if settings.admin_tokens:
        valid_tokens = [t.strip() for t in settings.admin_tokens.split(",") if t.strip()]
        if any(hmac.compare_digest(token, valid) for valid in valid_tokens):
            return True

    if settings.admin_token_hash:
        provided_hash = hashlib.sha256(token.encode()).hexdigest()
        if hmac.compare_digest(provided_hash, settings.admin_token_hash):
            return True

    return False


async def get_auth_info(
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
) -> AuthInfo:
    """
    Extract and validate authentication from request.

    A valid X-Admin-Token header grants admin; anything else is a spectator.
    """
    if x_admin_token and _verify_admin_token(x_admin_token):
        return AuthInfo(role=Role.ADMIN, user_id="admin")
    return AuthInfo(role=Role.SPECTATOR)


def require_role(minimum_role: Role):
    """
    FastAPI dependency factory that requires minimum role.

    Usage:
        @router.patch("/race-state")
        async def update(auth: AuthInfo = Depends(require_role(Role.ADMIN))):
            ...

    Raises 401 if no credential was accepted, 403 if insufficient role.
    """
    async def dependency(
        auth: AuthInfo = Depends(get_auth_info),
    ) -> AuthInfo:
        if auth.role == Role.SPECTATOR and minimum_role > Role.SPECTATOR:
            raise HTTPException(
                status_code=401,
                detail="Authentication required",
            )
        if not auth.has_role(minimum_role):
            raise HTTPException(
                status_code=403,
                detail=f"Insufficient permissions. Required: {minimum_role.name.lower()}",
            )
        return auth

    return dependency


require_admin = require_role(Role.ADMIN)
