from typing import Annotated, Optional
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from opsportal.database import get_db
from opsportal.core.security import verify_access_token
from opsportal.core.permissions import Actor, PermissionChecker


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme; a missing header is answered with 401 below
security = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Actor:
    """
    Dependency to get the current authenticated caller.
    Validates the JWT token and builds the Actor from its claims; user
    accounts themselves live in the authentication service.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    claims = verify_access_token(credentials.credentials)
    if claims is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    return Actor(
        identity=claims["sub"],
        role=claims["role"],
        name=claims.get("name"),
        branches=list(claims.get("branches") or []),
    )


async def get_permission_checker(
    actor: Annotated[Actor, Depends(get_current_actor)],
) -> PermissionChecker:
    return PermissionChecker(actor)


def require_permissions(*required_permissions: str):
    """
    Dependency factory to require specific permissions.

    Usage:
        @router.get("/", dependencies=[Depends(require_permissions("dispatch:view"))])
        async def list_dispatches():
            ...
    """
    async def permission_dependency(
        permission_checker: Annotated[PermissionChecker, Depends(get_permission_checker)]
    ):
        for permission in required_permissions:
            if not permission_checker.has_permission(permission):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Permission denied. Required: {permission}"
                )
        return True

    return permission_dependency


def require_branch_access(permission_checker: PermissionChecker, branch_slug: str) -> None:
    """Raise 403 unless the caller may act on this branch."""
    if not permission_checker.can_access_branch(branch_slug):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access denied to branch '{branch_slug}'"
        )


# Type aliases for cleaner endpoint signatures
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
DB = Annotated[AsyncSession, Depends(get_db)]
Permissions = Annotated[PermissionChecker, Depends(get_permission_checker)]
