"""
Request identity.

Authentication itself happens upstream; the auth layer forwards the
caller's identity as X-User-Id and X-User-Role headers.
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, status

from cardledger.config import ADMIN_ROLES
from cardledger.models.failure import FailureKind, KnownError


@dataclass(frozen=True, slots=True)
class AuthContext:
    user_id: str
    role: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


async def get_current_user(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> AuthContext:
    """Identity of the caller; 401 when the auth layer supplied none."""
    if not x_user_id or not x_user_id.strip():
        raise KnownError(
            kind=FailureKind.UNAUTHENTICATED,
            message="Authentication required",
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    role = x_user_role.strip().lower() if x_user_role else None
    return AuthContext(user_id=x_user_id.strip(), role=role or None)


async def require_admin(
    user: Annotated[AuthContext, Depends(get_current_user)],
) -> AuthContext:
    """Caller identity, restricted to review roles; 403 otherwise."""
    if not user.is_admin:
        raise KnownError(
            kind=FailureKind.FORBIDDEN,
            message="Admin access required",
            detail=f"Role '{user.role}' cannot review submissions",
            status_code=status.HTTP_403_FORBIDDEN,
        )
    return user


CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
AdminUser = Annotated[AuthContext, Depends(require_admin)]
