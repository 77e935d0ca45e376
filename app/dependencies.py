"""
NairaPay Core - FastAPI Dependencies

Shared dependencies for database sessions and the caller's request context.

Authentication happens upstream. The gateway forwards the caller's identity
in three headers which this module turns into a `RequestContext`:

1. X-Tenant-ID  - tenant the request acts on
2. X-User-ID    - acting staff member
3. X-User-Role  - owner, general_manager, assistant_manager or staff
"""

import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, status

from app.database import get_async_session  # noqa: F401  re-exported for routers
from app.models.employee import StaffRole


@dataclass(frozen=True)
class RequestContext:
    """Identity of the caller, as forwarded by the gateway."""
    tenant_id: uuid.UUID
    user_id: uuid.UUID
    role: StaffRole

    def has_role_at_least(self, role: StaffRole) -> bool:
        return self.role.level >= role.level


def _parse_uuid(value: Optional[str], header: str) -> uuid.UUID:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {header} header",
        )
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} header",
        )


async def get_request_context(
    x_tenant_id: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> RequestContext:
    """
    Build the request context from gateway headers.

    Raises:
        HTTPException: 401 if a header is missing, 400 if one is malformed
    """
    tenant_id = _parse_uuid(x_tenant_id, "X-Tenant-ID")
    user_id = _parse_uuid(x_user_id, "X-User-ID")
    if not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Role header",
        )
    try:
        role = StaffRole(x_user_role.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown role '{x_user_role}'",
        )
    return RequestContext(tenant_id=tenant_id, user_id=user_id, role=role)


def require_role(minimum: StaffRole) -> Callable:
    """
    Dependency factory enforcing a minimum staff role.

    Usage:
        @router.post("/...")
        async def endpoint(ctx: RequestContext = Depends(require_role(StaffRole.GENERAL_MANAGER))):
            ...
    """
    async def role_checker(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        if not ctx.has_role_at_least(minimum):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role {minimum.value} or higher",
            )
        return ctx

    return role_checker
