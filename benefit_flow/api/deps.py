# ruff: noqa: B008, TC003
from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import Depends, Header, status

from benefit_flow.exceptions import AppError
from benefit_flow.models.enums import Role
from benefit_flow.schemas.auth import AuthContext
from benefit_flow.services.roles import get_role_provider


async def get_auth_context(x_user_id: uuid.UUID = Header()) -> AuthContext:
    """Extract the caller identity from request headers.

    Roles are not resolved here; stage-gated operations ask the role
    provider themselves.
    """
    return AuthContext(user_id=x_user_id)


AuthDep = Annotated[AuthContext, Depends(get_auth_context)]


async def require_admin(
    auth: AuthDep,
) -> AuthContext:
    """Require admin role for the request."""
    roles = await get_role_provider().get_roles(auth.user_id)
    if Role.ADMIN not in roles:
        raise AppError("Admin access required", status_code=status.HTTP_403_FORBIDDEN)
    return auth.model_copy(update={"roles": roles})


AdminDep = Annotated[AuthContext, Depends(require_admin)]


async def require_self_or_admin(
    employee_id: uuid.UUID,
    auth: AuthDep,
) -> AuthContext:
    """Employees read their own ledgers; admins read any."""
    if auth.user_id == employee_id:
        return auth
    return await require_admin(auth)
