# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid

from pydantic import BaseModel

from benefit_flow.models.enums import Role


class AuthContext(BaseModel):
    """Caller identity from request headers, with roles from the role provider."""

    user_id: uuid.UUID
    roles: frozenset[Role] = frozenset()
