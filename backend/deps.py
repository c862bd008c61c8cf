"""
Shared FastAPI dependencies.

Routers import DB session, identity guards and pagination from here. The
resolved RequestIdentity is passed explicitly into services.
"""

from __future__ import annotations

from typing import Optional, TypedDict

from fastapi import Depends, Header, Query

from domain.enums import Role
from domain.errors import PermissionDeniedError
from domain.identity import RequestIdentity
from middleware.auth import identity_from_header


class PageParams(TypedDict):
    page: int
    limit: int


def page_params(
    page: int = Query(1, ge=1, le=10_000),
    limit: int = Query(20, ge=1, le=100),
) -> PageParams:
    return {"page": page, "limit": limit}


async def current_identity(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> RequestIdentity:
    return identity_from_header(authorization)


async def require_customer(
    identity: RequestIdentity = Depends(current_identity),
) -> RequestIdentity:
    """Customer endpoints; the identity's subject is the customer id."""
    if identity.role is not Role.CUSTOMER:
        raise PermissionDeniedError("Customer account required for this endpoint.")
    return identity


async def require_admin(
    identity: RequestIdentity = Depends(current_identity),
) -> RequestIdentity:
    """Operator endpoints (approve, reject, dispatch, listings)."""
    if not identity.is_admin:
        raise PermissionDeniedError("Admin role required for this endpoint.")
    return identity
