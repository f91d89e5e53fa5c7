"""
Dependency injection for API routes.

The authority lives on app.state; the principal comes from the bearer token.
Role checks happen inside the authority, not here.
"""

from fastapi import HTTPException, Request

from ..core.authority import CentralAuthority
from ..schemas import Principal
from .auth import principal_from_header


def get_authority(request: Request) -> CentralAuthority:
    return request.app.state.authority


def current_principal(request: Request) -> Principal:
    principal = principal_from_header(request.headers.get("Authorization"))
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal
