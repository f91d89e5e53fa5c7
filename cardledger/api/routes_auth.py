"""
Auth API Routes

Security:
- Rate limited: 5 login attempts per 15 minutes per IP
- Passwords verified with Argon2
- Signed bearer tokens
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from ..core.authority import CentralAuthority
from ..observability import get_logger, get_metrics
from ..schemas import Principal, TrustProfile
from .auth import (
    check_login_rate_limit,
    clear_login_attempts,
    create_token,
    get_client_ip,
    guest_principal,
    principal_for,
    record_login_attempt,
    verify_login,
)
from .deps import current_principal, get_authority

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])


# ============================================================
# Request/Response Models
# ============================================================

class LoginRequest(BaseModel):
    username: str
    password: str
    device_id: Optional[str] = None


class GuestRequest(BaseModel):
    device_id: Optional[str] = None


class SessionResponse(BaseModel):
    token: str
    principal: Principal
    reputation_score: float


class MeResponse(BaseModel):
    principal: Principal
    trust: TrustProfile


def _session(authority: CentralAuthority, principal: Principal) -> SessionResponse:
    profile = authority.authenticate(principal)
    return SessionResponse(
        token=create_token(principal),
        principal=principal,
        reputation_score=profile.reputation_score,
    )


# ============================================================
# Endpoints
# ============================================================

@router.post("/login", response_model=SessionResponse)
def login(
    request: Request,
    body: LoginRequest,
    authority: CentralAuthority = Depends(get_authority),
):
    client_ip = get_client_ip(request)
    is_allowed, retry_after = check_login_rate_limit(client_ip)
    if not is_allowed:
        logger.warning("Login rate limited", client_ip=client_ip)
        raise HTTPException(
            status_code=429,
            detail=f"Too many login attempts. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )

    # Counted before verification
    record_login_attempt(client_ip)
    get_metrics().incr("login_attempts")

    account = verify_login(body.username, body.password)
    if account is None:
        get_metrics().incr("login_failures")
        logger.warning("Failed login", username=body.username, client_ip=client_ip)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    clear_login_attempts(client_ip)
    principal = principal_for(account, body.device_id)
    logger.info("Login", principal_id=principal.principal_id, role=principal.role.value)
    return _session(authority, principal)


@router.post("/guest", response_model=SessionResponse)
def continue_as_guest(
    body: Optional[GuestRequest] = None,
    authority: CentralAuthority = Depends(get_authority),
):
    principal = guest_principal(body.device_id if body else None)
    return _session(authority, principal)


@router.get("/me", response_model=MeResponse)
def me(
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return MeResponse(principal=principal, trust=authority.authenticate(principal))
