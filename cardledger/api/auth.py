"""
Authentication for the HTTP surface.

Security Features:
- Argon2id password hashing (argon2-cffi)
- Signed, expiring bearer tokens (itsdangerous)
- Rate limiting on login attempts per client IP

Built-in accounts (development):
    admin / admin123   -> admin
    mod   / mod123     -> moderator
    user  / user123    -> contributor
    guest / guest      -> guest

For production:
- Set CARDLEDGER_SESSION_SECRET to a 32+ character random string
- Set CARDLEDGER_PRODUCTION=1
- Override account passwords with CARDLEDGER_PASSWORD_HASH_<USERNAME>
  (generate with: python tools/manage.py hash-password)
"""

import os
import secrets
import time
import warnings
from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Optional, Tuple

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from ..observability import is_production
from ..schemas import Principal, Role


# ============================================================
# CONFIGURATION
# ============================================================

TOKEN_MAX_AGE_SECONDS = 7 * 24 * 60 * 60

# Rate limiting: max 5 attempts per 15 minutes per IP
LOGIN_MAX_ATTEMPTS = 5
LOGIN_WINDOW_SECONDS = 15 * 60


# ============================================================
# PASSWORD HASHING
# ============================================================

_hasher = PasswordHasher()


def hash_password(password: str) -> str:
    """Argon2id hash (salt and parameters embedded in the string)."""
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return _hasher.verify(password_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHash):
        return False


# ============================================================
# ACCOUNTS
# ============================================================

@dataclass(frozen=True)
class Account:
    username: str
    role: Role
    default_password: str


ACCOUNTS = {
    "admin": Account("admin", Role.ADMIN, "admin123"),
    "mod": Account("mod", Role.MODERATOR, "mod123"),
    "user": Account("user", Role.CONTRIBUTOR, "user123"),
    "guest": Account("guest", Role.GUEST, "guest"),
}

_hash_cache: dict[str, str] = {}
_hash_lock = Lock()


def _stored_hash(account: Account) -> str:
    """
    Priority:
    1. CARDLEDGER_PASSWORD_HASH_<USERNAME> (pre-computed hash)
    2. Hash of the built-in development password, computed once
    """
    override = os.environ.get(f"CARDLEDGER_PASSWORD_HASH_{account.username.upper()}")
    if override:
        return override
    with _hash_lock:
        if account.username not in _hash_cache:
            _hash_cache[account.username] = hash_password(account.default_password)
        return _hash_cache[account.username]


def verify_login(username: str, password: str) -> Optional[Account]:
    account = ACCOUNTS.get(username.strip().lower())
    if account is None:
        return None
    if not verify_password(password, _stored_hash(account)):
        return None
    return account


def new_device_id() -> str:
    return f"dev-{secrets.token_hex(6)}"


def principal_for(account: Account, device_id: Optional[str] = None) -> Principal:
    return Principal(
        principal_id=account.username,
        username=account.username,
        device_id=device_id or new_device_id(),
        role=account.role,
    )


def guest_principal(device_id: Optional[str] = None) -> Principal:
    """Anonymous guest; each device is its own principal."""
    device_id = device_id or new_device_id()
    return Principal(
        principal_id=f"guest-{device_id}",
        username="guest",
        device_id=device_id,
        role=Role.GUEST,
    )


# ============================================================
# RATE LIMITING
# ============================================================

# In-memory attempt log (one process; use a shared store for several workers)
_login_attempts: dict[str, list[float]] = defaultdict(list)
_attempts_lock = Lock()


def check_login_rate_limit(ip: str) -> Tuple[bool, int]:
    """
    Returns:
        Tuple of (is_allowed, retry_after_seconds)
    """
    now = time.time()
    with _attempts_lock:
        attempts = [t for t in _login_attempts[ip] if t > now - LOGIN_WINDOW_SECONDS]
        _login_attempts[ip] = attempts
        if len(attempts) >= LOGIN_MAX_ATTEMPTS:
            retry_after = int(LOGIN_WINDOW_SECONDS - (now - min(attempts)))
            return False, max(1, retry_after)
    return True, 0


def record_login_attempt(ip: str) -> None:
    with _attempts_lock:
        _login_attempts[ip].append(time.time())


def clear_login_attempts(ip: Optional[str] = None) -> None:
    """Forget attempts for one IP, or for all of them."""
    with _attempts_lock:
        if ip is None:
            _login_attempts.clear()
        else:
            _login_attempts.pop(ip, None)


# ============================================================
# BEARER TOKENS
# ============================================================

def _serializer() -> URLSafeTimedSerializer:
    secret = os.environ.get("CARDLEDGER_SESSION_SECRET", "")
    if len(secret) < 16:
        if is_production():
            raise RuntimeError(
                "CARDLEDGER_SESSION_SECRET must be set in production. "
                "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )
        warnings.warn("CARDLEDGER_SESSION_SECRET not set. Using insecure default.", stacklevel=2)
        secret = "dev-insecure-secret-do-not-use-in-production-12345678"
    return URLSafeTimedSerializer(secret_key=secret, salt="cardledger-session-v1")


def create_token(principal: Principal) -> str:
    return _serializer().dumps({
        "pid": principal.principal_id,
        "u": principal.username,
        "dev": principal.device_id,
        "role": principal.role.value,
    })


def read_token(token: str, max_age: int = TOKEN_MAX_AGE_SECONDS) -> Optional[Principal]:
    if not token:
        return None
    try:
        data = _serializer().loads(token, max_age=max_age)
        return Principal(
            principal_id=str(data["pid"]),
            username=str(data["u"]),
            device_id=str(data["dev"]),
            role=Role(data["role"]),
        )
    except (SignatureExpired, BadSignature, KeyError, ValueError):
        return None


def principal_from_header(authorization: Optional[str]) -> Optional[Principal]:
    """Principal from an `Authorization: Bearer <token>` header, if valid."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return read_token(token.strip())


# ============================================================
# UTILITY FUNCTIONS
# ============================================================

def get_client_ip(request) -> str:
    """Extract client IP from request (handles proxies)."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP", "")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return "unknown"
