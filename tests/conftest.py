"""
Shared fixtures: a controllable clock, a seeded authority and principals.
"""

from datetime import datetime, timedelta, timezone

import pytest

from cardledger.api.auth import clear_login_attempts
from cardledger.core import CentralAuthority, Signer
from cardledger.schemas import Principal, Role
from cardledger.seed import seed_demo_catalog


START = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def session_secret(monkeypatch):
    monkeypatch.setenv("CARDLEDGER_SESSION_SECRET", "test-secret-that-is-long-enough-1234")
    clear_login_attempts()
    yield
    clear_login_attempts()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def keypair():
    return Signer.generate_keypair()


@pytest.fixture
def authority(clock, keypair):
    private_key, _ = keypair
    authority = CentralAuthority(clock=clock, signing_key=private_key)
    seed_demo_catalog(authority, clock())
    return authority


@pytest.fixture
def make_principal(authority):
    """Build a principal and register its trust profile with the authority."""

    def make(name: str, role: Role = Role.CONTRIBUTOR, reputation=None) -> Principal:
        principal = Principal(
            principal_id=name,
            username=name,
            device_id=f"{name}-device",
            role=role,
        )
        authority.authenticate(principal)
        if reputation is not None:
            authority.trust.set_reputation(name, reputation)
        return principal

    return make


@pytest.fixture
def contributor(make_principal):
    return make_principal("alice")


@pytest.fixture
def moderator(make_principal):
    return make_principal("mod", Role.MODERATOR)


@pytest.fixture
def admin(make_principal):
    return make_principal("admin", Role.ADMIN)
