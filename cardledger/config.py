"""
Authority Configuration

Environment Variables:
    CARDLEDGER_RATE_LIMIT_MAX_WRITES: Admitted writes per device per window (default 30)
    CARDLEDGER_RATE_LIMIT_WINDOW_SECONDS: Rolling window length (default 3600)
    CARDLEDGER_DUPLICATE_WINDOW_SECONDS: Same-principal duplicate window (default 86400)
    CARDLEDGER_AUTO_ACCEPT_MIN_SCORE: Minimum consensus score (default 0.85)
    CARDLEDGER_AUTO_ACCEPT_MIN_COUNT: Minimum agreeing principals (default 3)
    CARDLEDGER_AUTO_ACCEPT_MAX_DISAGREEMENT: Maximum dissenting principals (default 1)
    CARDLEDGER_DEFAULT_REPUTATION: Seed reputation for authenticated roles (default 0.7)
    CARDLEDGER_GUEST_REPUTATION: Seed reputation for guests (default 0.2)
    CARDLEDGER_REPUTATION_POLICY: fixed | ema (default fixed)
    CARDLEDGER_REPUTATION_EMA_ALPHA: Step size for the ema policy (default 0.1)
    CARDLEDGER_FLAG_MIN_DECIDED: Decided proposals before flagging applies (default 5)
    CARDLEDGER_FLAG_REJECTION_RATE: Rejection rate above which to flag (default 0.6)
    CARDLEDGER_SEED_DEMO_DATA: Load the demo catalog at startup (default off)
    CARDLEDGER_SIGNING_KEY: Base64 Ed25519 private key for snapshot signatures
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes")


@dataclass
class AuthorityConfig:
    """Tunables for intake, consensus and trust."""

    rate_limit_max_writes: int = 30
    rate_limit_window_seconds: int = 60 * 60
    duplicate_window_seconds: int = 24 * 60 * 60

    auto_accept_min_score: float = 0.85
    auto_accept_min_count: int = 3
    auto_accept_max_disagreement: int = 1

    default_reputation: float = 0.7
    guest_reputation: float = 0.2
    unknown_reputation: float = 0.5
    reputation_policy: str = "fixed"
    reputation_ema_alpha: float = 0.1

    flag_min_decided: int = 5
    flag_rejection_rate: float = 0.6
    low_confidence_threshold: float = 0.15

    seed_demo_data: bool = False
    signing_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "AuthorityConfig":
        return cls(
            rate_limit_max_writes=int(os.getenv("CARDLEDGER_RATE_LIMIT_MAX_WRITES", "30")),
            rate_limit_window_seconds=int(os.getenv("CARDLEDGER_RATE_LIMIT_WINDOW_SECONDS", "3600")),
            duplicate_window_seconds=int(os.getenv("CARDLEDGER_DUPLICATE_WINDOW_SECONDS", "86400")),
            auto_accept_min_score=float(os.getenv("CARDLEDGER_AUTO_ACCEPT_MIN_SCORE", "0.85")),
            auto_accept_min_count=int(os.getenv("CARDLEDGER_AUTO_ACCEPT_MIN_COUNT", "3")),
            auto_accept_max_disagreement=int(os.getenv("CARDLEDGER_AUTO_ACCEPT_MAX_DISAGREEMENT", "1")),
            default_reputation=float(os.getenv("CARDLEDGER_DEFAULT_REPUTATION", "0.7")),
            guest_reputation=float(os.getenv("CARDLEDGER_GUEST_REPUTATION", "0.2")),
            reputation_policy=os.getenv("CARDLEDGER_REPUTATION_POLICY", "fixed").lower(),
            reputation_ema_alpha=float(os.getenv("CARDLEDGER_REPUTATION_EMA_ALPHA", "0.1")),
            flag_min_decided=int(os.getenv("CARDLEDGER_FLAG_MIN_DECIDED", "5")),
            flag_rejection_rate=float(os.getenv("CARDLEDGER_FLAG_REJECTION_RATE", "0.6")),
            seed_demo_data=_env_bool("CARDLEDGER_SEED_DEMO_DATA"),
            signing_key=os.getenv("CARDLEDGER_SIGNING_KEY") or None,
        )
