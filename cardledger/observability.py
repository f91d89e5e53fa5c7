"""
Observability Module - Logging, Metrics, and Health

Provides:
- Structured JSON logging with request and principal IDs
- Request/response logging middleware
- Metrics collection (intake, consensus, matching, latencies)
- Health check utilities

Configuration:
- CARDLEDGER_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- CARDLEDGER_LOG_FORMAT: json, text (default: json in production)
- CARDLEDGER_PRODUCTION: Enable production mode

Usage:
    from cardledger.observability import get_logger

    logger = get_logger(__name__)
    logger.info("Claim auto-accepted", claim_id=claim.claim_id, score=0.91)
"""

import json
import logging
import os
import sys
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from .db import StoreError

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
principal_id_var: ContextVar[str] = ContextVar("principal_id", default="")


# ============================================================
# CONFIGURATION
# ============================================================

def is_production() -> bool:
    return os.environ.get("CARDLEDGER_PRODUCTION", "").lower() in ("1", "true", "yes")


def _get_log_level() -> int:
    level_str = os.environ.get("CARDLEDGER_LOG_LEVEL", "INFO").upper()
    return logging.getLevelName(level_str) if level_str in (
        "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"
    ) else logging.INFO


def _use_json_logging() -> bool:
    format_str = os.environ.get("CARDLEDGER_LOG_FORMAT", "").lower()
    if format_str == "json":
        return True
    if format_str == "text":
        return False
    return is_production()


# ============================================================
# STRUCTURED LOGGING
# ============================================================

_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Output format:
    {
        "timestamp": "2024-01-15T10:30:00.000Z",
        "level": "INFO",
        "logger": "cardledger.core.consensus",
        "message": "Claim auto-accepted",
        "request_id": "abc-123",
        "principal_id": "user",
        "claim_id": "...",
        ...extra fields...
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        principal_id = principal_id_var.get()
        if principal_id:
            log_data["principal_id"] = principal_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = ""
        request_id = request_id_var.get()
        if request_id:
            prefix = f"[{request_id[:8]}] "

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        msg = f"{timestamp} {record.levelname:8} {prefix}{record.name}: {record.getMessage()}"

        extras = {
            k: v for k, v in record.__dict__.items()
            if k not in _STANDARD_ATTRS and not k.startswith("_")
        }
        if extras:
            msg += " " + " ".join(f"{k}={v}" for k, v in extras.items())

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)
        return msg


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that moves keyword arguments into structured fields.

    Usage:
        logger = get_logger(__name__)
        logger.info("Observation admitted", observation_id=obs_id, field_path="cards.atk")
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get("extra", {})
        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra[key] = kwargs.pop(key)
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """Get a structured logger for the given name (typically __name__)."""
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """
    Configure logging for the application.

    Call this once at application startup.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_get_log_level())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(_get_log_level())
    handler.setFormatter(StructuredFormatter() if _use_json_logging() else TextFormatter())
    root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ============================================================
# REQUEST CONTEXT MIDDLEWARE
# ============================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Sets up request context for logging.

    - Generates a request ID (or honors X-Request-ID)
    - Logs request/response with timing
    - Extracts the principal ID from the bearer token if present
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        request_id_var.set(request_id)

        from cardledger.api.auth import principal_from_header
        principal = principal_from_header(request.headers.get("Authorization"))
        if principal:
            principal_id_var.set(principal.principal_id)

        logger = get_logger("cardledger.request")
        start_time = time.perf_counter()
        logger.debug(
            f"{request.method} {request.url.path}",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start_time) * 1000
            get_metrics().record_request(duration_ms, success=response.status_code < 500)
            logger.log(
                logging.INFO if response.status_code < 400 else logging.WARNING,
                f"{request.method} {request.url.path} -> {response.status_code}",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            get_metrics().record_request(duration_ms, success=False)
            logger.exception(
                f"{request.method} {request.url.path} -> 500",
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=round(duration_ms, 2),
                error=str(e),
            )
            raise
        finally:
            request_id_var.set("")
            principal_id_var.set("")


# ============================================================
# METRICS
# ============================================================

_MAX_SAMPLES = 1000


@dataclass
class MetricsCollector:
    """
    Simple in-memory metrics collector.

    For production, replace with Prometheus, StatsD, or similar.
    """

    # Counters
    observations_admitted: int = 0
    proposals_admitted: int = 0
    drafts_admitted: int = 0
    duplicates_ignored: int = 0
    rate_limited_writes: int = 0
    claims_auto_accepted: int = 0
    claims_resolved: int = 0
    matches_run: int = 0
    matches_needing_confirmation: int = 0
    requests_total: int = 0
    requests_failed: int = 0
    login_attempts: int = 0
    login_failures: int = 0

    # Histograms (simplified as lists)
    match_latencies_ms: list = field(default_factory=list)
    push_latencies_ms: list = field(default_factory=list)
    request_latencies_ms: list = field(default_factory=list)

    _lock: Lock = field(default_factory=Lock, repr=False)

    def incr(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def _sample(self, samples: list, value: float) -> None:
        samples.append(value)
        if len(samples) > _MAX_SAMPLES:
            del samples[:-_MAX_SAMPLES]

    def record_match(self, latency_ms: float, needs_confirmation: bool) -> None:
        with self._lock:
            self.matches_run += 1
            if needs_confirmation:
                self.matches_needing_confirmation += 1
            self._sample(self.match_latencies_ms, latency_ms)

    def record_push(self, latency_ms: float) -> None:
        with self._lock:
            self._sample(self.push_latencies_ms, latency_ms)

    def record_request(self, latency_ms: float, success: bool) -> None:
        with self._lock:
            self.requests_total += 1
            if not success:
                self.requests_failed += 1
            self._sample(self.request_latencies_ms, latency_ms)

    def get_summary(self) -> Dict[str, Any]:
        def percentile(data: list, p: float) -> Optional[float]:
            if not data:
                return None
            sorted_data = sorted(data)
            return sorted_data[min(int(len(sorted_data) * p), len(sorted_data) - 1)]

        with self._lock:
            return {
                "observations_admitted": self.observations_admitted,
                "proposals_admitted": self.proposals_admitted,
                "drafts_admitted": self.drafts_admitted,
                "duplicates_ignored": self.duplicates_ignored,
                "rate_limited_writes": self.rate_limited_writes,
                "claims_auto_accepted": self.claims_auto_accepted,
                "claims_resolved": self.claims_resolved,
                "matches_run": self.matches_run,
                "matches_needing_confirmation": self.matches_needing_confirmation,
                "requests_total": self.requests_total,
                "requests_failed": self.requests_failed,
                "login_attempts": self.login_attempts,
                "login_failures": self.login_failures,
                "match_latency_p50_ms": percentile(self.match_latencies_ms, 0.5),
                "match_latency_p95_ms": percentile(self.match_latencies_ms, 0.95),
                "push_latency_p50_ms": percentile(self.push_latencies_ms, 0.5),
                "push_latency_p95_ms": percentile(self.push_latencies_ms, 0.95),
                "request_latency_p50_ms": percentile(self.request_latencies_ms, 0.5),
                "request_latency_p95_ms": percentile(self.request_latencies_ms, 0.95),
            }


_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return _metrics


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    """Health check result."""
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def check_health(authority=None) -> HealthStatus:
    """
    Run all health checks.

    Args:
        authority: CentralAuthority instance (store and audit chain are checked)
    """
    start = time.perf_counter()
    checks: Dict[str, Dict[str, Any]] = {"liveness": {"status": "healthy"}}
    all_healthy = True

    if authority is not None:
        try:
            reachable = authority.store.ping()
            checks["store"] = {"status": "healthy" if reachable else "unhealthy"}
            all_healthy = all_healthy and reachable
        except StoreError as e:
            checks["store"] = {"status": "unhealthy", "error": str(e)}
            all_healthy = False

        entries = authority.audit.count()
        valid = authority.audit.verify_chain()
        checks["audit_chain"] = {
            "status": "healthy" if valid else "unhealthy",
            "valid": valid,
            "entry_count": entries,
        }
        all_healthy = all_healthy and valid

    return HealthStatus(
        healthy=all_healthy,
        checks=checks,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
