"""
Canonical Hashing

Deterministic serialization and SHA-256 hashing for the audit chain and
snapshot checksums. Same input, same hash.

If this changes, every stored audit chain and every exported snapshot
becomes unverifiable. Breaking changes must bump SERIALIZATION_VERSION.

CANONICAL SERIALIZATION RULES:
1. Version: "__canon_v" injected into every canonical output
2. Dictionary keys: sorted recursively
3. Nulls: omitted entirely
4. Empty strings, lists, dicts: preserved
5. Datetimes: ISO 8601 with microseconds, forced to UTC, Z suffix
6. Dates: YYYY-MM-DD
7. Enums: string value
8. Floats: finite only, rounded to 15 significant digits
9. JSON output: no extra whitespace, sorted keys, ASCII only
10. Top-level: must be a dict
"""

import hashlib
import hmac
import json
import math
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID


class CanonicalSerializationError(Exception):
    """Raised when data cannot be canonically serialized."""


class Hasher:
    """
    Canonical serialization and hashing.

    Consensus scores and OCR confidences are floats, so unlike a pure
    ledger these are allowed, but only finite ones and only after rounding.
    """

    SERIALIZATION_VERSION = 1
    FLOAT_PRECISION = 15

    @classmethod
    def _serialize_value(cls, value: Any, path: str = "") -> Any:
        if value is None:
            return None

        if isinstance(value, UUID):
            return str(value).lower()

        if isinstance(value, datetime):
            return cls._serialize_datetime(value, path)

        if isinstance(value, date):
            return value.strftime("%Y-%m-%d")

        if isinstance(value, Enum):
            return value.value

        if isinstance(value, bool):
            return value

        if isinstance(value, int):
            return value

        if isinstance(value, float):
            return cls._serialize_float(value, path)

        if isinstance(value, Decimal):
            return str(value)

        if isinstance(value, str):
            return value

        if isinstance(value, (list, tuple)):
            return [
                cls._serialize_value(v, f"{path}[{i}]")
                for i, v in enumerate(value)
            ]

        if isinstance(value, dict):
            return cls._to_canonical_dict(value, path)

        if hasattr(value, "model_dump"):
            return cls._to_canonical_dict(value.model_dump(mode="python"), path)

        if isinstance(value, (bytes, set)):
            raise CanonicalSerializationError(
                f"Cannot serialize {type(value).__name__} at {path}. "
                "Convert bytes to base64 and sets to sorted lists first."
            )

        raise CanonicalSerializationError(
            f"Cannot serialize {type(value).__name__} at {path}. "
            "Only JSON-compatible types are allowed."
        )

    @classmethod
    def _serialize_float(cls, value: float, path: str) -> float:
        if not math.isfinite(value):
            raise CanonicalSerializationError(f"Cannot serialize non-finite float at {path}")
        rounded = float(f"{value:.{cls.FLOAT_PRECISION}g}")
        # Integral floats serialize as ints so 1.0 and 1 hash alike
        if rounded.is_integer():
            return int(rounded)
        return rounded

    @classmethod
    def _serialize_datetime(cls, dt: datetime, path: str) -> str:
        """Format: YYYY-MM-DDTHH:MM:SS.ffffffZ"""
        if dt.tzinfo is None:
            raise CanonicalSerializationError(
                f"Datetime at {path} is timezone-naive. "
                "All datetimes must be timezone-aware."
            )
        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_dt.microsecond:06d}Z"

    @classmethod
    def _to_canonical_dict(cls, data: dict[str, Any], path: str = "") -> dict[str, Any]:
        result = {}
        for key in sorted(data.keys()):
            if not isinstance(key, str):
                raise CanonicalSerializationError(
                    f"Dictionary key at {path} must be string, got {type(key).__name__}"
                )
            key_path = f"{path}.{key}" if path else key
            serialized = cls._serialize_value(data[key], key_path)
            if serialized is not None:
                result[key] = serialized
        return result

    @classmethod
    def canonicalize(cls, data: Any) -> str:
        """
        Convert a dict or pydantic model to its canonical JSON string.

        Raises:
            CanonicalSerializationError: If data cannot be deterministically serialized
        """
        if hasattr(data, "model_dump"):
            data = data.model_dump(mode="python")

        if not isinstance(data, dict):
            raise CanonicalSerializationError(
                f"Top-level canonicalization requires a dict, got {type(data).__name__}"
            )

        canonical_dict = {"__canon_v": cls.SERIALIZATION_VERSION, **cls._to_canonical_dict(data)}
        return json.dumps(
            canonical_dict,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=True,
            allow_nan=False,
        )

    @classmethod
    def hash_data(cls, data: Any) -> str:
        """Hex-encoded SHA-256 of the canonical form (64 lowercase chars)."""
        return hashlib.sha256(cls.canonicalize(data).encode("utf-8")).hexdigest()

    @classmethod
    def hash_entry(cls, body: dict[str, Any], previous_hash: Optional[str] = None) -> str:
        """
        Hash one audit entry with chain linkage.

        - First entry: SHA256(canonical_body)
        - Later entries: SHA256(previous_hash + ":" + canonical_body)
        """
        canonical_body = cls.canonicalize(body)
        if previous_hash is None:
            chain_input = canonical_body
        else:
            if len(previous_hash) != 64 or not all(
                c in "0123456789abcdef" for c in previous_hash.lower()
            ):
                raise CanonicalSerializationError(
                    f"Invalid previous_hash format: {previous_hash}. Must be 64 hex characters."
                )
            chain_input = f"{previous_hash.lower()}:{canonical_body}"
        return hashlib.sha256(chain_input.encode("utf-8")).hexdigest()

    @classmethod
    def verify_entry(
        cls,
        body: dict[str, Any],
        expected_hash: str,
        previous_hash: Optional[str] = None,
    ) -> bool:
        try:
            computed = cls.hash_entry(body, previous_hash)
        except CanonicalSerializationError:
            return False
        return hmac.compare_digest(computed, expected_hash.lower())

    @classmethod
    def checksum(cls, data: Any) -> str:
        """Snapshot checksum: "sha256-" + hash_data(data)."""
        return f"sha256-{cls.hash_data(data)}"
