"""
Tests for canonical hashing and snapshot signatures.
"""

from datetime import datetime, timezone
from enum import Enum

import pytest

from cardledger.core import CanonicalSerializationError, Hasher, Signer


class TestHasher:
    """Canonical hashing. Changing these results breaks every stored chain."""

    def test_deterministic_hash(self):
        data = {"name": "Dark Magician", "atk": 2500}
        assert Hasher.hash_data(data) == Hasher.hash_data(dict(data))

    def test_sorted_keys(self):
        assert Hasher.hash_data({"b": 2, "a": 1}) == Hasher.hash_data({"a": 1, "b": 2})

    def test_recursively_sorted_keys(self):
        data1 = {"outer": {"z": 1, "a": 2}}
        data2 = {"outer": {"a": 2, "z": 1}}
        assert Hasher.canonicalize(data1) == Hasher.canonicalize(data2)

    def test_nulls_omitted(self):
        assert Hasher.canonicalize({"a": 1, "b": None}) == Hasher.canonicalize({"a": 1})

    def test_empty_string_preserved(self):
        assert Hasher.canonicalize({"a": ""}) != Hasher.canonicalize({"a": None})

    def test_version_marker(self):
        assert Hasher.canonicalize({"a": 1}).startswith('{"__canon_v":1')

    def test_integral_float_hashes_as_int(self):
        assert Hasher.hash_data({"score": 1.0}) == Hasher.hash_data({"score": 1})

    def test_float_rounding(self):
        assert Hasher.canonicalize({"x": 0.1 + 0.2}) == Hasher.canonicalize({"x": 0.3})

    def test_non_finite_float_rejected(self):
        with pytest.raises(CanonicalSerializationError):
            Hasher.canonicalize({"x": float("nan")})

    def test_naive_datetime_rejected(self):
        with pytest.raises(CanonicalSerializationError):
            Hasher.canonicalize({"at": datetime(2025, 1, 1)})

    def test_datetime_format(self):
        at = datetime(2025, 1, 1, 8, 30, tzinfo=timezone.utc)
        assert '"at":"2025-01-01T08:30:00.000000Z"' in Hasher.canonicalize({"at": at})

    def test_enum_value(self):
        class Color(str, Enum):
            RED = "red"

        assert Hasher.canonicalize({"c": Color.RED}) == Hasher.canonicalize({"c": "red"})

    def test_sets_rejected(self):
        with pytest.raises(CanonicalSerializationError):
            Hasher.canonicalize({"s": {1, 2}})

    def test_top_level_must_be_dict(self):
        with pytest.raises(CanonicalSerializationError):
            Hasher.canonicalize([1, 2])

    def test_checksum_prefix(self):
        checksum = Hasher.checksum({"cards": []})
        assert checksum.startswith("sha256-")
        assert len(checksum) == len("sha256-") + 64


class TestEntryChain:

    def test_first_entry_has_no_link(self):
        body = {"action": "rollback"}
        assert Hasher.hash_entry(body) == Hasher.hash_data(body)

    def test_link_changes_hash(self):
        body = {"action": "rollback"}
        previous = Hasher.hash_data({"action": "admin_edit"})
        assert Hasher.hash_entry(body, previous) != Hasher.hash_entry(body)

    def test_verify_entry(self):
        body = {"action": "rollback"}
        previous = Hasher.hash_data({"action": "admin_edit"})
        entry_hash = Hasher.hash_entry(body, previous)
        assert Hasher.verify_entry(body, entry_hash, previous)
        assert not Hasher.verify_entry({"action": "deprecated"}, entry_hash, previous)

    def test_malformed_previous_hash(self):
        with pytest.raises(CanonicalSerializationError):
            Hasher.hash_entry({"a": 1}, "not-a-hash")


class TestSigner:

    def test_sign_and_verify(self):
        private_key, public_key = Signer.generate_keypair()
        signature = Signer.sign("sha256-abc", private_key)
        assert Signer.verify("sha256-abc", signature, public_key)

    def test_public_key_derivation(self):
        private_key, public_key = Signer.generate_keypair()
        assert Signer.public_key_for(private_key) == public_key

    def test_tampered_message_fails(self):
        private_key, public_key = Signer.generate_keypair()
        signature = Signer.sign("sha256-abc", private_key)
        assert not Signer.verify("sha256-abd", signature, public_key)

    def test_wrong_key_fails(self):
        private_key, _ = Signer.generate_keypair()
        _, other_public = Signer.generate_keypair()
        signature = Signer.sign("sha256-abc", private_key)
        assert not Signer.verify("sha256-abc", signature, other_public)

    def test_garbage_signature_fails(self):
        _, public_key = Signer.generate_keypair()
        assert not Signer.verify("sha256-abc", "!!not base64!!", public_key)
