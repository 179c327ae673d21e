"""Tests for canonical JSON, digests, signatures and node keys."""

import hashlib
import os
import stat

import pytest

from archive.integrity import (
    IncrementalDigestCalculator,
    canonicalize,
    compute_digest,
    document_digest,
    make_timestamp,
    verify_digest,
    verify_signature,
)
from archive.keys import generate_keypair, load_keypair, load_or_create_keypair, save_keypair, sign
from archive.schemas import TIMESTAMP, validate_schema
from common.encoding import decode, encode, is_digest
from common.exceptions import ParseError


class TestCanonicalize:
    """Test deterministic serialization."""

    def test_key_order_does_not_matter(self):
        assert canonicalize({"b": 1, "a": {"d": 2, "c": 3}}) == canonicalize({"a": {"c": 3, "d": 2}, "b": 1})

    def test_no_whitespace(self):
        assert canonicalize({"a": [1, 2], "b": "x"}) == b'{"a":[1,2],"b":"x"}'

    def test_unicode_kept_as_utf8(self):
        assert canonicalize({"name": "Zoë"}) == '{"name":"Zoë"}'.encode("utf-8")

    def test_document_digest_is_sha256_of_canonical_form(self):
        document = {"b": 2, "a": 1}

        assert document_digest(document) == hashlib.sha256(b'{"a":1,"b":2}').hexdigest()
        assert is_digest(document_digest(document))

    def test_verify_digest(self):
        document = {"a": 1}

        assert verify_digest(document, document_digest(document)) is True
        assert verify_digest({"a": 2}, document_digest(document)) is False


class TestSignatures:
    """Test Ed25519 signing and verification."""

    def test_valid_signature(self):
        keypair = generate_keypair()
        signature = sign(b"message", keypair)

        assert len(signature) == 64
        assert verify_signature(signature, b"message", keypair.public) is True

    def test_tampered_message(self):
        keypair = generate_keypair()
        signature = sign(b"message", keypair)

        assert verify_signature(signature, b"massage", keypair.public) is False

    def test_wrong_key(self):
        signature = sign(b"message", generate_keypair())

        assert verify_signature(signature, b"message", generate_keypair().public) is False

    def test_malformed_key_is_not_an_error(self):
        signature = sign(b"message", generate_keypair())

        assert verify_signature(signature, b"message", b"short") is False

    def test_timestamp_is_valid_and_verifiable(self):
        keypair = generate_keypair()
        digest = compute_digest(b"record")

        timestamp = make_timestamp(digest, "https://a.test/publications/x", "2024-01-01T00:00:00.000Z", keypair, "1.0.0")

        assert validate_schema(timestamp, TIMESTAMP) == []
        assert timestamp["timestamp"]["digest"] == digest
        assert verify_signature(
            decode(timestamp["signature"], 64),
            canonicalize(timestamp["timestamp"]),
            keypair.public
        )


class TestIncrementalDigestCalculator:
    """Test streamed digest computation."""

    def test_matches_one_shot_digest(self):
        calculator = IncrementalDigestCalculator()
        for chunk in (b"hello ", b"streamed ", b"world"):
            calculator.update(chunk)

        assert calculator.finalize() == compute_digest(b"hello streamed world")

    def test_update_after_finalize_fails(self):
        calculator = IncrementalDigestCalculator()
        calculator.finalize()

        with pytest.raises(ValueError):
            calculator.update(b"late")


class TestEncoding:
    """Test hex encoding of keys and digests."""

    def test_decode_roundtrip(self):
        assert decode(encode(b"\x00\xff"), 2) == b"\x00\xff"

    def test_decode_invalid_hex(self):
        with pytest.raises(ParseError):
            decode("xyz")

    def test_decode_wrong_length(self):
        with pytest.raises(ParseError):
            decode("00ff", 32)


class TestNodeKeys:
    """Test key pair persistence."""

    def test_save_and_load(self, tmp_path):
        keypair = generate_keypair()
        path = tmp_path / "keys" / "keypair.json"

        save_keypair(path, keypair)

        assert load_keypair(path) == keypair
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_load_or_create_is_stable(self, tmp_path):
        path = tmp_path / "keypair.json"

        first = load_or_create_keypair(path)
        second = load_or_create_keypair(path)

        assert first == second
        assert path.exists()

    def test_secret_not_in_repr(self):
        keypair = generate_keypair()

        assert "secret" not in repr(keypair)
