"""Canonical JSON, SHA-256 digest and Ed25519 signature helpers."""

import hashlib
import json
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from archive.keys import sign
from common.encoding import encode
from common.types import KeyPair


def canonicalize(document: Any) -> bytes:
    """
    Serialize a JSON document deterministically.

    Keys are sorted and insignificant whitespace removed, so documents that
    differ only in key insertion order produce identical bytes.

    Args:
        document: JSON-compatible value

    Returns:
        UTF-8 encoded canonical JSON
    """
    return json.dumps(
        document,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def compute_digest(data: bytes) -> str:
    """
    Compute SHA-256 digest for given data.

    Args:
        data: Bytes to hash

    Returns:
        Hexadecimal string representation of SHA-256 hash
    """
    return hashlib.sha256(data).hexdigest()


def document_digest(document: Any) -> str:
    """Digest of a document's canonical form: its content address."""
    return compute_digest(canonicalize(document))


def verify_digest(document: Any, expected: str) -> bool:
    """
    Verify that a document's content address matches expected.

    Args:
        document: JSON-compatible value
        expected: Expected hex digest

    Returns:
        True if digest matches, False otherwise
    """
    return document_digest(document) == expected


def verify_signature(signature: bytes, signed_bytes: bytes, public_key: bytes) -> bool:
    """
    Verify a detached Ed25519 signature.

    Args:
        signature: 64-byte signature
        signed_bytes: Bytes that were signed
        public_key: 32-byte signer public key

    Returns:
        True if the signature is valid, False otherwise (including malformed keys)
    """
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, signed_bytes)
    except (InvalidSignature, ValueError):
        return False
    return True


def make_timestamp(digest: str, uri: str, time: str, keypair: KeyPair, version: str) -> dict:
    """
    Build a signed timestamp document attesting that digest was seen at time.

    Args:
        digest: Record digest
        uri: Where the signer serves the record
        time: ISO 8601 time of the attestation
        keypair: Signer key pair
        version: Timestamp schema version

    Returns:
        {"timestamp": {...}, "signature": hex, "version": version}
    """
    timestamp = {"digest": digest, "uri": uri, "time": time}
    signature = sign(canonicalize(timestamp), keypair)
    return {
        "timestamp": timestamp,
        "signature": encode(signature),
        "version": version,
    }


class IncrementalDigestCalculator:
    """
    Calculate a SHA-256 digest incrementally for streamed data.

    Usage:
        calculator = IncrementalDigestCalculator()
        calculator.update(chunk1)
        calculator.update(chunk2)
        final_digest = calculator.finalize()
    """

    def __init__(self):
        """Initialize a new incremental digest calculator."""
        self._hasher = hashlib.sha256()
        self._finalized = False

    def update(self, data: bytes) -> None:
        """
        Update digest with new data.

        Args:
            data: Bytes to add to the digest calculation
        """
        if self._finalized:
            raise ValueError("Cannot update after finalization")
        self._hasher.update(data)

    def finalize(self) -> str:
        """
        Finalize the calculation and return the result.

        Returns:
            Hexadecimal string representation of SHA-256 hash
        """
        self._finalized = True
        return self._hasher.hexdigest()
