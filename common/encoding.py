"""Text encoding of digests, keys and signatures (lower-case hex)."""

import re

from common.constants import DIGEST_BYTES
from common.exceptions import ParseError

_HEX_DIGEST = re.compile(r"^[0-9a-f]{%d}$" % (DIGEST_BYTES * 2))


def encode(data: bytes) -> str:
    """
    Encode raw bytes for use in paths, URLs and the registry file.

    Args:
        data: Raw bytes

    Returns:
        Lower-case hexadecimal string
    """
    return data.hex()


def decode(text: str, length: int = None) -> bytes:
    """
    Decode a hex string, optionally requiring an exact byte length.

    Args:
        text: Hexadecimal string
        length: Expected number of decoded bytes, or None for any

    Returns:
        Decoded bytes

    Raises:
        ParseError: If text is not valid hex or has the wrong length
    """
    try:
        data = bytes.fromhex(text)
    except (ValueError, TypeError) as e:
        raise ParseError(f"Invalid hex encoding: {text!r}") from e
    if length is not None and len(data) != length:
        raise ParseError(f"Expected {length} bytes, got {len(data)}: {text!r}")
    return data


def is_digest(text) -> bool:
    """Return True if text is an encoded 32-byte digest or key."""
    return isinstance(text, str) and _HEX_DIGEST.match(text) is not None


def require_digest(text, what: str = "digest") -> str:
    """
    Validate an encoded digest or key before it is used to build a path.

    Raises:
        ParseError: If text is not 64 lower-case hex characters
    """
    if not is_digest(text):
        raise ParseError(f"Malformed {what}: {text!r}")
    return text
