"""Node identity: Ed25519 key pair generation, persistence and signing."""

import json
import os
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from common.constants import PUBLIC_KEY_BYTES
from common.encoding import decode, encode
from common.exceptions import StorageError
from common.logging_config import get_logger
from common.types import KeyPair

logger = get_logger(__name__)


def generate_keypair() -> KeyPair:
    """
    Generate a fresh Ed25519 key pair.

    Returns:
        KeyPair with raw public key and private seed
    """
    private_key = Ed25519PrivateKey.generate()
    secret = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return KeyPair(public=public, secret=secret)


def sign(data: bytes, keypair: KeyPair) -> bytes:
    """
    Produce a detached Ed25519 signature.

    Args:
        data: Bytes to sign
        keypair: Signing key pair

    Returns:
        64-byte signature
    """
    return Ed25519PrivateKey.from_private_bytes(keypair.secret).sign(data)


def save_keypair(path: Path, keypair: KeyPair) -> None:
    """Write a key pair as JSON, readable only by the owner."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = json.dumps({
        "public": encode(keypair.public),
        "secret": encode(keypair.secret),
    })
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(data)


def load_keypair(path: Path) -> KeyPair:
    """
    Read a key pair written by save_keypair.

    Raises:
        FileNotFoundError: If the file does not exist
        ParseError: If the keys are not valid hex of the right length
    """
    with open(path, "r") as f:
        data = json.load(f)
    return KeyPair(
        public=decode(data["public"], PUBLIC_KEY_BYTES),
        secret=decode(data["secret"], PUBLIC_KEY_BYTES),
    )


def load_or_create_keypair(path: Path) -> KeyPair:
    """
    Load the node key pair, generating and saving one on first start.

    Args:
        path: Location of the key pair JSON file

    Returns:
        KeyPair for this node
    """
    try:
        keypair = load_keypair(path)
        logger.info(f"Loaded node key pair [path={path}] [public={encode(keypair.public)}]")
        return keypair
    except FileNotFoundError:
        pass

    keypair = generate_keypair()
    try:
        save_keypair(path, keypair)
    except OSError as e:
        raise StorageError(f"Cannot write key pair to {path}: {e}") from e
    logger.info(f"Generated node key pair [path={path}] [public={encode(keypair.public)}]")
    return keypair
