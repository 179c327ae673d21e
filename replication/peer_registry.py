"""Peer registry file: one `endpoint,publicKey,last` line per peer."""

import os
import tempfile
from pathlib import Path
from typing import List

from common.constants import PEERS_FILE_NAME, PUBLIC_KEY_BYTES
from common.encoding import decode, encode
from common.exceptions import MalformedPeerLineError, ParseError
from common.logging_config import get_logger
from common.types import Peer

logger = get_logger(__name__)


def peers_path(directory: Path) -> Path:
    return Path(directory) / PEERS_FILE_NAME


def normalize_endpoint(endpoint: str) -> str:
    """Strip whitespace and trailing slashes so paths can be appended."""
    return endpoint.strip().rstrip("/")


def parse_peer_line(line: str, line_number: int) -> Peer:
    """
    Parse one registry line.

    Args:
        line: `endpoint,hexPublicKey,last`
        line_number: 1-based line number, for error reporting

    Returns:
        Peer

    Raises:
        MalformedPeerLineError: If the line cannot be parsed
    """
    fields = line.strip().split(",")
    if len(fields) != 3:
        raise MalformedPeerLineError(
            f"Expected 3 fields, got {len(fields)}", line_number
        )
    endpoint, encoded_key, last = fields
    endpoint = normalize_endpoint(endpoint)
    if not endpoint.startswith(("http://", "https://")):
        raise MalformedPeerLineError(f"Invalid endpoint: {endpoint!r}", line_number)
    try:
        public_key = decode(encoded_key.strip(), PUBLIC_KEY_BYTES)
    except ParseError as e:
        raise MalformedPeerLineError(str(e), line_number) from e
    try:
        cursor = int(last.strip())
    except ValueError as e:
        raise MalformedPeerLineError(f"Invalid accession number: {last!r}", line_number) from e
    if cursor < 0:
        raise MalformedPeerLineError(f"Negative accession number: {cursor}", line_number)
    return Peer(endpoint=endpoint, public_key=public_key, last=cursor)


def format_peer_line(peer: Peer) -> str:
    return f"{peer.endpoint},{encode(peer.public_key)},{peer.last}"


def load_peers(directory: Path) -> List[Peer]:
    """
    Read the peer registry.

    Malformed lines are logged and skipped; a missing file means no peers.

    Args:
        directory: Storage root

    Returns:
        Peers in file order
    """
    path = peers_path(directory)
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().split("\n")
    except FileNotFoundError:
        logger.info(f"No peer registry found [path={path}]")
        return []

    peers = []
    for number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            peers.append(parse_peer_line(line, number))
        except MalformedPeerLineError as e:
            logger.error(f"Peers parse error: {e} [line={line!r}] [number={e.line_number}]")

    logger.info(f"Loaded {len(peers)} peers [path={path}]")
    return peers


def save_peers(directory: Path, peers: List[Peer]) -> None:
    """
    Rewrite the peer registry atomically.

    The new content is written to a temporary file in the same directory
    and renamed over the registry.

    Args:
        directory: Storage root
        peers: Peers to persist, in order
    """
    path = peers_path(directory)
    data = "\n".join(format_peer_line(peer) for peer in peers)
    if data:
        data += "\n"

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{PEERS_FILE_NAME}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise

    logger.debug(f"Persisted {len(peers)} peers [path={path}]")
