"""Shared data type definitions (Peer, Accession, KeyPair, ArchiveConfig, etc.)."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from common.encoding import encode


@dataclass
class Peer:
    """
    A replication source.

    Attributes:
        endpoint: Base URL of the peer (no trailing slash)
        public_key: Raw 32-byte Ed25519 verification key
        last: Highest accession number already replicated from this peer
    """
    endpoint: str
    public_key: bytes
    last: int = 0

    @property
    def encoded_key(self) -> str:
        return encode(self.public_key)

    def advance(self, accession_number: int) -> None:
        """Move the cursor forward; never backwards."""
        if accession_number > self.last:
            self.last = accession_number


@dataclass(frozen=True)
class Accession:
    """
    One element of a peer's accession feed.
    """
    number: int
    digest: str


@dataclass(frozen=True)
class KeyPair:
    """
    Ed25519 key pair held as raw bytes.

    Attributes:
        public: 32-byte public key
        secret: 32-byte private seed
    """
    public: bytes
    secret: bytes = field(repr=False)


@dataclass(frozen=True)
class ArchiveConfig:
    """
    Everything an operation needs to know about the local node.
    """
    directory: Path
    hostname: str
    keypair: KeyPair


@dataclass
class PeerOutcome:
    """
    Result of one replication cycle for one peer.
    """
    peer: Peer
    starting_cursor: int
    replicated: int = 0
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None
