"""Configuration settings for the archive node, read from the environment."""

import os
from pathlib import Path

from common.constants import (
    DEFAULT_ARCHIVE_DIRECTORY,
    DEFAULT_ARCHIVE_HOSTNAME,
    DEFAULT_ARCHIVE_PORT,
    DEFAULT_PEER_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_REPLICATION_INTERVAL_SECONDS,
    KEYPAIR_FILE_NAME,
)
from common.types import ArchiveConfig, KeyPair


ARCHIVE_DIRECTORY = os.environ.get("ARCHIVE_DIRECTORY", DEFAULT_ARCHIVE_DIRECTORY)

ARCHIVE_HOSTNAME = os.environ.get("ARCHIVE_HOSTNAME", DEFAULT_ARCHIVE_HOSTNAME)

ARCHIVE_KEYPAIR_PATH = os.environ.get("ARCHIVE_KEYPAIR_PATH") or str(
    Path(ARCHIVE_DIRECTORY) / KEYPAIR_FILE_NAME
)

REPLICATION_INTERVAL = int(
    os.environ.get("REPLICATION_INTERVAL", str(DEFAULT_REPLICATION_INTERVAL_SECONDS))
)

PEER_REQUEST_TIMEOUT = float(
    os.environ.get("PEER_REQUEST_TIMEOUT", str(DEFAULT_PEER_REQUEST_TIMEOUT_SECONDS))
)

ARCHIVE_HOST = os.environ.get("ARCHIVE_HOST", "0.0.0.0")

ARCHIVE_PORT = int(os.environ.get("ARCHIVE_PORT", str(DEFAULT_ARCHIVE_PORT)))


def request_timeout():
    """Timeout for peer requests; None when disabled."""
    return PEER_REQUEST_TIMEOUT if PEER_REQUEST_TIMEOUT > 0 else None


def build_archive_config(keypair: KeyPair) -> ArchiveConfig:
    """
    Build the node configuration from the environment.

    Creates the storage directory on first use.

    Args:
        keypair: Node identity, loaded by the entry point

    Returns:
        ArchiveConfig for this process
    """
    directory = Path(ARCHIVE_DIRECTORY)
    directory.mkdir(parents=True, exist_ok=True)
    return ArchiveConfig(
        directory=directory,
        hostname=ARCHIVE_HOSTNAME,
        keypair=keypair,
    )
