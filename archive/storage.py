"""Content-addressed store on disk: path derivation, exclusive writes and reads."""

import json
import os
from pathlib import Path
from typing import Any, List, Optional

from common.constants import (
    ATTACHMENTS_DIR_NAME,
    CONTENT_TYPE_SUFFIX,
    PUBLICATIONS_DIR_NAME,
    RECORD_FILE_NAME,
    TIMESTAMPS_DIR_NAME,
)
from common.encoding import is_digest, require_digest
from common.exceptions import NotFoundError, ParseError, StorageError


def record_directory_path(directory: Path, digest: str) -> Path:
    """
    Get the directory holding a record and its timestamps and attachments.

    Records are partitioned by the first two digest characters.

    Args:
        directory: Storage root
        digest: Record digest

    Returns:
        Path of the record directory
    """
    require_digest(digest)
    return Path(directory) / PUBLICATIONS_DIR_NAME / digest[:2] / digest


def record_path(directory: Path, digest: str) -> Path:
    """Path of the canonical record body."""
    return record_directory_path(directory, digest) / RECORD_FILE_NAME


def timestamp_path(directory: Path, digest: str, signer_key: str) -> Path:
    """Path of the timestamp of digest signed by signer_key (hex)."""
    require_digest(signer_key, "public key")
    return record_directory_path(directory, digest) / TIMESTAMPS_DIR_NAME / f"{signer_key}.json"


def attachment_path(directory: Path, digest: str, attachment_digest: str) -> Path:
    """Path of an attachment body; its content type lives beside it."""
    require_digest(attachment_digest, "attachment digest")
    return record_directory_path(directory, digest) / ATTACHMENTS_DIR_NAME / attachment_digest


def content_type_path(path: Path) -> Path:
    """Sidecar path holding the content type of an attachment."""
    return path.with_name(path.name + CONTENT_TYPE_SUFFIX)


def ensure_directory(directory: Path, digest: str) -> Path:
    """
    Create a record directory tree; safe if it already exists.

    Raises:
        StorageError: If the directories cannot be created
    """
    record_dir = record_directory_path(directory, digest)
    try:
        (record_dir / TIMESTAMPS_DIR_NAME).mkdir(parents=True, exist_ok=True)
        (record_dir / ATTACHMENTS_DIR_NAME).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(f"Cannot create {record_dir}: {e}") from e
    return record_dir


def write_if_absent(path: Path, data: bytes) -> bool:
    """
    Create a file with data unless it already exists.

    Existing files are left untouched whatever their content, which makes
    repeated or concurrent deliveries of the same content converge.

    Args:
        path: File to create
        data: File content

    Returns:
        True if this call created the file, False if it already existed

    Raises:
        StorageError: On any other I/O failure
    """
    try:
        with open(path, "xb") as f:
            f.write(data)
    except FileExistsError:
        return False
    except OSError as e:
        raise StorageError(f"Cannot write {path}: {e}") from e
    return True


def exists(path: Path) -> bool:
    """
    Check whether a stored file exists.

    Raises:
        StorageError: If existence cannot be determined (e.g. permissions)
    """
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StorageError(f"Cannot stat {path}: {e}") from e
    return True


def remove_file(path: Path) -> bool:
    """
    Delete a file.

    Returns:
        True if the file was deleted, False if it didn't exist
    """
    try:
        os.unlink(path)
    except FileNotFoundError:
        return False
    return True


def _read_json(path: Path, what: str) -> Any:
    try:
        with open(path, "rb") as f:
            return json.loads(f.read())
    except FileNotFoundError as e:
        raise NotFoundError(f"{what} not found") from e
    except ValueError as e:
        raise ParseError(f"Stored {what} is not valid JSON: {path}") from e
    except OSError as e:
        raise StorageError(f"Cannot read {path}: {e}") from e


def read_record(directory: Path, digest: str) -> Any:
    """
    Read and parse a stored record.

    Raises:
        NotFoundError: If no record with digest is stored
    """
    return _read_json(record_path(directory, digest), f"Publication {digest}")


def read_timestamp(directory: Path, digest: str, signer_key: str) -> Any:
    """
    Read and parse a stored timestamp.

    Raises:
        NotFoundError: If no such timestamp is stored
    """
    return _read_json(
        timestamp_path(directory, digest, signer_key),
        f"Timestamp of {digest} by {signer_key}"
    )


def list_timestamp_keys(directory: Path, digest: str) -> List[str]:
    """
    List signer keys with a stored timestamp for digest.

    Raises:
        NotFoundError: If no record with digest is stored
    """
    if not exists(record_path(directory, digest)):
        raise NotFoundError(f"Publication {digest} not found")
    timestamps_dir = record_directory_path(directory, digest) / TIMESTAMPS_DIR_NAME
    keys = [p.stem for p in timestamps_dir.glob("*.json") if is_digest(p.stem)]
    return sorted(keys)


def read_attachment_type(directory: Path, digest: str, attachment_digest: str) -> Optional[str]:
    """Stored content type of an attachment, or None if the sidecar is missing."""
    path = content_type_path(attachment_path(directory, digest, attachment_digest))
    try:
        return path.read_text(encoding="utf-8").strip() or None
    except FileNotFoundError:
        return None
