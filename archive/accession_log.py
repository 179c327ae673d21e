"""Local accession log: one `isoTime,digest` line per newly stored record."""

from pathlib import Path
from typing import Iterator, Tuple

from common.constants import ACCESSIONS_FILE_NAME
from common.exceptions import StorageError


def accessions_path(directory: Path) -> Path:
    """Path of the accession log under the storage root."""
    return Path(directory) / ACCESSIONS_FILE_NAME


def append_accession(directory: Path, time: str, digest: str) -> None:
    """
    Append one accession to the log.

    Args:
        directory: Storage root
        time: ISO 8601 time the record was stored
        digest: Record digest

    Raises:
        StorageError: If the log cannot be written
    """
    try:
        with open(accessions_path(directory), "a", encoding="utf-8") as f:
            f.write(f"{time},{digest}\n")
    except OSError as e:
        raise StorageError(f"Cannot append to accession log: {e}") from e


def read_accessions_from(directory: Path, first: int = 1) -> Iterator[Tuple[int, str]]:
    """
    Stream log lines with accession number >= first.

    Accession numbers count non-empty lines from 1; blank lines are
    neither served nor numbered.

    Args:
        directory: Storage root
        first: First accession number to return

    Yields:
        (accession_number, line) pairs, line without trailing newline
    """
    path = accessions_path(directory)
    if not path.exists():
        return
    number = 0
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.rstrip("\n")
            if not line:
                continue
            number += 1
            if number >= first:
                yield number, line


def count_accessions(directory: Path) -> int:
    """Number of accessions in the log, i.e. its non-empty lines."""
    path = accessions_path(directory)
    if not path.exists():
        return 0
    with open(path, "r", encoding="utf-8") as f:
        return sum(1 for line in f if line.rstrip("\n"))
