"""Content fingerprints for change detection."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from pathlib import Path

CHUNK_SIZE = 64 * 1024


def fingerprint_bytes(data: bytes) -> str:
    """Compute the SHA-256 fingerprint of in-memory content."""
    return hashlib.sha256(data).hexdigest()


def fingerprint_chunks(chunks: Iterable[bytes]) -> str:
    """Compute the SHA-256 fingerprint of streamed content."""
    sha = hashlib.sha256()
    for chunk in chunks:
        sha.update(chunk)
    return sha.hexdigest()


def fingerprint_file(path: Path) -> str:
    """Compute the SHA-256 fingerprint of a file.

    Raises:
        OSError: If the file cannot be read
    """
    with open(path, "rb") as f:
        return fingerprint_chunks(iter(lambda: f.read(CHUNK_SIZE), b""))
