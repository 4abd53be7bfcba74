"""File fingerprinting.

A fingerprint is the hex SHA-256 digest of a file's content. It is only
ever compared for equality, so callers treat it as an opaque token.
"""

import hashlib
from pathlib import Path

BLOCK_SIZE = 1024 * 1024


def compute_fingerprint(path: Path) -> str:
    """Compute the SHA-256 fingerprint of a file.

    Reads the file in blocks to handle large files efficiently.

    Args:
        path: Path to the file to hash.

    Returns:
        Hexadecimal SHA-256 hash string.
    """
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(BLOCK_SIZE), b""):
            hasher.update(block)
    return hasher.hexdigest()
