"""Selfhost payload checksums."""
from __future__ import annotations

import hashlib
from typing import BinaryIO

from .protocol import CHECKSUM_ALGORITHM, COPY_CHUNK_SIZE


def _render(h) -> str:
    return f"{CHECKSUM_ALGORITHM}:{h.hexdigest()}"


def checksum(data: bytes) -> str:
    """Return ``sha256:<hex>`` for the exact byte sequence."""
    return _render(hashlib.sha256(data))


def checksum_stream(f: BinaryIO, length: int) -> str:
    """Digest exactly ``length`` bytes from the current position of ``f``.

    Produces the same string as ``checksum`` over the same bytes. Raises
    EOFError if the stream ends early.
    """
    h = hashlib.sha256()
    remaining = length
    while remaining > 0:
        chunk = f.read(min(COPY_CHUNK_SIZE, remaining))
        if not chunk:
            raise EOFError(f"stream ended with {remaining} bytes left to digest")
        h.update(chunk)
        remaining -= len(chunk)
    return _render(h)
