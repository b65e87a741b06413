from __future__ import annotations

import os
import struct
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from selfhost_core.archive import unpack
from selfhost_core.digest import checksum, checksum_stream
from selfhost_core.errors import ChecksumMismatch, HeaderInvalid, IOFailure, NotAContainer
from selfhost_core.header import Header, read_header_framed
from selfhost_core.protocol import (
    FOOTER_FMT,
    FOOTER_SIZE,
    MAGIC_END_LEN,
    MAGIC_START,
    MAGIC_START_LEN,
)


@dataclass(frozen=True)
class DetectionResult:
    is_container: bool
    offset: int = 0

    def to_dict(self) -> dict:
        return {"container": self.is_container, "offset": self.offset if self.is_container else None}


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    expected_checksum: str
    actual_checksum: str

    def to_dict(self) -> dict:
        return {
            "status": "PASS" if self.valid else "FAIL",
            "expected": self.expected_checksum,
            "actual": self.actual_checksum,
        }


def _resolve(path: Path | str | None) -> Path:
    # No path means the running executable (a frozen binary inspecting itself).
    return Path(sys.executable if path is None else path)


def _probe(f: BinaryIO, size: int) -> DetectionResult:
    if size < FOOTER_SIZE:
        return DetectionResult(False)

    f.seek(size - FOOTER_SIZE)
    footer = f.read(FOOTER_SIZE)
    if len(footer) != FOOTER_SIZE:
        return DetectionResult(False)
    (offset,) = struct.unpack(FOOTER_FMT, footer)

    # The marker must start before the footer itself.
    if offset >= size - FOOTER_SIZE:
        return DetectionResult(False)

    f.seek(offset)
    if f.read(MAGIC_START_LEN) != MAGIC_START:
        return DetectionResult(False)
    return DetectionResult(True, offset)


def detect(path: Path | str | None = None) -> DetectionResult:
    """Report whether ``path`` carries an embedded container.

    A file without one is a normal outcome, not an error. Only failing to
    open or read the file raises.
    """
    p = _resolve(path)
    try:
        with open(p, "rb") as f:
            return _probe(f, os.fstat(f.fileno()).st_size)
    except OSError as e:
        raise IOFailure(str(p), "detect container in", e) from e


def detect_self() -> DetectionResult:
    return detect(None)


def _read_layout(f: BinaryIO, p: Path) -> tuple[Header, int, int]:
    """Return (header, payload offset, payload length) for an open container."""
    size = os.fstat(f.fileno()).st_size
    found = _probe(f, size)
    if not found.is_container:
        raise NotAContainer(str(p))

    f.seek(found.offset + MAGIC_START_LEN)
    header = read_header_framed(f)
    header.validate()

    payload_start = f.tell()
    payload_len = size - payload_start - MAGIC_END_LEN - FOOTER_SIZE
    if payload_len < 0:
        raise HeaderInvalid("length", f"header overruns the container trailer in {p}")
    return header, payload_start, payload_len


def read_header(path: Path | str | None = None) -> Header:
    p = _resolve(path)
    try:
        with open(p, "rb") as f:
            header, _, _ = _read_layout(f, p)
    except OSError as e:
        raise IOFailure(str(p), "read header from", e) from e
    return header


def verify(path: Path | str | None = None) -> VerificationResult:
    """Recompute the payload checksum and compare it with the header."""
    p = _resolve(path)
    try:
        with open(p, "rb") as f:
            header, payload_start, payload_len = _read_layout(f, p)
            f.seek(payload_start)
            actual = checksum_stream(f, payload_len)
    except (OSError, EOFError) as e:
        raise IOFailure(str(p), "read payload from", e) from e

    return VerificationResult(
        valid=actual == header.bundle_checksum,
        expected_checksum=header.bundle_checksum,
        actual_checksum=actual,
    )


def extract(path: Path | str | None, dest_dir: Path, skip_verify: bool = False) -> Header:
    """Unpack the embedded bundle into ``dest_dir``.

    The checksum is compared before anything is written.
    """
    p = _resolve(path)
    try:
        with open(p, "rb") as f:
            header, payload_start, payload_len = _read_layout(f, p)
            f.seek(payload_start)
            data = f.read(payload_len)
    except OSError as e:
        raise IOFailure(str(p), "read payload from", e) from e
    if len(data) != payload_len:
        raise IOFailure(str(p), "read payload from", f"expected {payload_len} bytes, got {len(data)}")

    if not skip_verify:
        actual = checksum(data)
        if actual != header.bundle_checksum:
            raise ChecksumMismatch(header.bundle_checksum, actual)

    dest_dir = Path(dest_dir)
    try:
        dest_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
    except OSError as e:
        raise IOFailure(str(dest_dir), "create output directory", e) from e

    unpack(data, dest_dir, header.compression)
    return header
