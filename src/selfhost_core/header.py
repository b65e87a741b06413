"""Selfhost header codec.

The header is a UTF-8 JSON object framed by a 4-byte big-endian length
prefix. It is written once by the assembler and read any number of times.
"""
from __future__ import annotations

import json
import struct
from dataclasses import dataclass
from typing import BinaryIO

from .errors import HeaderInvalid
from .protocol import (
    COMPRESSION_GZIP,
    FORMAT,
    HEADER_LEN_FMT,
    HEADER_LEN_SIZE,
    HEADER_VERSION,
    MAX_HEADER_SIZE,
    SUPPORTED_COMPRESSIONS,
)

# Python attribute -> wire field name. Order is the on-disk order.
WIRE_FIELDS = {
    "version": "version",
    "format": "format",
    "compression": "compression",
    "bundle_size": "bundleSize",
    "bundle_checksum": "bundleChecksum",
    "manifest": "manifest",
    "ops_version": "opsVersion",
    "created_at": "createdAt",
}


@dataclass
class Header:
    version: str = HEADER_VERSION
    format: str = FORMAT
    compression: str = COMPRESSION_GZIP
    bundle_size: int = 0
    bundle_checksum: str = ""
    manifest: dict | None = None
    ops_version: str = ""
    created_at: str = ""

    def to_dict(self) -> dict:
        return {wire: getattr(self, attr) for attr, wire in WIRE_FIELDS.items()}

    @classmethod
    def from_dict(cls, obj: dict) -> "Header":
        kw = {}
        for attr, wire in WIRE_FIELDS.items():
            if wire not in obj or obj[wire] is None:
                continue
            value = obj[wire]
            if attr == "bundle_size":
                # bool is an int subclass; reject it explicitly.
                if isinstance(value, bool) or not isinstance(value, int):
                    raise HeaderInvalid(wire, f"{wire} must be an integer, got {value!r}")
            elif attr == "manifest":
                if not isinstance(value, dict):
                    raise HeaderInvalid(wire, f"{wire} must be an object")
            elif not isinstance(value, str):
                raise HeaderInvalid(wire, f"{wire} must be a string, got {value!r}")
            kw[attr] = value
        # Absent fields decode to empty values so validate() can name them.
        kw.setdefault("version", "")
        kw.setdefault("format", "")
        kw.setdefault("compression", "")
        return cls(**kw)

    def validate(self) -> None:
        """Raise HeaderInvalid naming the first offending field."""
        if not self.version:
            raise HeaderInvalid("version", "header version is required")
        if self.format != FORMAT:
            raise HeaderInvalid(
                "format", f"invalid header format: expected {FORMAT!r}, got {self.format!r}"
            )
        if self.compression not in SUPPORTED_COMPRESSIONS:
            raise HeaderInvalid(
                "compression",
                f"invalid compression: expected one of {', '.join(SUPPORTED_COMPRESSIONS)}, "
                f"got {self.compression!r}",
            )
        if self.bundle_size <= 0:
            raise HeaderInvalid("bundleSize", "bundle size must be positive")
        if not self.bundle_checksum:
            raise HeaderInvalid("bundleChecksum", "bundle checksum is required")
        if self.manifest is None:
            raise HeaderInvalid("manifest", "manifest is required")
        if not self.created_at:
            raise HeaderInvalid("createdAt", "createdAt is required")


def encode_header(header: Header) -> bytes:
    return json.dumps(header.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")


def decode_header(data: bytes) -> Header:
    try:
        obj = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise HeaderInvalid("data", f"failed to parse header JSON: {e}") from e
    if not isinstance(obj, dict):
        raise HeaderInvalid("data", "header JSON must be an object")
    return Header.from_dict(obj)


def write_header(f: BinaryIO, header: Header) -> int:
    """Write the length prefix and header JSON. Returns bytes written."""
    data = encode_header(header)
    if len(data) > MAX_HEADER_SIZE:
        raise HeaderInvalid(
            "length", f"header size {len(data)} exceeds maximum allowed size {MAX_HEADER_SIZE}"
        )
    f.write(struct.pack(HEADER_LEN_FMT, len(data)))
    f.write(data)
    return HEADER_LEN_SIZE + len(data)


def read_header_framed(f: BinaryIO) -> Header:
    """Read a length-prefixed header from the current position of ``f``."""
    prefix = f.read(HEADER_LEN_SIZE)
    if len(prefix) != HEADER_LEN_SIZE:
        raise HeaderInvalid("length", "failed to read header length: truncated prefix")

    (length,) = struct.unpack(HEADER_LEN_FMT, prefix)

    # Bound memory before allocating for corrupt or hostile input.
    if length > MAX_HEADER_SIZE:
        raise HeaderInvalid(
            "length", f"header size {length} exceeds maximum allowed size {MAX_HEADER_SIZE}"
        )

    data = f.read(length)
    if len(data) != length:
        raise HeaderInvalid(
            "data", f"failed to read header data: expected {length} bytes, got {len(data)}"
        )
    return decode_header(data)
