"""Selfhost Core - container format, header codec and payload transcoder."""
from .archive import pack, unpack
from .digest import checksum, checksum_stream
from .errors import (
    ChecksumMismatch,
    HeaderInvalid,
    IOFailure,
    NotAContainer,
    PathTraversal,
    PlatformMismatch,
    SelfhostError,
    UnsupportedCompression,
    ValidationError,
)
from .header import Header, decode_header, encode_header, read_header_framed, write_header

__all__ = [
    "pack", "unpack", "checksum", "checksum_stream",
    "Header", "encode_header", "decode_header", "write_header", "read_header_framed",
    "SelfhostError", "ValidationError", "HeaderInvalid", "NotAContainer", "PathTraversal",
    "UnsupportedCompression", "ChecksumMismatch", "PlatformMismatch", "IOFailure",
]
