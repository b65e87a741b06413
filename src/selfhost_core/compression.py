"""Compression strategies for the payload stream.

A closed set selected by the identifier stored in the header. Each strategy
wraps a binary writer for packing and a binary reader for unpacking.
"""
from __future__ import annotations

import gzip
from typing import BinaryIO

from .errors import UnsupportedCompression
from .protocol import COMPRESSION_GZIP, COMPRESSION_ZSTD


class CompressionStrategy:
    name = ""

    def compress(self, writer: BinaryIO) -> BinaryIO:
        raise NotImplementedError

    def decompress(self, reader: BinaryIO) -> BinaryIO:
        raise NotImplementedError


class GzipCompression(CompressionStrategy):
    name = COMPRESSION_GZIP

    def compress(self, writer: BinaryIO) -> BinaryIO:
        # mtime=0 keeps the stream byte-identical for identical input.
        return gzip.GzipFile(fileobj=writer, mode="wb", mtime=0)

    def decompress(self, reader: BinaryIO) -> BinaryIO:
        return gzip.GzipFile(fileobj=reader, mode="rb")


class ZstdCompression(CompressionStrategy):
    """Declared by the format but not implemented yet."""
    name = COMPRESSION_ZSTD

    def compress(self, writer: BinaryIO) -> BinaryIO:
        raise UnsupportedCompression(self.name, "zstd compression is not yet implemented")

    def decompress(self, reader: BinaryIO) -> BinaryIO:
        raise UnsupportedCompression(self.name, "zstd decompression is not yet implemented")


STRATEGIES: dict[str, CompressionStrategy] = {
    COMPRESSION_GZIP: GzipCompression(),
    COMPRESSION_ZSTD: ZstdCompression(),
}


def get_strategy(name: str) -> CompressionStrategy:
    try:
        return STRATEGIES[name]
    except KeyError:
        raise UnsupportedCompression(name) from None
