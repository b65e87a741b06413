"""Selfhost container protocol constants.

Single source of truth for on-disk magic values and trailer layouts.
Keep this file stable. Assembler and Detector must remain synchronized;
any change here needs a new FORMAT tag.
"""

# Section markers
MAGIC_START = b"CONVEX_BUNDLE_START\x00"  # Start of the embedded section
MAGIC_END   = b"CONVEX_BUNDLE_END\x00"    # End of the compressed payload

MAGIC_START_LEN = 20
MAGIC_END_LEN = 18

# Header block: [Length(4, big-endian) | JSON(Length)]
HEADER_LEN_FMT = ">I"
HEADER_LEN_SIZE = 4
MAX_HEADER_SIZE = 1 << 20  # 1 MiB

# Footer: [Offset of MAGIC_START(8, little-endian, unsigned)]
FOOTER_FMT = "<Q"
FOOTER_SIZE = 8

HEADER_VERSION = "1.0.0"
FORMAT = "selfhost-v1"

# Compression identifiers accepted in headers
COMPRESSION_GZIP = "gzip"
COMPRESSION_ZSTD = "zstd"
SUPPORTED_COMPRESSIONS = (COMPRESSION_GZIP, COMPRESSION_ZSTD)

CHECKSUM_ALGORITHM = "sha256"

# Output permission bits (rwxr-xr-x)
OUTPUT_MODE = 0o755

# Entries a bundle directory must contain before it can be assembled
DEFAULT_REQUIRED_FILES = (
    "manifest.json",
    "backend",
    "convex.db",
    "credentials.json",
    "storage",
)

# Read size used when streaming host bytes and payload digests
COPY_CHUNK_SIZE = 64 * 1024  # 64KB
