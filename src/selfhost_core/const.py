import enum

ERRORS = {
  "E_VALIDATION": "Bundle inputs failed validation",
  "E_HEADER_INVALID": "Container header invalid",
  "E_NOT_A_CONTAINER": "File does not contain an embedded bundle",
  "E_PATH_TRAVERSAL": "Archive entry escapes the extraction directory",
  "E_UNSUPPORTED_COMPRESSION": "Compression algorithm not supported",
  "E_CHECKSUM_MISMATCH": "Bundle checksum does not match header",
  "E_PLATFORM_MISMATCH": "Bundle platform does not match host",
  "E_IO": "Filesystem operation failed",
}


class ExitCode(enum.IntEnum):
    """Process exit codes shared by the selfhost command line tools."""
    SUCCESS = 0
    GENERAL_ERROR = 1
    INVALID_ARGUMENTS = 2
    VERIFICATION_FAILED = 3
    PLATFORM_MISMATCH = 4
    EXTRACTION_FAILED = 5
    INSTALLATION_FAILED = 6
