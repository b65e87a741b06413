"""Selfhost error taxonomy.

Every error carries a stable ``code`` (see ``const.ERRORS``) and the exit
code a command line wrapper should terminate with.
"""
from __future__ import annotations

from .const import ERRORS, ExitCode


class SelfhostError(Exception):
    code = "E_IO"
    exit_code = ExitCode.GENERAL_ERROR

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    @property
    def summary(self) -> str:
        return ERRORS[self.code]

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.summary, "detail": self.detail}


class ValidationError(SelfhostError):
    """A precondition failed before anything was written."""
    code = "E_VALIDATION"
    exit_code = ExitCode.INVALID_ARGUMENTS


class HeaderInvalid(SelfhostError):
    code = "E_HEADER_INVALID"

    def __init__(self, field: str, detail: str):
        super().__init__(detail)
        self.field = field

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["field"] = self.field
        return d


class NotAContainer(SelfhostError):
    code = "E_NOT_A_CONTAINER"

    def __init__(self, path: str):
        super().__init__(f"file does not contain an embedded bundle: {path}")
        self.path = path


class PathTraversal(SelfhostError):
    code = "E_PATH_TRAVERSAL"
    exit_code = ExitCode.EXTRACTION_FAILED

    def __init__(self, name: str):
        super().__init__(f"invalid path in archive: {name}")
        self.name = name


class UnsupportedCompression(SelfhostError):
    code = "E_UNSUPPORTED_COMPRESSION"

    def __init__(self, algorithm: str, detail: str | None = None):
        super().__init__(detail or f"unsupported compression: {algorithm}")
        self.algorithm = algorithm


class ChecksumMismatch(SelfhostError):
    code = "E_CHECKSUM_MISMATCH"
    exit_code = ExitCode.VERIFICATION_FAILED

    def __init__(self, expected: str, actual: str):
        super().__init__(f"checksum mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual

    def to_dict(self) -> dict:
        d = super().to_dict()
        d.update({"expected": self.expected, "actual": self.actual})
        return d


class PlatformMismatch(SelfhostError):
    code = "E_PLATFORM_MISMATCH"
    exit_code = ExitCode.PLATFORM_MISMATCH

    def __init__(self, declared: str, detected: str):
        super().__init__(f"platform mismatch: bundle is for {declared}, host is {detected}")
        self.declared = declared
        self.detected = detected

    def to_dict(self) -> dict:
        d = super().to_dict()
        d.update({"declared": self.declared, "detected": self.detected})
        return d


class IOFailure(SelfhostError):
    code = "E_IO"

    def __init__(self, path: str, operation: str, reason: object):
        super().__init__(f"failed to {operation} {path}: {reason}")
        self.path = path
        self.operation = operation
