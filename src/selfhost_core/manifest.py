"""Bundle manifest helpers.

The manifest is opaque to the container format. These helpers only build
and load the record the bundler writes as ``manifest.json``.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from .errors import IOFailure, ValidationError


def utc_timestamp() -> str:
    """Current UTC time as RFC3339 with second precision and a Z suffix."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def new_manifest(name: str, version: str, apps: list[str], platform: str) -> dict:
    return {
        "name": name,
        "version": version,
        "apps": list(apps),
        "platform": platform,
        "createdAt": utc_timestamp(),
    }


def manifest_to_json(manifest: dict) -> bytes:
    return json.dumps(manifest, indent=2, ensure_ascii=False).encode("utf-8")


def load_manifest(path: Path) -> dict:
    """Read a manifest.json file. The record must be a JSON object."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise IOFailure(str(path), "read manifest", e) from e
    try:
        obj = json.loads(text)
    except ValueError as e:
        raise ValidationError(f"failed to parse manifest {path}: {e}") from e
    if not isinstance(obj, dict):
        raise ValidationError(f"manifest {path} must be a JSON object")
    return obj
