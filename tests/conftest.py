import os
from pathlib import Path

import pytest

from make_bundle import generate_bundle, generate_host
from selfhost_core.manifest import new_manifest


def snapshot(root: Path) -> dict:
    """Map relative path -> (kind, payload, mode) for every entry under root."""
    out = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            p = Path(dirpath) / name
            rel = p.relative_to(root).as_posix()
            if p.is_symlink():
                out[rel] = ("symlink", os.readlink(p), None)
            elif p.is_dir():
                out[rel] = ("dir", None, None)
            else:
                out[rel] = ("file", p.read_bytes(), p.stat().st_mode & 0o777)
    return out


@pytest.fixture
def bundle_dir(tmp_path):
    return generate_bundle(str(tmp_path / "bundle"))


@pytest.fixture
def host_bin(tmp_path):
    return generate_host(str(tmp_path / "ops"))


@pytest.fixture
def manifest():
    return new_manifest("Test Bundle", "1.0.0", ["./app1"], "linux-x64")
