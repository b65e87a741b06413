import io
import json
import os
import stat
import struct
import sys
import tarfile
from pathlib import Path

import pytest

from conftest import snapshot
from selfhost_compile.cli import assemble_container, validate_inputs
from selfhost_core.digest import checksum
from selfhost_core.errors import (
    ChecksumMismatch,
    HeaderInvalid,
    IOFailure,
    NotAContainer,
    PathTraversal,
    UnsupportedCompression,
    ValidationError,
)
from selfhost_core.header import Header, write_header
from selfhost_core.protocol import (
    FOOTER_SIZE,
    FORMAT,
    HEADER_LEN_SIZE,
    HEADER_VERSION,
    MAGIC_END,
    MAGIC_END_LEN,
    MAGIC_START,
    MAGIC_START_LEN,
)
from selfhost_verify.logic import detect, detect_self, extract, read_header, verify


def payload_region(path: Path) -> tuple[int, int]:
    """Return [start, end) of the compressed payload in a container."""
    b = path.read_bytes()
    (offset,) = struct.unpack("<Q", b[-FOOTER_SIZE:])
    len_at = offset + MAGIC_START_LEN
    (header_len,) = struct.unpack(">I", b[len_at:len_at + HEADER_LEN_SIZE])
    return len_at + HEADER_LEN_SIZE + header_len, len(b) - MAGIC_END_LEN - FOOTER_SIZE


def flip(path: Path, idx: int, mask: int = 0xFF, count: int = 1) -> None:
    b = bytearray(path.read_bytes())
    for i in range(idx, idx + count):
        b[i] ^= mask
    path.write_bytes(bytes(b))


@pytest.fixture
def small_container(tmp_path, manifest):
    host = tmp_path / "host"
    host.write_bytes(b"\x00" * 1024)
    src = tmp_path / "src"
    (src / "storage").mkdir(parents=True)
    (src / "a.txt").write_bytes(b"hello")
    out = tmp_path / "container"
    assemble_container(host, src, out, manifest=manifest, required_files=["a.txt", "storage"])
    return out


@pytest.fixture
def bundle_container(tmp_path, bundle_dir, host_bin):
    out = tmp_path / "selfhost"
    assemble_container(host_bin, bundle_dir, out, ops_version="1.5.0")
    return out


def raw_container(path: Path, payload: bytes, host: bytes = b"HOST") -> Path:
    header = Header(
        bundle_size=len(payload),
        bundle_checksum=checksum(payload),
        manifest={"name": "raw"},
        created_at="2024-01-15T10:30:00Z",
    )
    with open(path, "wb") as f:
        f.write(host)
        f.write(MAGIC_START)
        write_header(f, header)
        f.write(payload)
        f.write(MAGIC_END)
        f.write(struct.pack("<Q", len(host)))
    return path


def test_scenario_small_container(small_container, tmp_path):
    result = detect(small_container)
    assert result.is_container
    assert result.offset == 1024

    header = read_header(small_container)
    assert header.bundle_size == 5
    header.validate()

    assert verify(small_container).valid

    dest = tmp_path / "fresh"
    extract(small_container, dest)
    assert (dest / "a.txt").read_bytes() == b"hello"
    assert (dest / "storage").is_dir()


def test_scenario_corruption(small_container):
    before = verify(small_container)
    start, end = payload_region(small_container)
    flip(small_container, start + (end - start) // 2 - 1, count=3)

    after = verify(small_container)
    assert not after.valid
    assert after.actual_checksum != after.expected_checksum
    assert after.expected_checksum == before.expected_checksum


def test_any_payload_bit_flip_is_detected(small_container):
    start, end = payload_region(small_container)
    original = small_container.read_bytes()
    for idx in (start, start + 7, (start + end) // 2, end - 1):
        flip(small_container, idx, mask=0x01)
        result = verify(small_container)
        assert not result.valid, idx
        small_container.write_bytes(original)
    assert verify(small_container).valid


def test_host_region_changes_do_not_affect_detection(small_container):
    flip(small_container, 100, count=16)
    result = detect(small_container)
    assert result.is_container and result.offset == 1024
    assert verify(small_container).valid


def test_detect_tiny_file(tmp_path):
    p = tmp_path / "tiny"
    p.write_bytes(b"\x01\x02\x03\x04")
    before = p.read_bytes()
    assert not detect(p).is_container
    assert p.read_bytes() == before


@pytest.mark.parametrize(
    "content",
    [
        b"",
        b"#!/bin/bash\necho 'I am a regular binary'\n",
        b"\xff" * 64,
        # Footer pointing at a valid offset with no marker there.
        b"A" * 40 + struct.pack("<Q", 4),
        # Footer pointing at itself.
        b"A" * 40 + struct.pack("<Q", 40),
        # Marker cut short by end of file.
        b"A" * 10 + MAGIC_START[:12] + struct.pack("<Q", 10),
    ],
)
def test_detect_regular_files(tmp_path, content):
    p = tmp_path / "regular"
    p.write_bytes(content)
    assert detect(p).is_container is False


def test_detect_missing_file_is_io_failure(tmp_path):
    with pytest.raises(IOFailure):
        detect(tmp_path / "nope")


def test_detect_self_on_interpreter():
    # The test interpreter carries no bundle.
    assert detect_self().is_container is False
    assert detect(None) == detect(sys.executable)


def test_assemble_output_layout(bundle_container, host_bin):
    data = bundle_container.read_bytes()
    host = host_bin.read_bytes()
    assert data.startswith(host + MAGIC_START)
    assert data[-FOOTER_SIZE - MAGIC_END_LEN:-FOOTER_SIZE] == MAGIC_END
    assert struct.unpack("<Q", data[-FOOTER_SIZE:])[0] == len(host)
    assert stat.S_IMODE(bundle_container.stat().st_mode) == 0o755


def test_read_header_from_bundle(bundle_container):
    header = read_header(bundle_container)
    assert header.version == HEADER_VERSION
    assert header.format == FORMAT
    assert header.compression == "gzip"
    assert header.ops_version == "1.5.0"
    assert header.manifest["name"] == "Test Bundle"
    assert header.manifest["platform"] == "linux-x64"
    assert header.created_at.endswith("Z")
    assert header.bundle_checksum.startswith("sha256:")
    assert header.bundle_size > 0


def test_round_trip_bundle(bundle_container, bundle_dir, tmp_path):
    dest = tmp_path / "extracted"
    header = extract(bundle_container, dest)
    assert header.manifest["version"] == "1.0.0"
    assert snapshot(dest) == snapshot(bundle_dir)
    assert os.access(dest / "backend", os.X_OK)


def test_assemble_is_idempotent(tmp_path, bundle_dir, host_bin):
    a = assemble_container(host_bin, bundle_dir, tmp_path / "a", timestamp="2024-01-01T00:00:00Z")
    b = assemble_container(host_bin, bundle_dir, tmp_path / "b", timestamp="2024-06-01T00:00:00Z")
    ha, hb = read_header(a), read_header(b)
    assert ha.created_at != hb.created_at
    ha.created_at = hb.created_at
    assert ha == hb
    assert verify(a).actual_checksum == verify(b).actual_checksum

    c = assemble_container(host_bin, bundle_dir, tmp_path / "c", timestamp="2024-01-01T00:00:00Z")
    assert a.read_bytes() == c.read_bytes()


def test_manifest_read_from_bundle_by_default(bundle_container, bundle_dir):
    on_disk = json.loads((bundle_dir / "manifest.json").read_text())
    assert read_header(bundle_container).manifest == on_disk


def test_read_paths_require_container(tmp_path):
    p = tmp_path / "regular"
    p.write_bytes(b"not a selfhost file")
    with pytest.raises(NotAContainer, match="does not contain an embedded bundle"):
        read_header(p)
    with pytest.raises(NotAContainer):
        verify(p)
    with pytest.raises(NotAContainer):
        extract(p, tmp_path / "out")
    assert not (tmp_path / "out").exists()


def test_extract_checksum_mismatch_writes_nothing(small_container, tmp_path):
    start, end = payload_region(small_container)
    flip(small_container, (start + end) // 2)
    dest = tmp_path / "out"
    with pytest.raises(ChecksumMismatch) as exc:
        extract(small_container, dest)
    assert exc.value.expected != exc.value.actual
    assert exc.value.expected in str(exc.value) and exc.value.actual in str(exc.value)
    assert not dest.exists()


def test_extract_skip_verify(bundle_container, tmp_path):
    dest = tmp_path / "out"
    header = extract(bundle_container, dest, skip_verify=True)
    assert header is not None
    for name in ("backend", "convex.db", "manifest.json", "credentials.json"):
        assert (dest / name).is_file()
    assert (dest / "storage" / "test-file.txt").read_text() == "test storage content"


def test_extract_rejects_traversal_payload(tmp_path):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        info = tarfile.TarInfo("../escape.txt")
        info.size = 3
        tar.addfile(info, io.BytesIO(b"bad"))
    container = raw_container(tmp_path / "evil", buf.getvalue())
    assert verify(container).valid
    with pytest.raises(PathTraversal):
        extract(container, tmp_path / "dest")
    assert not (tmp_path / "escape.txt").exists()


def test_header_overrunning_trailer_is_invalid(tmp_path):
    p = raw_container(tmp_path / "short", b"ab")
    # Chop the end marker so the header runs into the footer region.
    data = p.read_bytes()
    p.write_bytes(data[:-FOOTER_SIZE - MAGIC_END_LEN] + data[-FOOTER_SIZE:])
    with pytest.raises(HeaderInvalid) as exc:
        verify(p)
    assert exc.value.field == "length"


def test_wrong_format_tag_is_rejected(tmp_path):
    p = tmp_path / "other"
    header = Header(format="selfhost-v9", bundle_size=1, bundle_checksum="sha256:00",
                    manifest={}, created_at="2024-01-15T10:30:00Z")
    with open(p, "wb") as f:
        f.write(MAGIC_START)
        write_header(f, header)
        f.write(b"x" + MAGIC_END + struct.pack("<Q", 0))
    assert detect(p).is_container
    with pytest.raises(HeaderInvalid) as exc:
        read_header(p)
    assert exc.value.field == "format"


def test_validate_inputs(tmp_path, bundle_dir, host_bin):
    out = tmp_path / "out"
    validate_inputs(host_bin, bundle_dir, out, "gzip")

    with pytest.raises(ValidationError, match="bundle directory does not exist"):
        validate_inputs(host_bin, tmp_path / "nonexistent", out, "gzip")
    with pytest.raises(ValidationError, match="not a directory"):
        validate_inputs(host_bin, host_bin, out, "gzip")
    with pytest.raises(ValidationError, match="host executable does not exist"):
        validate_inputs(tmp_path / "nonexistent-ops", bundle_dir, out, "gzip")
    with pytest.raises(ValidationError, match="is a directory"):
        validate_inputs(bundle_dir, bundle_dir, out, "gzip")
    with pytest.raises(ValidationError, match="invalid compression"):
        validate_inputs(host_bin, bundle_dir, out, "lz4")
    with pytest.raises(ValidationError, match="must differ"):
        validate_inputs(host_bin, bundle_dir, host_bin, "gzip")


@pytest.mark.parametrize("missing", ["manifest.json", "backend", "convex.db", "credentials.json", "storage"])
def test_validate_inputs_missing_bundle_entry(tmp_path, bundle_dir, host_bin, missing):
    target = bundle_dir / missing
    if target.is_dir():
        for child in target.iterdir():
            child.unlink()
        target.rmdir()
    else:
        target.unlink()
    out = tmp_path / "out"
    with pytest.raises(ValidationError, match=f"missing required file: {missing}"):
        assemble_container(host_bin, bundle_dir, out)
    assert not out.exists()


def test_assemble_zstd_is_not_implemented(tmp_path, bundle_dir, host_bin):
    with pytest.raises(UnsupportedCompression, match="not yet implemented"):
        assemble_container(host_bin, bundle_dir, tmp_path / "out", compression="zstd")


def test_assemble_empty_content_fails_header_validation(tmp_path, host_bin, manifest):
    src = tmp_path / "src"
    (src / "storage").mkdir(parents=True)
    with pytest.raises(HeaderInvalid) as exc:
        assemble_container(host_bin, src, tmp_path / "out", manifest=manifest, required_files=["storage"])
    assert exc.value.field == "bundleSize"
