"""Payload transcoder: directory tree <-> compressed tar stream."""
from __future__ import annotations

import io
import os
import shutil
import tarfile
import zlib
from pathlib import Path
from typing import Iterator
from warnings import warn

from .compression import get_strategy
from .errors import IOFailure, PathTraversal
from .protocol import COMPRESSION_GZIP


def _walk(root: Path, rel: str = "") -> Iterator[tuple[str, os.DirEntry]]:
    """Yield (relative posix path, entry) in sorted pre-order. Symlinks are not followed."""
    with os.scandir(root / rel if rel else root) as it:
        entries = sorted(it, key=lambda e: e.name)
    for entry in entries:
        rel_path = f"{rel}/{entry.name}" if rel else entry.name
        yield rel_path, entry
        if entry.is_dir(follow_symlinks=False):
            yield from _walk(root, rel_path)


def pack(source_dir: Path, compression: str = COMPRESSION_GZIP) -> tuple[bytes, int]:
    """Pack ``source_dir`` into a compressed tar stream.

    Returns (compressed bytes, sum of regular file sizes).
    """
    source_dir = Path(source_dir)
    strategy = get_strategy(compression)

    buf = io.BytesIO()
    total = 0
    stream = strategy.compress(buf)
    try:
        with tarfile.open(fileobj=stream, mode="w|", format=tarfile.PAX_FORMAT) as tar:
            for rel, entry in _walk(source_dir):
                info = tar.gettarinfo(entry.path, arcname=rel)
                if info is None:
                    warn(f"Skipping unsupported entry {rel}")
                    continue
                info.mtime = int(info.mtime)

                if info.islnk():
                    # Hard links are stored as independent regular files.
                    info.type = tarfile.REGTYPE
                    info.linkname = ""
                    info.size = entry.stat(follow_symlinks=False).st_size

                if info.isreg():
                    with open(entry.path, "rb") as f:
                        tar.addfile(info, f)
                    total += info.size
                elif info.isdir() or info.issym():
                    tar.addfile(info)
                else:
                    warn(f"Skipping unsupported entry {rel}")
    except OSError as e:
        raise IOFailure(str(source_dir), "pack", e) from e
    finally:
        stream.close()

    return buf.getvalue(), total


def _resolve_member(dest: str, real_dest: str, name: str) -> str:
    target = os.path.normpath(os.path.join(dest, name))
    if os.path.commonpath([dest, target]) != dest:
        raise PathTraversal(name)
    # Refuse to write through a symlink created by an earlier entry.
    parent = os.path.realpath(os.path.dirname(target))
    if os.path.commonpath([real_dest, parent]) != real_dest:
        raise PathTraversal(name)
    return target


def _remove_existing(target: str) -> None:
    if os.path.isdir(target) and not os.path.islink(target):
        shutil.rmtree(target)
    else:
        os.unlink(target)


def unpack(data: bytes, dest_dir: Path, compression: str = COMPRESSION_GZIP) -> int:
    """Materialize a compressed tar stream under ``dest_dir``.

    Aborts with PathTraversal on the first entry that would land outside
    ``dest_dir``. Returns the number of entries written.
    """
    strategy = get_strategy(compression)
    dest = os.path.abspath(dest_dir)
    real_dest = os.path.realpath(dest)
    written = 0

    reader = strategy.decompress(io.BytesIO(data))
    try:
        with tarfile.open(fileobj=reader, mode="r|") as tar:
            for member in tar:
                target = _resolve_member(dest, real_dest, member.name)

                if member.isdir():
                    # Owner keeps rwx so later entries can be written inside.
                    os.makedirs(target, mode=0o700, exist_ok=True)
                    os.chmod(target, (member.mode & 0o777) | 0o700)

                elif member.isreg():
                    os.makedirs(os.path.dirname(target), mode=0o755, exist_ok=True)
                    if os.path.islink(target):
                        os.unlink(target)
                    src = tar.extractfile(member)
                    with open(target, "wb") as out:
                        shutil.copyfileobj(src, out)
                    os.chmod(target, member.mode & 0o7777)

                elif member.issym():
                    os.makedirs(os.path.dirname(target), mode=0o755, exist_ok=True)
                    if os.path.lexists(target):
                        _remove_existing(target)
                    os.symlink(member.linkname, target)

                else:
                    warn(f"Skipping unsupported archive entry {member.name}")
                    continue

                written += 1
    except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
        raise IOFailure(dest, "unpack payload into", e) from e
    finally:
        reader.close()

    return written
