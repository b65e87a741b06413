"""Selfhost Compiler - Host executable + Bundle to Container."""
from __future__ import annotations

import os
import shutil
import struct
from pathlib import Path

import click

from selfhost_core.archive import pack
from selfhost_core.const import ExitCode
from selfhost_core.digest import checksum
from selfhost_core.errors import IOFailure, SelfhostError, ValidationError
from selfhost_core.header import Header, write_header
from selfhost_core.manifest import load_manifest, utc_timestamp
from selfhost_core.protocol import (
    COMPRESSION_GZIP,
    COPY_CHUNK_SIZE,
    DEFAULT_REQUIRED_FILES,
    FOOTER_FMT,
    FORMAT,
    HEADER_VERSION,
    MAGIC_END,
    MAGIC_START,
    OUTPUT_MODE,
    SUPPORTED_COMPRESSIONS,
)


def validate_inputs(
    host_executable: Path,
    source_dir: Path,
    output_path: Path,
    compression: str,
    required_files: tuple[str, ...] | list[str] = DEFAULT_REQUIRED_FILES,
) -> None:
    """Fail fast, before anything is written, if assembly cannot succeed."""
    if not source_dir.exists():
        raise ValidationError(f"bundle directory does not exist: {source_dir}")
    if not source_dir.is_dir():
        raise ValidationError(f"bundle path is not a directory: {source_dir}")
    for name in required_files:
        if not os.path.lexists(source_dir / name):
            raise ValidationError(f"bundle is missing required file: {name}")

    if not host_executable.exists():
        raise ValidationError(f"host executable does not exist: {host_executable}")
    if host_executable.is_dir():
        raise ValidationError(f"host executable path is a directory: {host_executable}")

    if output_path.exists() and output_path.resolve() == host_executable.resolve():
        raise ValidationError(f"output path must differ from host executable: {output_path}")

    if compression not in SUPPORTED_COMPRESSIONS:
        raise ValidationError(
            f"invalid compression: {compression} (must be one of {', '.join(SUPPORTED_COMPRESSIONS)})"
        )


def assemble_container(
    host_executable: Path,
    source_dir: Path,
    output_path: Path,
    compression: str = COMPRESSION_GZIP,
    manifest: dict | None = None,
    ops_version: str = "",
    required_files: tuple[str, ...] | list[str] = DEFAULT_REQUIRED_FILES,
    timestamp: str | None = None,
) -> Path:
    """Append a compressed bundle to a copy of the host executable.

    Layout: host | MAGIC_START | header | payload | MAGIC_END | footer.
    On error the output file must not be trusted.
    """
    host_executable = Path(host_executable)
    source_dir = Path(source_dir)
    output_path = Path(output_path)

    validate_inputs(host_executable, source_dir, output_path, compression, required_files)
    print(f"Assembling container: {host_executable} + {source_dir}")

    if manifest is None:
        manifest_path = source_dir / "manifest.json"
        if not manifest_path.is_file():
            raise ValidationError(f"no manifest given and {manifest_path} is missing")
        manifest = load_manifest(manifest_path)

    # 1. Pack and digest the payload
    compressed, uncompressed_size = pack(source_dir, compression)
    bundle_checksum = checksum(compressed)

    # 2. Build header
    header = Header(
        version=HEADER_VERSION,
        format=FORMAT,
        compression=compression,
        bundle_size=uncompressed_size,
        bundle_checksum=bundle_checksum,
        manifest=manifest,
        ops_version=ops_version,
        created_at=timestamp or utc_timestamp(),
    )
    header.validate()

    # 3. Write container
    try:
        with open(host_executable, "rb") as host, open(output_path, "wb") as out:
            shutil.copyfileobj(host, out, COPY_CHUNK_SIZE)
            start_offset = out.tell()

            out.write(MAGIC_START)
            write_header(out, header)
            out.write(compressed)
            out.write(MAGIC_END)
            out.write(struct.pack(FOOTER_FMT, start_offset))
        os.chmod(output_path, OUTPUT_MODE)
    except OSError as e:
        raise IOFailure(str(output_path), "write container", e) from e

    print(f"PASS: Container written to {output_path}")
    print(f"  Offset: {start_offset}")
    print(f"  Bundle size: {uncompressed_size}")
    print(f"  Compressed: {len(compressed)}")
    print(f"  Checksum: {bundle_checksum}")
    return output_path


@click.command(context_settings={"auto_envvar_prefix": "SELFHOST_COMPILE"})
@click.argument("host", type=click.Path(path_type=Path))
@click.argument("bundle", type=click.Path(path_type=Path))
@click.argument("out", type=click.Path(path_type=Path))
@click.option(
    "--compression",
    type=click.Choice(SUPPORTED_COMPRESSIONS),
    default=COMPRESSION_GZIP,
    show_default=True,
)
@click.option("--ops-version", default="", help="Version string of the host executable")
@click.option(
    "--manifest",
    "manifest_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Manifest to embed instead of BUNDLE/manifest.json",
)
@click.option(
    "--require",
    "required",
    multiple=True,
    help="Entry the bundle must contain (repeatable, replaces the default set)",
)
def main(
    host: Path,
    bundle: Path,
    out: Path,
    compression: str,
    ops_version: str,
    manifest_path: Path | None,
    required: tuple[str, ...],
) -> None:
    """Assemble HOST and the BUNDLE directory into a self-extracting OUT."""
    try:
        manifest = load_manifest(manifest_path) if manifest_path else None
        assemble_container(
            host,
            bundle,
            out,
            compression=compression,
            manifest=manifest,
            ops_version=ops_version,
            required_files=required or DEFAULT_REQUIRED_FILES,
        )
    except SelfhostError as e:
        # Fail closed, with a single-line reason.
        click.echo(f"FATAL: {e}", err=True)
        raise SystemExit(int(e.exit_code))
    except Exception as e:
        click.echo(f"FATAL: {e}", err=True)
        raise SystemExit(int(ExitCode.GENERAL_ERROR))


if __name__ == "__main__":
    main()
