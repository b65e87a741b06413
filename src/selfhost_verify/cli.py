import json
from pathlib import Path

import click

from selfhost_core.const import ExitCode
from selfhost_core.errors import SelfhostError
from .logic import detect, extract, read_header, verify
from .platforms import check_platform, host_platform

CANONICAL_JSON_KW = {"sort_keys": True, "separators": (",", ":"), "ensure_ascii": False}


def _emit(obj) -> None:
    click.echo(json.dumps(obj, **CANONICAL_JSON_KW))


def _fatal(e: SelfhostError, exit_code: int | None = None):
    _emit({"status": "FAIL", "error_count": 1, "errors": [e.to_dict()]})
    click.echo(f"FATAL: {e}", err=True)
    raise SystemExit(int(exit_code if exit_code is not None else e.exit_code))


@click.group(context_settings={"auto_envvar_prefix": "SELFHOST"})
def main():
    pass


@main.command("detect")
@click.argument("path", type=click.Path(path_type=Path))
def detect_cmd(path: Path):
    try:
        result = detect(path)
    except SelfhostError as e:
        _fatal(e)
    _emit(result.to_dict())


@main.command("header")
@click.argument("path", type=click.Path(path_type=Path))
def header_cmd(path: Path):
    try:
        header = read_header(path)
    except SelfhostError as e:
        _fatal(e)
    _emit(header.to_dict())


@main.command("verify")
@click.argument("path", type=click.Path(path_type=Path))
def verify_cmd(path: Path):
    try:
        result = verify(path)
    except SelfhostError as e:
        _fatal(e)
    _emit(result.to_dict())
    if not result.valid:
        raise SystemExit(int(ExitCode.VERIFICATION_FAILED))


@main.command("extract")
@click.argument("path", type=click.Path(path_type=Path))
@click.argument("dest", type=click.Path(file_okay=False, path_type=Path))
@click.option("--skip-verify", is_flag=True, help="Do not compare the payload checksum")
@click.option("--check-platform", "platform_check", is_flag=True,
              help="Refuse bundles built for another platform")
def extract_cmd(path: Path, dest: Path, skip_verify: bool, platform_check: bool):
    try:
        if platform_check:
            declared = (read_header(path).manifest or {}).get("platform", "")
            check_platform(declared)
        header = extract(path, dest, skip_verify=skip_verify)
    except SelfhostError as e:
        code = e.exit_code
        if code == ExitCode.GENERAL_ERROR:
            code = ExitCode.EXTRACTION_FAILED
        _fatal(e, code)
    _emit({
        "status": "PASS",
        "dest": str(dest),
        "bundleSize": header.bundle_size,
        "bundleChecksum": header.bundle_checksum,
        "verified": not skip_verify,
    })


@main.command("platform")
@click.option("--expect", default=None, help="Fail unless the host matches this token")
def platform_cmd(expect: str | None):
    if expect is not None:
        try:
            check_platform(expect)
        except SelfhostError as e:
            _fatal(e)
    _emit({"platform": host_platform()})


if __name__ == "__main__":
    main()
