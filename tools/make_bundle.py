"""Generate a mock bundle directory and host executable for demos and tests."""
import json
import secrets
import sys
from pathlib import Path

from selfhost_core.manifest import manifest_to_json, new_manifest

MOCK_HOST = b"#!/bin/sh\necho 'mock convex-backend-ops'\n"


def generate_bundle(output_dir: str, name: str = "Test Bundle", platform: str = "linux-x64") -> Path:
    out = Path(output_dir)
    (out / "storage").mkdir(parents=True, exist_ok=True)

    mf = new_manifest(name, "1.0.0", ["./app1"], platform)
    (out / "manifest.json").write_bytes(manifest_to_json(mf))

    backend = out / "backend"
    backend.write_text("#!/bin/sh\necho 'mock backend'\n", encoding="utf-8")
    backend.chmod(0o755)

    (out / "convex.db").write_bytes(b"mock database content")

    creds = {
        "adminKey": f"{name.lower().replace(' ', '-')}|{secrets.token_hex(16)}",
        "instanceSecret": secrets.token_hex(32),
    }
    (out / "credentials.json").write_text(json.dumps(creds, indent=2) + "\n", encoding="utf-8")

    (out / "storage" / "test-file.txt").write_text("test storage content", encoding="utf-8")

    print(f"GENERATED: {out}")
    return out


def generate_host(path: str) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(MOCK_HOST)
    p.chmod(0o755)
    return p


if __name__ == "__main__":
    # Usage:
    #   python tools/make_bundle.py OUT_DIR [--host HOST_PATH] [--platform TOKEN]
    args = [a for a in sys.argv[1:] if a]

    def pop_option(arg_list: list[str], flag: str) -> tuple[str | None, list[str]]:
        """Remove a valued option from an argv-style list."""
        if flag not in arg_list:
            return None, arg_list
        i = arg_list.index(flag)
        if i + 1 >= len(arg_list):
            raise SystemExit(f"{flag} requires a value")
        return arg_list[i + 1], arg_list[:i] + arg_list[i + 2:]

    host, args = pop_option(args, "--host")
    platform, args = pop_option(args, "--platform")

    out = args[0] if args else "mock_bundle"
    generate_bundle(out, platform=platform or "linux-x64")
    if host:
        generate_host(host)
