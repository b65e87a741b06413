from __future__ import annotations

import platform

from selfhost_core.errors import PlatformMismatch

# <os>-<arch> -> token written into bundle manifests
PLATFORM_MAP = {
    "linux-amd64": "linux-x64",
    "linux-arm64": "linux-arm64",
    "darwin-amd64": "darwin-x64",
    "darwin-arm64": "darwin-arm64",
}

# platform.machine() spellings -> canonical architecture names
ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "x64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
}


def host_platform(system: str | None = None, machine: str | None = None) -> str:
    """Platform token of the running host, e.g. ``linux-x64``.

    Unknown combinations come back as the raw ``<os>-<arch>`` string.
    """
    os_family = (system if system is not None else platform.system()).lower()
    arch = (machine if machine is not None else platform.machine()).lower()
    key = f"{os_family}-{ARCH_ALIASES.get(arch, arch)}"
    return PLATFORM_MAP.get(key, key)


def check_platform(declared: str) -> None:
    detected = host_platform()
    if declared != detected:
        raise PlatformMismatch(declared, detected)
