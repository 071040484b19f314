"""
Decide whether a target triplet describes the host we are running on.

Triplets follow the ``arch[-vendor][-os[-abi]]`` shape described at
https://clang.llvm.org/docs/CrossCompilation.html#target-triple, but release
manifests are not consistent about how much of it they spell out. Matching is a
conjunction of narrowing checks rather than a grammar: the architecture must
match, a known vendor must fit the host, a known OS must fit the host, and
anything unrecognised after that is accepted.

Only hosts that CI runners actually use are supported; any other architecture
never matches.
"""

from __future__ import annotations

import platform
import sys
from dataclasses import dataclass

# Host vocabulary is node's (os.arch() / os.platform()), which is what the
# triplet table below is written against.
_MACHINE_TO_ARCH = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv6l": "arm",
    "armv7l": "arm",
    "armv8l": "arm",
    "arm": "arm",
    "i386": "ia32",
    "i686": "ia32",
    "x86": "ia32",
}

_KNOWN_OS = frozenset({"darwin", "macosx", "linux", "windows"})


@dataclass(frozen=True)
class HostDescriptor:
    arch: str
    platform: str

    @classmethod
    def current(cls) -> "HostDescriptor":
        machine = platform.machine().lower()
        arch = _MACHINE_TO_ARCH.get(machine, machine)
        plat = sys.platform
        if plat.startswith("linux"):
            plat = "linux"
        return cls(arch=arch, platform=plat)


def _arch_matches(arch_field: str, host: HostDescriptor) -> bool:
    if host.arch == "arm":
        return "arm" in arch_field
    if host.arch == "arm64":
        return arch_field == "aarch64"
    if host.arch == "x64":
        return arch_field == "x86_64"
    return False


def _abi_is_gnu(fields: list[str], pos: int) -> bool:
    # Only the GNU ABI is accepted when an environment is spelled out (musl etc. are not).
    if pos < len(fields) and fields[pos]:
        return "gnu" in fields[pos]
    return True


def triplet_matches(triplet: str, host: HostDescriptor) -> bool:
    if not triplet:
        return False

    fields = triplet.split("-")
    if not fields[0]:
        return False

    if not _arch_matches(fields[0], host):
        return False

    pos = 1
    if pos >= len(fields):
        return True

    vendor = fields[pos]
    if vendor == "pc":
        # macOS runners are matched by the 'apple' vendor, never by 'pc'.
        if host.platform == "darwin":
            return False
        pos += 1
    elif vendor == "apple":
        if host.platform != "darwin":
            return False
        pos += 1
    elif vendor not in _KNOWN_OS and pos + 1 < len(fields):
        # Some other vendor ('unknown', 'w64', ...): no platform constraint of its own.
        pos += 1

    os_field = fields[pos] if pos < len(fields) else None
    if os_field in ("darwin", "macosx"):
        return host.platform == "darwin"
    if os_field == "linux":
        if host.platform != "linux":
            return False
        return _abi_is_gnu(fields, pos + 1)
    if os_field == "windows":
        if host.platform != "win32":
            return False
        return _abi_is_gnu(fields, pos + 1)

    return True
