"""
Platform target triples.

A target triple names the CPU architecture, vendor, operating system and
ABI a binary was built for, e.g. ``x86_64-unknown-linux-gnu`` or
``aarch64-apple-darwin``. The asset matcher only cares about the
arch/os/abi components; the vendor is noise for scoring purposes.
"""

import platform as _platform
from dataclasses import dataclass
from typing import Optional

# Vendor fields that appear in the second position of a triple
KNOWN_VENDORS = frozenset({'unknown', 'pc', 'apple', 'none', 'sun', 'nvidia', 'uwp', 'wrs'})

# Host detection, (normalized machine, normalized system) -> triple
_HOST_TRIPLES = {
    ('x86_64', 'linux'): 'x86_64-unknown-linux-gnu',
    ('x86_64', 'macos'): 'x86_64-apple-darwin',
    ('x86_64', 'windows'): 'x86_64-pc-windows-msvc',
    ('aarch64', 'linux'): 'aarch64-unknown-linux-gnu',
    ('aarch64', 'macos'): 'aarch64-apple-darwin',
    ('aarch64', 'windows'): 'aarch64-pc-windows-msvc',
}


@dataclass(frozen=True)
class PlatformTarget:
    """Immutable platform target, decomposed on demand."""

    triple: str

    def _parts(self):
        parts = self.triple.lower().split('-')
        arch = parts[0]
        vendor = None
        os_name = ''
        abi = None

        if len(parts) >= 4:
            vendor, os_name, abi = parts[1], parts[2], '-'.join(parts[3:])
        elif len(parts) == 3:
            if parts[1] in KNOWN_VENDORS:
                vendor, os_name = parts[1], parts[2]
            else:
                os_name, abi = parts[1], parts[2]
        elif len(parts) == 2:
            os_name = parts[1]

        return arch, vendor, os_name, abi

    @property
    def arch(self) -> str:
        return self._parts()[0]

    @property
    def vendor(self) -> Optional[str]:
        return self._parts()[1]

    @property
    def os(self) -> str:
        return self._parts()[2]

    @property
    def abi(self) -> Optional[str]:
        return self._parts()[3]

    @property
    def is_windows(self) -> bool:
        return self.os == 'windows'

    def to_dict(self) -> dict:
        return {
            'triple': self.triple,
            'arch': self.arch,
            'os': self.os,
            'abi': self.abi,
        }

    def __str__(self) -> str:
        return self.triple


def _normalize_system(system: str) -> str:
    s = system.lower()
    if s.startswith('win'):
        return 'windows'
    if s.startswith('darwin') or s.startswith('mac'):
        return 'macos'
    return s


def _normalize_machine(machine: str) -> str:
    m = machine.lower()
    if m in ('x86_64', 'amd64', 'x64'):
        return 'x86_64'
    if m in ('aarch64', 'arm64'):
        return 'aarch64'
    return m


def host_target(system: Optional[str] = None, machine: Optional[str] = None) -> PlatformTarget:
    """
    Detect the target triple of the running platform.

    Unknown combinations fall back to ``<machine>-unknown-<system>`` so a
    caller can still pass the result to the matcher.
    """
    os_name = _normalize_system(system or _platform.system())
    arch = _normalize_machine(machine or _platform.machine())
    triple = _HOST_TRIPLES.get((arch, os_name), f"{arch}-unknown-{os_name}")
    return PlatformTarget(triple)
