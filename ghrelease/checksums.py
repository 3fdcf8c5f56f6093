"""
SHA256 checksum helpers.

The checksum file uses the coreutils ``sha256sum`` layout, one
``<hex digest>  <filename>`` line per asset, sorted by filename so the
file itself is byte-identical across runs with the same archives.
"""

import hashlib
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

from .domain.release import Asset

CHECKSUM_FILENAME = 'SHA256SUMS'

# Names checked, in order, when looking for a published checksum file
CHECKSUM_FILENAMES = (CHECKSUM_FILENAME, 'checksums.txt', 'sha256sums.txt')

_CHUNK = 1024 * 1024


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Union[str, Path]) -> str:
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(_CHUNK), b''):
            digest.update(chunk)
    return digest.hexdigest()


def render_checksums(entries: Union[Mapping[str, str], Iterable[Tuple[str, str]]]) -> str:
    """
    Render a checksum file body.

    Args:
        entries: filename -> hex digest, as a mapping or (filename, digest) pairs

    Returns:
        Text with one line per file, sorted by filename
    """
    pairs = entries.items() if isinstance(entries, Mapping) else entries
    lines = [f"{digest}  {name}" for name, digest in sorted(pairs)]
    return ''.join(line + '\n' for line in lines)


def parse_checksums(text: str) -> Dict[str, str]:
    """
    Parse a checksum file into filename -> lowercase hex digest.

    Accepts text-mode ("  name") and binary-mode (" *name") lines, tab
    separators, and paths like "./dist/name"; only the basename is kept.
    Lines that do not start with a hex digest are ignored.
    """
    result = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        parts = line.split(None, 1)
        if len(parts) != 2:
            continue
        digest, name = parts
        if not all(c in '0123456789abcdefABCDEF' for c in digest):
            continue
        name = name.strip().lstrip('*')
        name = name.replace('\\', '/').rsplit('/', 1)[-1]
        result[name] = digest.lower()
    return result


def lookup_checksum(checksums: Mapping[str, str], filename: str) -> Optional[str]:
    return checksums.get(filename)


def find_checksum_asset(assets: Sequence[Asset]) -> Optional[Asset]:
    """Find the published checksum file among a release's assets, if any."""
    by_name = {a.filename.lower(): a for a in assets}
    for name in CHECKSUM_FILENAMES:
        asset = by_name.get(name.lower())
        if asset is not None:
            return asset
    return None
