"""
Archive handling for ghrelease.

Extraction reads the whole archive in memory, validates every entry
against one safety check shared by all formats, and only then lets the
caller write anything to disk. An archive with a single bad entry is
rejected as a whole.

The compression side (create_archive) mirrors it for the dist path and
produces byte-identical output for identical inputs: entries are sorted,
timestamps and ownership are zeroed, and the gzip header carries no
mtime or filename.
"""

import bz2
import fnmatch
import gzip
import io
import logging
import lzma
import os
import posixpath
import re
import stat
import tarfile
import zipfile
import zlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .errors import ExtractionError, UsageError

logger = logging.getLogger(__name__)


class ArchiveFormat(Enum):
    """Supported archive containers; value is the file extension."""
    TAR_GZ = "tar.gz"
    ZIP = "zip"
    TAR_XZ = "tar.xz"
    TAR_BZ2 = "tar.bz2"

    @property
    def extension(self) -> str:
        return self.value

    @property
    def is_tar(self) -> bool:
        return self != ArchiveFormat.ZIP

    @classmethod
    def from_name(cls, name: str) -> 'ArchiveFormat':
        """Parse a --format value such as 'tgz' or 'zip'."""
        fmt = FORMAT_NAMES.get(name.strip().lower().lstrip('.'))
        if fmt is None:
            raise UsageError(
                f"Unknown archive format '{name}'. Choose from: {', '.join(sorted(FORMAT_NAMES))}",
                format=name,
            )
        return fmt


FORMAT_NAMES: Dict[str, ArchiveFormat] = {
    'tgz': ArchiveFormat.TAR_GZ,
    'tar.gz': ArchiveFormat.TAR_GZ,
    'zip': ArchiveFormat.ZIP,
    'txz': ArchiveFormat.TAR_XZ,
    'tar.xz': ArchiveFormat.TAR_XZ,
    'tbz2': ArchiveFormat.TAR_BZ2,
    'tar.bz2': ArchiveFormat.TAR_BZ2,
}

_SUFFIXES = (
    ('.tar.gz', ArchiveFormat.TAR_GZ),
    ('.tgz', ArchiveFormat.TAR_GZ),
    ('.zip', ArchiveFormat.ZIP),
    ('.tar.xz', ArchiveFormat.TAR_XZ),
    ('.txz', ArchiveFormat.TAR_XZ),
    ('.tar.bz2', ArchiveFormat.TAR_BZ2),
    ('.tbz2', ArchiveFormat.TAR_BZ2),
    ('.tbz', ArchiveFormat.TAR_BZ2),
)

_MAGIC = (
    (b'\x1f\x8b', ArchiveFormat.TAR_GZ),
    (b'PK\x03\x04', ArchiveFormat.ZIP),
    (b'\xfd7zXZ', ArchiveFormat.TAR_XZ),
    (b'BZh', ArchiveFormat.TAR_BZ2),
)

_TAR_READ_MODES = {
    ArchiveFormat.TAR_GZ: 'r:gz',
    ArchiveFormat.TAR_XZ: 'r:xz',
    ArchiveFormat.TAR_BZ2: 'r:bz2',
}

_DRIVE_RE = re.compile(r'^[A-Za-z]:')

# Fixed zip timestamp; the zip format cannot represent anything earlier
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)

FILE = 'file'
DIRECTORY = 'dir'
SYMLINK = 'symlink'
HARDLINK = 'hardlink'


@dataclass(frozen=True)
class ArchiveEntry:
    """
    One archive member held in memory.

    ``mode`` holds permission bits only; 0 means the archive did not
    record any (zips written on Windows).
    """
    path: str
    mode: int = 0o644
    payload: bytes = field(default=b'', repr=False)
    kind: str = FILE
    link_target: Optional[str] = None

    @property
    def name(self) -> str:
        return posixpath.basename(self.path)

    @property
    def is_file(self) -> bool:
        return self.kind == FILE

    @property
    def is_executable(self) -> bool:
        return self.is_file and bool(self.mode & 0o111)


def detect_format(payload: bytes, filename: str = '') -> ArchiveFormat:
    """
    Detect the archive format, by filename suffix first and magic bytes second.

    Raises:
        ExtractionError: (unsupported_format) if neither identifies a known format
    """
    lower = filename.lower()
    for suffix, fmt in _SUFFIXES:
        if lower.endswith(suffix):
            return fmt

    for magic, fmt in _MAGIC:
        if payload.startswith(magic):
            logger.debug(f"detected {fmt.value} from content of {filename or 'archive'}")
            return fmt

    raise ExtractionError(
        f"Unsupported archive format: {filename or 'unnamed archive'}",
        reason=ExtractionError.UNSUPPORTED_FORMAT,
        file=filename or None,
    )


def _unsafe(message: str, filename: str, entry: str) -> ExtractionError:
    return ExtractionError(message, reason=ExtractionError.UNSAFE_PATH, file=filename or None, entry=entry)


def _escapes(path: str) -> bool:
    return path == '..' or path.startswith('../')


def safe_relative_path(path: str, filename: str = '') -> str:
    """
    Normalize an entry path and make sure it stays inside the extraction root.

    Raises:
        ExtractionError: (unsafe_path) for absolute paths and '..' traversal
    """
    candidate = path.replace('\\', '/')
    if candidate.startswith('/') or _DRIVE_RE.match(candidate):
        raise _unsafe(f"Archive entry has an absolute path: {path}", filename, path)
    normalized = posixpath.normpath(candidate)
    if _escapes(normalized):
        raise _unsafe(f"Archive entry escapes the extraction root: {path}", filename, path)
    return normalized


def _resolve_link_path(path: str, links: Dict[str, str], depth: int = 0) -> Optional[str]:
    """
    Resolve ``path`` below the root, following the archive's own symlinks.

    Returns the resolved root-relative path ('' for the root itself), or
    None when resolution leaves the root or loops.
    """
    if depth > len(links):
        return None
    current = ''
    for part in path.split('/'):
        if part in ('', '.'):
            continue
        if part == '..':
            if not current:
                return None
            current = posixpath.dirname(current)
            continue
        current = posixpath.join(current, part) if current else part
        if current in links:
            base = posixpath.dirname(current)
            target = posixpath.join(base, links[current]) if base else links[current]
            current = _resolve_link_path(target, links, depth + 1)
            if current is None:
                return None
    return current


def validate_entries(entries: Sequence[ArchiveEntry], filename: str = '') -> List[ArchiveEntry]:
    """
    Apply the extraction safety rules to every entry.

    Returns the entries with normalized paths (the archive root itself
    dropped). Symlinks may point anywhere inside the root, never outside
    it, even when followed through other symlinks in the same archive.
    No entry may live below a symlink. Hardlinks must name another entry
    inside the root.
    """
    normalized = [(safe_relative_path(entry.path, filename), entry) for entry in entries]

    links: Dict[str, str] = {}
    for path, entry in normalized:
        if entry.kind != SYMLINK:
            continue
        target = (entry.link_target or '').replace('\\', '/')
        if not target or target.startswith('/') or _DRIVE_RE.match(target):
            raise _unsafe(f"Symlink {entry.path} points outside the archive: {target}",
                          filename, entry.path)
        if path in links:
            raise _unsafe(f"Symlink {entry.path} appears twice in the archive", filename, entry.path)
        links[path] = target

    validated = []
    for path, entry in normalized:
        if path == '.':
            continue

        parent = posixpath.dirname(path)
        while parent:
            if parent in links:
                raise _unsafe(f"Archive entry {entry.path} is below the symlink {parent}",
                              filename, entry.path)
            parent = posixpath.dirname(parent)

        if entry.kind == SYMLINK:
            if _resolve_link_path(path, links) is None:
                raise _unsafe(f"Symlink {entry.path} points outside the archive: {entry.link_target}",
                              filename, entry.path)
        elif path in links:
            raise _unsafe(f"Archive entry {entry.path} is also a symlink", filename, entry.path)
        elif entry.kind == HARDLINK:
            safe_relative_path(entry.link_target or '', filename)

        validated.append(ArchiveEntry(
            path=path,
            mode=entry.mode,
            payload=entry.payload,
            kind=entry.kind,
            link_target=entry.link_target,
        ))
    return validated


def _read_tar(payload: bytes, fmt: ArchiveFormat, filename: str) -> List[ArchiveEntry]:
    entries = []
    with tarfile.open(fileobj=io.BytesIO(payload), mode=_TAR_READ_MODES[fmt]) as tf:
        members = tf.getmembers()
        for member in members:
            mode = member.mode & 0o7777
            if member.isdir():
                entries.append(ArchiveEntry(member.name, mode, kind=DIRECTORY))
            elif member.issym():
                entries.append(ArchiveEntry(member.name, mode, kind=SYMLINK, link_target=member.linkname))
            elif member.islnk():
                entries.append(ArchiveEntry(member.name, mode, kind=HARDLINK, link_target=member.linkname))
            elif member.isreg():
                data = tf.extractfile(member).read()
                entries.append(ArchiveEntry(member.name, mode, data))
            else:
                raise _unsafe(f"Archive entry is a device or pipe: {member.name}", filename, member.name)

        # Hardlinks become plain copies of their (already validated) target
        validated = validate_entries(entries, filename)
        by_path = {e.path: e for e in validated if e.is_file}
        resolved = []
        for entry in validated:
            if entry.kind == HARDLINK:
                target = by_path.get(posixpath.normpath(entry.link_target))
                if target is None:
                    raise _unsafe(f"Hardlink {entry.path} has no target in the archive",
                                  filename, entry.path)
                entry = ArchiveEntry(entry.path, entry.mode or target.mode, target.payload)
            resolved.append(entry)
    return resolved


def _read_zip(payload: bytes, filename: str) -> List[ArchiveEntry]:
    entries = []
    with zipfile.ZipFile(io.BytesIO(payload)) as zf:
        for info in zf.infolist():
            unix_mode = (info.external_attr >> 16) & 0xFFFF
            mode = unix_mode & 0o7777
            if info.is_dir():
                entries.append(ArchiveEntry(info.filename, mode, kind=DIRECTORY))
            elif stat.S_ISLNK(unix_mode):
                target = zf.read(info).decode('utf-8', errors='replace')
                entries.append(ArchiveEntry(info.filename, mode, kind=SYMLINK, link_target=target))
            else:
                entries.append(ArchiveEntry(info.filename, mode, zf.read(info)))
    return validate_entries(entries, filename)


def extract(payload: bytes, filename: str = '') -> List[ArchiveEntry]:
    """
    Decompress an archive in memory and validate every entry.

    Nothing touches the filesystem here; a rejected archive leaves no
    trace. Use write_entries() to materialize the result.

    Raises:
        ExtractionError: unsupported_format, unsafe_path or corrupt
    """
    fmt = detect_format(payload, filename)
    try:
        if fmt == ArchiveFormat.ZIP:
            return _read_zip(payload, filename)
        return _read_tar(payload, fmt, filename)
    except ExtractionError:
        raise
    except (tarfile.TarError, zipfile.BadZipFile, zlib.error, lzma.LZMAError,
            EOFError, OSError, ValueError) as e:
        raise ExtractionError(
            f"Corrupt {fmt.value} archive {filename}: {e}",
            reason=ExtractionError.CORRUPT,
            file=filename or None,
        ) from e


def write_entries(entries: Sequence[ArchiveEntry], root: Path) -> List[Path]:
    """
    Write validated entries below ``root``.

    Returns the paths of regular files written.
    """
    root = Path(root)
    written = []
    for entry in sorted(entries, key=lambda e: e.path):
        dest = root / entry.path
        if entry.kind == DIRECTORY:
            dest.mkdir(parents=True, exist_ok=True)
            continue
        dest.parent.mkdir(parents=True, exist_ok=True)
        if entry.kind == SYMLINK:
            os.symlink(entry.link_target, dest)
            continue
        dest.write_bytes(entry.payload)
        os.chmod(dest, entry.mode or 0o644)
        written.append(dest)
    return written


def _is_pattern(value: str) -> bool:
    return any(c in value for c in '*?[')


def _name_matches(name: str, wanted: str) -> bool:
    if _is_pattern(wanted):
        return fnmatch.fnmatchcase(name, wanted)
    stem = name[:-4] if name.lower().endswith('.exe') else name
    return name == wanted or stem == wanted


def select_binaries(
    entries: Sequence[ArchiveEntry],
    hint: Optional[str] = None,
    default_name: Optional[str] = None,
    install_all: bool = False,
    filename: str = '',
) -> List[ArchiveEntry]:
    """
    Decide which extracted files are the binaries to install.

    Candidates are regular files with an executable bit. Entries without
    any recorded mode count only when their name matches the wanted name
    exactly. With install_all every candidate is returned; otherwise
    exactly one must match ``hint`` (or ``default_name`` when no hint was
    given). With no hint at all, a lone executable is accepted as is.

    Raises:
        ExtractionError: (ambiguous_binary) for zero or several matches
    """
    wanted = hint or default_name
    candidates = []
    for entry in entries:
        if not entry.is_file:
            continue
        if entry.is_executable:
            candidates.append(entry)
        elif entry.mode == 0 and wanted and _name_matches(entry.name, wanted):
            candidates.append(entry)

    if install_all:
        if not candidates:
            raise ExtractionError(
                f"No executable files found in {filename or 'archive'}",
                reason=ExtractionError.AMBIGUOUS_BINARY,
                file=filename or None,
            )
        # Binaries are installed flat, by basename
        by_name: Dict[str, List[str]] = {}
        for entry in candidates:
            by_name.setdefault(entry.name, []).append(entry.path)
        clashes = sorted(path for paths in by_name.values() if len(paths) > 1 for path in paths)
        if clashes:
            raise ExtractionError(
                f"Executables in {filename or 'archive'} share a file name "
                f"({', '.join(clashes)}). Use --bin to choose",
                reason=ExtractionError.AMBIGUOUS_BINARY,
                file=filename or None,
                candidates=clashes,
            )
        return sorted(candidates, key=lambda e: e.path)

    if hint is None:
        if len(candidates) == 1:
            return candidates

    matches = [c for c in candidates if wanted and _name_matches(c.name, wanted)]
    if len(matches) == 1:
        return matches

    names = sorted(c.path for c in (matches or candidates))
    if not matches:
        message = f"No executable named '{wanted}' in {filename or 'archive'}"
    else:
        message = f"Several executables named '{wanted}' in {filename or 'archive'}"
    raise ExtractionError(
        f"{message} (candidates: {', '.join(names) or 'none'}). Use --bin to choose",
        reason=ExtractionError.AMBIGUOUS_BINARY,
        file=filename or None,
        candidates=names,
    )


def _tar_bytes(entries: Sequence[ArchiveEntry]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode='w', format=tarfile.GNU_FORMAT) as tf:
        for entry in sorted(entries, key=lambda e: e.path):
            info = tarfile.TarInfo(entry.path)
            info.size = len(entry.payload)
            info.mode = entry.mode
            info.mtime = 0
            info.uid = info.gid = 0
            info.uname = info.gname = ''
            tf.addfile(info, io.BytesIO(entry.payload))
    return buf.getvalue()


def _zip_bytes(entries: Sequence[ArchiveEntry]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode='w', compression=zipfile.ZIP_DEFLATED) as zf:
        for entry in sorted(entries, key=lambda e: e.path):
            info = zipfile.ZipInfo(entry.path, date_time=ZIP_EPOCH)
            info.create_system = 3  # unix, so external_attr carries the mode
            info.external_attr = (stat.S_IFREG | entry.mode) << 16
            info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, entry.payload)
    return buf.getvalue()


def create_archive(fmt: ArchiveFormat, entries: Sequence[ArchiveEntry]) -> bytes:
    """Build a deterministic archive from in-memory entries."""
    if fmt == ArchiveFormat.ZIP:
        return _zip_bytes(entries)
    data = _tar_bytes(entries)
    if fmt == ArchiveFormat.TAR_GZ:
        return gzip.compress(data, mtime=0)
    if fmt == ArchiveFormat.TAR_XZ:
        return lzma.compress(data)
    return bz2.compress(data)


def archive_name(repo: str, target: str, tag: str, fmt: ArchiveFormat) -> str:
    """``<repo>-<target>-<tag>.<ext>``, e.g. tool-x86_64-unknown-linux-gnu-v1.0.0.tar.gz"""
    return f"{repo}-{target}-{tag}.{fmt.extension}"
