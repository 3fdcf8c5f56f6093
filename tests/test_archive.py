"""Tests for the archive handler."""

import io
import os
import stat
import tarfile
import zipfile

import pytest

from ghrelease.archive import (
    ArchiveEntry,
    ArchiveFormat,
    DIRECTORY,
    SYMLINK,
    archive_name,
    create_archive,
    detect_format,
    extract,
    safe_relative_path,
    select_binaries,
    write_entries,
)
from ghrelease.errors import ExtractionError, UsageError


def _tar_with(members):
    """Raw tar.gz built from (TarInfo, payload) pairs, bypassing create_archive."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode='w:gz') as tf:
        for info, payload in members:
            if payload is not None:
                info.size = len(payload)
                tf.addfile(info, io.BytesIO(payload))
            else:
                tf.addfile(info)
    return buf.getvalue()


class TestDetectFormat:

    @pytest.mark.parametrize("name,fmt", [
        ("a.tar.gz", ArchiveFormat.TAR_GZ),
        ("a.tgz", ArchiveFormat.TAR_GZ),
        ("a.zip", ArchiveFormat.ZIP),
        ("a.tar.xz", ArchiveFormat.TAR_XZ),
        ("a.tar.bz2", ArchiveFormat.TAR_BZ2),
    ])
    def test_by_suffix(self, name, fmt):
        assert detect_format(b'', name) == fmt

    def test_by_magic(self):
        payload = create_archive(ArchiveFormat.ZIP, [ArchiveEntry("tool", 0o755, b"x")])
        assert detect_format(payload, "download") == ArchiveFormat.ZIP

    def test_unsupported(self):
        with pytest.raises(ExtractionError) as excinfo:
            detect_format(b'plain text', "tool.rar")
        assert excinfo.value.reason == ExtractionError.UNSUPPORTED_FORMAT

    def test_format_names(self):
        assert ArchiveFormat.from_name("tgz") == ArchiveFormat.TAR_GZ
        assert ArchiveFormat.from_name("ZIP") == ArchiveFormat.ZIP
        with pytest.raises(UsageError):
            ArchiveFormat.from_name("rar")


class TestExtractSafety:

    def test_parent_traversal_rejected_without_writes(self, tmp_path):
        payload = create_archive(ArchiveFormat.TAR_GZ, [
            ArchiveEntry("tool", 0o755, b"bin"),
            ArchiveEntry("../../etc/passwd", 0o644, b"root::0:0"),
        ])
        before = set(tmp_path.rglob('*'))

        with pytest.raises(ExtractionError) as excinfo:
            extract(payload, "tool.tar.gz")

        assert excinfo.value.reason == ExtractionError.UNSAFE_PATH
        assert excinfo.value.context['entry'] == "../../etc/passwd"
        assert set(tmp_path.rglob('*')) == before

    def test_absolute_path_rejected(self):
        payload = create_archive(ArchiveFormat.ZIP, [ArchiveEntry("/usr/bin/tool", 0o755, b"x")])
        with pytest.raises(ExtractionError) as excinfo:
            extract(payload, "tool.zip")
        assert excinfo.value.reason == ExtractionError.UNSAFE_PATH

    @pytest.mark.parametrize("path", ["C:/Windows/tool.exe", "a/../../b", "..", "..\\x"])
    def test_safe_relative_path_rejects(self, path):
        with pytest.raises(ExtractionError):
            safe_relative_path(path)

    def test_safe_relative_path_normalizes(self):
        assert safe_relative_path("./dir/../tool") == "tool"

    def test_symlink_escape_rejected(self):
        link = tarfile.TarInfo("tool")
        link.type = tarfile.SYMTYPE
        link.linkname = "../../usr/bin/sh"
        with pytest.raises(ExtractionError) as excinfo:
            extract(_tar_with([(link, None)]), "tool.tar.gz")
        assert excinfo.value.reason == ExtractionError.UNSAFE_PATH

    def test_symlink_inside_root_allowed(self):
        real = tarfile.TarInfo("bin/tool")
        real.mode = 0o755
        link = tarfile.TarInfo("tool")
        link.type = tarfile.SYMTYPE
        link.linkname = "bin/tool"
        entries = extract(_tar_with([(real, b"x"), (link, None)]), "tool.tar.gz")
        kinds = {e.path: e.kind for e in entries}
        assert kinds["tool"] == SYMLINK

    def _symlink(self, path, target):
        link = tarfile.TarInfo(path)
        link.type = tarfile.SYMTYPE
        link.linkname = target
        return link, None

    def test_symlink_chain_escape_rejected(self, tmp_path):
        escaped = tarfile.TarInfo("d/l/l2/escaped.txt")
        escaped.mode = 0o644
        payload = _tar_with([
            self._symlink("d/l", ".."),
            self._symlink("d/l/l2", ".."),
            (escaped, b"outside"),
        ])
        root = tmp_path / "root"
        root.mkdir()

        with pytest.raises(ExtractionError) as excinfo:
            extract(payload, "tool.tar.gz")

        assert excinfo.value.reason == ExtractionError.UNSAFE_PATH
        assert not (tmp_path / "escaped.txt").exists()
        assert list(root.iterdir()) == []

    def test_symlink_target_through_other_symlink(self):
        # "a/s" resolves to the root, so "t" -> "a/s/.." is the root's parent
        payload = _tar_with([self._symlink("a/s", ".."), self._symlink("t", "a/s/..")])
        with pytest.raises(ExtractionError) as excinfo:
            extract(payload, "tool.tar.gz")
        assert excinfo.value.context['entry'] == "t"

    def test_entry_below_symlink_rejected_in_any_order(self):
        inner = tarfile.TarInfo("a/x")
        inner.mode = 0o755
        payload = _tar_with([(inner, b"x"), self._symlink("a", "b")])
        with pytest.raises(ExtractionError) as excinfo:
            extract(payload, "tool.tar.gz")
        assert excinfo.value.context['entry'] == "a/x"

    def test_symlink_loop_rejected(self):
        payload = _tar_with([self._symlink("a", "b"), self._symlink("b", "a")])
        with pytest.raises(ExtractionError):
            extract(payload, "tool.tar.gz")

    def test_symlink_to_symlink_inside_root_allowed(self):
        real = tarfile.TarInfo("bin/tool")
        real.mode = 0o755
        payload = _tar_with([
            (real, b"x"),
            self._symlink("current", "bin"),
            self._symlink("tool", "current/tool"),
        ])
        paths = {e.path for e in extract(payload, "tool.tar.gz")}
        assert paths == {"bin/tool", "current", "tool"}

    def test_device_rejected(self):
        fifo = tarfile.TarInfo("pipe")
        fifo.type = tarfile.FIFOTYPE
        with pytest.raises(ExtractionError) as excinfo:
            extract(_tar_with([(fifo, None)]), "tool.tar.gz")
        assert excinfo.value.reason == ExtractionError.UNSAFE_PATH

    def test_hardlink_becomes_copy(self):
        real = tarfile.TarInfo("tool")
        real.mode = 0o755
        hard = tarfile.TarInfo("tool-alias")
        hard.type = tarfile.LNKTYPE
        hard.linkname = "tool"
        hard.mode = 0o755
        entries = {e.path: e for e in extract(_tar_with([(real, b"bin"), (hard, None)]), "t.tar.gz")}
        assert entries["tool-alias"].payload == b"bin"
        assert entries["tool-alias"].is_file

    def test_corrupt_archive(self):
        with pytest.raises(ExtractionError) as excinfo:
            extract(b'\x1f\x8bnot really gzip', "tool.tar.gz")
        assert excinfo.value.reason == ExtractionError.CORRUPT


class TestExtract:

    @pytest.mark.parametrize("fmt", list(ArchiveFormat))
    def test_modes_preserved(self, fmt):
        payload = create_archive(fmt, [
            ArchiveEntry("tool", 0o755, b"bin"),
            ArchiveEntry("README.md", 0o644, b"doc"),
        ])
        entries = {e.path: e for e in extract(payload, f"t.{fmt.extension}")}
        assert entries["tool"].is_executable
        assert not entries["README.md"].is_executable
        assert entries["tool"].payload == b"bin"

    def test_zip_directories(self):
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, 'w') as zf:
            zf.writestr("pkg/", b"")
            info = zipfile.ZipInfo("pkg/tool")
            info.external_attr = (stat.S_IFREG | 0o755) << 16
            zf.writestr(info, b"x")
        entries = {e.path: e for e in extract(buf.getvalue(), "t.zip")}
        assert entries["pkg"].kind == DIRECTORY
        assert entries["pkg/tool"].is_executable

    def test_write_entries(self, tmp_path):
        entries = [
            ArchiveEntry("pkg", 0o755, kind=DIRECTORY),
            ArchiveEntry("pkg/tool", 0o755, b"bin"),
        ]
        written = write_entries(entries, tmp_path)
        assert written == [tmp_path / "pkg" / "tool"]
        assert os.access(tmp_path / "pkg" / "tool", os.X_OK)


class TestSelectBinaries:

    ENTRIES = [
        ArchiveEntry("tool-1.0/tool", 0o755, b"a"),
        ArchiveEntry("tool-1.0/toolctl", 0o755, b"b"),
        ArchiveEntry("tool-1.0/README.md", 0o644, b"c"),
    ]

    def test_default_name(self):
        chosen = select_binaries(self.ENTRIES, default_name="tool")
        assert [e.path for e in chosen] == ["tool-1.0/tool"]

    def test_hint(self):
        chosen = select_binaries(self.ENTRIES, hint="toolctl", default_name="tool")
        assert [e.name for e in chosen] == ["toolctl"]

    def test_glob_hint_ambiguous(self):
        with pytest.raises(ExtractionError) as excinfo:
            select_binaries(self.ENTRIES, hint="tool*")
        assert excinfo.value.reason == ExtractionError.AMBIGUOUS_BINARY
        assert excinfo.value.context['candidates'] == ["tool-1.0/tool", "tool-1.0/toolctl"]

    def test_missing_name(self):
        with pytest.raises(ExtractionError) as excinfo:
            select_binaries(self.ENTRIES, hint="other")
        assert excinfo.value.reason == ExtractionError.AMBIGUOUS_BINARY

    def test_install_all(self):
        chosen = select_binaries(self.ENTRIES, install_all=True)
        assert [e.name for e in chosen] == ["tool", "toolctl"]

    def test_install_all_name_clash(self):
        entries = [ArchiveEntry("b/tool", 0o755, b"b"), ArchiveEntry("a/tool", 0o755, b"a")]
        with pytest.raises(ExtractionError) as excinfo:
            select_binaries(entries, install_all=True, filename="tool.tar.gz")
        assert excinfo.value.reason == ExtractionError.AMBIGUOUS_BINARY
        assert excinfo.value.context['candidates'] == ["a/tool", "b/tool"]

    def test_lone_executable_without_hint(self):
        entries = [ArchiveEntry("renamed", 0o755, b"a"), ArchiveEntry("LICENSE", 0o644, b"")]
        assert [e.name for e in select_binaries(entries, default_name="tool")] == ["renamed"]

    def test_windows_exe_without_mode(self):
        entries = [ArchiveEntry("tool.exe", 0, b"MZ"), ArchiveEntry("other.dll", 0, b"MZ")]
        assert [e.name for e in select_binaries(entries, default_name="tool")] == ["tool.exe"]


class TestCreateArchive:

    @pytest.mark.parametrize("fmt", list(ArchiveFormat))
    def test_deterministic(self, fmt):
        forward = [ArchiveEntry("a", 0o755, b"1"), ArchiveEntry("b", 0o755, b"2")]
        first = create_archive(fmt, forward)
        second = create_archive(fmt, list(reversed(forward)))
        assert first == second

    def test_tar_metadata_zeroed(self):
        payload = create_archive(ArchiveFormat.TAR_GZ, [ArchiveEntry("tool", 0o755, b"x")])
        with tarfile.open(fileobj=io.BytesIO(payload), mode='r:gz') as tf:
            member = tf.getmember("tool")
        assert member.mtime == 0
        assert member.uid == 0 and member.gid == 0
        assert member.mode == 0o755

    def test_archive_name(self):
        assert archive_name("tool", "x86_64-unknown-linux-gnu", "v1.0.0", ArchiveFormat.TAR_GZ) == \
            "tool-x86_64-unknown-linux-gnu-v1.0.0.tar.gz"
        assert archive_name("tool", "x86_64-pc-windows-msvc", "v1.0.0", ArchiveFormat.ZIP) == \
            "tool-x86_64-pc-windows-msvc-v1.0.0.zip"
