"""
Build tool infrastructure for ghrelease.

Wraps cargo: per-target release builds for the dist path, ``cargo
install --git`` as the install fallback, and the optional ``cargo
publish`` step. Like GitClient, everything goes through subprocess so
services can be tested against a mock.
"""

import logging
import os
import subprocess
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..domain.tag import Tag, TagKind
from ..errors import BuildError, ConfigError, FallbackError
from .git_client import repo_from_url

logger = logging.getLogger(__name__)

# Build outputs that carry an executable bit but are not programs
_NON_BINARY_SUFFIXES = ('.d', '.so', '.dylib', '.dll', '.rlib', '.a', '.lib', '.pdb')


@dataclass(frozen=True)
class BuiltBinary:
    """One executable produced by a build."""
    name: str
    path: Path


@dataclass(frozen=True)
class SourceRef:
    """
    A git reference for a source install.

    ``kind`` is the cargo flag to use: 'tag', 'rev' or 'branch'.
    """
    kind: str
    value: str

    @classmethod
    def from_tag(cls, tag: Tag) -> 'SourceRef':
        if tag.kind == TagKind.COMMIT_HASH:
            return cls('rev', tag.normalized)
        if tag.kind == TagKind.BRANCH:
            return cls('branch', tag.raw)
        return cls('tag', tag.raw)

    def cargo_args(self) -> List[str]:
        return [f'--{self.kind}', self.value]


def profile_dir(profile: str) -> str:
    """Directory name cargo uses for a build profile."""
    if profile in ('dev', 'test'):
        return 'debug'
    if profile == 'bench':
        return 'release'
    return profile


def read_manifest(project_dir: str = '.') -> Dict[str, Any]:
    """Parse Cargo.toml in ``project_dir``."""
    path = Path(project_dir) / 'Cargo.toml'
    try:
        with open(path, 'rb') as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Cargo.toml not found in {project_dir}", file=str(path)) from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse {path}: {e}", file=str(path)) from e


def _workspace_version(project_dir: str) -> Optional[str]:
    """workspace.package.version from the nearest enclosing workspace manifest."""
    for directory in [Path(project_dir).resolve()] + list(Path(project_dir).resolve().parents):
        if not (directory / 'Cargo.toml').exists():
            continue
        workspace = read_manifest(str(directory)).get('workspace')
        if isinstance(workspace, dict):
            version = workspace.get('package', {}).get('version')
            if isinstance(version, str):
                return version
    return None


def read_package_version(project_dir: str = '.') -> str:
    """package.version, following ``version.workspace = true``."""
    package = read_manifest(project_dir).get('package', {})
    version = package.get('version')
    if isinstance(version, dict) and version.get('workspace'):
        version = _workspace_version(project_dir)
    elif version is None:
        version = _workspace_version(project_dir)
    if not isinstance(version, str):
        raise ConfigError(f"No package.version in {project_dir}/Cargo.toml")
    return version


def read_repository(project_dir: str = '.') -> Optional[str]:
    """'owner/repo' from the package.repository field, if it points at GitHub."""
    try:
        package = read_manifest(project_dir).get('package', {})
    except ConfigError:
        return None
    return repo_from_url(package.get('repository'))


class CargoBuildTool:
    """
    cargo invocations used by the install and dist paths.

    Example:
        tool = CargoBuildTool(project_dir=".")
        for binary in tool.build("x86_64-unknown-linux-gnu"):
            print(binary.name, binary.path)
    """

    def __init__(self, project_dir: str = '.', cargo: str = 'cargo', timeout: Optional[int] = None):
        """
        Initialize CargoBuildTool.

        Args:
            project_dir: Crate root for builds and publish
            cargo: cargo executable
            timeout: Optional limit in seconds for each cargo invocation
        """
        self.project_dir = project_dir
        self.cargo = cargo
        self.timeout = timeout

    def _run(self, args: List[str], cwd: Optional[str] = None) -> subprocess.CompletedProcess:
        cmd = [self.cargo] + args
        logger.debug(f"running {' '.join(cmd)}")
        return subprocess.run(
            cmd,
            cwd=cwd or self.project_dir,
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )

    @staticmethod
    def _tail(text: Optional[str], lines: int = 20) -> str:
        return '\n'.join((text or '').strip().splitlines()[-lines:])

    def build(self, target: str, profile: str = 'release',
              bins: Optional[Sequence[str]] = None) -> List[BuiltBinary]:
        """
        Build one target.

        Raises:
            BuildError: cargo failed or produced no binaries
        """
        args = ['build', '--target', target]
        if profile == 'release':
            args.append('--release')
        else:
            args.extend(['--profile', profile])
        for name in bins or ():
            args.extend(['--bin', name])

        try:
            result = self._run(args)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise BuildError(target, str(e)) from e
        if result.returncode != 0:
            raise BuildError(target, self._tail(result.stderr) or f"cargo exited with {result.returncode}")

        out_dir = Path(self.project_dir) / 'target' / target / profile_dir(profile)
        binaries = self.find_binaries(out_dir, bins)
        if not binaries:
            raise BuildError(target, f"no binaries found in {out_dir}")
        return binaries

    @staticmethod
    def find_binaries(directory: Path, bins: Optional[Sequence[str]] = None) -> List[BuiltBinary]:
        """Executables directly inside ``directory``, optionally filtered by name."""
        if not directory.is_dir():
            return []
        found = []
        for path in sorted(directory.iterdir()):
            if not path.is_file() or path.name.endswith(_NON_BINARY_SUFFIXES):
                continue
            is_exe = path.suffix.lower() == '.exe' or os.access(path, os.X_OK)
            if not is_exe:
                continue
            stem = path.name[:-4] if path.suffix.lower() == '.exe' else path.name
            if bins and stem not in bins:
                continue
            found.append(BuiltBinary(name=path.name, path=path))
        return found

    def install_from_source(self, repo: str, ref: Optional[SourceRef] = None,
                            bin_name: Optional[str] = None, install_dir: Optional[str] = None) -> None:
        """
        ``cargo install --git`` the repository at a concrete reference.

        Raises:
            FallbackError: cargo is missing or the install failed
        """
        url = f"https://github.com/{repo}.git"
        args = ['install', '--git', url]
        if ref is not None:
            args.extend(ref.cargo_args())
        if bin_name:
            args.extend(['--bin', bin_name])
        if install_dir:
            # cargo installs into <root>/bin
            root = Path(install_dir).expanduser()
            args.extend(['--root', str(root.parent if root.name == 'bin' else root)])

        logger.info(f"installing {repo} from source ({' '.join(args[3:]) or 'default branch'})")
        try:
            result = self._run(args, cwd=os.getcwd())
        except (OSError, subprocess.TimeoutExpired) as e:
            raise FallbackError(f"cargo install failed for {url}: {e}", repository=repo) from e
        if result.returncode != 0:
            raise FallbackError(
                f"cargo install failed with exit code {result.returncode}: {self._tail(result.stderr, 5)}",
                repository=repo,
                ref=ref.value if ref else None,
            )

    def publish(self) -> bool:
        """Run ``cargo publish``. Failure is reported, not raised."""
        try:
            result = self._run(['publish'])
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"cargo publish failed: {e}")
            return False
        if result.returncode != 0:
            logger.warning(f"cargo publish failed: {self._tail(result.stderr, 5)}")
            return False
        return True
