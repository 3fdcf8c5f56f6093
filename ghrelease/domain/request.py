"""
Install request value object and repository spec parsing.
"""

import re
from dataclasses import dataclass
from typing import Optional, Tuple

from ..errors import UsageError
from .platform import PlatformTarget

_NAME_RE = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._-]*$')


def parse_repo_spec(spec: str) -> Tuple[str, str, Optional[str]]:
    """
    Parse ``OWNER/REPO[@TAG]`` into (owner, name, tag).

    Raises:
        UsageError: if the string is not of that shape
    """
    value = (spec or '').strip()
    tag = None
    if '@' in value:
        value, tag = value.split('@', 1)
        if not tag:
            raise UsageError(f"Invalid repository format: '{spec}'. Empty tag after '@'",
                             repository=spec)

    parts = value.split('/')
    if len(parts) != 2 or not all(_NAME_RE.match(p) for p in parts):
        raise UsageError(
            f"Invalid repository format: '{spec}'. Expected 'owner/repo' or 'owner/repo@tag'",
            repository=spec,
        )
    return parts[0], parts[1], tag


@dataclass(frozen=True)
class InstallRequest:
    """
    Everything one install invocation needs. Built once, never mutated.

    ``tag`` of None means "latest". ``install_all`` installs every
    executable in the archive instead of requiring exactly one.
    """
    repo: str
    target: PlatformTarget
    install_dir: str
    tag: Optional[str] = None
    binary_hint: Optional[str] = None
    verify_signature: bool = False
    allow_fallback: bool = True
    install_all: bool = False
    verify_checksum: bool = True
    keyring: Optional[str] = None
    show_notes: bool = False

    @property
    def owner(self) -> str:
        return self.repo.split('/', 1)[0]

    @property
    def name(self) -> str:
        """Short repository name, the default binary name."""
        return self.repo.split('/', 1)[1]

    def to_dict(self) -> dict:
        return {
            'repo': self.repo,
            'tag': self.tag,
            'target': self.target.triple,
            'install_dir': self.install_dir,
            'binary_hint': self.binary_hint,
            'verify_signature': self.verify_signature,
            'allow_fallback': self.allow_fallback,
            'install_all': self.install_all,
        }
