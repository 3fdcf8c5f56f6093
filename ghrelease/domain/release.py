"""
Release and asset domain objects for ghrelease.

A Release's identity is (repository, tag.raw). The registry id is a
cache of that identity and may churn between runs (a release deleted
and recreated by hand gets a new id), so nothing compares releases by id.
"""

import hashlib
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from .tag import Tag, classify

# Tags produced by `dist --hash`: <version>-<short sha>
CONTINUOUS_TAG_PATTERN = r"^v?\d+\.\d+\.\d+(?:-[0-9A-Za-z.]+)?-[0-9a-f]{7,40}$"

# Suffix -> MIME type for uploaded assets
CONTENT_TYPES = (
    ('.tar.gz', 'application/gzip'),
    ('.tgz', 'application/gzip'),
    ('.gz', 'application/gzip'),
    ('.zip', 'application/zip'),
    ('.tar.xz', 'application/x-xz'),
    ('.xz', 'application/x-xz'),
    ('.tar.bz2', 'application/x-bzip2'),
    ('.bz2', 'application/x-bzip2'),
    ('.txt', 'text/plain'),
    ('.sig', 'application/pgp-signature'),
    ('.asc', 'application/pgp-signature'),
)

DEFAULT_CONTENT_TYPE = 'application/octet-stream'


def content_type_for(filename: str) -> str:
    """Pick the upload content type for an asset filename."""
    lower = filename.lower()
    if lower in ('sha256sums', 'sha512sums'):
        return 'text/plain'
    for suffix, content_type in CONTENT_TYPES:
        if lower.endswith(suffix):
            return content_type
    return DEFAULT_CONTENT_TYPE


@dataclass(frozen=True)
class Asset:
    """One file attached to a release."""
    filename: str
    size: int = 0
    download_url: str = ''
    content_type: str = DEFAULT_CONTENT_TYPE
    sha256: Optional[str] = None
    id: Optional[int] = None
    state: str = 'uploaded'  # 'starter' for an upload that never completed

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> 'Asset':
        """Create from a GitHub release asset object."""
        digest = data.get('digest') or ''
        sha256 = digest[len('sha256:'):] if digest.startswith('sha256:') else None
        return cls(
            filename=data.get('name', ''),
            size=data.get('size', 0) or 0,
            download_url=data.get('browser_download_url', ''),
            content_type=data.get('content_type') or DEFAULT_CONTENT_TYPE,
            sha256=sha256,
            id=data.get('id'),
            state=data.get('state') or 'uploaded',
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'filename': self.filename,
            'size': self.size,
            'download_url': self.download_url,
            'content_type': self.content_type,
            'sha256': self.sha256,
            'id': self.id,
        }


@dataclass(frozen=True)
class Release:
    """A release record, either fetched from the registry or desired by dist."""
    tag: Tag
    id: Optional[int] = None
    draft: bool = False
    prerelease: bool = False
    assets: Tuple[Asset, ...] = ()
    notes: str = ''
    name: Optional[str] = None
    created_at: Optional[str] = None
    html_url: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> 'Release':
        """Create from a GitHub release object."""
        return cls(
            tag=classify(data.get('tag_name', '')),
            id=data.get('id'),
            draft=bool(data.get('draft', False)),
            prerelease=bool(data.get('prerelease', False)),
            assets=tuple(Asset.from_api_response(a) for a in data.get('assets', []) or []),
            notes=data.get('body') or '',
            name=data.get('name'),
            created_at=data.get('created_at'),
            html_url=data.get('html_url'),
        )

    def identity(self, repo: str) -> Tuple[str, str]:
        """The (repository, tag) pair that makes two releases 'the same'."""
        return (repo, self.tag.raw)

    def asset_named(self, filename: str) -> Optional[Asset]:
        for asset in self.assets:
            if asset.filename == filename:
                return asset
        return None

    @property
    def asset_names(self) -> Tuple[str, ...]:
        return tuple(a.filename for a in self.assets)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tag': self.tag.to_dict(),
            'id': self.id,
            'draft': self.draft,
            'prerelease': self.prerelease,
            'name': self.name,
            'created_at': self.created_at,
            'html_url': self.html_url,
            'assets': [a.to_dict() for a in self.assets],
        }


@dataclass(frozen=True)
class DesiredAsset:
    """An asset the dist path wants on the release: name, bytes and their digest."""
    filename: str
    payload: bytes = field(repr=False)
    sha256: str
    content_type: str = DEFAULT_CONTENT_TYPE

    @classmethod
    def from_bytes(cls, filename: str, payload: bytes) -> 'DesiredAsset':
        return cls(
            filename=filename,
            payload=payload,
            sha256=hashlib.sha256(payload).hexdigest(),
            content_type=content_type_for(filename),
        )

    @property
    def size(self) -> int:
        return len(self.payload)


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Retention for continuous (per-push) releases.

    Only releases the predicate accepts are candidates for pruning; the
    default predicate is a regular expression over the tag name that
    only accepts the <version>-<short sha> shape, so ordinary tagged
    releases (including prereleases such as v2.0.0-rc.1) are never pruned.
    """
    keep_last: int = 5
    pattern: str = CONTINUOUS_TAG_PATTERN
    predicate: Optional[Callable[[Release], bool]] = field(default=None, compare=False)

    def matches(self, release: Release) -> bool:
        if self.predicate is not None:
            return self.predicate(release)
        return re.fullmatch(self.pattern, release.tag.raw) is not None
