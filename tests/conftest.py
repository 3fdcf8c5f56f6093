"""
Shared fixtures: an in-memory release registry and archive builders.
"""

import hashlib
from dataclasses import replace
from typing import Dict, List, Optional

import pytest

from ghrelease.archive import ArchiveEntry, ArchiveFormat, create_archive
from ghrelease.checksums import render_checksums
from ghrelease.domain.release import Asset, Release, content_type_for
from ghrelease.domain.tag import classify
from ghrelease.errors import PublishConflict, RegistryError


class FakeRegistry:
    """
    Release registry double implementing the GitHubClient contract.

    Releases live in memory; every mutating call is recorded so tests
    can assert on exactly what was uploaded or deleted. ``digests``
    controls whether listed assets carry a sha256 digest (newer GitHub
    responses do, older ones only report the size).
    """

    def __init__(self, digests: bool = True):
        self.digests = digests
        self._releases: Dict[int, Release] = {}
        self._assets: Dict[int, Dict[int, Asset]] = {}
        self._payloads: Dict[int, bytes] = {}
        self._next_id = 1
        self._clock = 0
        self.refs: List[str] = []

        self.created: List[str] = []
        self.updated: List[Dict] = []
        self.uploads: List[str] = []
        self.deleted_assets: List[str] = []
        self.deleted_releases: List[str] = []
        self.downloads: List[str] = []

        # failure injection
        self.fail_uploads: Dict[str, int] = {}
        self.fail_release_deletes: List[str] = []

    def _id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    def _timestamp(self) -> str:
        self._clock += 1
        n = self._clock
        return f"2024-01-01T{n // 3600:02d}:{n // 60 % 60:02d}:{n % 60:02d}Z"

    def _view(self, release_id: int) -> Release:
        assets = tuple(sorted(self._assets[release_id].values(), key=lambda a: a.filename))
        return replace(self._releases[release_id], assets=assets)

    # Test setup helpers

    def add_release(self, repo: str, tag: str, assets: Optional[Dict[str, bytes]] = None,
                    draft: bool = False, prerelease: bool = False, notes: str = '') -> Release:
        release = self.create_release(repo, tag, draft=draft, prerelease=prerelease, notes=notes)
        for filename, payload in (assets or {}).items():
            self._store_asset(release.id, filename, payload)
        return self._view(release.id)

    def _store_asset(self, release_id: int, filename: str, payload: bytes) -> Asset:
        asset_id = self._id()
        asset = Asset(
            filename=filename,
            size=len(payload),
            download_url=f"https://example.invalid/{filename}",
            content_type=content_type_for(filename),
            sha256=hashlib.sha256(payload).hexdigest() if self.digests else None,
            id=asset_id,
        )
        self._assets[release_id][asset_id] = asset
        self._payloads[asset_id] = payload
        return asset

    def releases(self) -> List[Release]:
        return [self._view(rid) for rid in sorted(self._releases)]

    def release_by_tag(self, tag: str) -> Optional[Release]:
        for release in self.releases():
            if release.tag.raw == tag:
                return release
        return None

    # Client contract

    def get_release(self, repo: str, tag: str) -> Optional[Release]:
        for release in self.releases():
            if release.tag.raw == tag and not release.draft:
                return release
        return None

    def get_latest_release(self, repo: str) -> Optional[Release]:
        published = [r for r in self.releases() if not r.draft and not r.prerelease]
        if not published:
            return None
        return max(published, key=lambda r: r.created_at)

    def list_releases(self, repo: str) -> List[Release]:
        return sorted(self.releases(), key=lambda r: r.created_at, reverse=True)

    def ref_exists(self, repo: str, ref: str) -> bool:
        return ref in self.refs

    def create_release(self, repo, tag, draft=False, prerelease=False, notes='', name=None,
                       target_commitish=None) -> Release:
        if any(r.tag.raw == tag for r in self._releases.values()):
            raise PublishConflict(f"Release {tag} already exists")
        release_id = self._id()
        self._releases[release_id] = Release(
            tag=classify(tag),
            id=release_id,
            draft=draft,
            prerelease=prerelease,
            notes=notes,
            name=name or tag,
            created_at=self._timestamp(),
            html_url=f"https://github.com/{repo}/releases/tag/{tag}",
        )
        self._assets[release_id] = {}
        self.created.append(tag)
        return self._view(release_id)

    def update_release(self, repo: str, release_id: int, **fields) -> Release:
        self.updated.append(dict(fields))
        self._releases[release_id] = replace(self._releases[release_id], **fields)
        return self._view(release_id)

    def delete_release(self, repo: str, release_id: int) -> None:
        tag = self._releases[release_id].tag.raw
        if tag in self.fail_release_deletes:
            raise RegistryError(f"cannot delete {tag}", status=500)
        del self._releases[release_id]
        del self._assets[release_id]
        self.deleted_releases.append(tag)

    def list_assets(self, repo: str, release_id: int) -> List[Asset]:
        return list(self._view(release_id).assets)

    def upload_asset(self, repo, release_id, filename, payload, content_type) -> Asset:
        if self.fail_uploads.get(filename, 0) > 0:
            self.fail_uploads[filename] -= 1
            raise RegistryError(f"upload of {filename} failed", status=400)
        if any(a.filename == filename for a in self._assets[release_id].values()):
            raise PublishConflict(f"Asset {filename} already exists")
        self.uploads.append(filename)
        return self._store_asset(release_id, filename, payload)

    def delete_asset(self, repo: str, asset_id: int) -> None:
        for assets in self._assets.values():
            if asset_id in assets:
                self.deleted_assets.append(assets.pop(asset_id).filename)
                return
        raise RegistryError(f"no asset {asset_id}", status=404)

    def download_asset(self, repo: str, asset: Asset) -> bytes:
        self.downloads.append(asset.filename)
        return self._payloads[asset.id]


def make_archive(files: Dict[str, bytes], fmt: ArchiveFormat = ArchiveFormat.TAR_GZ,
                 mode: int = 0o755) -> bytes:
    """Archive holding ``files`` (path -> content), all with ``mode``."""
    return create_archive(fmt, [ArchiveEntry(path, mode, payload) for path, payload in files.items()])


def with_checksums(assets: Dict[str, bytes]) -> Dict[str, bytes]:
    """``assets`` plus a SHA256SUMS covering them."""
    body = render_checksums({name: hashlib.sha256(data).hexdigest() for name, data in assets.items()})
    result = dict(assets)
    result['SHA256SUMS'] = body.encode('utf-8')
    return result


@pytest.fixture
def registry():
    return FakeRegistry()
