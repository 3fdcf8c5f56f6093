"""
Release reconciliation service for ghrelease.

Brings one remote release and its asset set in line with what a dist run
produced. Every step is read-compare-write, so running it again after a
partial failure only redoes the work that is still missing:

1. Find the release by tag; create it if absent, otherwise patch only
   the mutable fields that differ (the release is never recreated).
2. For each desired asset, in filename order: skip when the remote copy
   has the same SHA256, delete-then-upload when it differs, upload when
   it is missing.
3. Optionally prune old continuous releases (best effort).

This service is the only writer of remote release state.
"""

import hashlib
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..domain.release import Asset, DesiredAsset, Release, RetentionPolicy
from ..errors import GhReleaseError, PublishConflict, PublishError, RegistryError

logger = logging.getLogger(__name__)


class ReleaseAction(Enum):
    """What happened to the release record itself."""
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class AssetAction(Enum):
    """What happened to one desired asset."""
    UPLOADED = "uploaded"
    REPLACED = "replaced"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class AssetResult:
    filename: str
    action: AssetAction
    sha256: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'filename': self.filename,
            'action': self.action.value,
        }
        if self.sha256:
            result['sha256'] = self.sha256
        if self.error:
            result['error'] = self.error
        return result


@dataclass
class ReconcileReport:
    """Outcome of one reconcile run, including pruning."""
    repo: str
    tag: str
    release_action: Optional[ReleaseAction] = None
    release_id: Optional[int] = None
    html_url: Optional[str] = None
    assets: List[AssetResult] = field(default_factory=list)
    pruned: List[str] = field(default_factory=list)
    prune_errors: List[Dict[str, str]] = field(default_factory=list)

    def _count(self, action: AssetAction) -> int:
        return sum(1 for a in self.assets if a.action == action)

    @property
    def uploaded(self) -> int:
        """Uploads performed, replacements included."""
        return self._count(AssetAction.UPLOADED) + self._count(AssetAction.REPLACED)

    @property
    def skipped(self) -> int:
        return self._count(AssetAction.SKIPPED)

    @property
    def failed(self) -> List[AssetResult]:
        return [a for a in self.assets if a.action == AssetAction.FAILED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'release',
            'repo': self.repo,
            'tag': self.tag,
            'release_action': self.release_action.value if self.release_action else None,
            'release_id': self.release_id,
            'html_url': self.html_url,
            'assets': [a.to_dict() for a in self.assets],
            'uploaded': self.uploaded,
            'skipped': self.skipped,
            'failed': len(self.failed),
            'pruned': self.pruned,
            'prune_errors': self.prune_errors,
        }


class ReleaseReconciler:
    """
    Idempotent create-or-update of one release and its assets.

    Example:
        reconciler = ReleaseReconciler(client, "owner/tool")
        release = reconciler.reconcile(desired, assets)
        print(reconciler.last_report.uploaded)
    """

    def __init__(self, client, repo: str, retention: Optional[RetentionPolicy] = None):
        """
        Initialize ReleaseReconciler.

        Args:
            client: Release registry client (GitHubClient or a test double)
            repo: "owner/repo"
            retention: Prune policy for continuous releases; None disables pruning
        """
        self.client = client
        self.repo = repo
        self.retention = retention
        self.last_report: Optional[ReconcileReport] = None

    def reconcile(self, desired: Release, desired_assets: Sequence[DesiredAsset]) -> Release:
        """
        Make the remote release match ``desired`` plus ``desired_assets``.

        Returns:
            The release as it stands on the registry afterwards

        Raises:
            PublishError: the release could not be created/updated, or at
                least one asset failed permanently. The report is attached.
        """
        report = ReconcileReport(repo=self.repo, tag=desired.tag.raw)
        self.last_report = report

        try:
            release = self._ensure_release(desired, report)
        except PublishError as e:
            e.report = report
            raise
        except RegistryError as e:
            raise PublishError(
                f"Cannot create or update release {desired.tag.raw}: {e}",
                report=report,
                exit_code=e.exit_code,
                tag=desired.tag.raw,
            ) from e

        report.release_id = release.id
        report.html_url = release.html_url

        try:
            current = {a.filename: a for a in self.client.list_assets(self.repo, release.id)}
        except RegistryError as e:
            raise PublishError(f"Cannot list assets of release {desired.tag.raw}: {e}",
                               report=report, exit_code=e.exit_code, tag=desired.tag.raw) from e

        # One release, one writer: uploads are serialized
        for asset in sorted(desired_assets, key=lambda a: a.filename):
            try:
                result = self._sync_asset(release, asset, current.get(asset.filename))
            except GhReleaseError as e:
                logger.error(f"Failed to publish {asset.filename}: {e}")
                result = AssetResult(asset.filename, AssetAction.FAILED, asset.sha256, error=str(e))
            report.assets.append(result)

        if report.failed:
            names = ', '.join(a.filename for a in report.failed)
            raise PublishError(
                f"{len(report.failed)} asset(s) failed to upload to {desired.tag.raw}: {names}. "
                f"Re-run to retry only the missing assets",
                report=report,
                tag=desired.tag.raw,
                failed=[a.filename for a in report.failed],
            )

        try:
            release = replace(release, assets=tuple(self.client.list_assets(self.repo, release.id)))
        except RegistryError as e:
            raise PublishError(f"Cannot list assets of release {desired.tag.raw}: {e}",
                               report=report, exit_code=e.exit_code, tag=desired.tag.raw) from e

        if self.retention is not None and self.retention.matches(release):
            self.prune(release, report)

        return release

    def _find_release(self, tag: str) -> Optional[Release]:
        release = self.client.get_release(self.repo, tag)
        if release is not None:
            return release
        # Draft releases are not reachable by tag name
        for candidate in self.client.list_releases(self.repo):
            if candidate.tag.raw == tag:
                return candidate
        return None

    def _ensure_release(self, desired: Release, report: ReconcileReport) -> Release:
        tag = desired.tag.raw
        existing = self._find_release(tag)

        if existing is None:
            try:
                created = self.client.create_release(
                    self.repo,
                    tag,
                    draft=desired.draft,
                    prerelease=desired.prerelease,
                    notes=desired.notes,
                    name=desired.name,
                )
                logger.info(f"Created release {tag} on {self.repo}")
                report.release_action = ReleaseAction.CREATED
                return created
            except PublishConflict:
                # Someone else created it between our read and write
                existing = self._find_release(tag)
                if existing is None:
                    raise PublishError(f"Release {tag} reported as existing but cannot be found",
                                       tag=tag)
                logger.info(f"Release {tag} appeared concurrently, updating instead")

        fields: Dict[str, Any] = {}
        if existing.draft != desired.draft:
            fields['draft'] = desired.draft
        if existing.prerelease != desired.prerelease:
            fields['prerelease'] = desired.prerelease
        if desired.notes and existing.notes != desired.notes:
            fields['notes'] = desired.notes
        if desired.name and existing.name != desired.name:
            fields['name'] = desired.name

        if not fields:
            report.release_action = ReleaseAction.UNCHANGED
            return existing

        logger.info(f"Updating release {tag}: {', '.join(sorted(fields))}")
        updated = self.client.update_release(self.repo, existing.id, **fields)
        report.release_action = ReleaseAction.UPDATED
        return updated

    def _same_content(self, current: Asset, desired: DesiredAsset) -> bool:
        if current.state != 'uploaded':
            return False
        if current.sha256:
            return current.sha256.lower() == desired.sha256
        if current.size != desired.size:
            return False
        payload = self.client.download_asset(self.repo, current)
        return hashlib.sha256(payload).hexdigest() == desired.sha256

    def _replace(self, release: Release, current: Asset, desired: DesiredAsset) -> AssetResult:
        logger.info(f"Replacing {desired.filename} (content changed)")
        self.client.delete_asset(self.repo, current.id)
        self.client.upload_asset(self.repo, release.id, desired.filename, desired.payload,
                                 desired.content_type)
        return AssetResult(desired.filename, AssetAction.REPLACED, desired.sha256)

    def _sync_asset(self, release: Release, desired: DesiredAsset,
                    current: Optional[Asset]) -> AssetResult:
        if current is not None:
            if self._same_content(current, desired):
                logger.debug(f"{desired.filename} unchanged, skipping upload")
                return AssetResult(desired.filename, AssetAction.SKIPPED, desired.sha256)
            return self._replace(release, current, desired)

        try:
            self.client.upload_asset(self.repo, release.id, desired.filename, desired.payload,
                                     desired.content_type)
            logger.info(f"Uploaded {desired.filename}")
            return AssetResult(desired.filename, AssetAction.UPLOADED, desired.sha256)
        except PublishConflict:
            # Appeared since we listed; compare against what is there now
            fresh = {a.filename: a for a in self.client.list_assets(self.repo, release.id)}
            current = fresh.get(desired.filename)
            if current is None:
                raise
            if self._same_content(current, desired):
                return AssetResult(desired.filename, AssetAction.SKIPPED, desired.sha256)
            return self._replace(release, current, desired)

    def prune(self, current: Release, report: Optional[ReconcileReport] = None) -> List[str]:
        """
        Delete continuous releases beyond keep_last, oldest first.

        Failures are logged and recorded on the report, never raised.

        Returns:
            Tags of deleted releases
        """
        policy = self.retention
        report = report or ReconcileReport(repo=self.repo, tag=current.tag.raw)
        if policy is None:
            return []

        try:
            releases = self.client.list_releases(self.repo)
        except GhReleaseError as e:
            logger.warning(f"Could not list releases for pruning: {e}")
            report.prune_errors.append({'tag': '*', 'error': str(e)})
            return []

        candidates = [r for r in releases if policy.matches(r)]
        candidates.sort(key=lambda r: r.created_at or '', reverse=True)

        deleted = []
        for old in candidates[max(policy.keep_last, 0):]:
            if old.tag.raw == current.tag.raw:
                continue
            try:
                self.client.delete_release(self.repo, old.id)
                logger.info(f"Pruned continuous release {old.tag.raw}")
                deleted.append(old.tag.raw)
            except GhReleaseError as e:
                logger.warning(f"Failed to prune release {old.tag.raw}: {e}")
                report.prune_errors.append({'tag': old.tag.raw, 'error': str(e)})

        report.pruned.extend(deleted)
        return deleted
