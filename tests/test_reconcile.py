"""Tests for release reconciliation and pruning."""

import pytest

from conftest import FakeRegistry
from ghrelease.domain.release import DesiredAsset, Release, RetentionPolicy
from ghrelease.domain.tag import classify
from ghrelease.errors import PublishError, TransportError
from ghrelease.exit_codes import NETWORK_ERROR
from ghrelease.services.reconcile_service import AssetAction, ReleaseAction, ReleaseReconciler

REPO = "owner/tool"


def desired_release(tag="v1.0.0", **kwargs):
    return Release(tag=classify(tag), name=tag, **kwargs)


def desired_assets(**files):
    return [DesiredAsset.from_bytes(name.replace('_', '.'), data) for name, data in files.items()]


ASSETS = desired_assets(tool_tar_gz=b"linux build", tool_zip=b"windows build", SHA256SUMS=b"sums")


class TestReconcile:

    def test_creates_release_and_uploads(self, registry):
        reconciler = ReleaseReconciler(registry, REPO)
        release = reconciler.reconcile(desired_release(notes="hello"), ASSETS)

        assert registry.created == ["v1.0.0"]
        assert sorted(registry.uploads) == ["SHA256SUMS", "tool.tar.gz", "tool.zip"]
        assert set(release.asset_names) == {"SHA256SUMS", "tool.tar.gz", "tool.zip"}
        assert reconciler.last_report.release_action == ReleaseAction.CREATED
        assert reconciler.last_report.uploaded == 3

    def test_uploads_in_filename_order(self, registry):
        ReleaseReconciler(registry, REPO).reconcile(desired_release(), ASSETS)
        assert registry.uploads == ["SHA256SUMS", "tool.tar.gz", "tool.zip"]

    def test_second_run_uploads_nothing(self, registry):
        ReleaseReconciler(registry, REPO).reconcile(desired_release(notes="hello"), ASSETS)
        uploads_before = list(registry.uploads)

        reconciler = ReleaseReconciler(registry, REPO)
        release = reconciler.reconcile(desired_release(notes="hello"), ASSETS)

        assert registry.uploads == uploads_before
        assert registry.deleted_assets == []
        assert len(release.assets) == 3
        assert reconciler.last_report.release_action == ReleaseAction.UNCHANGED
        assert reconciler.last_report.skipped == 3

    def test_second_run_without_digests_compares_content(self):
        registry = FakeRegistry(digests=False)
        ReleaseReconciler(registry, REPO).reconcile(desired_release(), ASSETS)
        ReleaseReconciler(registry, REPO).reconcile(desired_release(), ASSETS)
        assert len(registry.uploads) == 3
        # same sizes, so contents were downloaded and hashed
        assert sorted(registry.downloads) == ["SHA256SUMS", "tool.tar.gz", "tool.zip"]

    def test_changed_asset_replaced(self, registry):
        ReleaseReconciler(registry, REPO).reconcile(desired_release(), ASSETS)

        changed = desired_assets(tool_tar_gz=b"rebuilt linux build", tool_zip=b"windows build",
                                 SHA256SUMS=b"sums")
        reconciler = ReleaseReconciler(registry, REPO)
        reconciler.reconcile(desired_release(), changed)

        assert registry.deleted_assets == ["tool.tar.gz"]
        assert registry.uploads.count("tool.tar.gz") == 2
        actions = {a.filename: a.action for a in reconciler.last_report.assets}
        assert actions["tool.tar.gz"] == AssetAction.REPLACED
        assert actions["tool.zip"] == AssetAction.SKIPPED

    def test_existing_release_updated_not_recreated(self, registry):
        registry.add_release(REPO, "v1.0.0", draft=True, notes="old")
        reconciler = ReleaseReconciler(registry, REPO)
        reconciler.reconcile(desired_release(notes="new"), [])

        assert registry.created == ["v1.0.0"]  # only the setup call
        assert registry.updated == [{'draft': False, 'notes': "new"}]
        assert reconciler.last_report.release_action == ReleaseAction.UPDATED

    def test_empty_notes_keep_existing(self, registry):
        registry.add_release(REPO, "v1.0.0", notes="written by hand")
        ReleaseReconciler(registry, REPO).reconcile(desired_release(), [])
        assert registry.updated == []
        assert registry.release_by_tag("v1.0.0").notes == "written by hand"

    def test_failed_upload_is_rerunnable(self, registry):
        registry.fail_uploads = {"tool.zip": 1}

        with pytest.raises(PublishError) as excinfo:
            ReleaseReconciler(registry, REPO).reconcile(desired_release(), ASSETS)
        report = excinfo.value.report
        assert [a.filename for a in report.failed] == ["tool.zip"]
        assert excinfo.value.context['failed'] == ["tool.zip"]
        # other assets still went up
        assert sorted(registry.uploads) == ["SHA256SUMS", "tool.tar.gz"]

        ReleaseReconciler(registry, REPO).reconcile(desired_release(), ASSETS)
        assert sorted(registry.uploads) == ["SHA256SUMS", "tool.tar.gz", "tool.zip"]
        assert registry.created == ["v1.0.0"]

    def test_relisting_after_uploads_fails(self):

        class FlakyListing(FakeRegistry):
            calls = 0

            def list_assets(self, repo, release_id):
                self.calls += 1
                if self.calls > 1:
                    raise TransportError("bad gateway", kind=TransportError.TRANSIENT_5XX, status=502)
                return super().list_assets(repo, release_id)

        registry = FlakyListing()
        reconciler = ReleaseReconciler(registry, REPO)
        with pytest.raises(PublishError) as excinfo:
            reconciler.reconcile(desired_release(), ASSETS)

        assert excinfo.value.exit_code == NETWORK_ERROR
        assert excinfo.value.report is reconciler.last_report
        assert excinfo.value.report.uploaded == 3
        assert isinstance(excinfo.value.__cause__, TransportError)

    def test_report_to_dict(self, registry):
        reconciler = ReleaseReconciler(registry, REPO)
        reconciler.reconcile(desired_release(), ASSETS[:1])
        data = reconciler.last_report.to_dict()
        assert data['type'] == "release"
        assert data['release_action'] == "created"
        assert data['uploaded'] == 1
        assert data['html_url'].endswith("/releases/tag/v1.0.0")


class TestPrune:

    def _continuous(self, registry, count):
        for i in range(count):
            registry.add_release(REPO, f"0.1.0-{i:08x}", prerelease=True)

    def test_keeps_last_five(self, registry):
        self._continuous(registry, 5)
        reconciler = ReleaseReconciler(registry, REPO, retention=RetentionPolicy(keep_last=5))
        reconciler.reconcile(desired_release("0.1.0-000000ff", prerelease=True), [])

        assert registry.deleted_releases == ["0.1.0-00000000"]
        assert reconciler.last_report.pruned == ["0.1.0-00000000"]
        remaining = [r.tag.raw for r in registry.releases()]
        assert len(remaining) == 5
        assert "0.1.0-000000ff" in remaining

    def test_ordinary_releases_untouched(self, registry):
        registry.add_release(REPO, "v0.9.0")
        registry.add_release(REPO, "v1.0.0")
        self._continuous(registry, 3)
        reconciler = ReleaseReconciler(registry, REPO, retention=RetentionPolicy(keep_last=1))
        reconciler.reconcile(desired_release("0.1.0-000000ff", prerelease=True), [])

        assert sorted(registry.deleted_releases) == ["0.1.0-00000000", "0.1.0-00000001", "0.1.0-00000002"]
        assert registry.release_by_tag("v0.9.0") is not None

    def test_ordinary_prerelease_untouched(self, registry):
        registry.add_release(REPO, "v2.0.0-rc.1", prerelease=True)
        registry.add_release(REPO, "v1.0.0-beta")
        self._continuous(registry, 3)
        reconciler = ReleaseReconciler(registry, REPO, retention=RetentionPolicy(keep_last=1))
        reconciler.reconcile(desired_release("0.1.0-000000ff", prerelease=True), [])

        assert sorted(registry.deleted_releases) == ["0.1.0-00000000", "0.1.0-00000001", "0.1.0-00000002"]
        assert registry.release_by_tag("v2.0.0-rc.1") is not None
        assert registry.release_by_tag("v1.0.0-beta") is not None

    @pytest.mark.parametrize("tag,continuous", [
        ("0.1.0-abcdef12", True),
        ("v1.2.3-0123456789abcdef0123456789abcdef01234567", True),
        ("1.0.0-beta.2-abcdef1", True),
        ("v2.0.0-rc.1", False),
        ("v1.0.0", False),
        ("1.0.0-abc", False),
        ("nightly-abcdef12", False),
    ])
    def test_default_pattern(self, tag, continuous):
        assert RetentionPolicy().matches(desired_release(tag)) is continuous

    def test_tagged_release_does_not_prune(self, registry):
        self._continuous(registry, 8)
        ReleaseReconciler(registry, REPO, retention=RetentionPolicy(keep_last=1)).reconcile(
            desired_release("v1.0.0"), [])
        assert registry.deleted_releases == []

    def test_prune_failure_is_not_fatal(self, registry):
        self._continuous(registry, 6)
        registry.fail_release_deletes = ["0.1.0-00000000"]
        reconciler = ReleaseReconciler(registry, REPO, retention=RetentionPolicy(keep_last=5))

        release = reconciler.reconcile(desired_release("0.1.0-000000ff", prerelease=True), [])

        assert release.tag.raw == "0.1.0-000000ff"
        assert registry.deleted_releases == ["0.1.0-00000001"]
        assert reconciler.last_report.prune_errors[0]['tag'] == "0.1.0-00000000"
