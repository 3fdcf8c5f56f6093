"""
Dist service for ghrelease.

Builds every requested target, packages each into a deterministic
archive, adds a SHA256SUMS file and hands the lot to the release
reconciler. Targets are independent units of work: a failed build is
recorded in the summary and the remaining targets carry on.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Generator, List, Optional

from ..archive import ArchiveEntry, ArchiveFormat, archive_name, create_archive
from ..checksums import CHECKSUM_FILENAME, render_checksums
from ..domain.operation import OperationStatus, OperationSummary, TargetResult
from ..domain.release import CONTINUOUS_TAG_PATTERN, DesiredAsset, Release, RetentionPolicy
from ..domain.tag import classify
from ..errors import GhReleaseError, PublishError, ResolutionError, UsageError
from ..exit_codes import GENERAL_ERROR, PARTIAL_SUCCESS, SUCCESS
from ..infra.build_tool import CargoBuildTool, read_package_version, read_repository
from ..infra.git_client import GitClient
from ..release_notes import generate_release_notes
from .reconcile_service import ReleaseReconciler

logger = logging.getLogger(__name__)

EXECUTABLE_MODE = 0o755


@dataclass
class DistOptions:
    """Options for one dist run."""
    targets: List[str]
    repo: Optional[str] = None  # "owner/repo"
    tag: Optional[str] = None
    use_hash: bool = False  # continuous "<version>-<sha>" release when HEAD is untagged
    fmt: ArchiveFormat = ArchiveFormat.TAR_GZ
    profile: str = "release"
    bins: Optional[List[str]] = None
    draft: bool = False
    prerelease: bool = False
    checksum: bool = True
    skip_publish: bool = True
    dry_run: bool = False
    jobs: int = 1
    keep_last: int = 5
    pattern: str = CONTINUOUS_TAG_PATTERN
    project_dir: str = "."
    output_dir: Optional[str] = None  # default target/dist/<tag>


@dataclass
class DistPlan:
    """Tag and repository a run publishes to."""
    repo: str
    tag: str
    continuous: bool = False
    commit: Optional[str] = None


@dataclass
class _Packaged:
    result: TargetResult
    asset: Optional[DesiredAsset] = None


class DistService:
    """
    Service that builds, packages and publishes a release.

    Example:
        service = DistService(client=GitHubClient())
        for progress in service.run(options):
            print(progress)

        summary = service.last_result
        print(f"Packaged {summary.successful}/{summary.total} targets")
    """

    def __init__(self, client=None, build_tool=None, git_client: Optional[GitClient] = None):
        """
        Initialize DistService.

        Args:
            client: Release registry client (not needed for dry runs)
            build_tool: Build collaborator (CargoBuildTool if None)
            git_client: GitClient instance (creates new if None)
        """
        self.client = client
        self.build_tool = build_tool
        self.git = git_client or GitClient()
        self.last_result: Optional[OperationSummary] = None
        self.last_plan: Optional[DistPlan] = None
        self.last_report = None
        self.publish_error: Optional[PublishError] = None

    def _tool(self, options: DistOptions):
        if self.build_tool is None:
            self.build_tool = CargoBuildTool(project_dir=options.project_dir)
        return self.build_tool

    def plan(self, options: DistOptions) -> DistPlan:
        """
        Decide the tag and repository.

        Tag: --tag, else a tag on HEAD, else with --hash
        "<Cargo.toml version>-<short sha>" as a continuous release.

        Raises:
            ResolutionError: no tag could be determined
            UsageError: no repository could be determined
        """
        repo = options.repo or read_repository(options.project_dir)
        if not repo or '/' not in repo:
            raise UsageError(
                "Repository not specified. Use --repository owner/repo, set repository.owner and "
                "repository.repo in the config, or add a GitHub repository URL to Cargo.toml"
            )

        commit = self.git.head_commit(options.project_dir)

        if options.tag:
            return DistPlan(repo=repo, tag=options.tag, commit=commit)

        tags = self.git.tags_at_head(options.project_dir)
        if tags:
            logger.info(f"Using tag {tags[0]} found on HEAD")
            return DistPlan(repo=repo, tag=tags[0], commit=commit)

        if options.use_hash:
            version = read_package_version(options.project_dir)
            sha = self.git.short_sha(options.project_dir)
            if not sha:
                raise ResolutionError("Cannot determine HEAD commit for --hash")
            tag = f"{version}-{sha}"
            logger.info(f"No tag on HEAD, using continuous release tag {tag}")
            return DistPlan(repo=repo, tag=tag, continuous=True, commit=commit)

        raise ResolutionError(
            "No tag found on current HEAD. Create one with 'git tag <version>', pass --tag, "
            "or use --hash for a continuous <version>-<sha> release"
        )

    def package_target(self, target: str, plan: DistPlan, options: DistOptions) -> _Packaged:
        """Build and archive one target. Failures are returned, not raised."""
        repo_name = plan.repo.split('/', 1)[1]
        try:
            binaries = self._tool(options).build(target, options.profile, options.bins)
            entries = [
                ArchiveEntry(path=b.name, mode=EXECUTABLE_MODE, payload=Path(b.path).read_bytes())
                for b in binaries
            ]
            name = archive_name(repo_name, target, plan.tag, options.fmt)
            payload = create_archive(options.fmt, entries)
        except (GhReleaseError, OSError) as e:
            logger.error(f"{target}: {e}")
            return _Packaged(TargetResult(
                target=target,
                status=OperationStatus.FAILED,
                action="build_failed",
                error=str(e),
            ))

        asset = DesiredAsset.from_bytes(name, payload)
        return _Packaged(
            TargetResult(
                target=target,
                status=OperationStatus.DRY_RUN if options.dry_run else OperationStatus.SUCCESS,
                action="would_package" if options.dry_run else "packaged",
                archive=name,
                sha256=asset.sha256,
                size=asset.size,
                metadata={'binaries': sorted(e.path for e in entries)},
            ),
            asset,
        )

    def run(self, options: DistOptions) -> Generator[str, None, OperationSummary]:
        """
        Run the whole dist pipeline.

        Yields:
            Progress messages

        Returns:
            OperationSummary with one TargetResult per target; the
            reconcile report (if any) is attached as ``release``.
        """
        self.publish_error = None
        self.last_report = None
        plan = self.plan(options)
        self.last_plan = plan

        summary = OperationSummary(operation="dist", tag=plan.tag, dry_run=options.dry_run)
        self.last_result = summary

        if not options.targets:
            yield "No targets to build"
            return summary

        yield f"Building {plan.repo} {plan.tag} for {len(options.targets)} targets (jobs={options.jobs})"

        self._tool(options)
        packaged: Dict[str, _Packaged] = {}
        with ThreadPoolExecutor(max_workers=max(1, options.jobs)) as executor:
            futures = {executor.submit(self.package_target, t, plan, options): t for t in options.targets}

            for future in as_completed(futures):
                item = future.result()
                packaged[item.result.target] = item
                if item.asset is not None:
                    yield f"  ✓ {item.result.target}: {item.result.archive}"
                else:
                    yield f"  ✗ {item.result.target}: {item.result.error}"

        # Report in requested order regardless of completion order
        for target in options.targets:
            summary.add_detail(packaged[target].result)

        assets = [packaged[t].asset for t in options.targets if packaged[t].asset is not None]
        if not assets:
            yield "No targets were packaged, nothing to publish"
            return summary

        if options.checksum:
            body = render_checksums({a.filename: a.sha256 for a in assets})
            assets.append(DesiredAsset.from_bytes(CHECKSUM_FILENAME, body.encode('utf-8')))

        out_dir = Path(options.output_dir or Path(options.project_dir) / 'target' / 'dist' / plan.tag)
        out_dir.mkdir(parents=True, exist_ok=True)
        for asset in assets:
            (out_dir / asset.filename).write_bytes(asset.payload)
        yield f"Wrote {len(assets)} files to {out_dir}"

        if options.dry_run:
            kind = "continuous prerelease" if plan.continuous else "release"
            yield f"Would publish {kind} {plan.tag} to {plan.repo} with {len(assets)} assets"
            return summary

        yield from self._publish(plan, options, summary, assets)

        if not options.skip_publish:
            yield "Running cargo publish"
            if not self._tool(options).publish():
                yield "cargo publish failed (release was still published)"

        return summary

    def _publish(self, plan: DistPlan, options: DistOptions, summary: OperationSummary,
                 assets: List[DesiredAsset]) -> Generator[str, None, None]:
        if self.client is None:
            raise UsageError("No registry client configured for publishing")

        succeeded = [d for d in summary.details if d.archive]
        notes = generate_release_notes(
            plan.repo,
            plan.tag,
            succeeded,
            commit=plan.commit,
            continuous=plan.continuous,
            checksum_file=CHECKSUM_FILENAME if options.checksum else None,
        )
        desired = Release(
            tag=classify(plan.tag),
            draft=options.draft,
            prerelease=options.prerelease or plan.continuous,
            notes=notes,
            name=plan.tag,
        )
        retention = RetentionPolicy(keep_last=options.keep_last, pattern=options.pattern) \
            if plan.continuous else None

        reconciler = ReleaseReconciler(self.client, plan.repo, retention=retention)
        yield f"Publishing {len(assets)} assets to {plan.repo} {plan.tag}"
        try:
            reconciler.reconcile(desired, assets)
        except PublishError as e:
            self.publish_error = e
            summary.errors.append(f"publish: {e}")
            yield f"  ✗ publish failed: {e}"
        report = reconciler.last_report
        self.last_report = report
        summary.release = report.to_dict()

        if self.publish_error is None:
            yield (f"  ✓ {report.release_action.value} release, {report.uploaded} uploaded, "
                   f"{report.skipped} unchanged")
        for tag in report.pruned:
            yield f"  pruned old continuous release {tag}"
        for failure in report.prune_errors:
            yield f"  could not prune {failure['tag']}: {failure['error']}"

    @staticmethod
    def exit_code(summary: OperationSummary, publish_error: Optional[PublishError] = None) -> int:
        """
        Exit code for a finished run.

        Publish failure wins (its own code), then all-failed builds
        (general error), then partial success.
        """
        if publish_error is not None:
            return publish_error.exit_code
        if summary.total and summary.failed == summary.total:
            return GENERAL_ERROR
        if summary.failed:
            return PARTIAL_SUCCESS
        return SUCCESS
