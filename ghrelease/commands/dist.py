"""
Dist command for ghrelease.

Builds the crate for every target, packages deterministic archives with
a SHA256SUMS file, and publishes them to a GitHub release.
"""

import sys
from typing import Optional

import click

from ..archive import FORMAT_NAMES, ArchiveFormat
from ..cli_utils import (
    add_common_options,
    drain_json,
    drain_pretty,
    drain_simple,
    emit_json,
    fail,
    retry_policy,
    split_list,
)
from ..config import configure_logging, continuous_pattern, load_config, resolve_jobs
from ..errors import GhReleaseError
from ..infra.github_client import GitHubClient
from ..services.dist_service import DistOptions, DistService


def _configured_repo(config) -> Optional[str]:
    section = config.get('repository', {})
    owner, name = section.get('owner'), section.get('repo')
    if owner and name:
        return f"{owner}/{name}"
    return None


@click.command('dist')
@click.option('--tag', help='Release tag (default: the tag on HEAD)')
@click.option('--hash', 'use_hash', is_flag=True,
              help='Without a tag on HEAD, publish a continuous <version>-<sha> prerelease')
@click.option('--targets', help='Comma-separated target triples')
@click.option('--format', 'fmt', type=click.Choice(sorted(FORMAT_NAMES)), help='Archive format')
@click.option('--profile', help='Cargo build profile (default: release)')
@click.option('--bins', help='Comma-separated binaries to package (default: all)')
@click.option('--draft', is_flag=True, help='Publish as a draft release')
@click.option('--prerelease', is_flag=True, help='Mark the release as a prerelease')
@click.option('--no-checksum', is_flag=True, help='Do not publish SHA256SUMS')
@click.option('--skip-publish/--publish', default=None,
              help='Skip or run cargo publish after the release (default: skip)')
@click.option('--dry-run', is_flag=True, help='Build and package, but do not touch the registry')
@click.option('-j', '--jobs', type=click.IntRange(min=0), help='Parallel builds (0: CPU count)')
@click.option('--repository', help='OWNER/REPO to publish to')
@click.option('--keep-last', type=click.IntRange(min=0), help='Continuous releases to keep')
@click.option('--project-dir', type=click.Path(file_okay=False, exists=True), default='.',
              help='Crate directory')
@click.option('--output-dir', type=click.Path(file_okay=False),
              help='Where to write archives (default: target/dist/<tag>)')
@add_common_options('token', 'max_retries', 'no_retry', 'config', 'json', 'pretty', 'verbose')
def dist_handler(tag, use_hash, targets, fmt, profile, bins, draft, prerelease, no_checksum,
                 skip_publish, dry_run, jobs, repository, keep_last, project_dir, output_dir,
                 token, max_retries, no_retry, config_path, json_output, pretty, verbose):
    """Build, package and publish release archives.

    Each target is built independently; a failed target is reported
    and the rest are still packaged and published.

    \b
    Examples:
        ghrelease dist --targets x86_64-unknown-linux-gnu,aarch64-apple-darwin
        ghrelease dist --tag v1.2.3 --format zip --draft
        ghrelease dist --hash --keep-last 3
        ghrelease dist --dry-run --json
    """
    try:
        config = load_config(
            config_path,
            repo=repository,
            cli_overrides={
                'default': {
                    'targets': split_list(targets),
                    'format': fmt,
                    'profile': profile,
                    'draft': draft or None,
                    'prerelease': prerelease or None,
                    'checksum': False if no_checksum else None,
                    'skip_publish': skip_publish,
                    'jobs': jobs,
                    'max_retries': max_retries,
                },
                'continuous': {'keep_last': keep_last},
                'github': {'token': token},
            },
        )
        configure_logging(config, verbose)
        settings = config['default']

        options = DistOptions(
            targets=list(settings['targets']),
            repo=repository or _configured_repo(config),
            tag=tag,
            use_hash=use_hash,
            fmt=ArchiveFormat.from_name(str(settings['format'])),
            profile=str(settings['profile']),
            bins=split_list(bins) or settings.get('bins'),
            draft=bool(settings['draft']),
            prerelease=bool(settings['prerelease']),
            checksum=bool(settings['checksum']),
            skip_publish=bool(settings['skip_publish']),
            dry_run=dry_run,
            jobs=resolve_jobs(int(settings['jobs'])),
            keep_last=int(config['continuous']['keep_last']),
            pattern=continuous_pattern(config),
            project_dir=project_dir,
            output_dir=output_dir,
        )

        client = None
        if not dry_run:
            client = GitHubClient(
                token=config['github'].get('token') or None,
                timeout=float(settings['timeout']),
                retry=retry_policy(settings, no_retry),
            )
        service = DistService(client=client)

        progress_iter = service.run(options)
        if json_output:
            drain_json(progress_iter)
        elif pretty:
            drain_pretty(progress_iter, "Dist", dry_run=dry_run,
                         extra_headers=[("Targets", ', '.join(options.targets))])
        else:
            drain_simple(progress_iter, dry_run=dry_run)
    except GhReleaseError as e:
        fail(e, pretty)

    summary = service.last_result
    if json_output:
        for detail in summary.details:
            emit_json(detail.to_dict())
        emit_json(summary.to_dict())
    elif pretty:
        from ..render import render_dist_summary, render_release_report
        render_dist_summary(summary)
        if summary.release is not None:
            render_release_report(summary.release)
    else:
        mode = "[dry run] " if dry_run else ""
        print(f"\n{mode}Dist {summary.tag}:", file=sys.stderr)
        print(f"  Packaged: {summary.successful}", file=sys.stderr)
        if summary.failed > 0:
            print(f"  Failed: {summary.failed}", file=sys.stderr)
        for error in summary.errors:
            print(f"    - {error}", file=sys.stderr)

    sys.exit(DistService.exit_code(summary, service.publish_error))
