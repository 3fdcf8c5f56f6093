"""
Install command for ghrelease.

Installs a prebuilt binary from a GitHub release, falling back to
``cargo install --git`` when no release asset fits the target.
"""

import sys

import click

from ..cli_utils import (
    add_common_options,
    drain_json,
    drain_pretty,
    drain_simple,
    emit_json,
    fail,
    retry_policy,
)
from ..config import configure_logging, load_config
from ..domain.platform import PlatformTarget, host_target
from ..domain.request import InstallRequest, parse_repo_spec
from ..errors import GhReleaseError
from ..exit_codes import SUCCESS
from ..infra.build_tool import CargoBuildTool
from ..infra.github_client import GitHubClient
from ..infra.signature import GpgVerifier
from ..matcher import AliasTable, AssetMatcher
from ..services.install_service import InstallService


@click.command('install')
@click.argument('repository')
@click.option('--tag', help="Release tag, commit or branch (default: latest; OWNER/REPO@TAG wins)")
@click.option('--bin', 'binary', help='Binary name or glob to pick from the archive')
@click.option('--bins', 'install_all', is_flag=True, help='Install every executable in the archive')
@click.option('--target', help='Target triple (default: host platform)')
@click.option('--install-dir', type=click.Path(file_okay=False), help='Install directory')
@click.option('--verify-signature', is_flag=True, help='Verify <asset>.sig/.asc with gpg')
@click.option('--keyring', type=click.Path(dir_okay=False), help='gpg keyring for --verify-signature')
@click.option('--no-fallback', is_flag=True, help='Fail instead of building from source')
@click.option('--skip-checksum', is_flag=True, help='Do not verify against SHA256SUMS')
@click.option('--show-notes', is_flag=True, help='Print the release notes before installing')
@click.option('--timeout', type=click.IntRange(min=1), help='Registry request timeout in seconds')
@add_common_options('token', 'max_retries', 'no_retry', 'config', 'json', 'pretty', 'verbose')
def install_handler(repository, tag, binary, install_all, target, install_dir, verify_signature,
                    keyring, no_fallback, skip_checksum, show_notes, timeout, token, max_retries,
                    no_retry, config_path, json_output, pretty, verbose):
    """Install a binary from a GitHub release.

    REPOSITORY is OWNER/REPO or OWNER/REPO@TAG.

    \b
    Examples:
        ghrelease install owner/tool
        ghrelease install owner/tool@v1.2.3 --install-dir ~/bin
        ghrelease install owner/tool --bin tool-cli --no-fallback
        ghrelease install owner/tool --json
    """
    try:
        owner, name, spec_tag = parse_repo_spec(repository)
        repo = f"{owner}/{name}"
        config = load_config(
            config_path,
            repo=repo,
            cli_overrides={
                'default': {
                    'install_dir': install_dir,
                    'timeout': timeout,
                    'max_retries': max_retries,
                },
                'github': {'token': token},
            },
        )
    except GhReleaseError as e:
        fail(e, pretty)

    configure_logging(config, verbose)
    settings = config['default']

    request = InstallRequest(
        repo=repo,
        target=PlatformTarget(target) if target else host_target(),
        install_dir=str(settings['install_dir']),
        tag=spec_tag or tag,
        binary_hint=binary or settings.get('bin'),
        verify_signature=verify_signature or bool(settings.get('verify_signature')),
        allow_fallback=not no_fallback,
        install_all=install_all,
        verify_checksum=not skip_checksum,
        keyring=keyring,
        show_notes=show_notes,
    )

    client = GitHubClient(
        token=config['github'].get('token') or None,
        timeout=float(settings['timeout']),
        retry=retry_policy(settings, no_retry),
    )
    service = InstallService(
        client,
        build_tool=CargoBuildTool(),
        verifier=GpgVerifier(),
        matcher=AssetMatcher(AliasTable.from_config(config['matching'].get('aliases'))),
    )

    progress_iter = service.install(request)
    if json_output:
        drain_json(progress_iter)
    elif pretty:
        drain_pretty(progress_iter, f"Install {repo}", extra_headers=[("Target", request.target)])
    else:
        drain_simple(progress_iter)

    outcome = service.last_outcome
    if json_output:
        emit_json(outcome.to_dict())
    elif pretty:
        from ..render import render_install_outcome
        render_install_outcome(outcome)

    if outcome.error is not None:
        if pretty:
            sys.exit(outcome.error.exit_code)
        fail(outcome.error)
    sys.exit(SUCCESS)
