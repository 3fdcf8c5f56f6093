"""
Common CLI utilities shared by the install and dist commands.

Progress goes to stderr (or into the JSONL stream with --json), data goes
to stdout, and every GhReleaseError is reported as one JSON object before
exiting with the error's own code.
"""

import json
import sys
from typing import Any, Dict, Iterable, List, Optional

import click

from .exit_codes import get_exit_code_for_exception
from .retry import RetryPolicy


def split_list(value: Optional[str]) -> Optional[List[str]]:
    """Split a comma-separated option value; None stays None."""
    if value is None:
        return None
    return [item.strip() for item in value.split(',') if item.strip()]


def retry_policy(settings: Dict[str, Any], no_retry: bool = False) -> RetryPolicy:
    """RetryPolicy from the merged ``default`` config section."""
    if no_retry:
        return RetryPolicy.no_retry()
    return RetryPolicy(max_retries=max(0, int(settings.get('max_retries', 3))))


def emit_error(error: BaseException, pretty: bool = False) -> None:
    """Report an error on stderr, JSON unless --pretty."""
    if hasattr(error, 'to_dict'):
        error_obj = error.to_dict()
    else:
        error_obj = {
            "error": str(error),
            "type": type(error).__name__,
            "exit_code": get_exit_code_for_exception(error),
        }

    if pretty:
        from .render import render_error
        render_error(error_obj)
    else:
        print(json.dumps(error_obj, ensure_ascii=False), file=sys.stderr, flush=True)


def fail(error: BaseException, pretty: bool = False) -> None:
    """Report ``error`` and exit with its code."""
    emit_error(error, pretty)
    sys.exit(get_exit_code_for_exception(error))


def emit_json(obj: Dict[str, Any]) -> None:
    print(json.dumps(obj, ensure_ascii=False), flush=True)


def drain_simple(progress_iter: Iterable[str], dry_run: bool = False) -> None:
    """Print progress messages to stderr."""
    mode = "[dry run] " if dry_run else ""
    for message in progress_iter:
        print(f"{mode}{message}", file=sys.stderr)


def drain_json(progress_iter: Iterable[str]) -> None:
    """Stream progress messages as JSONL progress objects."""
    for message in progress_iter:
        emit_json({'progress': message})


def drain_pretty(progress_iter: Iterable[str], title: str, dry_run: bool = False,
                 extra_headers: Optional[List[tuple]] = None) -> None:
    """Show a spinner with the latest progress message."""
    from rich.progress import Progress, SpinnerColumn, TextColumn
    from .render import console

    mode = "[bold yellow]DRY RUN[/bold yellow] " if dry_run else ""
    console.print(f"\n{mode}[bold]{title}[/bold]")
    for label, value in extra_headers or []:
        console.print(f"[bold]{label}:[/bold] {value}")
    console.print()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Processing...", total=None)

        for message in progress_iter:
            # Multi-line messages (release notes) are printed whole
            if '\n' in message:
                progress.console.print(message)
            else:
                progress.update(task, description=message)


# Options shared by install and dist
common_options = {
    'config': click.option('--config', 'config_path', type=click.Path(dir_okay=False),
                           help='Configuration file (TOML, YAML or JSON)'),
    'token': click.option('--token', help='GitHub token (default: GHRELEASE_GITHUB_TOKEN or GITHUB_TOKEN)'),
    'max_retries': click.option('--max-retries', type=click.IntRange(min=0),
                                help='Retries for transient registry failures'),
    'no_retry': click.option('--no-retry', is_flag=True, help='Do not retry failed registry calls'),
    'json': click.option('--json', 'json_output', is_flag=True, help='Output JSONL'),
    'pretty': click.option('--pretty', is_flag=True, help='Display with rich formatting'),
    'verbose': click.option('-v', '--verbose', is_flag=True, help='Enable debug logging'),
}


def add_common_options(*option_names):
    """
    Decorator to add common options to a command.

    Example:
        @add_common_options('verbose', 'json')
        def my_command(verbose, json_output):
            ...
    """
    def decorator(func):
        for name in reversed(option_names):
            if name in common_options:
                func = common_options[name](func)
        return func
    return decorator
