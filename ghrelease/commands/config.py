import click
from ghrelease.config import load_config, redact
from ghrelease.errors import ConfigError
from ghrelease.cli_utils import fail
import json


@click.group("config")
def config_cmd():
    """Configuration management commands."""
    pass


@config_cmd.command("show")
@click.option("--pretty", is_flag=True, help="Display as formatted JSON instead of single-line JSONL")
@click.option("--path", is_flag=True, help="Show the config file path being used")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Explicit configuration file")
@click.option("--repo", help="Apply the per-repository overrides for OWNER/REPO")
def show_config(pretty, path, config_path, repo):
    """Show the current configuration with all merges applied.

    By default, outputs single-line JSON (JSONL format).
    Use --pretty for human-readable formatted output.
    Use --path to see which config file is being used.
    The GitHub token is always masked.
    """
    from ghrelease.config import get_config_path

    if path:
        config_path = config_path or get_config_path()
        print(json.dumps({"config_path": str(config_path)}))
        return

    try:
        config = redact(load_config(config_path, repo=repo))
    except ConfigError as e:
        fail(e)

    if pretty:
        # Pretty print for human readability
        print(json.dumps(config, indent=2, ensure_ascii=False))
    else:
        # Default: single-line JSON (JSONL)
        print(json.dumps(config, ensure_ascii=False))
