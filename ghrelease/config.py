#!/usr/bin/env python3

import os
import json
import re
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional

import logging
import sys

import yaml

from .domain.release import CONTINUOUS_TAG_PATTERN
from .errors import ConfigError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stderr)  # Default to stderr
    ]
)
logger = logging.getLogger("ghrelease")

ENV_PREFIX = "GHRELEASE_"

DEFAULT_TARGETS = ["x86_64-unknown-linux-gnu", "aarch64-unknown-linux-gnu"]

# Cap for the default build worker pool
MAX_DEFAULT_JOBS = 4


def get_config_path() -> Path:
    """Get the path to the default configuration file.

    Checks in order:
    1. GHRELEASE_CONFIG environment variable
    2. ~/.config/ghrelease.toml, then .yaml/.yml/.json siblings

    If nothing exists the TOML path is returned.
    """
    if 'GHRELEASE_CONFIG' in os.environ:
        return Path(os.environ['GHRELEASE_CONFIG']).expanduser()

    config_dir = Path.home() / '.config'
    for filename in ['ghrelease.toml', 'ghrelease.yaml', 'ghrelease.yml', 'ghrelease.json']:
        path = config_dir / filename
        if path.exists():
            return path

    return config_dir / 'ghrelease.toml'


def get_default_config() -> Dict[str, Any]:
    """Get default configuration."""
    return {
        "default": {
            "install_dir": "~/.cargo/bin",
            "timeout": 30,
            "targets": list(DEFAULT_TARGETS),
            "format": "tgz",
            "profile": "release",
            "draft": False,
            "prerelease": False,
            "skip_publish": True,
            "checksum": True,
            "verify_signature": False,
            "max_retries": 3,
            "jobs": 0,
        },
        "continuous": {
            "keep_last": 5,
            "pattern": CONTINUOUS_TAG_PATTERN,
        },
        "repository": {
            "owner": "",
            "repo": "",
        },
        "matching": {
            "aliases": {},
        },
        "github": {
            "token": "",
        },
        "logging": {
            "level": "INFO",
        },
        "repo": {},
    }


def read_config_file(path: Path) -> Dict[str, Any]:
    """
    Parse one configuration file, format chosen by suffix.

    Raises:
        ConfigError: if the file cannot be read or parsed
    """
    suffix = path.suffix.lower()
    try:
        if suffix == '.toml':
            with open(path, 'rb') as f:
                data = tomllib.load(f)
        elif suffix in ('.yaml', '.yml'):
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        else:
            with open(path, 'r') as f:
                data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}", file=str(path)) from e
    except (tomllib.TOMLDecodeError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Error parsing config file {path}: {e}", file=str(path)) from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping", file=str(path))
    return data


def merge_configs(base_config, override_config):
    """
    Recursively merge two configuration dictionaries.

    Args:
        base_config (dict): Base configuration
        override_config (dict): Configuration to merge/override with

    Returns:
        dict: Merged configuration
    """
    merged = base_config.copy()

    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            # Recursively merge nested dictionaries
            merged[key] = merge_configs(merged[key], value)
        else:
            # Override or add new key
            merged[key] = value

    return merged


def _coerce(value: str) -> Any:
    lowered = value.lower()
    if lowered in ('true', 'yes', 'on'):
        return True
    if lowered in ('false', 'no', 'off'):
        return False
    if value.isdigit():
        return int(value)
    return value


def apply_env_overrides(config, environ=None):
    """
    Apply environment variable overrides to configuration.
    Environment variables follow the pattern: GHRELEASE_SECTION_KEY
    For example: GHRELEASE_DEFAULT_INSTALL_DIR=/usr/local/bin
    Comma-separated values override list settings.
    """
    environ = os.environ if environ is None else environ

    for env_key, value in environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue

        key_parts = env_key[len(ENV_PREFIX):].lower().split('_')

        current_level = config
        i = 0
        while i < len(key_parts):
            # Find the longest key in current_level that is a prefix of the remaining key_parts
            best_match_len = 0
            matched_key = None

            for config_key in current_level.keys():
                config_key_parts_from_key = config_key.split('_')
                if key_parts[i : i + len(config_key_parts_from_key)] == config_key_parts_from_key:
                    if len(config_key_parts_from_key) > best_match_len:
                        best_match_len = len(config_key_parts_from_key)
                        matched_key = config_key

            if matched_key:
                # If we are at the end of the env var, we have found the key to set
                if i + best_match_len == len(key_parts):
                    if isinstance(current_level[matched_key], list):
                        current_level[matched_key] = [v.strip() for v in value.split(',') if v.strip()]
                    elif not isinstance(current_level[matched_key], dict):
                        current_level[matched_key] = _coerce(value)
                    break

                # Otherwise, we descend into the dictionary
                if isinstance(current_level[matched_key], dict):
                    current_level = current_level[matched_key]
                    i += best_match_len
                else:
                    # Path conflict, e.g., env var is longer but we found a non-dict value
                    break
            else:
                # No match found
                break

    return config


def _repo_overrides(file_config: Dict[str, Any], repo: Optional[str]) -> Dict[str, Any]:
    if not repo:
        return {}
    section = file_config.get('repo', {})
    if not isinstance(section, dict):
        return {}
    overrides = section.get(repo, {})
    return overrides if isinstance(overrides, dict) else {}


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    result = {}
    for key, value in values.items():
        if isinstance(value, dict):
            value = _drop_none(value)
            if value:
                result[key] = value
        elif value is not None:
            result[key] = value
    return result


def load_config(
    config_path: Optional[str] = None,
    repo: Optional[str] = None,
    cli_overrides: Optional[Dict[str, Any]] = None,
    environ=None,
) -> Dict[str, Any]:
    """
    Load the merged configuration.

    Precedence, highest first: CLI flags, GHRELEASE_* environment
    variables, the explicit --config file, the default config file,
    per-repository ``[repo."owner/repo"]`` overrides, built-in defaults.

    Args:
        config_path: Explicit --config file (must exist)
        repo: "owner/repo" whose per-repository overrides apply
        cli_overrides: Nested mapping of flag values; None values are ignored

    Raises:
        ConfigError: explicit file missing, or any file unparseable
    """
    config = get_default_config()

    default_path = get_config_path()
    default_file: Dict[str, Any] = {}
    if default_path.exists():
        default_file = read_config_file(default_path)
        logger.debug(f"Loaded config from {default_path}")

    explicit_file: Dict[str, Any] = {}
    if config_path:
        path = Path(config_path).expanduser()
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}", file=str(path))
        explicit_file = read_config_file(path)
        logger.debug(f"Loaded config from {path}")

    # Per-repository overrides sit just above the built-in defaults
    for source in (default_file, explicit_file):
        overrides = _repo_overrides(source, repo)
        if overrides:
            config['default'] = merge_configs(config['default'], overrides)

    config = merge_configs(config, default_file)
    config = merge_configs(config, explicit_file)
    config = apply_env_overrides(config, environ)

    if cli_overrides:
        config = merge_configs(config, _drop_none(cli_overrides))

    return config


def configure_logging(config: Optional[Dict[str, Any]] = None, verbose: bool = False) -> None:
    """Set the ghrelease logger level from config, or DEBUG with --verbose."""
    level_name = 'DEBUG' if verbose else str((config or {}).get('logging', {}).get('level', 'INFO'))
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        logger.warning(f"Unknown log level {level_name!r}, using INFO")
        level = logging.INFO
    logger.setLevel(level)


def resolve_jobs(jobs: int) -> int:
    """Worker count for the build matrix; 0 means CPU count, capped."""
    if jobs and jobs > 0:
        return int(jobs)
    return max(1, min(os.cpu_count() or 1, MAX_DEFAULT_JOBS))


def redact(config: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of config safe to print: the token is masked."""
    shown = merge_configs(config, {})
    github = dict(shown.get('github', {}))
    if github.get('token'):
        github['token'] = '***'
    shown['github'] = github
    return shown


def continuous_pattern(config: Dict[str, Any]) -> str:
    """The continuous-release tag regex, checked for syntax."""
    pattern = str(config.get('continuous', {}).get('pattern') or CONTINUOUS_TAG_PATTERN)
    try:
        re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"Invalid continuous.pattern {pattern!r}: {e}", pattern=pattern) from e
    return pattern
