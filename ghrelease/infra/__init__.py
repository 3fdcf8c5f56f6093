"""
Infrastructure layer for ghrelease.

Contains abstractions for external systems:
- GitHubClient: GitHub releases API access
- GitClient: Git command execution
- CargoBuildTool: cargo build / install / publish
- GpgVerifier: Detached signature verification

These provide clean interfaces that can be mocked for testing.
"""

from .git_client import GitClient, repo_from_url
from .github_client import GitHubClient, RateLimitStatus
from .build_tool import CargoBuildTool, BuiltBinary, SourceRef
from .signature import GpgVerifier

__all__ = [
    'GitClient',
    'repo_from_url',
    'GitHubClient',
    'RateLimitStatus',
    'CargoBuildTool',
    'BuiltBinary',
    'SourceRef',
    'GpgVerifier',
]
