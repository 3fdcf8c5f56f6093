"""
Git client infrastructure for ghrelease.

Provides a clean abstraction over git command execution.
The dist path uses it to find the tag on HEAD and the short commit
hash for continuous releases. All git operations go through this
client, making them easy to mock for testing.
"""

import re
import subprocess
from typing import Optional, List, Tuple
import logging

logger = logging.getLogger(__name__)

_GITHUB_URL_RE = re.compile(r'github\.com[:/](?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$')


def repo_from_url(url: Optional[str]) -> Optional[str]:
    """Extract 'owner/repo' from a GitHub https or ssh URL."""
    if not url:
        return None
    match = _GITHUB_URL_RE.search(url.strip())
    if not match:
        return None
    return f"{match.group('owner')}/{match.group('repo')}"


class GitClient:
    """
    Abstraction over git commands.

    Example:
        client = GitClient()
        tags = client.tags_at_head("/path/to/repo")
        if tags:
            print(f"HEAD is tagged {tags[0]}")
    """

    def __init__(self, timeout: int = 30):
        """
        Initialize GitClient.

        Args:
            timeout: Command timeout in seconds (default: 30)
        """
        self.timeout = timeout

    def _run(self, cmd: List[str], cwd: str) -> Tuple[Optional[str], int]:
        """
        Run a git command.

        Args:
            cmd: Command and arguments
            cwd: Working directory

        Returns:
            Tuple of (stdout, returncode)
        """
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
            output = result.stdout
            return output.strip() if output else None, result.returncode
        except subprocess.TimeoutExpired:
            logger.warning(f"Git command timed out: {' '.join(cmd)}")
            return None, -1
        except OSError as e:
            logger.error(f"Git command failed: {' '.join(cmd)} - {e}")
            return None, -1

    def tags_at_head(self, path: str) -> List[str]:
        """
        Tags pointing at HEAD, newest version first.

        Returns:
            List of tag names (empty when HEAD is untagged)
        """
        output, code = self._run(
            ['git', 'tag', '--points-at', 'HEAD', '--sort=-version:refname'], cwd=path
        )
        if code != 0 or not output:
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]

    def head_commit(self, path: str) -> Optional[str]:
        """Full SHA of HEAD."""
        output, code = self._run(['git', 'rev-parse', 'HEAD'], cwd=path)
        if code == 0 and output:
            return output
        return None

    def short_sha(self, path: str, length: int = 8) -> Optional[str]:
        """Abbreviated SHA of HEAD."""
        output, code = self._run(['git', 'rev-parse', f'--short={length}', 'HEAD'], cwd=path)
        if code == 0 and output:
            return output
        return None
