"""
Release notes body for releases created by ``ghrelease dist``.
"""

from typing import Optional, Sequence

from .domain.operation import TargetResult


def generate_release_notes(
    repo: str,
    tag: str,
    targets: Sequence[TargetResult],
    commit: Optional[str] = None,
    continuous: bool = False,
    checksum_file: Optional[str] = None,
) -> str:
    """
    Markdown body listing the packaged targets and how to install them.

    Args:
        repo: "owner/repo"
        tag: Release tag
        targets: Successful per-target results (archive names come from here)
        commit: Full commit SHA the release was built from
        continuous: True for per-push (--hash) releases
        checksum_file: Name of the published checksum file, if any
    """
    lines = []
    if continuous:
        lines.append(f"Continuous build of `{repo}` at `{tag}`.")
        lines.append("")
        lines.append("This is a prerelease built from an untagged commit and may be pruned.")
    else:
        lines.append(f"Release `{tag}` of `{repo}`.")
    lines.append("")

    if commit:
        lines.append(f"**Commit:** [`{commit[:7]}`](https://github.com/{repo}/commit/{commit})")
        lines.append("")

    packaged = [t for t in targets if t.archive]
    if packaged:
        lines.append("## Assets")
        lines.append("")
        lines.append("| Target | Archive |")
        lines.append("|--------|---------|")
        for result in sorted(packaged, key=lambda r: r.target):
            lines.append(f"| `{result.target}` | `{result.archive}` |")
        lines.append("")

    lines.append("## Installation")
    lines.append("")
    lines.append("```sh")
    lines.append(f"ghrelease install {repo}@{tag}")
    lines.append("```")

    if checksum_file:
        lines.append("")
        lines.append(f"Verify downloads against `{checksum_file}` with `sha256sum -c {checksum_file}`.")

    return '\n'.join(lines) + '\n'
