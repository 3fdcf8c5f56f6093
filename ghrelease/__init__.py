"""
ghrelease - Install and publish prebuilt binaries through GitHub releases.

ghrelease has two halves. The install side resolves a tag, picks the
release asset that fits the running platform, verifies and extracts it,
and falls back to ``cargo install --git`` when no binary fits. The dist
side builds a crate for a matrix of targets, packages deterministic
archives plus a SHA256SUMS file, and reconciles a GitHub release so that
re-running a publish only uploads what is missing.

Quick Start:
    from ghrelease import GitHubClient, InstallRequest, InstallService, host_target

    service = InstallService(GitHubClient())
    outcome = service.run(InstallRequest(
        repo="owner/tool",
        target=host_target(),
        install_dir="~/.local/bin",
        tag="v1.2.3",
    ))
    print(outcome.state, outcome.installed)

Domain Objects:
    Tag - Classified release tag (SemVer, commit hash, branch, opaque)
    PlatformTarget - Target triple
    Release, Asset - Registry release records
    InstallRequest - One install invocation

Services:
    InstallService - Install state machine with source fallback
    DistService - Build matrix, packaging, checksums, publish
    ReleaseReconciler - Idempotent release create-or-update and pruning
"""

__version__ = "0.3.0"

# Domain objects
from .domain import (
    Tag,
    TagKind,
    classify,
    PlatformTarget,
    host_target,
    Release,
    Asset,
    DesiredAsset,
    RetentionPolicy,
    InstallRequest,
    OperationSummary,
)

# Matching and archives
from .matcher import AssetMatcher, AliasTable, match_asset
from .archive import ArchiveFormat, extract, create_archive

# Services (for advanced use)
from .services import (
    InstallService,
    DistService,
    DistOptions,
    ReleaseReconciler,
)

# Infrastructure
from .infra import GitHubClient, CargoBuildTool, GitClient

# Configuration
from .config import load_config

__all__ = [
    # Version
    "__version__",
    # Domain objects
    "Tag",
    "TagKind",
    "classify",
    "PlatformTarget",
    "host_target",
    "Release",
    "Asset",
    "DesiredAsset",
    "RetentionPolicy",
    "InstallRequest",
    "OperationSummary",
    # Matching and archives
    "AssetMatcher",
    "AliasTable",
    "match_asset",
    "ArchiveFormat",
    "extract",
    "create_archive",
    # Services
    "InstallService",
    "DistService",
    "DistOptions",
    "ReleaseReconciler",
    # Infrastructure
    "GitHubClient",
    "CargoBuildTool",
    "GitClient",
    # Configuration
    "load_config",
]
