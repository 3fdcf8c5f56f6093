"""
Domain layer for ghrelease.

Contains pure domain objects with no I/O or side effects:
- Tag: Classified release tag (SemVer, commit hash, branch, opaque)
- PlatformTarget: Target triple decomposed into arch/os/abi
- Release, Asset: Registry release records
- InstallRequest: One install invocation
- OperationSummary: Per-target results of a dist run

These objects are immutable where possible and provide
serialization methods for JSON output.
"""

from .tag import Tag, TagKind, classify, normalize, is_latest
from .platform import PlatformTarget, host_target
from .release import Asset, Release, DesiredAsset, RetentionPolicy, content_type_for
from .request import InstallRequest, parse_repo_spec
from .operation import OperationStatus, TargetResult, OperationSummary

__all__ = [
    'Tag',
    'TagKind',
    'classify',
    'normalize',
    'is_latest',
    'PlatformTarget',
    'host_target',
    'Asset',
    'Release',
    'DesiredAsset',
    'RetentionPolicy',
    'content_type_for',
    'InstallRequest',
    'parse_repo_spec',
    'OperationStatus',
    'TargetResult',
    'OperationSummary',
]
