"""
Service layer for ghrelease.

Contains logic that orchestrates domain objects and infrastructure:
- InstallService: Resolve, match, download, verify, extract, install
- DistService: Build matrix, packaging, checksums
- ReleaseReconciler: Idempotent create-or-update of a remote release

Services are the primary API for commands to use.
"""

from .install_service import InstallService, InstallOutcome, InstallState
from .dist_service import DistService, DistOptions, DistPlan
from .reconcile_service import ReleaseReconciler, ReconcileReport, AssetAction, ReleaseAction

__all__ = [
    'InstallService',
    'InstallOutcome',
    'InstallState',
    'DistService',
    'DistOptions',
    'DistPlan',
    'ReleaseReconciler',
    'ReconcileReport',
    'AssetAction',
    'ReleaseAction',
]
