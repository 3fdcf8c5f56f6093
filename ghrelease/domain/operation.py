"""
Operation result domain objects for ghrelease.

Provides standardized result types for multi-target operations (the
dist build matrix) so that one target's failure is recorded and reported
alongside the others instead of aborting the whole run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional


class OperationStatus(Enum):
    """Status of an individual operation."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
    DRY_RUN = "dry_run"


@dataclass
class TargetResult:
    """
    Details of a single build+package run for one target.

    Used to track what happened to each target during a dist run.
    """
    target: str
    status: OperationStatus
    action: str  # e.g., "packaged", "would_package", "build_failed"
    archive: Optional[str] = None
    sha256: Optional[str] = None
    size: int = 0
    message: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            'type': 'target',
            'target': self.target,
            'status': self.status.value,
            'action': self.action,
        }
        if self.archive:
            result['archive'] = self.archive
            result['size'] = self.size
        if self.sha256:
            result['sha256'] = self.sha256
        if self.message:
            result['message'] = self.message
        if self.error:
            result['error'] = self.error
        if self.metadata:
            result.update(self.metadata)
        return result


@dataclass
class OperationSummary:
    """
    Summary of an operation across multiple targets.

    Collects statistics and details from the build matrix, plus the
    outcome of the publish step when one ran.
    """
    operation: str  # e.g., "dist"
    tag: Optional[str] = None
    total: int = 0
    successful: int = 0
    skipped: int = 0
    failed: int = 0
    dry_run: bool = False
    details: List[TargetResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    release: Optional[Dict[str, Any]] = None

    @property
    def success(self) -> bool:
        """True if no failures occurred."""
        return self.failed == 0

    @property
    def partial(self) -> bool:
        """True if some targets failed and some succeeded."""
        return self.failed > 0 and self.successful > 0

    @property
    def succeeded_targets(self) -> List[str]:
        return [
            d.target for d in self.details
            if d.status in (OperationStatus.SUCCESS, OperationStatus.DRY_RUN)
        ]

    def add_detail(self, detail: TargetResult) -> None:
        """Add a target result and update counts."""
        self.details.append(detail)
        self.total += 1

        if detail.status == OperationStatus.SUCCESS:
            self.successful += 1
        elif detail.status == OperationStatus.SKIPPED:
            self.skipped += 1
        elif detail.status == OperationStatus.FAILED:
            self.failed += 1
            if detail.error:
                self.errors.append(f"{detail.target}: {detail.error}")
        elif detail.status == OperationStatus.DRY_RUN:
            self.successful += 1  # Count dry-run as successful

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            'type': 'summary',
            'operation': self.operation,
            'tag': self.tag,
            'total': self.total,
            'successful': self.successful,
            'skipped': self.skipped,
            'failed': self.failed,
            'dry_run': self.dry_run,
            'errors': self.errors,
        }
        if self.release is not None:
            result['release'] = self.release
        return result
