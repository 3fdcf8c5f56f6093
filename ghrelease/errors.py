"""
Error taxonomy for ghrelease.

Every error raised by the install and dist paths derives from
GhReleaseError, which carries an exit code and a machine-readable
context (which tag, which target, which asset) so commands can report
failures as structured JSON rather than prose.

Recoverability is decided by the caller:
- ResolutionError and NoMatchError may trigger the source fallback
- TransportError is retried with backoff before it surfaces
- everything else is terminal
"""

import re
from typing import Any, Dict, Optional, Sequence

from .exit_codes import (
    CommandError,
    GENERAL_ERROR,
    USAGE_ERROR,
    RESOLUTION_ERROR,
    API_ERROR,
    CONFIG_ERROR,
    PERMISSION_ERROR,
    NETWORK_ERROR,
    AUTH_ERROR,
    MATCH_ERROR,
    FALLBACK_ERROR,
    VERIFICATION_ERROR,
)


def _snake_case(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


class GhReleaseError(CommandError):
    """Base class for all ghrelease errors."""

    default_exit_code = GENERAL_ERROR

    def __init__(self, message: str, exit_code: Optional[int] = None, **context: Any):
        super().__init__(message, exit_code if exit_code is not None else self.default_exit_code)
        self.context = {k: v for k, v in context.items() if v is not None}

    @property
    def error_type(self) -> str:
        return _snake_case(self.__class__.__name__)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON error output."""
        result = {
            'error': str(self),
            'type': self.error_type,
            'exit_code': self.exit_code,
        }
        result.update(self.context)
        return result


class UsageError(GhReleaseError):
    """Invalid command-line input (bad repository spec, unknown format)."""
    default_exit_code = USAGE_ERROR


class ConfigError(GhReleaseError):
    """Configuration file could not be read or parsed."""
    default_exit_code = CONFIG_ERROR


class ResolutionError(GhReleaseError):
    """Tag unrecognized or not found in the registry. Recoverable via fallback."""
    default_exit_code = RESOLUTION_ERROR


class MatchError(GhReleaseError):
    """Asset matching failed."""
    default_exit_code = MATCH_ERROR


class NoMatchError(MatchError):
    """No asset matched the target's arch/os pair. Recoverable via fallback."""

    def __init__(self, target: str, available: Sequence[str], tag: Optional[str] = None):
        listing = ', '.join(available) if available else 'no assets available'
        super().__init__(
            f"No compatible asset found for target '{target}'. Available assets: {listing}",
            target=target,
            tag=tag,
            available=list(available),
        )


class AmbiguousMatchError(MatchError):
    """Several assets tied for the best score. Never resolved by falling back."""

    def __init__(self, target: str, candidates: Sequence[str], tag: Optional[str] = None):
        super().__init__(
            f"Multiple assets match target '{target}': {', '.join(candidates)}. "
            f"Use --bin to disambiguate",
            target=target,
            tag=tag,
            candidates=list(candidates),
        )


class RegistryError(GhReleaseError):
    """Non-transient release registry failure."""
    default_exit_code = API_ERROR


class TransportError(RegistryError):
    """Timeout, rate limit, 5xx or network failure. Retried before surfacing."""
    default_exit_code = NETWORK_ERROR

    TIMEOUT = 'timeout'
    RATE_LIMITED = 'rate_limited'
    TRANSIENT_5XX = 'transient_5xx'
    NETWORK = 'network'

    def __init__(
        self,
        message: str,
        kind: str = NETWORK,
        status: Optional[int] = None,
        retry_after: Optional[float] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message, kind=kind, status=status, url=url)
        self.kind = kind
        self.status = status
        self.retry_after = retry_after


class AuthError(RegistryError):
    """Authentication or authorization failure. Fatal, not retried."""
    default_exit_code = AUTH_ERROR


class PublishError(RegistryError):
    """Reconciliation against the registry failed permanently."""

    def __init__(self, message: str, report: Any = None, **context: Any):
        super().__init__(message, **context)
        self.report = report


class PublishConflict(PublishError):
    """The registry already holds a resource with this name (release tag or asset)."""


class ExtractionError(GhReleaseError):
    """Archive could not be extracted safely. Fatal, nothing is installed."""
    default_exit_code = PERMISSION_ERROR

    UNSUPPORTED_FORMAT = 'unsupported_format'
    UNSAFE_PATH = 'unsafe_path'
    AMBIGUOUS_BINARY = 'ambiguous_binary'
    CORRUPT = 'corrupt'

    def __init__(self, message: str, reason: str, **context: Any):
        super().__init__(message, reason=reason, **context)
        self.reason = reason


class InstallPermissionError(GhReleaseError):
    """Writing to the install directory failed (permissions, disk full)."""
    default_exit_code = PERMISSION_ERROR


class SignatureVerificationFailed(GhReleaseError):
    """Signature did not verify. Always fatal, never degrades to a source build."""
    default_exit_code = VERIFICATION_ERROR


class ChecksumMismatch(GhReleaseError):
    """Downloaded archive does not match its published SHA256 checksum."""
    default_exit_code = VERIFICATION_ERROR

    def __init__(self, filename: str, expected: str, actual: str):
        super().__init__(
            f"Checksum verification failed for {filename}: expected {expected}, got {actual}",
            file=filename,
            expected=expected,
            actual=actual,
        )


class FallbackError(GhReleaseError):
    """Source installation fallback failed."""
    default_exit_code = FALLBACK_ERROR


class BuildError(GhReleaseError):
    """Build tool failed for one target."""

    def __init__(self, target: str, message: str):
        super().__init__(f"Build failed for target {target}: {message}", target=target)
        self.target = target

