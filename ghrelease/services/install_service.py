"""
Install orchestration service for ghrelease.

Drives one install request through

    RESOLVE_TAG -> FETCH_RELEASE -> MATCH_ASSET -> DOWNLOAD
        -> [VERIFY_SIGNATURE] -> EXTRACT -> INSTALL -> DONE

with FALLBACK (build from source) as the alternative terminal state.

Only a missing release, an unresolvable tag, or no matching asset lead
to FALLBACK. Ambiguous matches, bad signatures, checksum mismatches and
local extraction/install failures are terminal.

Filesystem side effects are limited to EXTRACT (a private staging
directory) and INSTALL (temp file in the install directory, chmod 0755,
then an atomic rename), so an interrupted install never leaves a
half-written binary at its final path.
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Tuple

from ..archive import ArchiveEntry, extract, select_binaries, write_entries
from ..checksums import find_checksum_asset, lookup_checksum, parse_checksums, sha256_bytes
from ..domain.release import Asset, Release
from ..domain.request import InstallRequest
from ..domain.tag import Tag, classify, is_latest
from ..errors import (
    ChecksumMismatch,
    FallbackError,
    GhReleaseError,
    InstallPermissionError,
    NoMatchError,
    ResolutionError,
    SignatureVerificationFailed,
)
from ..infra.build_tool import SourceRef
from ..matcher import AssetMatcher

logger = logging.getLogger(__name__)

EXECUTABLE_MODE = 0o755
SIGNATURE_SUFFIXES = ('.sig', '.asc')


class InstallState(Enum):
    """States of the install state machine."""
    RESOLVE_TAG = "resolve_tag"
    FETCH_RELEASE = "fetch_release"
    MATCH_ASSET = "match_asset"
    DOWNLOAD = "download"
    VERIFY_SIGNATURE = "verify_signature"
    EXTRACT = "extract"
    INSTALL = "install"
    DONE = "done"
    FALLBACK = "fallback"
    ERROR = "error"


@dataclass
class InstallOutcome:
    """Where an install ended up, and how it got there."""
    request: InstallRequest
    state: InstallState = InstallState.RESOLVE_TAG
    transitions: List[InstallState] = field(default_factory=list)
    tag: Optional[Tag] = None
    release: Optional[Release] = None
    asset: Optional[Asset] = None
    installed: List[str] = field(default_factory=list)
    fallback_ref: Optional[SourceRef] = None
    fallback_reason: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[GhReleaseError] = None

    def enter(self, state: InstallState) -> None:
        self.state = state
        self.transitions.append(state)

    @property
    def success(self) -> bool:
        return self.state in (InstallState.DONE, InstallState.FALLBACK) and self.error is None

    @property
    def used_fallback(self) -> bool:
        return InstallState.FALLBACK in self.transitions

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'type': 'install',
            'repo': self.request.repo,
            'target': self.request.target.triple,
            'state': self.state.value,
            'success': self.success,
            'transitions': [s.value for s in self.transitions],
        }
        if self.tag is not None:
            result['tag'] = self.tag.to_dict()
        if self.release is not None:
            result['release'] = self.release.tag.raw
        if self.asset is not None:
            result['asset'] = self.asset.filename
        if self.installed:
            result['installed'] = self.installed
        if self.fallback_ref is not None:
            result['fallback_ref'] = {'kind': self.fallback_ref.kind, 'value': self.fallback_ref.value}
        if self.fallback_reason:
            result['fallback_reason'] = self.fallback_reason
        if self.warnings:
            result['warnings'] = self.warnings
        if self.error is not None:
            result['error'] = self.error.to_dict()
        return result


class _Fallback(Exception):
    """Internal signal: leave the happy path for a source install."""

    def __init__(self, cause: GhReleaseError, ref: Optional[SourceRef]):
        super().__init__(str(cause))
        self.cause = cause
        self.ref = ref


class InstallService:
    """
    Service that installs one binary release.

    Example:
        service = InstallService(client, build_tool=CargoBuildTool())
        for progress in service.install(request):
            print(progress)

        outcome = service.last_outcome
        print(outcome.state, outcome.installed)
    """

    def __init__(self, client, build_tool=None, verifier=None, matcher: Optional[AssetMatcher] = None):
        """
        Initialize InstallService.

        Args:
            client: Release registry client
            build_tool: Source-install collaborator (needed only for fallback)
            verifier: Signature verifier (needed only with verify_signature)
            matcher: AssetMatcher (default alias table if None)
        """
        self.client = client
        self.build_tool = build_tool
        self.verifier = verifier
        self.matcher = matcher or AssetMatcher()
        self.last_outcome: Optional[InstallOutcome] = None

    def run(self, request: InstallRequest) -> InstallOutcome:
        """Run install() to completion, discarding progress messages."""
        for _ in self.install(request):
            pass
        return self.last_outcome

    def install(self, request: InstallRequest) -> Generator[str, None, InstallOutcome]:
        """
        Install according to ``request``.

        Never raises GhReleaseError: terminal failures end in the ERROR
        state with ``outcome.error`` set.

        Yields:
            Progress messages

        Returns:
            InstallOutcome
        """
        outcome = InstallOutcome(request=request)
        self.last_outcome = outcome

        try:
            yield from self._binary_install(request, outcome)
        except _Fallback as fb:
            yield from self._fallback(request, outcome, fb.cause, fb.ref)
        except GhReleaseError as e:
            outcome.error = e
            outcome.enter(InstallState.ERROR)

        return outcome

    # Happy path

    def _binary_install(self, request: InstallRequest, outcome: InstallOutcome) -> Generator[str, None, None]:
        outcome.enter(InstallState.RESOLVE_TAG)
        tag = None if is_latest(request.tag) else classify(request.tag)
        outcome.tag = tag
        if tag is not None:
            yield f"Resolving {tag.raw} ({tag.kind.value})"

        outcome.enter(InstallState.FETCH_RELEASE)
        release = self._fetch_release(request, tag, outcome)
        outcome.release = release
        yield f"Found release {release.tag.raw} with {len(release.assets)} assets"

        if request.show_notes and release.notes:
            yield f"Release notes:\n{release.notes}"

        outcome.enter(InstallState.MATCH_ASSET)
        asset = self._match(request, release)
        outcome.asset = asset
        yield f"Selected {asset.filename} for {request.target}"

        outcome.enter(InstallState.DOWNLOAD)
        yield f"Downloading {asset.filename}"
        payload = self.client.download_asset(request.repo, asset)
        if request.verify_checksum:
            self._verify_checksum(request, release, asset, payload, outcome)

        if request.verify_signature:
            signature = self._find_signature(release, asset)
            if signature is None:
                message = f"No signature (.sig/.asc) published for {asset.filename}, skipping verification"
                logger.warning(message)
                outcome.warnings.append(message)
            else:
                outcome.enter(InstallState.VERIFY_SIGNATURE)
                yield f"Verifying {signature.filename}"
                self._verify_signature(request, asset, signature, payload)

        outcome.enter(InstallState.EXTRACT)
        entries = extract(payload, asset.filename)
        selected = select_binaries(
            entries,
            hint=request.binary_hint,
            default_name=request.name,
            install_all=request.install_all,
            filename=asset.filename,
        )

        outcome.enter(InstallState.INSTALL)
        outcome.installed = self._place(selected, request.install_dir)
        for path in outcome.installed:
            yield f"Installed {path}"

        outcome.enter(InstallState.DONE)

    def _fetch_release(self, request: InstallRequest, tag: Optional[Tag],
                       outcome: InstallOutcome) -> Release:
        if tag is None:
            release = self.client.get_latest_release(request.repo)
            if release is None:
                raise _Fallback(
                    ResolutionError(f"No releases found for {request.repo}", repository=request.repo),
                    None,
                )
            return release

        for name in tag.registry_candidates():
            release = self.client.get_release(request.repo, name)
            if release is not None:
                return release

        # No release: is it at least a ref we could build from?
        for name in tag.registry_candidates():
            if self.client.ref_exists(request.repo, name):
                ref = SourceRef.from_tag(classify(name))
                raise _Fallback(
                    ResolutionError(
                        f"No release for {tag.raw} in {request.repo}",
                        tag=tag.raw,
                        kind=tag.kind.value,
                        repository=request.repo,
                    ),
                    ref,
                )

        opaque = tag.as_opaque()
        outcome.tag = opaque
        raise _Fallback(
            ResolutionError(
                f"Tag '{tag.raw}' matches no release and no ref in {request.repo}",
                tag=tag.raw,
                kind=opaque.kind.value,
                repository=request.repo,
            ),
            SourceRef('tag', tag.raw),
        )

    def _match(self, request: InstallRequest, release: Release) -> Asset:
        hint = request.binary_hint or request.name
        try:
            return self.matcher.match(release.assets, request.target, hint=hint, tag=release.tag.raw)
        except NoMatchError as e:
            # Build exactly the release we found, not the raw user input
            raise _Fallback(e, SourceRef.from_tag(release.tag)) from e

    def _verify_checksum(self, request: InstallRequest, release: Release, asset: Asset,
                         payload: bytes, outcome: InstallOutcome) -> None:
        checksum_asset = find_checksum_asset(release.assets)
        if checksum_asset is None:
            message = f"No checksum file in release {release.tag.raw}, skipping verification"
            logger.warning(message)
            outcome.warnings.append(message)
            return

        text = self.client.download_asset(request.repo, checksum_asset).decode('utf-8', errors='replace')
        expected = lookup_checksum(parse_checksums(text), asset.filename)
        if expected is None:
            message = f"{checksum_asset.filename} has no entry for {asset.filename}"
            logger.warning(message)
            outcome.warnings.append(message)
            return

        actual = sha256_bytes(payload)
        if actual != expected:
            raise ChecksumMismatch(asset.filename, expected, actual)
        logger.debug(f"checksum ok for {asset.filename}")

    @staticmethod
    def _find_signature(release: Release, asset: Asset) -> Optional[Asset]:
        for suffix in SIGNATURE_SUFFIXES:
            signature = release.asset_named(asset.filename + suffix)
            if signature is not None:
                return signature
        return None

    def _verify_signature(self, request: InstallRequest, asset: Asset, signature: Asset,
                          payload: bytes) -> None:
        if self.verifier is None:
            raise SignatureVerificationFailed(
                "Signature verification requested but no verifier is available",
                file=asset.filename,
            )
        sig_bytes = self.client.download_asset(request.repo, signature)
        if not self.verifier.verify(payload, sig_bytes, request.keyring):
            raise SignatureVerificationFailed(
                f"Signature verification failed for {asset.filename}",
                file=asset.filename,
                signature=signature.filename,
            )

    def _place(self, entries: List[ArchiveEntry], install_dir: str) -> List[str]:
        """
        Stage entries privately, then move them into ``install_dir``.

        All temp files are written before any rename, so a failure
        midway leaves nothing new at the final paths.
        """
        dest_dir = Path(install_dir).expanduser()
        staged: List[Tuple[str, Path]] = []
        try:
            with tempfile.TemporaryDirectory(prefix='ghrelease-') as staging:
                written = write_entries(entries, Path(staging))
                dest_dir.mkdir(parents=True, exist_ok=True)
                for src in written:
                    fd, tmp = tempfile.mkstemp(dir=dest_dir, prefix=f'.{src.name}.', suffix='.tmp')
                    staged.append((tmp, dest_dir / src.name))
                    with os.fdopen(fd, 'wb') as f:
                        f.write(src.read_bytes())
                    os.chmod(tmp, EXECUTABLE_MODE)

                installed = []
                for tmp, dest in staged:
                    os.replace(tmp, dest)
                    installed.append(str(dest))
                staged = []
                return installed
        except OSError as e:
            raise InstallPermissionError(
                f"Cannot install into {dest_dir}: {e}",
                install_dir=str(dest_dir),
            ) from e
        finally:
            for tmp, _ in staged:
                try:
                    os.unlink(tmp)
                except OSError:
                    logger.debug(f"could not remove temp file {tmp}")

    # Fallback

    def _fallback(self, request: InstallRequest, outcome: InstallOutcome,
                  cause: GhReleaseError, ref: Optional[SourceRef]) -> Generator[str, None, None]:
        outcome.fallback_reason = str(cause)
        if not request.allow_fallback:
            outcome.error = cause
            outcome.enter(InstallState.ERROR)
            return

        outcome.enter(InstallState.FALLBACK)
        outcome.fallback_ref = ref
        where = f"{ref.kind} {ref.value}" if ref else "default branch"
        yield f"{cause}. Falling back to source install ({where})"

        if self.build_tool is None:
            outcome.error = FallbackError("No build tool available for source install",
                                          repository=request.repo)
            outcome.enter(InstallState.ERROR)
            return

        bin_name = request.binary_hint
        if bin_name and any(c in bin_name for c in '*?['):
            bin_name = None
        try:
            self.build_tool.install_from_source(request.repo, ref, bin_name=bin_name,
                                                install_dir=request.install_dir)
        except GhReleaseError as e:
            outcome.error = e
            outcome.enter(InstallState.ERROR)
            return
        yield f"Installed {request.repo} from source"
