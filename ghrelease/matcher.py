"""
Asset matcher for ghrelease.

Release assets follow no fixed naming convention ("tool-x86_64-unknown-
linux-gnu.tar.gz", "tool_2.1.0_linux_amd64.zip", "tool-macos-arm64.tgz"),
so instead of a regex per platform each filename is tokenized and scored
against the target triple:

    +3  arch and os of the target both appear (required to be eligible)
    +2  the target's ABI also appears
    +2  the binary-name hint appears as tokens, or matches as a glob
    -1  per extra significant token nobody asked for

The highest score wins. Equal top scores are ambiguous and are reported,
never guessed. Scoring depends only on the filename, so the result is
independent of the order assets are listed in.
"""

import fnmatch
import logging
import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .checksums import CHECKSUM_FILENAMES
from .domain.platform import KNOWN_VENDORS, PlatformTarget
from .domain.release import Asset
from .errors import AmbiguousMatchError, NoMatchError

logger = logging.getLogger(__name__)

# canonical token -> aliases. Kept small and explicit; extend via
# the matching.aliases config section rather than fuzzy matching.
DEFAULT_ALIASES: Dict[str, Tuple[str, ...]] = {
    'x86_64': ('amd64', 'x64', 'x86_64'),
    'aarch64': ('arm64', 'aarch64'),
    'i686': ('i386', 'i586', 'i686', 'x86'),
    'macos': ('darwin', 'macos', 'osx', 'mac'),
    'windows': ('win', 'windows', 'win64'),
    'linux': ('linux',),
    'freebsd': ('freebsd',),
    'gnu': ('gnu', 'glibc'),
    'musl': ('musl',),
    'msvc': ('msvc',),
}

ARCHIVE_EXTENSIONS = (
    '.tar.gz', '.tar.xz', '.tar.bz2', '.tgz', '.txz', '.tbz2', '.tbz',
    '.zip', '.gz', '.xz', '.bz2', '.exe',
)

# Files that accompany an archive but are never the archive itself
SIDECAR_SUFFIXES = ('.sig', '.asc', '.sha256', '.sha512', '.md5', '.sha256sum')
_CHECKSUM_NAMES = frozenset(n.lower() for n in CHECKSUM_FILENAMES) | {'sha512sums'}

_SPLIT_RE = re.compile(r'[-_.]+')
_VERSION_TOKEN_RE = re.compile(r'^v?\d+$')
_GLOB_CHARS = set('*?[')

NOISE_TOKENS = frozenset(KNOWN_VENDORS) | {'pc', 'unknown'}


def is_sidecar(filename: str) -> bool:
    """True for signature and checksum files."""
    lower = filename.lower()
    return lower in _CHECKSUM_NAMES or lower.endswith(SIDECAR_SUFFIXES)


def strip_archive_extension(filename: str) -> str:
    lower = filename.lower()
    for ext in ARCHIVE_EXTENSIONS:
        if lower.endswith(ext):
            return filename[:-len(ext)]
    return filename


def tokenize(filename: str) -> List[str]:
    """Split a filename into lowercase tokens, keeping x86_64 whole."""
    stem = strip_archive_extension(filename).lower()
    raw = [t for t in _SPLIT_RE.split(stem) if t]
    tokens: List[str] = []
    i = 0
    while i < len(raw):
        if raw[i] == 'x86' and i + 1 < len(raw) and raw[i + 1] == '64':
            tokens.append('x86_64')
            i += 2
            continue
        tokens.append(raw[i])
        i += 1
    return tokens


class AliasTable:
    """Maps platform tokens onto canonical names."""

    def __init__(self, aliases: Optional[Mapping[str, Iterable[str]]] = None):
        self._canonical: Dict[str, str] = {}
        for canonical, names in (aliases if aliases is not None else DEFAULT_ALIASES).items():
            self.add(canonical, names)

    def add(self, canonical: str, names: Iterable[str]) -> None:
        canonical = canonical.lower()
        self._canonical[canonical] = canonical
        for name in names:
            self._canonical[name.lower()] = canonical

    def canonical(self, token: str) -> str:
        return self._canonical.get(token.lower(), token.lower())

    @classmethod
    def from_config(cls, extra: Optional[Mapping[str, Iterable[str]]] = None) -> 'AliasTable':
        """Default table extended with ``matching.aliases`` from config."""
        table = cls()
        for canonical, names in (extra or {}).items():
            if isinstance(names, str):
                names = [names]
            table.add(canonical, names)
        return table


class AssetMatcher:
    """Scores asset filenames against a target triple."""

    def __init__(self, aliases: Optional[AliasTable] = None):
        self.aliases = aliases or AliasTable()

    def _target_tokens(self, target: PlatformTarget) -> Tuple[str, str, Optional[str]]:
        abi = self.aliases.canonical(target.abi) if target.abi else None
        return self.aliases.canonical(target.arch), self.aliases.canonical(target.os), abi

    def score(self, filename: str, target: PlatformTarget, hint: Optional[str] = None) -> Optional[int]:
        """
        Score one filename. Returns None when the arch/os pair is missing,
        which makes the asset ineligible.
        """
        tokens = [self.aliases.canonical(t) for t in tokenize(filename)]
        token_set = set(tokens)
        arch, os_name, abi = self._target_tokens(target)

        if arch not in token_set or os_name not in token_set:
            return None

        score = 3
        matched: Set[str] = {arch, os_name}

        if abi and abi in token_set:
            score += 2
            matched.add(abi)

        if hint:
            hint_tokens = {t for t in tokenize(hint) if t}
            if _GLOB_CHARS & set(hint):
                if fnmatch.fnmatch(filename.lower(), hint.lower()):
                    score += 2
            elif hint_tokens and hint_tokens <= token_set:
                score += 2
                matched |= hint_tokens

        for token in token_set - matched:
            if token in NOISE_TOKENS or _VERSION_TOKEN_RE.match(token):
                continue
            score -= 1

        return score

    def rank(self, assets: Sequence[Asset], target: PlatformTarget,
             hint: Optional[str] = None) -> List[Tuple[int, Asset]]:
        """Eligible assets with their scores, best first, ties by filename."""
        ranked = []
        for asset in assets:
            if is_sidecar(asset.filename):
                continue
            score = self.score(asset.filename, target, hint)
            if score is not None:
                ranked.append((score, asset))
        ranked.sort(key=lambda pair: (-pair[0], pair[1].filename))
        return ranked

    def match(self, assets: Sequence[Asset], target: PlatformTarget,
              hint: Optional[str] = None, tag: Optional[str] = None) -> Asset:
        """
        Select the single best asset for ``target``.

        Raises:
            NoMatchError: no asset carries the target's arch/os pair
            AmbiguousMatchError: several assets share the top score
        """
        ranked = self.rank(assets, target, hint)
        for score, asset in ranked:
            logger.debug(f"asset {asset.filename} scored {score} for {target}")

        if not ranked:
            raise NoMatchError(target.triple, sorted(a.filename for a in assets), tag=tag)

        best = ranked[0][0]
        tied = [asset.filename for score, asset in ranked if score == best]
        if len(tied) > 1:
            raise AmbiguousMatchError(target.triple, tied, tag=tag)
        return ranked[0][1]


def match_asset(assets: Sequence[Asset], target: PlatformTarget,
                hint: Optional[str] = None, aliases: Optional[AliasTable] = None) -> Asset:
    """Convenience wrapper around AssetMatcher.match()."""
    return AssetMatcher(aliases).match(assets, target, hint)
