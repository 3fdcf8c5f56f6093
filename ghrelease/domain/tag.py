"""
Tag domain object for ghrelease.

A tag is whatever string the user or CI handed us to identify a release:
- SemVer: "1.2.3", "v1.2.3-rc.1+build.5"
- Commit hash: "abcdef0", "vabcdef0", a full 40-char SHA
- Branch: "main", "release/1.x"
- Opaque: anything the registry and the git remote both fail to resolve

Classification is pure and total. The Branch/Opaque split needs the
network, so the classifier only ever produces Branch and the install
orchestrator downgrades to Opaque after the registry has been asked.

The literal "latest" is not a tag at all; see is_latest().
"""

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple


class TagKind(Enum):
    """What shape a raw tag string has."""
    SEMVER = "semver"
    COMMIT_HASH = "commit_hash"
    BRANCH = "branch"
    OPAQUE = "opaque"


LATEST = "latest"

# semver.org 2.0.0 grammar, with at most one leading v/V
_SEMVER_RE = re.compile(
    r'^[vV]?'
    r'(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)'
    r'(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)'
    r'(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?'
    r'(?:\+(?P<build>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$'
)

_COMMIT_HASH_RE = re.compile(r'^[vV]?[0-9a-fA-F]{7,40}$')


@dataclass(frozen=True)
class Tag:
    """
    Classified release tag.

    Attributes:
        raw: The string exactly as supplied
        kind: Classification result
        normalized: raw with one leading v/V stripped for SemVer and
            commit hashes; identical to raw for branches and opaque tags
    """

    raw: str
    kind: TagKind
    normalized: str

    @classmethod
    def parse(cls, raw: str) -> 'Tag':
        """Classify a raw tag string (alias for classify())."""
        return classify(raw)

    @property
    def is_semver(self) -> bool:
        return self.kind == TagKind.SEMVER

    @property
    def is_commit_hash(self) -> bool:
        return self.kind == TagKind.COMMIT_HASH

    def semver_parts(self) -> Optional[Tuple[int, int, int, Optional[str]]]:
        """Return (major, minor, patch, prerelease) for SemVer tags, else None."""
        if not self.is_semver:
            return None
        match = _SEMVER_RE.match(self.raw)
        return (
            int(match.group('major')),
            int(match.group('minor')),
            int(match.group('patch')),
            match.group('prerelease'),
        )

    def as_opaque(self) -> 'Tag':
        """Reclassify as Opaque (nothing in the registry or the remote matched)."""
        return replace(self, kind=TagKind.OPAQUE, normalized=self.raw)

    def registry_candidates(self) -> Tuple[str, ...]:
        """
        Tag names worth asking the registry for, most specific first.

        Release tags are published with or without a leading 'v', so a
        SemVer request for "1.2.3" also tries "v1.2.3" and vice versa.
        Branch and opaque tags are only ever looked up verbatim.
        """
        if self.kind == TagKind.SEMVER:
            names = (self.raw, self.normalized, f"v{self.normalized}")
        elif self.kind == TagKind.COMMIT_HASH:
            names = (self.raw, self.normalized)
        else:
            names = (self.raw,)
        # Preserve order, drop duplicates
        return tuple(dict.fromkeys(names))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'raw': self.raw,
            'kind': self.kind.value,
            'normalized': self.normalized,
        }

    def __str__(self) -> str:
        return self.raw


def _strip_v(value: str) -> str:
    if value[:1] in ('v', 'V'):
        return value[1:]
    return value


def classify(raw: str) -> Tag:
    """
    Classify a raw tag string. Never fails.

    Rule order, first match wins:
        1. strict SemVer, optionally v-prefixed  -> SEMVER
        2. 7-40 hex digits, optionally v-prefixed -> COMMIT_HASH
        3. anything else                          -> BRANCH (provisional)

    Empty or whitespace-only input cannot name a ref, so it is OPAQUE.
    """
    if not raw or not raw.strip():
        return Tag(raw=raw, kind=TagKind.OPAQUE, normalized=raw)

    if _SEMVER_RE.match(raw):
        return Tag(raw=raw, kind=TagKind.SEMVER, normalized=_strip_v(raw))

    if _COMMIT_HASH_RE.match(raw):
        return Tag(raw=raw, kind=TagKind.COMMIT_HASH, normalized=_strip_v(raw))

    return Tag(raw=raw, kind=TagKind.BRANCH, normalized=raw)


def normalize(raw: str) -> str:
    """Return the normalized form of a raw tag string."""
    return classify(raw).normalized


def is_latest(raw: Optional[str]) -> bool:
    """True when the request means 'whatever the newest release is'."""
    return raw is None or raw.strip().lower() == LATEST
