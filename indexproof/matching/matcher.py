"""
Tuple Matcher for the IndexProof engine.

Decides whether one artifact's (name, version, hash) is jointly present in
a single stanza of one index source.

Design principles:
- Exact string equality only. Artifact-derived values are never turned
  into a pattern, so `lib++.test*` matches only `lib++.test*`.
- Joint satisfaction only. A stanza matching two of three fields is
  evidence, never a match.
- First match wins. Scanning stops at the lowest start_line that matches.
- Hashes compare in canonical lowercase hex; nothing else is normalized.

Trust boundary: a partial match is reported as evidence for the Reason
Classifier, never promoted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from ..domain import GENERIC_SCHEMA, Artifact, Stanza, StanzaSchema
from ..evidence import NO_EVIDENCE, PartialEvidence


logger = logging.getLogger(__name__)


# Characters that would be special if a value were ever used as a pattern.
# Only used to warn; matching does not depend on it.
PATTERN_SPECIAL_CHARS = frozenset("][\\/.^$*+?|(){}")


# =============================================================================
# TARGET
# =============================================================================

@dataclass(frozen=True)
class MatchTarget:
    """The (name, version, hash) tuple sought in an index."""
    name: str
    version: str
    hash: str

    def __post_init__(self):
        object.__setattr__(self, "hash", canonical_hash(self.hash))

    @classmethod
    def from_artifact(cls, artifact: Artifact) -> MatchTarget:
        return cls(name=artifact.name, version=artifact.version, hash=artifact.hash)


def canonical_hash(value: str) -> str:
    """Hex digests compare in lowercase."""
    return value.lower()


def pattern_special_fields(target: MatchTarget) -> list[str]:
    """Names of target fields containing pattern-special characters."""
    flagged = []
    for label, value in (("name", target.name), ("version", target.version), ("hash", target.hash)):
        if any(ch in PATTERN_SPECIAL_CHARS for ch in value):
            flagged.append(label)
    return flagged


# =============================================================================
# MATCHING
# =============================================================================

@dataclass(frozen=True)
class SourceMatch:
    """
    Outcome of scanning one source for one target.

    stanza is the first fully matching stanza, or None.
    evidence is what this source contributed, whether or not it matched.
    """
    stanza: Optional[Stanza]
    evidence: PartialEvidence
    stanzas_scanned: int = 0

    @property
    def matched(self) -> bool:
        return self.stanza is not None


def stanza_fields_match(
    stanza: Stanza,
    target: MatchTarget,
    schema: StanzaSchema = GENERIC_SCHEMA,
) -> tuple[bool, bool, bool]:
    """Per-field exact equality of a stanza against a target."""
    name_ok = stanza.get(schema.name_key) == target.name
    version_ok = stanza.get(schema.version_key) == target.version

    stanza_hash = stanza.get(schema.hash_key)
    hash_ok = stanza_hash is not None and canonical_hash(stanza_hash) == target.hash

    return name_ok, version_ok, hash_ok


def match_stanzas(
    stanzas: Iterable[Stanza],
    target: MatchTarget,
    schema: StanzaSchema = GENERIC_SCHEMA,
) -> SourceMatch:
    """
    Find the first stanza that jointly matches the target.

    Streams stanzas in order and stops at the first full match. While
    scanning, records whether the name was seen anywhere and whether name
    and version were seen together in one stanza.
    """
    name_seen = False
    name_version_seen = False
    count = 0

    for stanza in stanzas:
        count += 1
        name_ok, version_ok, hash_ok = stanza_fields_match(stanza, target, schema)

        if name_ok:
            name_seen = True
            if version_ok:
                name_version_seen = True

        if name_ok and version_ok and hash_ok:
            return SourceMatch(
                stanza=stanza,
                evidence=PartialEvidence(
                    name_seen_anywhere=True,
                    name_and_version_seen_together=True,
                ),
                stanzas_scanned=count,
            )

    evidence = PartialEvidence(
        name_seen_anywhere=name_seen,
        name_and_version_seen_together=name_version_seen,
    )
    return SourceMatch(
        stanza=None,
        evidence=evidence if not evidence.is_empty else NO_EVIDENCE,
        stanzas_scanned=count,
    )
