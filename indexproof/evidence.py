"""
Partial-Match Evidence for the IndexProof engine.

SYSTEM INVARIANT:
    Evidence is monotonic within a run. Once a flag has been observed as
    true for an artifact, no later source scan can turn it back to false.
    The only way to combine evidence is `merge`, which is a logical OR.

Evidence flags:
    name_seen_anywhere            — some stanza carried the artifact's name
    name_and_version_seen_together — one single stanza carried both the
                                     artifact's name and its version

Evidence is a value. It is returned by each per-source scan and folded by
the orchestrator; there are no shared counters.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class PartialEvidence:
    """
    Partial-match evidence for one artifact.

    Lifecycle:
        - created empty when an artifact enters Pending
        - merged with each scanned source's evidence
        - consumed once by the Reason Classifier
    """
    name_seen_anywhere: bool = False
    name_and_version_seen_together: bool = False

    def __post_init__(self):
        # name+version in one stanza implies the name was seen
        if self.name_and_version_seen_together and not self.name_seen_anywhere:
            object.__setattr__(self, "name_seen_anywhere", True)

    def merge(self, other: PartialEvidence) -> PartialEvidence:
        """Fold another source's evidence into this one (logical OR)."""
        return PartialEvidence(
            name_seen_anywhere=self.name_seen_anywhere or other.name_seen_anywhere,
            name_and_version_seen_together=(
                self.name_and_version_seen_together
                or other.name_and_version_seen_together
            ),
        )

    @property
    def is_empty(self) -> bool:
        return not (self.name_seen_anywhere or self.name_and_version_seen_together)

    def describe(self) -> str:
        """Short human-readable summary used in log lines."""
        return (
            f"name={int(self.name_seen_anywhere)}, "
            f"name+version={int(self.name_and_version_seen_together)}"
        )


NO_EVIDENCE = PartialEvidence()


def fold_evidence(items: Iterable[PartialEvidence]) -> PartialEvidence:
    """Merge a sequence of evidence values, starting from no evidence."""
    result = NO_EVIDENCE
    for item in items:
        result = result.merge(item)
    return result
