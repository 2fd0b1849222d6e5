"""
Reason Classifier for the IndexProof engine.

Explains why an artifact was not matched by any trusted index.

Core principle:
    The most security-relevant explanation is surfaced first. An operator
    must see a tampered-artifact signal before a benign "not published
    yet" signal.

Decision table (top-down, first applicable wins):
    1. no index blob retrieved/decoded, gate not at fault -> index_unavailable
    2. the gate excluded every suite (not forced)         -> gated_suite_skipped
    3. name+version seen together in one stanza          -> hash_mismatch
    4. name seen anywhere                                 -> version_not_found
    5. otherwise                                          -> not_found

The gate explanation wins only when it is the reason no source was
scanned at all. When some suites passed the gate and were scanned, the
evidence from those scans decides.
"""

from __future__ import annotations

from ..domain import ReasonCode
from ..evidence import PartialEvidence


def classify(
    any_source_scanned: bool,
    gate_all_failed_and_not_forced: bool,
    evidence: PartialEvidence,
) -> ReasonCode:
    """
    Derive the single reason code for an exhausted artifact.

    Args:
        any_source_scanned: At least one index blob was retrieved, decoded
            and scanned for this artifact
        gate_all_failed_and_not_forced: Every configured suite failed the
            Suite Gate and the run is not a forced retry
        evidence: The artifact's folded partial-match evidence

    Pure function. No hidden logic.
    """
    if not any_source_scanned and not gate_all_failed_and_not_forced:
        return ReasonCode.INDEX_UNAVAILABLE
    elif gate_all_failed_and_not_forced:
        return ReasonCode.GATED_SUITE_SKIPPED
    elif evidence.name_and_version_seen_together:
        return ReasonCode.HASH_MISMATCH
    elif evidence.name_seen_anywhere:
        return ReasonCode.VERSION_NOT_FOUND
    else:
        return ReasonCode.NOT_FOUND


def describe_reason(reason: ReasonCode) -> str:
    """One-line operator explanation of a reason code."""
    descriptions = {
        ReasonCode.INDEX_UNAVAILABLE: "no index could be retrieved or decoded",
        ReasonCode.GATED_SUITE_SKIPPED: "every suite failed signature verification and was skipped",
        ReasonCode.HASH_MISMATCH: "name and version are attested but the hash differs",
        ReasonCode.VERSION_NOT_FOUND: "name is attested but not with this version",
        ReasonCode.NOT_FOUND: "name is not attested by any scanned index",
    }
    return descriptions[reason]
