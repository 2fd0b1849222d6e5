"""
Scan Orchestrator for the IndexProof engine.

Ties the gate, the index provider, the parser, the matcher and the
classifier together for every artifact.

Per-artifact state machine:
    Pending -> Scanning(source_i) -> Matched
                                  -> Scanning(source_i+1) -> ... -> Exhausted

    - Sources are scanned strictly in priority order (suites x components)
    - The first full match stops the artifact (both loops)
    - Sources of gate-excluded suites are skipped and counted as skipped
    - Unavailable sources add no evidence but are remembered
    - Exhausted artifacts are classified exactly once

Artifacts are independent, so they run on a bounded thread pool. Each
artifact's sources are scanned sequentially inside one task.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from ..domain import (
    GENERIC_SCHEMA,
    Artifact,
    IndexBlob,
    IndexSource,
    IndexUnavailable,
    Matched,
    MatchResult,
    ResultRecord,
    StanzaSchema,
    Unmatched,
)
from ..evidence import NO_EVIDENCE, PartialEvidence
from ..gate import GateState
from ..ingestion.index_fetch import IndexProvider
from ..ingestion.stanza import parse_stanzas
from ..matching.classifier import classify, describe_reason
from ..matching.matcher import MatchTarget, match_stanzas, pattern_special_fields


logger = logging.getLogger(__name__)


# Called once per matched artifact, with the blob that matched
AuditHook = Callable[[Artifact, IndexBlob], None]

# Called once per finished artifact, with its flattened record
RecordSink = Callable[[ResultRecord], None]


# =============================================================================
# AUDIT COPIES
# =============================================================================

class IndexAuditWriter:
    """
    Preserves the matching index next to the artifact.

    Writes `Packages_<suite>_<component>.gz` (raw) and `.txt` (decoded).
    Writers to the same destination are serialized.
    """

    def __init__(self):
        self._lock = threading.Lock()

    def __call__(self, artifact: Artifact, blob: IndexBlob) -> None:
        folder = artifact.source_path.parent
        stem = blob.source.audit_stem
        with self._lock:
            (folder / f"{stem}.gz").write_bytes(blob.raw)
            (folder / f"{stem}.txt").write_text(blob.text, encoding="utf-8")


# =============================================================================
# SINGLE ARTIFACT
# =============================================================================

@dataclass
class ArtifactScan:
    """Mutable progress of one artifact through the state machine."""
    artifact: Artifact
    evidence: PartialEvidence = NO_EVIDENCE
    sources_scanned: int = 0
    sources_unavailable: int = 0
    sources_skipped: int = 0

    @classmethod
    def resume(cls, artifact: Artifact, prior: Optional[Unmatched]) -> ArtifactScan:
        """Start from a previous Unmatched outcome in the same run."""
        if prior is None:
            return cls(artifact=artifact)
        return cls(
            artifact=artifact,
            evidence=prior.evidence,
            sources_scanned=prior.sources_scanned,
        )


def scan_artifact(
    artifact: Artifact,
    sources: Sequence[IndexSource],
    gate: GateState,
    provider: IndexProvider,
    schema: StanzaSchema = GENERIC_SCHEMA,
    prior: Optional[Unmatched] = None,
) -> MatchResult:
    """
    Run one artifact through every gated source until the first match.

    Args:
        artifact: The artifact to attest
        sources: Index sources in priority order
        gate: This run's gate state
        provider: Returns an IndexBlob for a source or raises IndexUnavailable
        schema: Field keys of the index format
        prior: Earlier Unmatched outcome in this run whose evidence carries over

    Returns:
        Matched on the first full match, otherwise Unmatched with a reason
    """
    target = MatchTarget.from_artifact(artifact)
    state = ArtifactScan.resume(artifact, prior)

    flagged = pattern_special_fields(target)
    if flagged:
        logger.debug(
            "%s: pattern-special characters in %s (compared literally)",
            artifact.filename, ", ".join(flagged),
        )

    for source in sources:
        if gate.is_excluded(source.suite):
            state.sources_skipped += 1
            continue

        try:
            blob = provider(source)
        except IndexUnavailable as e:
            logger.info("%s: skipping %s (%s)", artifact.filename, source.label, e.reason)
            state.sources_unavailable += 1
            continue

        stanzas = parse_stanzas(blob.text, keys=schema.keys)
        outcome = match_stanzas(stanzas, target, schema)
        state.sources_scanned += 1
        state.evidence = state.evidence.merge(outcome.evidence)

        if outcome.matched:
            logger.info(
                "MATCH %s in %s at line %d",
                artifact.filename, source.label, outcome.stanza.start_line,
            )
            return Matched(source=source, stanza=outcome.stanza, blob=blob)

        logger.debug(
            "%s: no match in %s (%s)",
            artifact.filename, source.label, outcome.evidence.describe(),
        )

    reason = classify(
        any_source_scanned=state.sources_scanned > 0,
        gate_all_failed_and_not_forced=gate.all_failed(sources),
        evidence=state.evidence,
    )
    logger.info(
        "NO MATCH %s: %s (%s)",
        artifact.filename, reason.value, describe_reason(reason),
    )
    return Unmatched(
        reason=reason,
        evidence=state.evidence,
        sources_scanned=state.sources_scanned,
    )


# =============================================================================
# WHOLE RUN
# =============================================================================

@dataclass
class ScanReport:
    """
    Outcomes of one scan over a set of artifacts.

    results preserves the input artifact order.
    """
    gate: GateState
    results: dict[Path, tuple[Artifact, MatchResult]] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def records(self) -> list[ResultRecord]:
        """One record per finished artifact, sorted by folder."""
        records = [
            ResultRecord.from_result(artifact, result)
            for artifact, result in self.results.values()
        ]
        return sorted(records, key=ResultRecord.sort_key)

    @property
    def unmatched(self) -> list[tuple[Artifact, Unmatched]]:
        return [
            (artifact, result)
            for artifact, result in self.results.values()
            if isinstance(result, Unmatched)
        ]

    @property
    def matched_count(self) -> int:
        return sum(1 for _, result in self.results.values() if result.is_match)

    def merge(self, retry: ScanReport) -> ScanReport:
        """
        Fold a retry report into this one.

        Retry outcomes replace earlier outcomes for the same artifact; a
        Matched outcome is never replaced.
        """
        merged = dict(self.results)
        for path, (artifact, result) in retry.results.items():
            previous = merged.get(path)
            if previous is not None and previous[1].is_match:
                continue
            merged[path] = (artifact, result)
        return ScanReport(
            gate=self.gate,
            results=merged,
            cancelled=self.cancelled or retry.cancelled,
        )


def run_scan(
    artifacts: Sequence[Artifact],
    sources: Sequence[IndexSource],
    gate: GateState,
    provider: IndexProvider,
    schema: StanzaSchema = GENERIC_SCHEMA,
    workers: int = 1,
    on_match: Optional[AuditHook] = None,
    on_record: Optional[RecordSink] = None,
    cancel: Optional[threading.Event] = None,
    prior: Optional[dict[Path, Unmatched]] = None,
) -> ScanReport:
    """
    Scan every artifact against the gated sources.

    The gate must already be computed. Artifacts may run concurrently
    (bounded by workers); per-artifact source order is never changed.

    A set cancel event stops artifacts that have not started yet; those
    get no outcome and the report is marked cancelled.
    """
    prior = prior or {}
    if cancel is None:
        cancel = threading.Event()
    outcomes: dict[Path, MatchResult] = {}
    outcomes_lock = threading.Lock()
    cancelled = threading.Event()

    def task(artifact: Artifact) -> None:
        if cancel.is_set():
            cancelled.set()
            return

        logger.info("Checking %s (%s %s)", artifact.filename, artifact.name, artifact.version)
        result = scan_artifact(
            artifact,
            sources,
            gate,
            provider,
            schema=schema,
            prior=prior.get(artifact.source_path),
        )

        if isinstance(result, Matched) and on_match is not None and result.blob is not None:
            try:
                on_match(artifact, result.blob)
            except OSError as e:
                logger.error("Could not preserve index for %s: %s", artifact.filename, e)

        if on_record is not None:
            on_record(ResultRecord.from_result(artifact, result))

        with outcomes_lock:
            outcomes[artifact.source_path] = result

    try:
        if workers <= 1:
            for artifact in artifacts:
                task(artifact)
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="indexproof-scan") as pool:
                futures = [pool.submit(task, artifact) for artifact in artifacts]
                try:
                    for future in futures:
                        future.result()
                except KeyboardInterrupt:
                    cancel.set()
                    raise
    except KeyboardInterrupt:
        logger.warning("Interrupted; artifacts already in progress were finished")
        cancel.set()
        cancelled.set()

    results = {
        artifact.source_path: (artifact, outcomes[artifact.source_path])
        for artifact in artifacts
        if artifact.source_path in outcomes
    }
    return ScanReport(gate=gate, results=results, cancelled=cancelled.is_set())
