"""
Pipeline Orchestrator for the IndexProof engine.

Ties all stages together into a single run.

Pipeline stages:
    1. Artifact discovery (read every .deb under the input directory)
    2. Suite Gate (skipped when suites are forced)
    3. Scan (every artifact against every gated source)
    4. Retry offer for suites that failed the gate
    5. Persistence (sorted CSV, failed-suite list, local index)

Every artifact read from disk gets exactly one result record.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..config import RunConfig, build_sources
from ..domain import (
    Artifact,
    ArtifactReadError,
    ResultRecord,
    RunAbortedError,
    Unmatched,
)
from ..gate import GateState, verify_suites
from ..ingestion.artifacts import discover_artifacts
from ..ingestion.index_fetch import IndexFetcher, IndexProvider
from ..report import (
    ResultLog,
    create_meta_dir,
    run_timestamp,
    write_failed_suites,
    write_local_index,
)
from ..scan.orchestrator import AuditHook, IndexAuditWriter, ScanReport, run_scan
from ..scan.retry import Confirm, RetryController, RetryOutcome, prompt_retry
from ..signature import (
    ManifestFetcher,
    ReleaseFetcher,
    SignatureVerifier,
    gpgv_verify,
    require_keyring,
)


logger = logging.getLogger(__name__)


EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_ABORTED = 2


# =============================================================================
# RUN PATHS
# =============================================================================

@dataclass(frozen=True)
class RunPaths:
    """Where one run writes its logs and reports."""
    meta_dir: Path
    timestamp: str

    @property
    def csv_path(self) -> Path:
        return self.meta_dir / f"verify_{self.timestamp}.csv"

    @property
    def log_path(self) -> Path:
        return self.meta_dir / f"verify_{self.timestamp}.log"

    @property
    def failures_path(self) -> Path:
        return self.meta_dir / f"gpg_failures_{self.timestamp}.txt"


def prepare_run(config: RunConfig, now: Optional[datetime] = None) -> RunPaths:
    """Create the run's metadata directory."""
    timestamp = run_timestamp(now)
    if config.meta_dir is not None:
        config.meta_dir.mkdir(parents=True, exist_ok=True)
        return RunPaths(meta_dir=config.meta_dir, timestamp=timestamp)
    return RunPaths(meta_dir=create_meta_dir(config.input_dir, timestamp), timestamp=timestamp)


# =============================================================================
# PIPELINE RESULT
# =============================================================================

@dataclass
class PipelineResult:
    """
    Complete result of one run.

    Exposes:
    - One record per artifact (sorted by folder)
    - Suites that failed the gate
    - Files that could not be read as artifacts
    - What the retry controller did
    """
    report: ScanReport
    records: list[ResultRecord]
    paths: RunPaths
    failed_suites: list[str] = field(default_factory=list)
    artifact_failures: list[ArtifactReadError] = field(default_factory=list)
    retry: Optional[RetryOutcome] = None
    local_index: Optional[Path] = None

    @property
    def matched(self) -> int:
        return sum(1 for record in self.records if record.match_found)

    @property
    def unmatched(self) -> int:
        return len(self.records) - self.matched

    @property
    def exit_status(self) -> int:
        """Non-zero if any NoMatch, SignatureInvalid or unreadable artifact."""
        if self.unmatched or self.failed_suites or self.artifact_failures:
            return EXIT_FAILURES
        if self.report.cancelled:
            return EXIT_FAILURES
        return EXIT_OK


# =============================================================================
# STAGES
# =============================================================================

def compute_gate(
    config: RunConfig,
    manifest_fetcher: Optional[ManifestFetcher] = None,
    verifier: Optional[SignatureVerifier] = None,
) -> GateState:
    """
    Stage 2: the Suite Gate.

    Raises:
        RunAbortedError: If the keyring is missing (non-forced runs only)
    """
    if config.is_forced:
        logger.info("Forced suites, skipping signature gate: %s", " ".join(config.forced_suites))
        return GateState.forced_for(config.forced_suites)

    keyring = require_keyring(config.keyring)
    return verify_suites(
        config.sources(),
        fetch_manifest=manifest_fetcher or ReleaseFetcher(config.mirror, config.fetch_timeout),
        verify_signature=verifier or gpgv_verify,
        keyring=keyring,
    )


def make_rescan(
    config: RunConfig,
    provider: IndexProvider,
    on_match: Optional[AuditHook],
    cancel: Optional[threading.Event],
):
    """Build the retry callback: re-enter the orchestrator for forced suites."""

    def rescan(
        suites: tuple[str, ...],
        artifacts: list[Artifact],
        prior: dict[Path, Unmatched],
    ) -> ScanReport:
        sources = build_sources(suites, config.components, config.mirror, config.arch)
        return run_scan(
            artifacts,
            sources,
            GateState.forced_for(suites),
            provider,
            schema=config.schema,
            workers=config.workers,
            on_match=on_match,
            cancel=cancel,
            prior=prior,
        )

    return rescan


# =============================================================================
# PIPELINE EXECUTION
# =============================================================================

def run_pipeline(
    config: RunConfig,
    paths: Optional[RunPaths] = None,
    provider: Optional[IndexProvider] = None,
    manifest_fetcher: Optional[ManifestFetcher] = None,
    verifier: Optional[SignatureVerifier] = None,
    confirm: Optional[Confirm] = prompt_retry,
    cancel: Optional[threading.Event] = None,
    preserve_indexes: bool = True,
) -> PipelineResult:
    """
    Execute one verification run.

    Args:
        config: Run settings
        paths: Metadata directory (created if None)
        provider: Index provider (cached HTTP fetcher if None)
        manifest_fetcher: Signed-manifest retrieval (mirror Release if None)
        verifier: Signature check (gpgv if None)
        confirm: Retry prompt; None disables the retry offer
        cancel: Set to stop before the next artifact
        preserve_indexes: Copy matching indexes next to artifacts

    Raises:
        RunAbortedError: No artifacts, or no way to verify signatures
    """
    paths = paths or prepare_run(config)

    # ==========================================================================
    # STAGE 1: Artifact discovery
    # ==========================================================================
    discovery = discover_artifacts(config.input_dir)
    if not discovery.artifacts:
        raise RunAbortedError(f"no artifacts found under {config.input_dir}")
    logger.info("Verifying %d artifacts in %s", len(discovery.artifacts), config.input_dir)

    # ==========================================================================
    # STAGE 2: Suite Gate (barrier before any scanning)
    # ==========================================================================
    gate = compute_gate(config, manifest_fetcher, verifier)
    failed_suites = gate.ordered_failed_suites(config.active_suites)

    # ==========================================================================
    # STAGE 3: Scan
    # ==========================================================================
    provider = provider or IndexFetcher(config.cache_dir, config.fetch_timeout)
    on_match = IndexAuditWriter() if preserve_indexes else None

    with ResultLog(paths.csv_path) as result_log:
        report = run_scan(
            discovery.artifacts,
            config.sources(),
            gate,
            provider,
            schema=config.schema,
            workers=config.workers,
            on_match=on_match,
            on_record=result_log.append,
            cancel=cancel,
        )

        write_failed_suites(paths.failures_path, failed_suites)

        # ======================================================================
        # STAGE 4: Retry offer
        # ======================================================================
        retry = None
        if confirm is not None and not config.is_forced:
            controller = RetryController(confirm=confirm, timeout=config.retry_timeout)
            retry = controller.run(
                report,
                config.suites,
                make_rescan(config, provider, on_match, cancel),
            )
            report = retry.report

        # ======================================================================
        # STAGE 5: Persistence
        # ======================================================================
        records = report.records
        result_log.replace(records)
        result_log.finalize()

    local_index = None
    if config.write_local_index:
        local_index, _ = write_local_index(config.input_dir, discovery.artifacts)

    result = PipelineResult(
        report=report,
        records=records,
        paths=paths,
        failed_suites=failed_suites,
        artifact_failures=discovery.failures,
        retry=retry,
        local_index=local_index,
    )
    logger.info(
        "Verification complete: %d matched, %d unmatched, %d suites failed",
        result.matched, result.unmatched, len(failed_suites),
    )
    return result
