"""
Suite Gate for the IndexProof engine.

Decides which suites are trusted for this run, before any artifact is
scanned.

Binary outcome per suite. There is no "maybe" state:
    verified — the signed manifest was retrieved and its signature is good
    failed   — the manifest or signature could not be retrieved, or the
               signature did not verify

Rules:
    - The gate is suite-scoped: a failed suite excludes all its components
    - Excluded sources are tracked as skipped, never treated as "not found"
    - In forced-retry mode the gate is skipped and the named suites are
      included unconditionally (the operator accepted the trust risk)

The gate runs once per run and its state is read-only afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from http.client import HTTPException
from pathlib import Path
from typing import Iterable

from .domain import IndexSource, SignatureInvalid
from .signature import ManifestFetcher, SignatureVerifier


logger = logging.getLogger(__name__)


# =============================================================================
# GATE STATE
# =============================================================================

@dataclass(frozen=True)
class GateState:
    """
    Result of the Suite Gate for one run.

    failures maps each failed suite to the SignatureInvalid that excluded it.
    """
    verified_suites: frozenset[str] = frozenset()
    failed_suites: frozenset[str] = frozenset()
    forced: bool = False
    failures: dict[str, SignatureInvalid] = field(default_factory=dict, compare=False)

    @classmethod
    def forced_for(cls, suites: Iterable[str]) -> GateState:
        """Gate state for a forced retry: every named suite is included."""
        return cls(verified_suites=frozenset(suites), forced=True)

    def is_excluded(self, suite: str) -> bool:
        """True if scanning must skip every component of this suite."""
        if self.forced:
            return False
        return suite in self.failed_suites

    def all_failed(self, sources: Iterable[IndexSource]) -> bool:
        """True if the gate excluded every one of the given sources."""
        suites = {source.suite for source in sources}
        return bool(suites) and all(self.is_excluded(suite) for suite in suites)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed_suites) and not self.forced

    def ordered_failed_suites(self, order: Iterable[str]) -> list[str]:
        """Failed suites in the caller's suite order."""
        return [suite for suite in order if suite in self.failed_suites]


# =============================================================================
# VERIFICATION
# =============================================================================

def unique_suites(sources: Iterable[IndexSource]) -> list[str]:
    """Suites referenced by sources, deduplicated, first-seen order."""
    seen: dict[str, None] = {}
    for source in sources:
        seen.setdefault(source.suite, None)
    return list(seen)


def verify_suite(
    suite: str,
    fetch_manifest: ManifestFetcher,
    verify_signature: SignatureVerifier,
    keyring: Path,
) -> None:
    """
    Verify one suite's signed manifest.

    Raises:
        SignatureInvalid: If retrieval or verification fails
    """
    try:
        manifest = fetch_manifest(suite)
    except (OSError, HTTPException, ValueError) as e:
        raise SignatureInvalid(suite, f"missing Release or signature: {e}")

    if not verify_signature(manifest.payload, manifest.signature, keyring):
        raise SignatureInvalid(suite, "signature verification failed")


def verify_suites(
    sources: Iterable[IndexSource],
    fetch_manifest: ManifestFetcher,
    verify_signature: SignatureVerifier,
    keyring: Path,
) -> GateState:
    """
    Apply the gate to every suite referenced by sources.

    Returns:
        GateState with each suite in exactly one of verified/failed
    """
    verified: list[str] = []
    failures: dict[str, SignatureInvalid] = {}

    for suite in unique_suites(sources):
        logger.info("Verifying signature for suite: %s", suite)
        try:
            verify_suite(suite, fetch_manifest, verify_signature, keyring)
        except SignatureInvalid as e:
            logger.warning("Suite gate failed: %s", e)
            failures[suite] = e
            continue
        logger.info("Suite %s verified", suite)
        verified.append(suite)

    return GateState(
        verified_suites=frozenset(verified),
        failed_suites=frozenset(failures),
        failures=failures,
    )
