"""
Tests for the Suite Gate.

These tests verify:
1. Each suite is either verified or failed, never both
2. Missing manifests and bad signatures both fail the suite
3. The gate is suite-scoped, not source-scoped
4. Forced mode includes the named suites unconditionally
"""

import http.client
from pathlib import Path

import pytest

from indexproof.config import build_sources
from indexproof.domain import SignatureInvalid
from indexproof.gate import GateState, unique_suites, verify_suite, verify_suites

from support import FakeManifestFetcher, fake_verifier


KEYRING = Path("/keys/archive.gpg")


def sources_for(*suites):
    return build_sources(tuple(suites), ("main", "universe"), "https://mirror.test/ubuntu")


# =============================================================================
# VERIFICATION
# =============================================================================

class TestVerifySuites:
    """Test the per-suite binary outcome."""

    def test_all_verified(self):
        fetcher = FakeManifestFetcher()
        gate = verify_suites(sources_for("jammy", "noble"), fetcher, fake_verifier, KEYRING)

        assert gate.verified_suites == {"jammy", "noble"}
        assert gate.failed_suites == frozenset()
        assert not gate.has_failures

    def test_bad_signature_fails_suite(self):
        fetcher = FakeManifestFetcher(tampered=frozenset({"noble"}))
        gate = verify_suites(sources_for("jammy", "noble"), fetcher, fake_verifier, KEYRING)

        assert gate.verified_suites == {"jammy"}
        assert gate.failed_suites == {"noble"}
        assert "verification failed" in gate.failures["noble"].reason

    def test_missing_manifest_fails_suite(self):
        fetcher = FakeManifestFetcher(missing=frozenset({"jammy"}))
        gate = verify_suites(sources_for("jammy"), fetcher, fake_verifier, KEYRING)

        assert gate.failed_suites == {"jammy"}
        assert "missing Release" in gate.failures["jammy"].reason

    def test_truncated_manifest_fails_suite(self):
        def fetcher(suite):
            raise http.client.IncompleteRead(b"Orig", 4096)

        gate = verify_suites(sources_for("jammy"), fetcher, fake_verifier, KEYRING)

        assert gate.failed_suites == {"jammy"}
        assert "missing Release" in gate.failures["jammy"].reason

    def test_each_suite_fetched_once(self):
        """Two components of one suite share a single manifest check."""
        fetcher = FakeManifestFetcher()
        verify_suites(sources_for("jammy", "noble"), fetcher, fake_verifier, KEYRING)

        assert fetcher.calls == ["jammy", "noble"]

    def test_verified_and_failed_disjoint(self):
        fetcher = FakeManifestFetcher(missing=frozenset({"a"}), tampered=frozenset({"c"}))
        gate = verify_suites(sources_for("a", "b", "c"), fetcher, fake_verifier, KEYRING)

        assert gate.verified_suites.isdisjoint(gate.failed_suites)
        assert gate.verified_suites | gate.failed_suites == {"a", "b", "c"}

    def test_verify_suite_raises(self):
        fetcher = FakeManifestFetcher(tampered=frozenset({"x"}))
        with pytest.raises(SignatureInvalid) as exc:
            verify_suite("x", fetcher, fake_verifier, KEYRING)
        assert exc.value.suite == "x"

    def test_keyring_passed_through(self):
        seen = []

        def verifier(payload, signature, keyring):
            seen.append(keyring)
            return True

        verify_suites(sources_for("jammy"), FakeManifestFetcher(), verifier, KEYRING)
        assert seen == [KEYRING]

    def test_unique_suites_keeps_order(self):
        assert unique_suites(sources_for("noble", "jammy")) == ["noble", "jammy"]


# =============================================================================
# GATE STATE
# =============================================================================

class TestGateState:
    """Test exclusion queries."""

    def test_failed_suite_excludes_every_component(self):
        gate = GateState(verified_suites=frozenset({"jammy"}), failed_suites=frozenset({"noble"}))
        excluded = [s.label for s in sources_for("jammy", "noble") if gate.is_excluded(s.suite)]

        assert excluded == ["noble/main", "noble/universe"]

    def test_all_failed(self):
        gate = GateState(failed_suites=frozenset({"jammy", "noble"}))
        assert gate.all_failed(sources_for("jammy", "noble"))

    def test_not_all_failed(self):
        gate = GateState(verified_suites=frozenset({"jammy"}), failed_suites=frozenset({"noble"}))
        assert not gate.all_failed(sources_for("jammy", "noble"))

    def test_all_failed_on_empty_sources(self):
        assert not GateState(failed_suites=frozenset({"x"})).all_failed([])

    def test_forced_includes_everything(self):
        gate = GateState.forced_for(["noble"])

        assert gate.forced
        assert not gate.is_excluded("noble")
        assert not gate.all_failed(sources_for("noble"))
        assert not gate.has_failures

    def test_ordered_failed_suites(self):
        gate = GateState(failed_suites=frozenset({"b", "d"}))
        assert gate.ordered_failed_suites(["a", "b", "c", "d"]) == ["b", "d"]
