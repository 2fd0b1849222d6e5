"""
Retry Controller for the IndexProof engine.

After a full run, offers to re-scan using only the suites that failed the
Suite Gate.

Rules:
    - Offered only when some suite failed and the run was not forced
    - The operator must answer yes within a bounded timeout; silence is no
    - The re-scan skips the gate for exactly the failed suites and covers
      only artifacts that are still unmatched
    - Results are merged: a Matched artifact is never rescanned or replaced

The re-scan is a call back into the same orchestrator, not a new process.
"""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence, TextIO

from ..config import RETRY_PROMPT_TIMEOUT_SECONDS
from ..domain import Artifact, Unmatched
from .orchestrator import ScanReport


logger = logging.getLogger(__name__)


# (failed_suites, timeout) -> operator said yes
Confirm = Callable[[Sequence[str], float], bool]

# (forced_suites, artifacts, prior_outcomes) -> report
Rescan = Callable[[tuple[str, ...], list[Artifact], dict[Path, Unmatched]], ScanReport]


# =============================================================================
# PROMPT
# =============================================================================

def read_line_with_timeout(stream: TextIO, timeout: float) -> Optional[str]:
    """Read one line from stream, or None if nothing arrives in time."""
    answer: list[str] = []

    def reader() -> None:
        try:
            answer.append(stream.readline())
        except (OSError, ValueError):
            pass

    thread = threading.Thread(target=reader, name="indexproof-prompt", daemon=True)
    thread.start()
    thread.join(timeout)
    return answer[0] if answer else None


def prompt_retry(
    failed_suites: Sequence[str],
    timeout: float,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> bool:
    """Ask the operator whether to retry the failed suites. Default: no."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    print("Signature verification failed for the following suites:", file=stdout)
    for suite in failed_suites:
        print(f"  {suite}", file=stdout)
    print(
        f"Retry using these failed suites? (y/N) [Timeout {timeout:.0f}s]: ",
        end="",
        file=stdout,
        flush=True,
    )

    line = read_line_with_timeout(stdin, timeout)
    print(file=stdout)
    if line is None:
        return False
    return line.strip().lower() in ("y", "yes")


# =============================================================================
# CONTROLLER
# =============================================================================

@dataclass
class RetryOutcome:
    """What the controller did and the resulting (merged) report."""
    report: ScanReport
    offered: bool = False
    accepted: bool = False
    retried_suites: tuple[str, ...] = ()


class RetryController:
    """Offers, and on acceptance performs, the failed-suite re-scan."""

    def __init__(
        self,
        confirm: Confirm = prompt_retry,
        timeout: float = RETRY_PROMPT_TIMEOUT_SECONDS,
    ):
        self.confirm = confirm
        self.timeout = timeout

    @staticmethod
    def should_offer(report: ScanReport) -> bool:
        return report.gate.has_failures and not report.cancelled

    def run(
        self,
        report: ScanReport,
        suite_order: Sequence[str],
        rescan: Rescan,
    ) -> RetryOutcome:
        """
        Offer the retry and, if accepted, merge its results.

        Args:
            report: The completed (non-forced) run
            suite_order: Configured suite order, used to order failed suites
            rescan: Re-enters the orchestrator for the given forced suites
        """
        if not self.should_offer(report):
            return RetryOutcome(report=report)

        failed = tuple(report.gate.ordered_failed_suites(suite_order))
        if not self.confirm(failed, self.timeout):
            logger.info("Retry of failed suites declined")
            return RetryOutcome(report=report, offered=True)

        logger.info("Re-running only failed suites: %s", " ".join(failed))
        merged = retry_failed_suites(report, failed, rescan)
        return RetryOutcome(
            report=merged,
            offered=True,
            accepted=True,
            retried_suites=failed,
        )


def retry_failed_suites(
    report: ScanReport,
    suites: tuple[str, ...],
    rescan: Rescan,
) -> ScanReport:
    """Re-scan still-unmatched artifacts against suites and merge."""
    pending = report.unmatched
    if not pending:
        return report

    artifacts = [artifact for artifact, _ in pending]
    prior = {artifact.source_path: result for artifact, result in pending}
    return report.merge(rescan(suites, artifacts, prior))
