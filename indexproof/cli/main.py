"""
IndexProof CLI — attest local packages against signed remote indexes.

Commands:
    indexproof verify <dir>        — Verify every .deb under <dir>
    indexproof verify-sums <dir>   — Verify tarballs against a signed SHA256SUMS

Exit status:
    0  everything attested
    1  some artifact unmatched, some suite failed its signature check,
       or some file could not be read
    2  run aborted (no artifacts, missing keyring, no gpgv)
"""

from __future__ import annotations

import argparse
import sys
import threading
from pathlib import Path
from typing import Optional

from ..config import (
    DEFAULT_ARCH,
    DEFAULT_CACHE_DIR,
    DEFAULT_COMPONENTS,
    DEFAULT_KEYRING,
    DEFAULT_MIRROR,
    DEFAULT_SUITES,
    DEFAULT_WORKERS,
    FETCH_TIMEOUT_SECONDS,
    RETRY_PROMPT_TIMEOUT_SECONDS,
    RunConfig,
)
from ..domain import ResultRecord, RunAbortedError, SignatureInvalid
from ..logging_setup import configure_logging
from ..matching.classifier import describe_reason
from ..report import create_meta_dir, run_timestamp
from ..scan.retry import prompt_retry
from ..signature import gpgv_verify, require_keyring
from ..sums import DEFAULT_PATTERN, sums_passed, verify_sums, write_sums_csv
from .pipeline import (
    EXIT_ABORTED,
    EXIT_FAILURES,
    EXIT_OK,
    PipelineResult,
    prepare_run,
    run_pipeline,
)


# =============================================================================
# OUTPUT FORMATTING
# =============================================================================

def format_record_row(record: ResultRecord) -> str:
    """Format a single result for display."""
    badge = "[MATCH]" if record.match_found else "[NO MATCH]"
    label = f"{record.name} {record.version} ({record.architecture or '?'})"
    if record.match_found:
        return f"{badge} {label} | {record.suite_component} line {record.start_line} | {record.filename}"
    return f"{badge} {label} | {record.reason.value} | {record.filename}"


def format_summary(result: PipelineResult) -> str:
    lines = []
    lines.append("STATISTICS:")
    lines.append(f"  Artifacts checked:  {len(result.records)}")
    lines.append(f"  Matched:            {result.matched}")
    lines.append(f"  Unmatched:          {result.unmatched}")
    lines.append(f"  Unreadable files:   {len(result.artifact_failures)}")
    lines.append(f"  Suites failed gate: {len(result.failed_suites)}")

    reasons = sorted({r.reason for r in result.records if r.reason is not None}, key=lambda r: r.value)
    if reasons:
        lines.append("")
        lines.append("REASONS (for audit):")
        for reason in reasons:
            count = sum(1 for r in result.records if r.reason is reason)
            lines.append(f"  • {reason.value} x{count}: {describe_reason(reason)}")

    lines.append("")
    lines.append(f"CSV log:  {result.paths.csv_path}")
    lines.append(f"Run log:  {result.paths.log_path}")
    if result.failed_suites:
        lines.append(f"Failed suites: {result.paths.failures_path}")
    if result.local_index is not None:
        lines.append(f"Local index:   {result.local_index}")
    return "\n".join(lines)


# =============================================================================
# CLI COMMANDS
# =============================================================================

def build_config(args: argparse.Namespace) -> RunConfig:
    return RunConfig(
        input_dir=Path(args.input_dir),
        suites=tuple(args.suite or DEFAULT_SUITES),
        components=tuple(args.component or DEFAULT_COMPONENTS),
        arch=args.arch,
        mirror=args.mirror,
        keyring=Path(args.keyring),
        cache_dir=Path(args.cache_dir),
        forced_suites=tuple(args.force_suite or ()),
        workers=args.workers,
        fetch_timeout=args.timeout,
        retry_timeout=args.retry_timeout,
        write_local_index=not args.no_local_index,
    )


def always_yes(failed_suites, timeout) -> bool:
    return True


def cmd_verify(args: argparse.Namespace) -> int:
    """Verify every artifact under the input directory."""
    input_dir = Path(args.input_dir)
    if not input_dir.is_dir():
        print(f"ERROR: not a directory: {input_dir}")
        return EXIT_ABORTED

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"ERROR: {e}")
        return EXIT_ABORTED

    paths = prepare_run(config)
    configure_logging(paths.log_path, verbose=args.verbose)

    print(f"Verifying artifacts in: {input_dir}")
    print(f"Metadata dir: {paths.meta_dir}")
    print("-" * 60)

    if args.no_retry:
        confirm = None
    elif args.yes_retry:
        confirm = always_yes
    else:
        confirm = prompt_retry

    cancel = threading.Event()
    try:
        result = run_pipeline(config, paths=paths, confirm=confirm, cancel=cancel)
    except RunAbortedError as e:
        print(f"ERROR: Run aborted")
        print(f"Reason: {e}")
        return EXIT_ABORTED

    print()
    for record in result.records:
        print(format_record_row(record))
    print()
    print(format_summary(result))
    return result.exit_status


def cmd_verify_sums(args: argparse.Namespace) -> int:
    """Verify tarballs against a signed SHA256SUMS manifest."""
    directory = Path(args.directory)
    if not directory.is_dir():
        print(f"ERROR: not a directory: {directory}")
        return EXIT_ABORTED

    timestamp = run_timestamp()
    meta_dir = create_meta_dir(directory, timestamp, prefix=".meta_verify_sums_")
    configure_logging(meta_dir / f"verify_sums_{timestamp}.log", verbose=args.verbose)

    try:
        keyring = require_keyring(Path(args.keyring))
        results = verify_sums(directory, gpgv_verify, keyring, args.pattern)
    except RunAbortedError as e:
        print(f"ERROR: {e}")
        return EXIT_ABORTED
    except SignatureInvalid as e:
        print(f"Signature verification FAILED: {e}")
        return EXIT_FAILURES

    csv_path = write_sums_csv(meta_dir / f"verify_sums_{timestamp}.csv", results)
    for result in results:
        print(f"{result.filename}: {result.status.value} ({result.message})")
    print(f"CSV output: {csv_path}")

    if not sums_passed(results):
        print("Verification FAILED (nothing verified, or a checksum mismatch).")
        return EXIT_FAILURES
    print("All listed files verified successfully.")
    return EXIT_OK


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="indexproof",
        description="IndexProof — attest local packages against signed package indexes",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        description="Available commands",
        dest="command",
    )

    # Verify command
    verify_parser = subparsers.add_parser(
        "verify",
        help="Verify every .deb under a directory",
    )
    verify_parser.add_argument("input_dir", help="Directory containing .deb files")
    verify_parser.add_argument(
        "--suite", action="append", metavar="SUITE",
        help="Suite to check, in priority order (repeatable; default: Ubuntu trusty..noble)",
    )
    verify_parser.add_argument(
        "--component", action="append", metavar="COMPONENT",
        help="Component to check, in priority order (repeatable)",
    )
    verify_parser.add_argument("--arch", default=DEFAULT_ARCH, help="Index architecture")
    verify_parser.add_argument("--mirror", default=DEFAULT_MIRROR, help="Archive base URL")
    verify_parser.add_argument("--keyring", default=str(DEFAULT_KEYRING), help="Trusted keyring")
    verify_parser.add_argument("--cache-dir", default=str(DEFAULT_CACHE_DIR), help="Index cache directory")
    verify_parser.add_argument(
        "--force-suite", action="append", metavar="SUITE",
        help="Scan only these suites and skip the signature gate (repeatable)",
    )
    verify_parser.add_argument("--workers", type=int, default=DEFAULT_WORKERS, help="Artifacts scanned in parallel")
    verify_parser.add_argument("--timeout", type=float, default=FETCH_TIMEOUT_SECONDS, help="Per-download timeout (s)")
    verify_parser.add_argument(
        "--retry-timeout", type=float, default=RETRY_PROMPT_TIMEOUT_SECONDS,
        help="Seconds to wait for an answer to the retry prompt",
    )
    retry_group = verify_parser.add_mutually_exclusive_group()
    retry_group.add_argument("--yes-retry", action="store_true", help="Retry failed suites without asking")
    retry_group.add_argument("--no-retry", action="store_true", help="Never offer to retry failed suites")
    verify_parser.add_argument("--no-local-index", action="store_true", help="Do not write Packages/Packages.gz")
    verify_parser.add_argument("-v", "--verbose", action="store_true", help="Debug output on the console")
    verify_parser.set_defaults(func=cmd_verify)

    # Verify-sums command
    sums_parser = subparsers.add_parser(
        "verify-sums",
        help="Verify tarballs against a signed SHA256SUMS",
    )
    sums_parser.add_argument("directory", help="Directory with SHA256SUMS, SHA256SUMS.gpg and tarballs")
    sums_parser.add_argument("--keyring", default=str(DEFAULT_KEYRING), help="Trusted keyring")
    sums_parser.add_argument("--pattern", default=DEFAULT_PATTERN, help="Files to check")
    sums_parser.add_argument("-v", "--verbose", action="store_true", help="Debug output on the console")
    sums_parser.set_defaults(func=cmd_verify_sums)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
