"""
Signed Checksum Manifest verification for the IndexProof engine.

Verifies image tarballs against a signed `SHA256SUMS` file:

    <dir>/
    ├── SHA256SUMS
    ├── SHA256SUMS.gpg
    └── ubuntu-base-22.04.3-base-arm64.tar.gz

The manifest's signature is checked first; if it does not verify, no file
is checked at all (fail closed). Each file is then looked up in the
manifest by exact filename equality.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from .domain import MalformedStanza, RunAbortedError, SignatureInvalid
from .ingestion.artifacts import sha256_file
from .signature import SignatureVerifier


logger = logging.getLogger(__name__)


SUMS_FILENAME = "SHA256SUMS"
SUMS_SIGNATURE_FILENAME = "SHA256SUMS.gpg"
DEFAULT_PATTERN = "*.tar.gz"
SUMS_CSV_HEADER = ("filename", "status", "message")


class SumStatus(Enum):
    OK = "OK"
    FAIL = "FAIL"
    SKIP = "SKIP"


@dataclass(frozen=True)
class SumResult:
    filename: str
    status: SumStatus
    message: str

    def to_row(self) -> list[str]:
        return [self.filename, self.status.value, self.message]


# =============================================================================
# MANIFEST PARSING
# =============================================================================

def parse_sums(text: str) -> dict[str, str]:
    """
    Parse `<hex>  <name>` / `<hex> *<name>` lines into name -> lowercase hex.

    Unreadable lines are skipped. The first entry for a name wins.
    """
    entries: dict[str, str] = {}
    for line_number, raw_line in enumerate(text.split("\n"), start=1):
        line = raw_line.rstrip("\r")
        if not line.strip():
            continue
        parts = line.split(None, 1)
        if len(parts) != 2:
            logger.debug("Skipping checksum line %s", MalformedStanza(line_number, line))
            continue
        digest, name = parts
        if name.startswith("*"):
            name = name[1:]
        entries.setdefault(name, digest.lower())
    return entries


# =============================================================================
# VERIFICATION
# =============================================================================

def verify_manifest_signature(
    directory: Path,
    verify_signature: SignatureVerifier,
    keyring: Path,
) -> str:
    """
    Check that the manifest is present and authentic; return its text.

    Raises:
        RunAbortedError: If the manifest or its signature is missing
        SignatureInvalid: If the signature does not verify
    """
    sums_path = Path(directory) / SUMS_FILENAME
    signature_path = Path(directory) / SUMS_SIGNATURE_FILENAME
    for required in (sums_path, signature_path):
        if not required.is_file():
            raise RunAbortedError(f"missing file: {required}")

    payload = sums_path.read_bytes()
    if not verify_signature(payload, signature_path.read_bytes(), keyring):
        raise SignatureInvalid(SUMS_FILENAME, "signature verification failed")
    logger.info("%s signature verified", SUMS_FILENAME)
    return payload.decode("utf-8", errors="replace")


def check_files(
    directory: Path,
    entries: dict[str, str],
    pattern: str = DEFAULT_PATTERN,
) -> list[SumResult]:
    """Compare every matching file in directory against the manifest."""
    results: list[SumResult] = []
    for path in sorted(Path(directory).glob(pattern)):
        if not path.is_file():
            continue
        expected = entries.get(path.name)
        if expected is None:
            logger.info("%s: not listed in %s, skipping", path.name, SUMS_FILENAME)
            results.append(SumResult(path.name, SumStatus.SKIP, f"Not listed in {SUMS_FILENAME}"))
            continue

        actual = sha256_file(path)
        if actual == expected:
            logger.info("%s: SHA256 OK", path.name)
            results.append(SumResult(path.name, SumStatus.OK, "Verified successfully"))
        else:
            logger.warning("%s: checksum mismatch", path.name)
            results.append(SumResult(path.name, SumStatus.FAIL, "Checksum mismatch"))
    return results


def verify_sums(
    directory: Path,
    verify_signature: SignatureVerifier,
    keyring: Path,
    pattern: str = DEFAULT_PATTERN,
) -> list[SumResult]:
    """Verify the manifest signature, then every matching file."""
    text = verify_manifest_signature(directory, verify_signature, keyring)
    return check_files(directory, parse_sums(text), pattern)


def sums_passed(results: Iterable[SumResult]) -> bool:
    """At least one listed file verified and none failed."""
    results = list(results)
    found_any = any(r.status is SumStatus.OK for r in results)
    failed_any = any(r.status is SumStatus.FAIL for r in results)
    return found_any and not failed_any


def write_sums_csv(path: Path, results: Iterable[SumResult]) -> Optional[Path]:
    path = Path(path)
    with open(path, "w", encoding="utf-8", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(SUMS_CSV_HEADER)
        for result in results:
            writer.writerow(result.to_row())
    return path
