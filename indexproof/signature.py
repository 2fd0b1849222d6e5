"""
Signature Verification for the IndexProof engine.

Verifies detached signatures over signed manifests (a suite's `Release`
file, a `SHA256SUMS` file) against a trusted keyring.

The cryptographic primitive is `gpgv`, run as a subprocess. gpgv only ever
reports success for a good signature by a key in the given keyring, so a
zero exit status is the whole verdict.

Fail closed: anything other than a clean pass is False.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .config import (
    FETCH_TIMEOUT_SECONDS,
    RELEASE_FILENAME,
    RELEASE_SIGNATURE_FILENAME,
    suite_url,
)
from .domain import RunAbortedError
from .ingestion.index_fetch import Downloader, download


logger = logging.getLogger(__name__)


GPGV_BINARY = "gpgv"
GPGV_TIMEOUT_SECONDS = 60.0

# (payload, detached_signature, keyring) -> bool
SignatureVerifier = Callable[[bytes, bytes, Path], bool]


# =============================================================================
# KEYRING
# =============================================================================

def require_keyring(keyring: Path) -> Path:
    """
    Ensure the trusted keyring exists.

    Raises:
        RunAbortedError: If the keyring is missing (nothing can be trusted)
    """
    keyring = Path(keyring)
    if not keyring.is_file():
        raise RunAbortedError(f"trusted keyring not found: {keyring}")
    return keyring


# =============================================================================
# GPGV VERIFIER
# =============================================================================

def gpgv_verify(
    payload: bytes,
    signature: bytes,
    keyring: Path,
    binary: str = GPGV_BINARY,
    timeout: float = GPGV_TIMEOUT_SECONDS,
) -> bool:
    """
    Verify a detached signature with gpgv.

    Raises:
        RunAbortedError: If the gpgv binary itself is not installed
    """
    with tempfile.TemporaryDirectory(prefix="indexproof-gpgv-") as tmp:
        payload_path = os.path.join(tmp, "payload")
        signature_path = os.path.join(tmp, "payload.sig")
        with open(payload_path, "wb") as fh:
            fh.write(payload)
        with open(signature_path, "wb") as fh:
            fh.write(signature)

        try:
            result = subprocess.run(
                [binary, "--keyring", str(keyring), signature_path, payload_path],
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError:
            raise RunAbortedError(f"{binary} is not installed; cannot verify signatures")
        except subprocess.TimeoutExpired:
            logger.warning("%s timed out after %.0fs", binary, timeout)
            return False

    if result.returncode != 0:
        logger.debug("%s rejected signature: %s", binary, result.stderr.strip())
        return False
    return True


# =============================================================================
# SIGNED MANIFEST RETRIEVAL
# =============================================================================

@dataclass(frozen=True)
class SignedManifest:
    """A manifest and its detached signature, as retrieved."""
    payload: bytes
    signature: bytes


# suite -> SignedManifest; raises OSError on failure
ManifestFetcher = Callable[[str], SignedManifest]


class ReleaseFetcher:
    """Retrieves `Release` and `Release.gpg` for a suite from a mirror."""

    def __init__(
        self,
        mirror: str,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        downloader: Optional[Downloader] = None,
    ):
        self.mirror = mirror
        self.timeout = timeout
        self.downloader = downloader or download

    def __call__(self, suite: str) -> SignedManifest:
        base = suite_url(self.mirror, suite)
        payload = self.downloader(f"{base}/{RELEASE_FILENAME}", self.timeout)
        signature = self.downloader(f"{base}/{RELEASE_SIGNATURE_FILENAME}", self.timeout)
        return SignedManifest(payload=payload, signature=signature)
