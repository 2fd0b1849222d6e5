"""
Index Acquisition for the IndexProof engine.

Retrieves one index blob per (suite, component) and decodes it to text.

Design principles:
- A failed retrieval or decode is IndexUnavailable for that one source,
  never a fatal run error
- Each retrieval has its own timeout
- Downloads are cached on disk, keyed by (suite, component)
- Concurrent requesters of the same key are serialized: the first one
  downloads and decodes, later ones reuse its cache file or its failure
- A cached blob that fails to decode is discarded and downloaded once more
"""

from __future__ import annotations

import gzip
import logging
import os
import tempfile
import threading
import zlib
from http.client import HTTPException
from pathlib import Path
from typing import Callable, Optional, Union
from urllib.error import URLError
from urllib.request import urlopen

from ..config import DEFAULT_CACHE_DIR, FETCH_TIMEOUT_SECONDS
from ..domain import IndexBlob, IndexSource, IndexUnavailable


logger = logging.getLogger(__name__)


GZIP_MAGIC = b"\x1f\x8b"

# (url, timeout) -> bytes; raises OSError (URLError is one) or HTTPException on failure
Downloader = Callable[[str, float], bytes]

# The interface the orchestrator consumes
IndexProvider = Callable[[IndexSource], IndexBlob]


# =============================================================================
# RETRIEVAL
# =============================================================================

def download(url: str, timeout: float = FETCH_TIMEOUT_SECONDS) -> bytes:
    """GET a URL and return the body. Raises OSError or HTTPException on failure."""
    with urlopen(url, timeout=timeout) as response:
        return response.read()


def decode_index(raw: bytes) -> str:
    """
    Decode an index blob to text.

    gzip data is detected by its magic bytes; anything else is read as
    plain text.

    Raises:
        ValueError: If the blob is corrupt or not valid text
    """
    data = raw
    if raw[:2] == GZIP_MAGIC:
        try:
            data = gzip.decompress(raw)
        except (OSError, EOFError, zlib.error) as e:
            raise ValueError(f"corrupt gzip data: {e}")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"index is not UTF-8 text: {e}")


def _write_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


# =============================================================================
# FETCHER
# =============================================================================

class IndexFetcher:
    """
    Cached, thread-safe index provider.

    Call it with an IndexSource to get an IndexBlob, or IndexUnavailable.
    Failures are memoized for the lifetime of the fetcher, so one run never
    retries the same broken source per artifact. Successes are remembered
    only as their cache file, which is read and decoded again on each call;
    decoded text is never held between calls.
    """

    def __init__(
        self,
        cache_dir: Path = DEFAULT_CACHE_DIR,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        downloader: Optional[Downloader] = None,
    ):
        self.cache_dir = Path(cache_dir)
        self.timeout = timeout
        self.downloader = downloader or download

        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._outcomes: dict[tuple[str, str], Union[Path, IndexUnavailable]] = {}

    def cache_path(self, source: IndexSource) -> Path:
        return self.cache_dir / f"{source.suite}-{source.component}-Packages.gz"

    def __call__(self, source: IndexSource) -> IndexBlob:
        with self._guard:
            lock = self._locks.setdefault(source.key, threading.Lock())

        with lock:
            outcome = self._outcomes.get(source.key)
            if outcome is None:
                blob = self._acquire(source)
                if isinstance(blob, IndexUnavailable):
                    self._outcomes[source.key] = blob
                    raise IndexUnavailable(blob.source, blob.reason)
                self._outcomes[source.key] = self.cache_path(source)
                return blob
            if isinstance(outcome, IndexUnavailable):
                raise IndexUnavailable(outcome.source, outcome.reason)

        logger.debug("Reusing cached index for %s", source.label)
        try:
            return self._load(source, outcome)
        except IndexUnavailable as e:
            logger.warning("Index unavailable: %s", e)
            with lock:
                self._outcomes[source.key] = e
            raise

    def _load(self, source: IndexSource, path: Path) -> IndexBlob:
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise IndexUnavailable(source, f"cache error: {e}")
        try:
            return IndexBlob(source=source, raw=raw, text=decode_index(raw))
        except ValueError as e:
            raise IndexUnavailable(source, f"cached index no longer decodes: {e}")

    def _retrieve(self, source: IndexSource) -> bytes:
        if not source.origin_url:
            raise IndexUnavailable(source, "no origin URL")
        logger.info("Downloading %s", source.origin_url)
        try:
            return self.downloader(source.origin_url, self.timeout)
        except (URLError, OSError, HTTPException, ValueError) as e:
            raise IndexUnavailable(source, f"download failed: {e}")

    def _acquire(self, source: IndexSource) -> Union[IndexBlob, IndexUnavailable]:
        path = self.cache_path(source)

        try:
            if path.is_file():
                logger.debug("Cache hit for %s: %s", source.label, path)
                raw = path.read_bytes()
                try:
                    return IndexBlob(source=source, raw=raw, text=decode_index(raw))
                except ValueError as e:
                    logger.warning(
                        "Cached index for %s is corrupt (%s), downloading again",
                        source.label, e,
                    )
                    path.unlink()

            raw = self._retrieve(source)
            try:
                text = decode_index(raw)
            except ValueError as e:
                logger.warning("Index for %s is corrupt (%s), retrying once", source.label, e)
                raw = self._retrieve(source)
                try:
                    text = decode_index(raw)
                except ValueError as e:
                    raise IndexUnavailable(source, f"decode failed: {e}")

            _write_atomic(path, raw)
            return IndexBlob(source=source, raw=raw, text=text)

        except IndexUnavailable as e:
            logger.warning("Index unavailable: %s", e)
            return e
        except OSError as e:
            error = IndexUnavailable(source, f"cache error: {e}")
            logger.warning("Index unavailable: %s", error)
            return error
