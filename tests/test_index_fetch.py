"""
Tests for Index Acquisition.

These tests verify:
1. Downloads are decoded and cached per (suite, component)
2. Failures become IndexUnavailable and are memoized
3. Corrupt data is retried once, corrupt cache is discarded
4. Concurrent requesters of one key share a single download
5. Only failures and cache file locations are remembered between calls
"""

import gzip
import http.client
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from indexproof.config import build_sources
from indexproof.domain import IndexUnavailable, ReasonCode, Unmatched
from indexproof.gate import GateState
from indexproof.ingestion.index_fetch import IndexFetcher, decode_index
from indexproof.scan.orchestrator import run_scan

from support import index_text, make_artifact, stanza


TEXT = index_text(stanza("foo", "1", "aa"))
SOURCE = build_sources(("jammy",), ("main",), "https://mirror.test/ubuntu")[0]


class CountingDownloader:
    """Serves queued responses; an Exception in the queue is raised."""

    def __init__(self, *responses, delay=0.0):
        self.responses = list(responses)
        self.delay = delay
        self.urls = []
        self._lock = threading.Lock()

    def __call__(self, url, timeout):
        with self._lock:
            self.urls.append(url)
            response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if self.delay:
            time.sleep(self.delay)
        if isinstance(response, Exception):
            raise response
        return response


# =============================================================================
# DECODING
# =============================================================================

class TestDecode:
    """Test gzip and plain-text decoding."""

    def test_gzip(self):
        assert decode_index(gzip.compress(TEXT.encode())) == TEXT

    def test_plain_text(self):
        assert decode_index(TEXT.encode()) == TEXT

    def test_truncated_gzip(self):
        with pytest.raises(ValueError, match="corrupt gzip"):
            decode_index(gzip.compress(TEXT.encode())[:12])

    def test_not_utf8(self):
        with pytest.raises(ValueError, match="UTF-8"):
            decode_index(b"\xff\xfe\xfa")


# =============================================================================
# FETCHER
# =============================================================================

class TestIndexFetcher:
    """Test caching and failure handling."""

    def test_download_and_cache(self, tmp_path):
        raw = gzip.compress(TEXT.encode())
        downloader = CountingDownloader(raw)
        fetcher = IndexFetcher(tmp_path, downloader=downloader)

        blob = fetcher(SOURCE)

        assert blob.text == TEXT
        assert blob.raw == raw
        assert downloader.urls == [
            "https://mirror.test/ubuntu/dists/jammy/main/binary-amd64/Packages.gz",
        ]
        assert fetcher.cache_path(SOURCE).read_bytes() == raw

    def test_memoized_within_run(self, tmp_path):
        downloader = CountingDownloader(gzip.compress(TEXT.encode()))
        fetcher = IndexFetcher(tmp_path, downloader=downloader)

        fetcher(SOURCE)
        fetcher(SOURCE)

        assert len(downloader.urls) == 1

    def test_disk_cache_reused_across_fetchers(self, tmp_path):
        raw = gzip.compress(TEXT.encode())
        IndexFetcher(tmp_path, downloader=CountingDownloader(raw))(SOURCE)

        downloader = CountingDownloader(OSError("offline"))
        blob = IndexFetcher(tmp_path, downloader=downloader)(SOURCE)

        assert blob.text == TEXT
        assert downloader.urls == []

    def test_download_failure(self, tmp_path):
        fetcher = IndexFetcher(tmp_path, downloader=CountingDownloader(OSError("timed out")))

        with pytest.raises(IndexUnavailable) as exc:
            fetcher(SOURCE)

        assert exc.value.source == SOURCE
        assert "timed out" in exc.value.reason

    def test_failure_memoized(self, tmp_path):
        downloader = CountingDownloader(OSError("404"))
        fetcher = IndexFetcher(tmp_path, downloader=downloader)

        for _ in range(3):
            with pytest.raises(IndexUnavailable):
                fetcher(SOURCE)

        assert len(downloader.urls) == 1

    def test_corrupt_download_retried_once(self, tmp_path):
        good = gzip.compress(TEXT.encode())
        corrupt = good[:12]
        downloader = CountingDownloader(corrupt, good)

        blob = IndexFetcher(tmp_path, downloader=downloader)(SOURCE)

        assert blob.text == TEXT
        assert len(downloader.urls) == 2

    def test_corrupt_twice_is_unavailable(self, tmp_path):
        corrupt = gzip.compress(TEXT.encode())[:12]
        downloader = CountingDownloader(corrupt)
        fetcher = IndexFetcher(tmp_path, downloader=downloader)

        with pytest.raises(IndexUnavailable, match="decode failed"):
            fetcher(SOURCE)

        assert len(downloader.urls) == 2
        assert not fetcher.cache_path(SOURCE).exists()

    def test_corrupt_cache_discarded(self, tmp_path):
        fetcher = IndexFetcher(tmp_path, downloader=CountingDownloader(gzip.compress(TEXT.encode())))
        fetcher.cache_path(SOURCE).write_bytes(b"\x1f\x8b broken")

        blob = fetcher(SOURCE)

        assert blob.text == TEXT
        assert fetcher.downloader.urls

    def test_source_without_url(self, tmp_path):
        source = SOURCE.__class__(suite="jammy", component="main")
        with pytest.raises(IndexUnavailable, match="no origin URL"):
            IndexFetcher(tmp_path, downloader=CountingDownloader(b""))(source)

    def test_concurrent_requests_share_download(self, tmp_path):
        downloader = CountingDownloader(gzip.compress(TEXT.encode()), delay=0.05)
        fetcher = IndexFetcher(tmp_path, downloader=downloader)

        with ThreadPoolExecutor(max_workers=8) as pool:
            blobs = list(pool.map(lambda _: fetcher(SOURCE), range(8)))

        assert len(downloader.urls) == 1
        assert all(blob.text == TEXT for blob in blobs)

    def test_distinct_keys_download_separately(self, tmp_path):
        noble = build_sources(("noble",), ("main",), "https://mirror.test/ubuntu")[0]
        downloader = CountingDownloader(gzip.compress(TEXT.encode()))
        fetcher = IndexFetcher(tmp_path, downloader=downloader)

        fetcher(SOURCE)
        fetcher(noble)

        assert len(downloader.urls) == 2
        assert fetcher.cache_path(noble).name == "noble-main-Packages.gz"

    @pytest.mark.parametrize("error", [
        http.client.IncompleteRead(b"partial", 1000),
        http.client.BadStatusLine("garbage"),
        http.client.RemoteDisconnected("closed"),
    ])
    def test_http_protocol_errors_are_unavailable(self, tmp_path, error):
        fetcher = IndexFetcher(tmp_path, downloader=CountingDownloader(error))

        with pytest.raises(IndexUnavailable, match="download failed"):
            fetcher(SOURCE)

        assert not fetcher.cache_path(SOURCE).exists()

    def test_truncated_transfer_does_not_abort_scan(self, tmp_path):
        downloader = CountingDownloader(http.client.IncompleteRead(b"partial", 1000))
        gate = GateState(verified_suites=frozenset({"jammy"}))
        artifact = make_artifact("foo", "1", "aa")

        report = run_scan([artifact], [SOURCE], gate, IndexFetcher(tmp_path, downloader=downloader))

        _, result = report.results[artifact.source_path]
        assert isinstance(result, Unmatched)
        assert result.reason == ReasonCode.INDEX_UNAVAILABLE


# =============================================================================
# MEMORY
# =============================================================================

class TestMemoizedState:
    """Test what the fetcher keeps between calls."""

    def test_no_decoded_text_held(self, tmp_path):
        fetcher = IndexFetcher(tmp_path, downloader=CountingDownloader(gzip.compress(TEXT.encode())))

        fetcher(SOURCE)
        fetcher(SOURCE)

        assert list(fetcher._outcomes.values()) == [fetcher.cache_path(SOURCE)]
        assert all(isinstance(outcome, Path) for outcome in fetcher._outcomes.values())

    def test_reused_source_read_from_cache_file(self, tmp_path):
        downloader = CountingDownloader(gzip.compress(TEXT.encode()))
        fetcher = IndexFetcher(tmp_path, downloader=downloader)

        first = fetcher(SOURCE)
        second = fetcher(SOURCE)

        assert second.text == first.text
        assert second is not first
        assert len(downloader.urls) == 1

    def test_cache_file_removed_mid_run(self, tmp_path):
        downloader = CountingDownloader(gzip.compress(TEXT.encode()))
        fetcher = IndexFetcher(tmp_path, downloader=downloader)
        fetcher(SOURCE)
        fetcher.cache_path(SOURCE).unlink()

        for _ in range(2):
            with pytest.raises(IndexUnavailable, match="cache error"):
                fetcher(SOURCE)

        assert len(downloader.urls) == 1
        assert isinstance(fetcher._outcomes[SOURCE.key], IndexUnavailable)
